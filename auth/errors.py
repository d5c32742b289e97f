"""
auth/errors.py -- Exception taxonomy for the credential and session layer.

Every error carries a stable machine-readable code, a user-safe message, and
the HTTP status the API layer should map it to. The API installs a single
exception handler for AuthError; nothing in auth/ imports fastapi.

Messages for InvalidCredentials are deliberately fixed: unknown email,
OAuth-only account, and wrong password must be indistinguishable.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all expected, user-facing auth failures."""

    code = "auth_error"
    status_code = 400
    default_message = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed email, weak password, or missing field. User-correctable."""

    code = "validation_error"
    status_code = 400
    default_message = "Invalid input."


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    status_code = 401
    default_message = "Invalid email or password."


class DuplicateAccount(AuthError):
    code = "duplicate_account"
    status_code = 409
    default_message = "An account with this email already exists."


class TokenInvalid(AuthError):
    code = "token_invalid"
    status_code = 401
    default_message = "Invalid or expired token."


class TokenExpired(AuthError):
    """Signature checked out but the token is past its exp claim.

    Kept distinct from TokenInvalid so clients can prompt a re-login instead
    of showing a generic failure.
    """

    code = "token_expired"
    status_code = 401
    default_message = "Token has expired."


class UnsupportedOperation(AuthError):
    code = "unsupported_operation"
    status_code = 400
    default_message = "Operation not supported for this account."


class AlreadyVerified(AuthError):
    code = "already_verified"
    status_code = 409
    default_message = "Email is already verified."


class NoChanges(AuthError):
    code = "no_changes"
    status_code = 400
    default_message = "No valid updates provided."


class AccountNotFound(AuthError):
    code = "account_not_found"
    status_code = 404
    default_message = "Account not found."
