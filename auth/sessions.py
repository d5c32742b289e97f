"""
auth/sessions.py -- Session token lifecycle: issuance, rotation, revocation,
and the single-use reset / verification token flows.

Per-account states:

    Unauthenticated --start_session--> Authenticated
    Authenticated/Refreshed --refresh--> Refreshed
    any --logout--> Revoked

The refresh token stored on the account row is the single source of truth
for refresh validity. A presented refresh token must both verify
cryptographically AND equal the stored value. Overwriting the stored value
(rotation, new login) or clearing it (logout, password reset) therefore
revokes every previously issued refresh token for that account at once.

Check-then-write steps (rotation, reset-token consumption) are single
conditional UPDATEs via CredentialStore.update(..., expect=...). A second
request racing on the same token finds the guard no longer matching and is
rejected with TokenInvalid.
"""

from __future__ import annotations

import logging
import secrets
import time

from auth.errors import AccountNotFound, AlreadyVerified, TokenInvalid, ValidationError
from auth.models import Account, AuthResult
from auth.passwords import PasswordHasher
from auth.store import CredentialStore
from auth.tokens import REFRESH, TokenIssuer
from auth.validation import validate_password
from core.config import Settings

logger = logging.getLogger("stockfolio.auth")


def generate_token() -> str:
    """32 random bytes as hex -- 256 bits of entropy for reset/verification links."""
    return secrets.token_hex(32)


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class SessionLifecycleManager:
    """Owns refresh-token rotation/revocation and the reset/verification flows."""

    def __init__(
        self,
        store: CredentialStore,
        issuer: TokenIssuer,
        hasher: PasswordHasher,
        settings: Settings,
    ) -> None:
        self.store = store
        self.issuer = issuer
        self.hasher = hasher
        self.reset_token_expire_seconds = settings.reset_token_expire_seconds

    # ------------------------------------------------------------------
    # Token pairs
    # ------------------------------------------------------------------

    def start_session(self, account: Account) -> AuthResult:
        """Issue an access+refresh pair and make the refresh token the live one."""
        access_token, refresh_token = self._issue_pair(account)
        self.store.update(account.id, {"refresh_token": refresh_token})
        logger.info("Session started for account %s", account.id)
        return self._result(account, access_token, refresh_token)

    def refresh(self, presented_refresh_token: str) -> AuthResult:
        """Rotate a refresh token: verify, compare with stored value, re-issue.

        Raises TokenExpired when the token's exp has passed, TokenInvalid when
        it fails verification, its account is gone, or it is no longer the
        stored token (rotated out, logged out, or replaced by a newer login).
        """
        claims = self.issuer.verify(presented_refresh_token, REFRESH)
        account = self.store.find_by_id(claims["user_id"])
        if account is None or account.refresh_token is None:
            raise TokenInvalid()
        if not secrets.compare_digest(account.refresh_token, presented_refresh_token):
            logger.warning("Rejected reuse of a rotated refresh token for account %s", account.id)
            raise TokenInvalid()

        access_token, refresh_token = self._issue_pair(account)
        rotated = self.store.update(
            account.id,
            {"refresh_token": refresh_token},
            expect={"refresh_token": presented_refresh_token},
        )
        if not rotated:
            # Another request rotated or revoked the token between our read and write.
            raise TokenInvalid()
        return self._result(account, access_token, refresh_token)

    def logout(self, account_id: int) -> None:
        """Clear the stored refresh token. Idempotent."""
        self.store.update(account_id, {"refresh_token": None})
        logger.info("Session revoked for account %s", account_id)

    def _issue_pair(self, account: Account) -> tuple[str, str]:
        return self.issuer.issue_access_token(account), self.issuer.issue_refresh_token(account)

    def _result(self, account: Account, access_token: str, refresh_token: str) -> AuthResult:
        return AuthResult(
            access_token=access_token,
            refresh_token=refresh_token,
            account=account.without_secrets(),
            expires_in=self.issuer.access_lifetime,
        )

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def request_reset(self, email: str) -> str | None:
        """Start a password reset.

        Callers must present the same outcome whether or not the email
        exists. The returned token is for the in-process mailer only and is
        None when no account matched.
        """
        account = self.store.find_by_email(email) if email else None
        if account is None:
            return None
        token = generate_token()
        self.store.update(
            account.id,
            {"reset_token": token, "reset_token_expires": time.time() + self.reset_token_expire_seconds},
        )
        logger.info("Password reset requested for account %s", account.id)
        return token

    def reset_password(self, token: str, new_password: str) -> None:
        """Consume a reset token and set a new password.

        Not-found, expired, and already-used tokens all raise the same
        TokenInvalid. The password hash, the cleared reset token/expiry, and
        the cleared refresh token are written in one statement, guarded on
        the reset token still being present.
        """
        if not token:
            raise ValidationError("Token and new password are required.")
        validate_password(new_password)
        account = self.store.find_by_reset_token(token, time.time())
        if account is None:
            raise TokenInvalid("Invalid or expired reset token.")

        consumed = self.store.update(
            account.id,
            {
                "password_hash": self.hasher.hash(new_password),
                "reset_token": None,
                "reset_token_expires": None,
                "refresh_token": None,
            },
            expect={"reset_token": token},
        )
        if not consumed:
            raise TokenInvalid("Invalid or expired reset token.")
        logger.info("Password reset completed for account %s", account.id)

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def verify_email(self, token: str) -> None:
        if not token:
            raise ValidationError("Verification token is required.")
        account = self.store.find_by_verification_token(token)
        if account is None:
            raise TokenInvalid("Invalid verification token.")
        verified = self.store.update(
            account.id,
            {"is_verified": True, "verification_token": None},
            expect={"verification_token": token},
        )
        if not verified:
            raise TokenInvalid("Invalid verification token.")

    def resend_verification(self, email: str) -> str:
        """Generate a fresh verification token and return it for the mailer."""
        account = self.store.find_by_email(email) if email else None
        if account is None:
            raise AccountNotFound()
        if account.is_verified:
            raise AlreadyVerified()
        token = generate_token()
        self.store.update(account.id, {"verification_token": token})
        return token
