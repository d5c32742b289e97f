"""
auth/credentials.py -- Registration, login, and account self-service.

Every operation validates its input before touching storage, then delegates
token issuance to SessionLifecycleManager.

Enumeration resistance [C1]:
  login() raises the same InvalidCredentials, with the same message, for an
  unknown email, an OAuth-only account, and a wrong password. bcrypt runs in
  all three cases (against a dummy hash when there is nothing real to check)
  so response time does not reveal which case occurred either.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AccountNotFound,
    DuplicateAccount,
    InvalidCredentials,
    NoChanges,
    UnsupportedOperation,
    ValidationError,
)
from auth.models import Account, AuthResult
from auth.passwords import PasswordHasher
from auth.sessions import SessionLifecycleManager, generate_token
from auth.store import CredentialStore
from auth.validation import validate_email, validate_full_name, validate_password

logger = logging.getLogger("stockfolio.auth")

# Only these keys may be changed through update_profile(). Anything else in
# the caller's mapping is ignored.
PROFILE_FIELDS = ("full_name", "avatar_url")


class CredentialManager:
    """Registration/login orchestration and profile/password updates."""

    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        sessions: SessionLifecycleManager,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.sessions = sessions

    def register(self, email: str, password: str, full_name: str) -> AuthResult:
        """Create a password account and start its first session.

        Raises ValidationError for a malformed email, weak password, or blank
        name, and DuplicateAccount if the normalized email is taken. The
        verification token is stored on the new row; sending it is the
        caller's concern (see SessionLifecycleManager.resend_verification).
        """
        if not email or not password or not full_name:
            raise ValidationError("Email, password, and full name are required.")
        normalized = validate_email(email)
        validate_password(password)
        name = validate_full_name(full_name)

        if self.store.find_by_email(normalized) is not None:
            raise DuplicateAccount()

        account = Account(
            email=normalized,
            full_name=name,
            password_hash=self.hasher.hash(password),
            verification_token=generate_token(),
        )
        try:
            account_id = self.store.insert(account)
        except IntegrityError:
            # Lost a race with a concurrent registration for the same email.
            raise DuplicateAccount() from None

        created = self.store.find_by_id(account_id)
        logger.info("Registered account %s", account_id)
        return self.sessions.start_session(created)

    def login(self, email: str, password: str) -> AuthResult:
        account = self.store.find_by_email(email) if email else None
        if account is None or account.password_hash is None:
            self.hasher.verify_dummy(password or "")
            raise InvalidCredentials()
        if not password or not self.hasher.verify(password, account.password_hash):
            raise InvalidCredentials()

        account.last_login_at = datetime.now(timezone.utc).isoformat()
        self.store.update(account.id, {"last_login_at": account.last_login_at})
        return self.sessions.start_session(account)

    def change_password(self, account_id: int, current_password: str, new_password: str) -> None:
        """Replace the password after re-checking the current one.

        Open sessions are left alone; callers that want "log out everywhere"
        follow up with SessionLifecycleManager.logout().
        """
        if not current_password or not new_password:
            raise ValidationError("Current password and new password are required.")
        validate_password(new_password)

        account = self.store.find_by_id(account_id)
        if account is None:
            raise AccountNotFound()
        if account.password_hash is None:
            raise UnsupportedOperation("Cannot change password for OAuth-only accounts.")
        if not self.hasher.verify(current_password, account.password_hash):
            raise InvalidCredentials("Current password is incorrect.")

        self.store.update(account_id, {"password_hash": self.hasher.hash(new_password)})
        logger.info("Password changed for account %s", account_id)

    def update_profile(self, account_id: int, fields: Mapping[str, Any]) -> Account:
        """Apply whitelisted profile edits and return the updated account.

        Keys are taken from PROFILE_FIELDS only. A key present with value
        None clears avatar_url; full_name may not be blank.
        """
        updates = {name: fields[name] for name in PROFILE_FIELDS if name in fields}
        if not updates:
            raise NoChanges()
        if "full_name" in updates:
            updates["full_name"] = validate_full_name(updates["full_name"] or "")

        if not self.store.update(account_id, updates):
            raise AccountNotFound()
        return self.get_account(account_id)

    def get_account(self, account_id: int) -> Account:
        account = self.store.find_by_id(account_id)
        if account is None:
            raise AccountNotFound()
        return account.without_secrets()
