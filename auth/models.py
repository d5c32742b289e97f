"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost no logic). Stores and
managers do the work; these classes own the shape.

Layer rule: no imports from api/, core/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

# Fields that must never leave the auth layer. without_secrets() blanks them.
SENSITIVE_FIELDS = (
    "password_hash",
    "refresh_token",
    "reset_token",
    "reset_token_expires",
    "verification_token",
)


@dataclass
class Account:
    """Represents one identity row.

    email is always stored lower-cased; the store and the managers normalize
    before every lookup so uniqueness is case-insensitive.

    password_hash is None for OAuth-only accounts (they have no local
    password and cannot log in or change a password here).

    refresh_token holds the single live refresh token. Overwriting or
    clearing it revokes whatever was issued before.

    reset_token_expires is an absolute epoch timestamp (seconds). The token
    is honored only while time.time() is strictly below it.
    """

    email: str
    full_name: str
    id: int | None = None
    password_hash: str | None = None  # None = OAuth-only account
    is_verified: bool = False
    is_premium: bool = False
    avatar_url: str | None = None
    google_id: str | None = None
    refresh_token: str | None = None
    reset_token: str | None = None
    reset_token_expires: float | None = None
    verification_token: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_login_at: str | None = None

    def without_secrets(self) -> Account:
        """Return a copy safe to hand to callers: hash and pending tokens removed."""
        return replace(self, **{name: None for name in SENSITIVE_FIELDS})


@dataclass
class AuthResult:
    """Outcome of a successful register, login, or refresh."""

    access_token: str
    refresh_token: str
    account: Account
    expires_in: int
    token_type: str = "bearer"
