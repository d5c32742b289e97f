"""
auth/tokens.py -- Signed access and refresh JWTs.

Design:
  python-jose with HS256. Access and refresh tokens are signed with two
  different secrets (Settings.jwt_secret / Settings.jwt_refresh_secret), so
  a token of one kind never verifies as the other even before the "type"
  claim is checked, and leaking one secret does not allow forging the other.

  Claims: sub (account id as string, as jose requires), user_id, email,
  type ("access" | "refresh"), iat, exp, jti. The random jti makes two
  tokens minted for the same account in the same second differ, which the
  refresh rotation relies on.

  verify() raises rather than returning None: the refresh flow needs to tell
  an expired token (TokenExpired -> prompt re-login) from a forged or
  malformed one (TokenInvalid).

Access tokens are verified statelessly. Refresh tokens are only valid if
they also equal the value stored on the account; that check lives in
auth/sessions.py, not here.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import TokenExpired, TokenInvalid
from auth.models import Account
from core.config import Settings

logger = logging.getLogger("stockfolio.auth")

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"


class TokenIssuer:
    """Creates and verifies signed access/refresh tokens."""

    def __init__(self, settings: Settings) -> None:
        self._secrets = {
            ACCESS: settings.jwt_secret,
            REFRESH: settings.jwt_refresh_secret,
        }
        self._lifetimes = {
            ACCESS: settings.access_token_expire_seconds,
            REFRESH: settings.refresh_token_expire_seconds,
        }

    @property
    def access_lifetime(self) -> int:
        return self._lifetimes[ACCESS]

    def issue_access_token(self, account: Account, expire_seconds: int = 0) -> str:
        """Encode a short-lived access token for account.

        expire_seconds overrides the configured lifetime when non-zero;
        negative values produce an already-expired token (used by tests).
        """
        return self._issue(account, ACCESS, expire_seconds)

    def issue_refresh_token(self, account: Account, expire_seconds: int = 0) -> str:
        """Encode a long-lived refresh token for account."""
        return self._issue(account, REFRESH, expire_seconds)

    def _issue(self, account: Account, kind: str, expire_seconds: int) -> str:
        if account.id is None:
            raise ValueError("Cannot issue a token for an unsaved account.")
        duration = expire_seconds if expire_seconds != 0 else self._lifetimes[kind]
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(account.id),
            "user_id": account.id,
            "email": account.email,
            "type": kind,
            "iat": now,
            "exp": now + timedelta(seconds=duration),
            "jti": secrets.token_hex(16),
        }
        return jwt.encode(payload, self._secrets[kind], algorithm=_ALGORITHM)

    def verify(self, token: str, kind: str) -> dict[str, Any]:
        """Decode and check a token of the given kind. Returns the claims.

        Raises TokenExpired if the signature is valid but exp has passed,
        TokenInvalid for every other failure.
        """
        if kind not in self._secrets:
            raise ValueError(f"Unknown token kind: {kind!r}")
        if not token:
            raise TokenInvalid()
        try:
            claims = jwt.decode(token, self._secrets[kind], algorithms=[_ALGORITHM])
        except ExpiredSignatureError:
            raise TokenExpired() from None
        except JWTError as exc:
            logger.debug("%s token rejected: %s", kind, exc)
            raise TokenInvalid() from None
        if claims.get("type") != kind or not isinstance(claims.get("user_id"), int):
            raise TokenInvalid()
        return claims
