"""
auth/passwords.py -- bcrypt password hashing.

bcrypt is used directly rather than through passlib: passlib's wrap-bug
detection feeds bcrypt a >72 byte password, which bcrypt 4.x rejects.
bcrypt 5 also rejects real passwords over MAX_PASSWORD_BYTES, so the
password policy in auth/validation.py enforces that limit before hashing.

The digest is the standard "$2b$<cost>$<salt><hash>" string, so it carries
its own salt and cost factor and can be verified with no external state.
Raising bcrypt_rounds in Settings only affects new hashes; old digests keep
verifying at the cost they were created with.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging

import bcrypt

from core.config import Settings

logger = logging.getLogger("stockfolio.auth")

# bcrypt only reads the first 72 bytes of its input; bcrypt 5 raises beyond it.
MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """Salted, tunable-cost hashing and verification of plaintext passwords."""

    def __init__(self, settings: Settings) -> None:
        self.rounds = settings.bcrypt_rounds
        # Computed once so unknown-email logins pay the same bcrypt cost as
        # wrong-password logins. See verify_dummy().
        self._dummy_hash = self.hash("stockfolio_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt digest of plaintext.

        Raises ValueError for an empty password or one longer than
        MAX_PASSWORD_BYTES once UTF-8 encoded.
        """
        if not plaintext:
            raise ValueError("Cannot hash an empty password.")
        if len(plaintext.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password exceeds {MAX_PASSWORD_BYTES} bytes.")
        return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plaintext: str, digest: str) -> bool:
        """Return True if plaintext matches digest. Never raises."""
        if len(plaintext.encode("utf-8")) > MAX_PASSWORD_BYTES:
            # Could never have been hashed, so it cannot match.
            return False
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), digest.encode("utf-8"))
        except (ValueError, TypeError):
            logger.warning("Malformed password digest encountered during verification")
            return False

    def verify_dummy(self, plaintext: str) -> None:
        """Burn one verification's worth of bcrypt work. Result is discarded."""
        self.verify(plaintext, self._dummy_hash)
