"""
auth/validation.py -- Input rules shared by registration, password change,
and password reset. Each rule raises ValidationError with a user-safe message.
"""

from __future__ import annotations

import re

from auth.errors import ValidationError
from auth.passwords import MAX_PASSWORD_BYTES
from auth.store import normalize_email

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_MIN_PASSWORD_LENGTH = 8


def validate_email(email: str) -> str:
    """Return the normalized email or raise ValidationError."""
    if not email or not email.strip():
        raise ValidationError("Email is required.")
    normalized = normalize_email(email)
    if not _EMAIL_RE.match(normalized):
        raise ValidationError("Invalid email format.")
    return normalized


def validate_password(password: str) -> None:
    """Enforce the password policy: 8+ chars with lower, upper, and digit.

    The upper bound is in UTF-8 bytes, not characters: bcrypt cannot hash
    more than MAX_PASSWORD_BYTES.
    """
    if not password:
        raise ValidationError("Password is required.")
    if len(password) < _MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {_MIN_PASSWORD_LENGTH} characters long.")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long.")
    has_lower = any(c.islower() for c in password)
    has_upper = any(c.isupper() for c in password)
    has_digit = any(c.isdigit() for c in password)
    if not (has_lower and has_upper and has_digit):
        raise ValidationError("Password must contain uppercase, lowercase, and number.")


def validate_full_name(full_name: str) -> str:
    if not full_name or not full_name.strip():
        raise ValidationError("Full name is required.")
    return full_name.strip()
