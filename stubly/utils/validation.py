"""
Registration Input Validation.

Lightweight checks applied before any store or remote call is made.
Each function raises :class:`~stubly.errors.ValidationError` with a
user-facing message on the first problem found.
"""

from __future__ import annotations

import re
from typing import Optional

from stubly.errors import ValidationError

__all__ = [
    "MIN_PASSWORD_LENGTH",
    "looks_like_email",
    "validate_email",
    "validate_password",
    "validate_registration",
    "validate_username",
]

USERNAME_MIN_LENGTH: int = 3
USERNAME_MAX_LENGTH: int = 64
MIN_PASSWORD_LENGTH: int = 8

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def looks_like_email(identifier: str) -> bool:
    """True when *identifier* should be treated as an email address."""
    return "@" in identifier


def validate_username(username: str) -> str:
    name = (username or "").strip()
    if not name:
        raise ValidationError("Username is required.")
    if not USERNAME_MIN_LENGTH <= len(name) <= USERNAME_MAX_LENGTH:
        raise ValidationError(
            f"Username must be between {USERNAME_MIN_LENGTH} and "
            f"{USERNAME_MAX_LENGTH} characters."
        )
    if any(ch.isspace() or not ch.isprintable() for ch in name):
        raise ValidationError("Username must not contain spaces or control characters.")
    if looks_like_email(name):
        raise ValidationError("Username must not contain '@'.")
    return name


def validate_email(email: Optional[str]) -> Optional[str]:
    if email is None or not email.strip():
        return None
    value = email.strip()
    if not _EMAIL_RE.match(value):
        raise ValidationError("Invalid email address.")
    return value


def validate_password(password: str) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
        )
    return password


def validate_registration(
    username: str, password: str, email: Optional[str] = None,
) -> tuple[str, Optional[str]]:
    """Validate registration input.

    Returns
    -------
    tuple[str, Optional[str]]
        The normalised ``(username, email)``.
    """
    name = validate_username(username)
    validate_password(password)
    return name, validate_email(email)
