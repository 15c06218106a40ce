"""
auth/passwords.py -- Password strength policy.

The same rules apply at registration and password reset. Every failing rule
is reported, not just the first, so the client can render a checklist.
"""

from __future__ import annotations

import re

MIN_LENGTH = 8
MAX_LENGTH = 128
SPECIAL_CHARS = "@$!%*?&"

_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
    (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
    (re.compile(r"\d"), "Password must contain at least one number"),
    (re.compile(f"[{re.escape(SPECIAL_CHARS)}]"), f"Password must contain at least one special character ({SPECIAL_CHARS})"),
]

_WHITESPACE = re.compile(r"\s")


def validate_password_strength(password: str | None) -> list[str]:
    """Return the list of violated rules. An empty list means the password is acceptable."""
    if not password:
        return ["Password is required"]

    errors: list[str] = []
    if len(password) < MIN_LENGTH:
        errors.append(f"Password must be at least {MIN_LENGTH} characters long")
    if len(password) > MAX_LENGTH:
        errors.append(f"Password cannot be longer than {MAX_LENGTH} characters")
    for pattern, message in _RULES:
        if not pattern.search(password):
            errors.append(message)
    if _WHITESPACE.search(password):
        errors.append("Password cannot contain whitespace")
    return errors


def format_password_errors(errors: list[str]) -> str:
    if not errors:
        return ""
    if len(errors) == 1:
        return errors[0]
    return "Password does not meet the requirements: " + ", ".join(errors)
