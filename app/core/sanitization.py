"""Input sanitization and validation utilities."""

import re

import bleach


# Maximum lengths for different field types
MAX_LENGTHS = {
    "username": 32,
    "display_name": 100,
    "email": 255,
    "code": 64,
    "default": 255,
}

MIN_USERNAME_LENGTH = 3

# Allowed characters patterns
PATTERNS = {
    "username": re.compile(r"^[a-zA-Z0-9_.-]+$"),
    "email": re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"),
}


def sanitize_string(
    value: str,
    max_length: int = MAX_LENGTHS["default"],
    strip_html: bool = True,
) -> str:
    """
    Sanitize a string input.

    - Strips leading/trailing whitespace
    - Removes HTML
    - Collapses internal whitespace
    - Truncates to max length
    """
    if not value:
        return ""

    value = value.strip()

    if strip_html:
        value = bleach.clean(value, tags=[], strip=True)

    value = " ".join(value.split())

    if len(value) > max_length:
        value = value[:max_length]

    return value


def sanitize_display_name(value: str) -> str:
    """Sanitize the name shown on orders and in the storefront."""
    return sanitize_string(value, max_length=MAX_LENGTHS["display_name"])


def sanitize_username(value: str) -> str:
    # Usernames never contain spaces, so strip them all rather than collapse
    return sanitize_string(value, max_length=MAX_LENGTHS["username"]).replace(" ", "")


def validate_username(value: str) -> bool:
    if not value or not MIN_USERNAME_LENGTH <= len(value) <= MAX_LENGTHS["username"]:
        return False
    return bool(PATTERNS["username"].match(value))


def sanitize_email(value: str) -> str:
    """Sanitize and lowercase an email address."""
    return sanitize_string(value, max_length=MAX_LENGTHS["email"]).lower()


def validate_email(value: str) -> bool:
    """Validate email format."""
    if not value or len(value) > MAX_LENGTHS["email"]:
        return False
    return bool(PATTERNS["email"].match(value))


def sanitize_code(value: str) -> str:
    """Verification, TOTP and recovery codes: no markup, no whitespace."""
    return "".join(sanitize_string(value, max_length=MAX_LENGTHS["code"]).split())
