"""
auth/passwords.py -- Password hashing and password policy.

Passwords: bcrypt directly (no passlib wrapper). Bcrypt's cost factor makes
brute-force of low-entropy secrets expensive. The _DUMMY_HASH constant lets
IdentityStore.check_password() burn the same bcrypt work when the user does
not exist, so login response time does not reveal whether an email is
registered.

Policy: validate_password() returns every rule the candidate breaks, in a
fixed order, as IdentityError values. Rule toggles come from Settings.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import bcrypt

from auth.models import IdentityError

if TYPE_CHECKING:
    from core.config import Settings

# bcrypt only looks at the first 72 bytes and bcrypt>=4.1 refuses longer input.
MAX_PASSWORD_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    if len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES:
        # Registration never stores such a password.
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash or over-long input: treat as a mismatch.
        return False


# Computed once at module load so the first failed login is not measurably
# slower than later ones.
_DUMMY_HASH: str = hash_password("authapi_timing_dummy")


def verify_dummy(plain: str) -> bool:
    """Run a full bcrypt check against a throwaway hash. Always returns False."""
    verify_password(plain, _DUMMY_HASH)
    return False


def validate_password(password: str, settings: Settings) -> list[IdentityError]:
    """Check password against the configured policy.

    Returns an empty list when the password is acceptable.
    """
    errors: list[IdentityError] = []
    if len(password) < settings.password_min_length:
        errors.append(
            IdentityError(
                "PasswordTooShort",
                f"Passwords must be at least {settings.password_min_length} characters.",
            )
        )
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        errors.append(IdentityError("PasswordTooLong", f"Passwords must be at most {MAX_PASSWORD_BYTES} bytes."))
    if settings.password_require_non_alphanumeric and all(c.isalnum() for c in password):
        errors.append(
            IdentityError(
                "PasswordRequiresNonAlphanumeric",
                "Passwords must have at least one non alphanumeric character.",
            )
        )
    if settings.password_require_digit and not any("0" <= c <= "9" for c in password):
        errors.append(IdentityError("PasswordRequiresDigit", "Passwords must have at least one digit ('0'-'9')."))
    if settings.password_require_lowercase and not any("a" <= c <= "z" for c in password):
        errors.append(IdentityError("PasswordRequiresLower", "Passwords must have at least one lowercase ('a'-'z')."))
    if settings.password_require_uppercase and not any("A" <= c <= "Z" for c in password):
        errors.append(IdentityError("PasswordRequiresUpper", "Passwords must have at least one uppercase ('A'-'Z')."))
    unique = settings.password_required_unique_chars
    if unique >= 1 and len(set(password)) < unique:
        errors.append(
            IdentityError(
                "PasswordRequiresUniqueChars",
                f"Passwords must use at least {unique} different characters.",
            )
        )
    return errors
