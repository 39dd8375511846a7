"""
auth/tokens.py -- Bearer token issuance and validation.

Security design decisions:
  JWT: python-jose with HS256, signed with Settings.jwt_key. Tokens are
       stateless and never persisted, so there is nothing to revoke; they simply
       expire token_expire_hours after issue.

  Claims: nameid and sub both carry the user id (consumers look for either),
       email, a fresh jti per call so two tokens minted in the same second for
       the same user still differ, and a role list with one entry per role
       passed in. Role order and duplicates are preserved exactly.

  iat / exp: integer epoch seconds taken from the same wall-clock read, so
       exp - iat is exactly the configured lifetime.

  Missing key: create_token() raises TokenConfigError instead of emitting an
       unsigned token. Settings already refuses to start without a key in
       production; this is the first-use guard for hand-built settings.

  Verification: decode_token() checks signature, exp (with clock-skew leeway),
       iss, and aud. It returns None on any failure -- the dependency layer
       turns that into a 401.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from core.config import Settings, get_settings

if TYPE_CHECKING:
    from auth.models import User

logger = logging.getLogger("authapi.auth")

_ALGORITHM = "HS256"

# Claims that are protocol metadata rather than identity facts.
_REGISTERED = ("iss", "aud", "iat", "exp")


class TokenConfigError(ValueError):
    """Raised when a token is requested but no signing key is configured."""


def create_token(user: User, roles: list[str], settings: Settings | None = None) -> str:
    """Return a signed compact JWT for user carrying one role claim per entry in roles."""
    settings = settings or get_settings()
    if not settings.jwt_key:
        raise TokenConfigError("JWT signing key is not configured.")
    if not user.id or not user.email:
        raise ValueError("Tokens can only be issued for users with an id and an email.")

    issued_at = int(datetime.now(timezone.utc).timestamp())
    payload = {
        "nameid": user.id,
        "email": user.email,
        "sub": user.id,
        "jti": str(uuid.uuid4()),
        "role": list(roles),
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": issued_at,
        "exp": issued_at + settings.token_expire_hours * 3600,
    }
    return jwt.encode(payload, settings.jwt_key, algorithm=_ALGORITHM)


def decode_token(token: str, settings: Settings | None = None) -> dict | None:
    """Decode and verify a bearer token. Returns the payload dict or None on any failure."""
    settings = settings or get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_key,
            algorithms=[_ALGORITHM],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"leeway": settings.clock_skew_seconds},
        )
    except JWTError as exc:
        logger.info("Rejected bearer token: %s", exc)
        return None
    if not payload.get("nameid") and not payload.get("sub"):
        return None
    return payload


def claim_pairs(payload: dict) -> list[dict[str, str]]:
    """Flatten a token payload into type/value pairs.

    List-valued claims (role) expand into one pair per element, in order.
    Registered protocol claims are included last so identity claims read first.
    """
    ordered = [k for k in payload if k not in _REGISTERED] + [k for k in _REGISTERED if k in payload]
    pairs: list[dict[str, str]] = []
    for claim_type in ordered:
        value = payload[claim_type]
        values = value if isinstance(value, list) else [value]
        pairs.extend({"type": claim_type, "value": str(v)} for v in values)
    return pairs
