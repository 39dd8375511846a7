"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only one auth method exists: Authorization: Bearer <jwt>, as issued by
POST /api/v1/auth/login. The token is validated on every request (signature,
expiry, issuer, audience); no server-side session exists.

try_get_principal() is the soft variant (returns None on failure).
get_principal() wraps it and raises HTTP 401 if unauthenticated.
require_role(role) builds a dependency that additionally raises HTTP 403
when the token does not carry that role claim.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi because this module is part of
  the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request

from auth.models import Principal
from auth.tokens import decode_token

logger = logging.getLogger("authapi.auth")


def try_get_principal(request: Request) -> Principal | None:
    """Return the Principal for a valid Bearer token, or None. Never raises."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    payload = decode_token(token.strip())
    if payload is None:
        return None
    return Principal(claims=payload)


def get_principal(request: Request) -> Principal:
    """Require authentication. Raises HTTP 401 if the request carries no valid token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_principal)): ...
    """
    principal = try_get_principal(request)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def require_role(role: str):
    """Return a dependency that requires an authenticated caller holding role.

    Raises HTTP 401 if unauthenticated, HTTP 403 if the role claim is absent.
    Roles are read from the token, not re-fetched from the store.
    """

    def _check(principal: Principal = Depends(get_principal)) -> Principal:
        if not principal.has_role(role):
            logger.warning(
                "Access denied -- user '%s' (roles=%s) needs role '%s'",
                principal.user_id,
                principal.roles,
                role,
            )
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": f"Role '{role}' is required."},
            )
        return principal

    return _check
