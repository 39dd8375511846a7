"""
api/routes/v1/auth.py -- Registration, login, and user management REST endpoints.

Routes:
  POST   /api/v1/auth/register       -- create user + assign role (public)
  POST   /api/v1/auth/login          -- email/password login; returns bearer token (public)
  GET    /api/v1/auth/debug          -- claims carried by the caller's token (requires auth)
  GET    /api/v1/auth/detail         -- caller's email, full name, first role (requires auth)
  GET    /api/v1/auth/users          -- every user with first role (public)
  DELETE /api/v1/auth/delete/{id}    -- remove roles then delete user (admin role)

Security:
  Login returns the same 401 body for an unknown email and a wrong password,
  and the store burns a bcrypt check in both cases, so neither the body nor
  the timing tells them apart. Cache-Control: no-store on every login response.
  /detail resolves the caller from the validated token only; it never accepts
  a client-supplied id.

Handlers are plain def functions: the identity store is synchronous, so
FastAPI runs them in its threadpool and each request is independent.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import (
    ClaimPair,
    DeleteResponse,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    RegisterResponse,
    UserDetailResponse,
    UserSummary,
)
from auth.dependencies import get_principal, require_role
from auth.models import Principal, User
from auth.store import IdentityStore
from auth.tokens import claim_pairs, create_token

logger = logging.getLogger("authapi.api")

ADMIN_ROLE = "admin"

# Auth policy:
# - POST   /auth/register:     public
# - POST   /auth/login:        public
# - GET    /auth/debug:        requires auth (get_principal)
# - GET    /auth/detail:       requires auth (get_principal)
# - GET    /auth/users:        public -- see DESIGN.md, kept as found
# - DELETE /auth/delete/{id}:  requires the admin role claim (require_role)
router = APIRouter()


def _store(request: Request) -> IdentityStore:
    return request.app.state.identity_store


def _first_role(store: IdentityStore, user: User) -> str | None:
    roles = store.get_roles(user)
    return roles[0] if roles else None


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=RegisterResponse)
def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    """Create a user whose login name is their email, then assign the requested role.

    There is no "does this email exist" lookup before the insert. The store's
    UNIQUE constraint decides, so two racing registrations cannot both win.
    The role is created if missing; a concurrent creation of the same role is
    harmless. Steps are not rolled back if a later one fails.
    """
    store = _store(request)
    user = User(email=body.email, user_name=body.email, full_name=body.full_name)

    result = store.create_user(user, body.password)
    if not result.succeeded:
        if result.has_code("DuplicateEmail", "DuplicateUserName"):
            raise HTTPException(
                status_code=400,
                detail={"code": "user_exists", "message": "User already exists."},
            )
        raise HTTPException(
            status_code=400,
            detail={"code": "registration_failed", "message": result.first_description},
        )

    if not store.role_exists(body.role):
        role_result = store.create_role(body.role)
        if not role_result.succeeded:
            if not role_result.has_code("DuplicateRoleName"):
                raise HTTPException(
                    status_code=400,
                    detail={"code": "registration_failed", "message": role_result.first_description},
                )
            logger.info("Role %s created concurrently", body.role)

    assigned = store.add_to_role(user, body.role)
    if not assigned.succeeded:
        logger.warning("User %s not added to role %s: %s", user.id, body.role, assigned.first_description)

    logger.info("Registered user %s with role %s", user.id, body.role)
    return RegisterResponse(message="User registered successfully.", user_id=user.id)


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Verify email and password and return a signed bearer token.

    Do NOT short-circuit on a missing user before check_password() -- the
    store equalizes timing only when it is always called.
    """
    store = _store(request)
    user = store.find_by_email(body.email)
    if not store.check_password(user, body.password):
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "invalid_credentials", "message": "Invalid credentials."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    roles = store.get_roles(user)
    token = create_token(user, roles)
    resp = JSONResponse(status_code=200, content=LoginResponse(token=token).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth/users", response_model=list[UserSummary])
def list_users(request: Request) -> list[UserSummary]:
    """List every user with their first assigned role."""
    store = _store(request)
    return [
        UserSummary(id=u.id, email=u.email, full_name=u.full_name, rol=_first_role(store, u))
        for u in store.list_users()
    ]


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/debug", response_model=list[ClaimPair])
def debug_claims(principal: Principal = Depends(get_principal)) -> list[ClaimPair]:
    """Echo the claims of the caller's token as type/value pairs."""
    return [ClaimPair(**pair) for pair in claim_pairs(principal.claims)]


@router.get("/auth/detail", response_model=UserDetailResponse)
def user_detail(request: Request, principal: Principal = Depends(get_principal)) -> UserDetailResponse:
    """Return the stored profile of the user the token was issued to.

    A valid token whose subject no longer exists (deleted user) yields 404
    with the token's claims attached for diagnosis.
    """
    store = _store(request)
    user = store.find_by_id(principal.user_id) if principal.user_id else None
    if user is None:
        raise HTTPException(
            status_code=404,
            detail={
                "code": "not_found",
                "message": "User not found.",
                "debug": {"name": principal.name, "claims": claim_pairs(principal.claims)},
            },
        )
    return UserDetailResponse(email=user.email, full_name=user.full_name, rol=_first_role(store, user))


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------


@router.delete("/auth/delete/{user_id}", response_model=DeleteResponse)
def delete_user(
    request: Request,
    user_id: str,
    principal: Principal = Depends(require_role(ADMIN_ROLE)),
) -> DeleteResponse:
    """Remove every role membership of the user, then delete the user record.

    Unlike the other handlers, unexpected errors are caught here and reported
    as 500 with the exception message.
    """
    store = _store(request)
    try:
        user = store.find_by_id(user_id)
        if user is None:
            raise HTTPException(
                status_code=404,
                detail={"code": "not_found", "message": "User not found."},
            )

        roles = store.get_roles(user)
        if roles:
            store.remove_from_roles(user, roles)

        result = store.delete_user(user)
        if not result.succeeded:
            raise HTTPException(
                status_code=400,
                detail={
                    "code": "delete_failed",
                    "message": "Error deleting user.",
                    "errors": [e.description for e in result.errors],
                },
            )
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Unexpected failure deleting user %s", user_id)
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "Internal server error.", "detail": str(exc)},
        ) from exc

    logger.info("User %s deleted by %s", user_id, principal.user_id)
    return DeleteResponse(is_success=True, message="User deleted successfully.")
