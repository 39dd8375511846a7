"""
API request and response models for authapi REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire names are camelCase (fullName, userId, isSuccess). Python attributes are
snake_case and map through aliases; FastAPI serializes response models by
alias, and populate_by_name lets handlers construct them with either form.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# bcrypt ignores everything past 72 bytes; the store rejects longer passwords
# with a readable message, this cap only bounds request size.
_PASSWORD_MAX = 255

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(min_length=1, max_length=256)
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)
    full_name: str = Field(alias="fullName", max_length=256)
    role: str = Field(min_length=1, max_length=256)

    @field_validator("role")
    @classmethod
    def role_not_blank(cls, value: str) -> str:
        """Reject names the identity store would treat as blank (str.strip() semantics)."""
        if not value.strip():
            raise ValueError("role must not be blank")
        return value


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    No length limits: any string pair is a login attempt, and a bad one must
    get the same 401 as a wrong password rather than a 422.
    """

    email: str
    password: str


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class RegisterResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message: str
    user_id: str = Field(alias="userId")


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str


class ClaimPair(BaseModel):
    """One claim from the caller's token, as returned by GET /debug."""

    model_config = ConfigDict(frozen=True)

    type: str
    value: str


class UserDetailResponse(BaseModel):
    """Response for GET /api/v1/auth/detail. rol is the first assigned role or null."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    email: str
    full_name: Optional[str] = Field(default=None, alias="fullName")
    rol: Optional[str] = None


class UserSummary(BaseModel):
    """One row of GET /api/v1/auth/users."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    email: str
    full_name: Optional[str] = Field(default=None, alias="fullName")
    rol: Optional[str] = None


class DeleteResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    is_success: bool = Field(alias="isSuccess")
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
