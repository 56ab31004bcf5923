"""
API request and response models for Hobby Tracker REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
circles/models.py, which own the internal domain representation. Route
handlers map between the two.

JSON field names are camelCase on the wire (userId, ownerId, accessLevel);
populate_by_name lets handlers construct models with the Python names.

Request bodies default every string to "" rather than making it required:
the auth service validates fields itself so missing and empty values get the
same specific error (e.g. "email is required").
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import AuthResult
from circles.models import AccessLevel, Circle, CircleMember
from core.errors import AppError

# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    email: str = ""
    password: str = ""
    name: str = ""


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = ""
    password: str = ""


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class AuthResponse(BaseModel):
    """Session issued by register, login and the OAuth callback."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    token: str
    user_id: str = Field(alias="userId")
    email: str
    name: str

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        return cls(token=result.token, user_id=result.user_id, email=result.email, name=result.name)


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user_id: str = Field(alias="userId")
    email: str
    name: str
    oauth_provider: Optional[str] = Field(default=None, alias="oauthProvider")


class OAuthProviderInfo(BaseModel):
    """One enabled OAuth provider -- the login page renders a button per entry."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str


# ---------------------------------------------------------------------------
# Circles -- request models
# ---------------------------------------------------------------------------


class CircleCreate(BaseModel):
    """Request body for POST /api/v1/circles."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)


class CircleRename(BaseModel):
    """Request body for PATCH /api/v1/circles/{circle_id}."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)


class MemberAdd(BaseModel):
    """Request body for POST /api/v1/circles/{circle_id}/members.

    access_level is validated against AccessLevel here; the model layer
    additionally rejects "private", which is a valid level but not assignable.
    """

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    user_id: str = Field(alias="userId", min_length=1, max_length=64)
    access_level: AccessLevel = Field(default=AccessLevel.VIEW, alias="accessLevel")


class MemberAccessUpdate(BaseModel):
    """Request body for PATCH /api/v1/circles/{circle_id}/members/{user_id}."""

    model_config = ConfigDict(populate_by_name=True)

    access_level: AccessLevel = Field(alias="accessLevel")


# ---------------------------------------------------------------------------
# Circles -- response models
# ---------------------------------------------------------------------------


class MemberResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user_id: str = Field(alias="userId")
    access_level: AccessLevel = Field(alias="accessLevel")
    invited_at: datetime = Field(alias="invitedAt")
    accepted_at: Optional[datetime] = Field(default=None, alias="acceptedAt")

    @classmethod
    def from_member(cls, member: CircleMember) -> "MemberResponse":
        return cls(
            user_id=member.user_id,
            access_level=member.access_level,
            invited_at=member.invited_at,
            accepted_at=member.accepted_at,
        )


class CircleResponse(BaseModel):
    """A circle as seen by one caller.

    access is the caller's effective level (admin for the owner).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    owner_id: str = Field(alias="ownerId")
    access: AccessLevel
    members: list[MemberResponse] = Field(default_factory=list)
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @classmethod
    def from_circle(cls, circle: Circle, viewer_id: str) -> "CircleResponse":
        """Build a CircleResponse from a domain Circle for the given caller.

        Factory Method -- the mapping lives here, colocated with the output
        model, rather than scattered across route handlers.
        """
        return cls(
            id=circle.id,
            name=circle.name,
            owner_id=circle.owner_id,
            access=circle.resolve_access(viewer_id) or AccessLevel.PRIVATE,
            members=[MemberResponse.from_member(m) for m in circle.members],
            created_at=circle.created_at,
            updated_at=circle.updated_at,
        )


class AccessResponse(BaseModel):
    """Response for GET /api/v1/circles/{circle_id}/access."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    circle_id: str = Field(alias="circleId")
    user_id: str = Field(alias="userId")
    access: AccessLevel
    is_owner: bool = Field(alias="isOwner")


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


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

    @classmethod
    def from_app_error(cls, exc: AppError) -> "ErrorResponse":
        """Render an AppError. exc.detail is internal context and is left out."""
        return cls(error=ErrorDetail(code=exc.code, message=exc.message))


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
