"""
API request and response models for the account REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Wire format is camelCase (firstName, emailVerified, ...) because the React
dashboard consumes it directly. populate_by_name lets tests and scripts send
snake_case as well.

Field constraints here are transport limits only (required, max length).
Business rules -- password length floor, empty names, email shape, role
values -- are enforced by AccountService so that they produce the 400 error
envelope rather than a 422 schema failure.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import AllowedDomain, SessionUser, User


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    email: str = Field(max_length=320)
    password: str = Field(max_length=128)
    first_name: str = Field(max_length=100)
    last_name: str = Field(max_length=100)


class LoginRequest(_CamelModel):
    email: str = Field(max_length=320)
    password: str = Field(max_length=128)


class ForgotPasswordRequest(_CamelModel):
    email: str = Field(max_length=320)


class ResetPasswordRequest(_CamelModel):
    token: str = Field(min_length=1, max_length=128)
    new_password: str = Field(max_length=128)


class UpdateNameRequest(_CamelModel):
    first_name: str = Field(max_length=100)
    last_name: str = Field(max_length=100)


class ChangePasswordRequest(_CamelModel):
    current_password: str = Field(max_length=128)
    new_password: str = Field(max_length=128)


class RoleUpdateRequest(_CamelModel):
    # Free-form on purpose: AccountService.set_role() answers 400 invalid_role.
    role: str = Field(max_length=20)


class DomainCreateRequest(_CamelModel):
    domain: str = Field(max_length=253)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SessionUserResponse(_CamelModel):
    """The session snapshot as returned by /login, /me and /profile/name."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    email: str
    first_name: str
    last_name: str
    display_name: str
    role: str
    email_verified: bool

    @classmethod
    def from_session(cls, user: SessionUser) -> "SessionUserResponse":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            display_name=user.display_name,
            role=user.role,
            email_verified=user.email_verified,
        )


class UserResponse(_CamelModel):
    """Admin view of an account. Never carries the password hash."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    email: str
    first_name: str
    last_name: str
    display_name: str
    role: str
    email_verified: bool
    sso_linked: bool
    created_at: Optional[str] = None
    last_login_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            display_name=user.display_name,
            role=user.role,
            email_verified=user.email_verified,
            sso_linked=user.microsoft_id is not None,
            created_at=user.created_at,
            last_login_at=user.last_login_at,
        )


class SuccessResponse(_CamelModel):
    success: bool = True
    message: Optional[str] = None


class LoginResponse(_CamelModel):
    success: bool = True
    user: SessionUserResponse


class ProfileNameResponse(_CamelModel):
    success: bool = True
    user: SessionUserResponse


class ResetTokenCheckResponse(_CamelModel):
    success: bool = True
    email: str


class AuthConfigResponse(_CamelModel):
    """Public flags the login page uses to decide what to render."""

    email_verification_required: bool
    sso_enabled: bool


class DomainResponse(_CamelModel):
    id: int
    domain: str
    added_by: Optional[int] = None
    created_at: Optional[str] = None

    @classmethod
    def from_domain(cls, domain: AllowedDomain) -> "DomainResponse":
        return cls(id=domain.id, domain=domain.domain, added_by=domain.added_by, created_at=domain.created_at)


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
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str
    version: str
    components: dict[str, str]
