"""
API request and response models for the auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Every response body carries `success` and `message`; failures never add more
than that, so error shapes cannot leak which check failed.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import ActivityLog, AuthUser, Role, Session, UserStatus

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


def _strip(value: Optional[str]) -> Optional[str]:
    return value.strip() if value is not None else None


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Both fields are optional at the schema level so a missing field gets the
    login-specific 400 message instead of a generic validation error.
    """

    email: Optional[str] = Field(default=None, max_length=255)
    # Passed through as typed: surrounding spaces are part of the secret.
    password: Optional[str] = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def strip_email(cls, value: Optional[str]) -> Optional[str]:
        return _strip(value)


class RegisterRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=255)
    username: Optional[str] = Field(default=None, max_length=100)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    department: Optional[str] = Field(default=None, max_length=100)
    position: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)

    @field_validator("email", "username", "first_name", "last_name", "department", "position", "phone")
    @classmethod
    def strip_profile(cls, value: Optional[str]) -> Optional[str]:
        return _strip(value)


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/auth/users/{id}. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    role: Optional[Role] = None
    status: Optional[UserStatus] = None
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    department: Optional[str] = Field(default=None, max_length=100)
    position: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Non-secret user projection. There is no password field to leak."""

    id: int
    email: str
    username: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    role: Role
    status: UserStatus
    department: Optional[str]
    position: Optional[str]
    phone: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]
    last_login_at: Optional[str]

    @classmethod
    def from_auth_user(cls, user: AuthUser) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            status=user.status,
            department=user.department,
            position=user.position,
            phone=user.phone,
            created_at=user.created_at,
            updated_at=user.updated_at,
            last_login_at=user.last_login_at,
        )


class AuthResponse(BaseModel):
    """Login and registration result: {success, message, token?, user?}."""

    success: bool
    message: str
    token: Optional[str] = None
    user: Optional[UserResponse] = None


class MeResponse(BaseModel):
    success: bool = True
    user: UserResponse


class SessionResponse(BaseModel):
    """A session row as shown to its owner. The token itself is never returned."""

    id: int
    token_prefix: str
    expires_at: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: Optional[str]

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            id=session.id,
            token_prefix=session.token[:12],
            expires_at=session.expires_at,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            created_at=session.created_at,
        )


class ActivityResponse(BaseModel):
    id: int
    action: str
    description: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: Optional[str]

    @classmethod
    def from_activity(cls, entry: ActivityLog) -> "ActivityResponse":
        return cls(
            id=entry.id,
            action=entry.action,
            description=entry.description,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            created_at=entry.created_at,
        )


class ErrorResponse(BaseModel):
    """Uniform error envelope returned by every exception handler."""

    success: bool = False
    message: str


class HealthResponse(BaseModel):
    """Response body for GET /api/v1/health."""

    status: str  # "healthy" or "unhealthy"
    timestamp: str
    components: dict[str, str]
