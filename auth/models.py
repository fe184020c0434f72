"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores, services and routes do the work.

Timestamps are fixed-width UTC ISO-8601 strings (see auth.store._iso), so
they serialize to JSON as-is and compare correctly as text.

Layer rule: no imports from api/, core/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


@dataclass
class User:
    """Identity record as held by the credential store.

    hashed_password is the bcrypt digest. It never leaves auth/: everything
    returned to callers or written to the cache is an AuthUser.
    """

    email: str
    id: int | None = None
    username: str | None = None
    hashed_password: str | None = None
    role: Role = Role.USER
    status: UserStatus = UserStatus.ACTIVE
    first_name: str | None = None
    last_name: str | None = None
    department: str | None = None
    position: str | None = None
    phone: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_login_at: str | None = None


@dataclass
class AuthUser:
    """Non-secret projection of a User.

    This is the shape cached under user:<id>, attached to request.state.user
    by the authorization gate, and returned by the login and "me" endpoints.
    """

    id: int
    email: str
    role: Role
    status: UserStatus
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    department: str | None = None
    position: str | None = None
    phone: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_login_at: str | None = None


@dataclass
class Session:
    """One issued token. A user owns at most one live session at a time."""

    user_id: int
    token: str
    expires_at: str
    id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: str | None = None


@dataclass
class ActivityLog:
    """Append-only audit record."""

    user_id: int
    action: str  # "LOGIN", "REGISTER", "USER_UPDATED"
    description: str
    id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class TokenPayload:
    """Claim set carried by a signed access token (exp/iat are added by the codec)."""

    user_id: int
    email: str
    role: Role


@dataclass(frozen=True)
class ClientInfo:
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class LoginResult:
    token: str
    user: AuthUser
    session: Session
