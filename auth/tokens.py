"""
auth/tokens.py -- Password hashing, access-token codec, and credential check.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with JWT_SECRET and carry
       user_id, email, role, iat, exp (24 hours after issue) and a random
       jti. Verification returns None on any failure -- tampered, malformed
       and expired tokens are indistinguishable to the caller. The specific
       reason is logged at DEBUG level only.

  Passwords: bcrypt used directly, cost factor from Settings.bcrypt_rounds
       (12 in production). The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an email is registered.

  JWT_SECRET: sourced from core.config.get_settings(). When unset, Settings
       falls back to an insecure default and logs a warning.

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import PasswordHashError
from auth.models import Role, TokenPayload, UserStatus
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("carterisland.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

# bcrypt only looks at the first 72 bytes of a password; recent releases raise
# instead of truncating, so the cut is made here explicitly.
_BCRYPT_MAX_BYTES = 72


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def _encode_password(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(_encode_password(plain), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A mismatch is False, never an exception. A digest that is not a bcrypt
    hash at all means the stored record is corrupt, which is raised as
    PasswordHashError so the caller reports a server error instead of a
    plain "wrong password".
    """
    try:
        return bcrypt.checkpw(_encode_password(plain), hashed.encode("utf-8"))
    except ValueError as exc:
        raise PasswordHashError("stored password digest is not a valid bcrypt hash") from exc


# Timing equalization dummy hash.
# Computed once at module load with the configured cost so an unknown email
# costs the same bcrypt work as a wrong password.
_DUMMY_HASH: str = hash_password("carterisland_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(
    payload: TokenPayload,
    issued_at: datetime | None = None,
    expire_seconds: int = 0,
) -> str:
    """Encode a signed JWT for the given claim set.

    Args:
        payload:        user id, email and role to embed.
        issued_at:      Issue instant; defaults to now. Tests pass a past
                        instant to produce already-expired tokens.
        expire_seconds: Validity window. If 0 (default), uses
                        Settings.token_expire_seconds (24 hours).
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    iat = issued_at or datetime.now(timezone.utc)
    claims = {
        "sub": payload.email,
        "user_id": payload.user_id,
        "email": payload.email,
        "role": payload.role.value,
        "iat": iat,
        "exp": iat + timedelta(seconds=duration),
        # Unique per issue so two logins within one second still get distinct session tokens.
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(claims, _settings.jwt_secret, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> TokenPayload | None:
    """Verify a JWT and rebuild its TokenPayload. Returns None on any failure."""
    try:
        claims = jwt.decode(token, _settings.jwt_secret, algorithms=[_ALGORITHM])
    except ExpiredSignatureError:
        logger.debug("Token rejected: expired")
        return None
    except JWTError:
        logger.debug("Token rejected: bad signature or malformed")
        return None
    try:
        return TokenPayload(
            user_id=int(claims["user_id"]),
            email=str(claims["email"]),
            role=Role(claims["role"]),
        )
    except (KeyError, TypeError, ValueError):
        logger.debug("Token rejected: missing or invalid claims")
        return None


def token_expiry(issued_at: datetime | None = None) -> datetime:
    """Return the expiry instant matching create_access_token()'s default window."""
    return (issued_at or datetime.now(timezone.utc)) + timedelta(seconds=_settings.token_expire_seconds)


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Check an email/password pair against the credential store.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None for unknown email, wrong password, or a
    status other than ACTIVE. Raises PasswordHashError for a corrupt digest.
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        # Equalize timing -- do NOT return early before running bcrypt
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if user.status != UserStatus.ACTIVE:
        return None
    return user
