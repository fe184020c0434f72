"""
auth/resolver.py -- Token -> authenticated identity, read-through cached.

resolve() steps:
  1. Verify the token signature and expiry (auth.tokens).
  2. Look up user:<id> in the cache; a hit is used as-is.
  3. On a miss, load the non-secret projection from the store and, if the
     user still exists, cache it for user_cache_ttl_seconds (900).
  4. Whatever the source, reject any status other than ACTIVE.

The ACTIVE check is never cached as a rejection. A user suspended after their
projection was cached keeps resolving until the entry expires or is
invalidated (login and admin updates both invalidate). That window is bounded
by the TTL.

The store call runs in a worker thread so a slow database never blocks the
event loop. The resolver reads the store but never writes to it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, fields
from typing import Any

from auth.errors import Unauthorized
from auth.models import AuthUser, Role, UserStatus
from auth.store import UserStore
from auth.tokens import decode_access_token
from cache.store import CacheService, user_key

logger = logging.getLogger("carterisland.auth.resolver")

_AUTH_USER_FIELDS = {f.name for f in fields(AuthUser)}


def auth_user_to_cache(user: AuthUser) -> dict[str, Any]:
    data = asdict(user)
    data["role"] = user.role.value
    data["status"] = user.status.value
    return data


def auth_user_from_cache(data: Any) -> AuthUser | None:
    """Rebuild an AuthUser from a cached dict. Returns None for unusable entries."""
    if not isinstance(data, dict):
        return None
    try:
        values = {k: v for k, v in data.items() if k in _AUTH_USER_FIELDS}
        values["role"] = Role(values["role"])
        values["status"] = UserStatus(values["status"])
        return AuthUser(**values)
    except (KeyError, TypeError, ValueError):
        return None


class IdentityResolver:
    def __init__(self, store: UserStore, cache: CacheService, ttl_seconds: int = 900) -> None:
        self.store = store
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    async def load_user(self, user_id: int) -> AuthUser | None:
        """Return the user's projection from cache, else from the store (then cache it)."""
        key = user_key(user_id)
        cached = auth_user_from_cache(await self.cache.get(key))
        if cached is not None:
            return cached
        user = await asyncio.to_thread(self.store.get_public_by_id, user_id)
        if user is not None:
            await self.cache.set(key, auth_user_to_cache(user), ttl_seconds=self.ttl_seconds)
        return user

    async def remember(self, user: AuthUser) -> None:
        """Populate user:<id> with a fresh projection (used right after login)."""
        await self.cache.set(user_key(user.id), auth_user_to_cache(user), ttl_seconds=self.ttl_seconds)

    async def resolve(self, token: str) -> AuthUser:
        """Return the ACTIVE identity behind token, or raise Unauthorized."""
        payload = decode_access_token(token)
        if payload is None:
            raise Unauthorized("invalid_token")
        user = await self.load_user(payload.user_id)
        if user is None:
            raise Unauthorized("user_not_found")
        if user.status != UserStatus.ACTIVE:
            raise Unauthorized("inactive")
        return user
