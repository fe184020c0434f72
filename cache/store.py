"""
cache/store.py -- Best-effort Redis cache for identity projections.

The cache is a pure performance optimization. When no backend is configured
every read is a miss and every write is a no-op; when the backend misbehaves
(unreachable, timeout, bad payload) the error is logged and the operation
degrades to the same miss/no-op result. Nothing in this module raises to its
caller.

Values are JSON-encoded on write (strings are stored as-is) and JSON-decoded
on read, falling back to the raw text when the payload is not valid JSON.

Usage:
    cache = CacheService.from_settings(get_settings())
    await cache.connect()
    await cache.set(user_key(42), {"id": 42}, ttl_seconds=900)
    data = await cache.get(user_key(42))     # dict, raw str, or None
    await cache.invalidate_user(42)
    await cache.close()

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

import redis.asyncio as aioredis

from core.config import Settings

logger = logging.getLogger("carterisland.cache")

_DEFAULT_TTL = 300  # seconds
_HEALTH_KEY = "health:check"


def user_key(user_id: int) -> str:
    return f"user:{user_id}"


def user_sessions_key(user_id: int) -> str:
    return f"user:sessions:{user_id}"


def user_activities_key(user_id: int) -> str:
    return f"user:activities:{user_id}"


class CacheService:
    """Async key/value cache with TTL, transparently disabled without a client.

    client is any redis.asyncio-compatible object (get/set/delete/ping/aclose).
    Passing None disables the cache entirely.
    """

    def __init__(self, client: Any | None = None) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheService":
        """Build the shared client from REDIS_URL, else REDIS_HOST/REDIS_PORT, else disabled.

        redis.asyncio clients connect lazily and pool connections internally,
        so one instance is shared across all requests.
        """
        timeout = settings.redis_socket_timeout
        if settings.redis_url:
            client = aioredis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
            )
        elif settings.redis_host:
            client = aioredis.Redis(
                host=settings.redis_host,
                port=settings.redis_port,
                decode_responses=True,
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
            )
        else:
            logger.info("No cache backend configured -- caching disabled")
            return cls(None)
        return cls(client)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Probe the backend once at startup. Failure is logged, not raised."""
        if self._client is None:
            return
        try:
            await self._client.ping()
            logger.info("Cache backend reachable")
        except Exception:
            logger.warning("Cache backend unreachable at startup -- continuing without it", exc_info=True)

    async def get(self, key: str) -> Any | None:
        """Return the decoded value for key, or None on miss, disabled cache, or error."""
        if self._client is None:
            return None
        try:
            raw = await self._client.get(key)
        except Exception:
            logger.warning("Cache get failed for %s", key, exc_info=True)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return raw

    async def set(self, key: str, value: Any, ttl_seconds: int = _DEFAULT_TTL) -> None:
        """Store value under key for ttl_seconds. Errors are logged and swallowed."""
        if self._client is None:
            return
        try:
            payload = value if isinstance(value, str) else json.dumps(value)
            await self._client.set(key, payload, ex=ttl_seconds)
        except Exception:
            logger.warning("Cache set failed for %s", key, exc_info=True)

    async def delete(self, key: str) -> None:
        if self._client is None:
            return
        try:
            await self._client.delete(key)
        except Exception:
            logger.warning("Cache delete failed for %s", key, exc_info=True)

    async def invalidate_user(self, user_id: int) -> None:
        """Drop every per-user derived key.

        Independent single-attempt deletes, not atomic: a failure on one key
        is logged by delete() and the others still run.
        """
        for key in (user_key(user_id), user_sessions_key(user_id), user_activities_key(user_id)):
            await self.delete(key)

    async def ping(self) -> bool:
        """Round-trip a short-lived health key. False when disabled or failing."""
        if self._client is None:
            return False
        stamp = {"timestamp": time.time()}
        await self.set(_HEALTH_KEY, stamp, ttl_seconds=10)
        return await self.get(_HEALTH_KEY) == stamp

    async def close(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.aclose()
        except Exception:
            logger.warning("Cache close failed", exc_info=True)
        finally:
            self._client = None
