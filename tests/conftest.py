"""
tests/conftest.py -- Shared test fixtures for the auth service tests.

This module provides:
  - FakeRedis: in-memory stand-in for a redis.asyncio client, with TTL capture,
    manual expiry and failure injection
  - CountingUserStore: UserStore that counts identity-resolution reads
  - store / fake_redis / cache / resolver / recorder: fresh per-test objects
  - add_user(): insert a user with a real bcrypt hash
  - api: TestClient over the real FastAPI app with a patched lifespan

Design: each test gets its own SQLite file under tmp_path. Store calls run in
worker threads (asyncio.to_thread and TestClient's thread pool); a file DB in
WAL mode gives every thread the same data with proper locking, which a
shared-cache in-memory DB does not.

Environment variables must be set before any auth/core import so
get_settings() sees them: a fixed JWT_SECRET, a cheap bcrypt cost, and no
cache backend.
"""

from __future__ import annotations

import os
import time
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

# CRITICAL: configure before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ["JWT_SECRET"] = "test-secret-key-with-enough-entropy-0123456789"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ.pop("REDIS_URL", None)
os.environ.pop("REDIS_HOST", None)

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from api.main import app
from auth.activity import ActivityRecorder
from auth.models import Role, User, UserStatus
from auth.resolver import IdentityResolver
from auth.store import UserStore
from auth.tokens import hash_password
from cache.store import CacheService

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeRedis:
    """Minimal async redis client: get/set/delete/ping/aclose.

    ttls records the `ex` passed on every set. expire() and expire_all()
    simulate TTL elapse. Keys in fail_keys (or every key when fail=True) raise
    a redis ConnectionError, like an unreachable server.
    """

    def __init__(self, fail: bool = False) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.fail = fail
        self.fail_keys: set[str] = set()
        self.deleted: list[str] = []
        self.closed = False

    def _check(self, key: str | None = None) -> None:
        if self.fail or (key is not None and key in self.fail_keys):
            raise RedisConnectionError("connection refused")

    async def get(self, key: str) -> str | None:
        self._check(key)
        return self.data.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._check(key)
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            self._check(key)
            self.deleted.append(key)
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def ping(self) -> bool:
        self._check()
        return True

    async def aclose(self) -> None:
        self.closed = True

    def expire(self, key: str) -> None:
        self.data.pop(key, None)

    def expire_all(self) -> None:
        self.data.clear()


class CountingUserStore(UserStore):
    """UserStore that counts get_public_by_id() calls (the resolver's store read)."""

    def __init__(self, db_url: str) -> None:
        super().__init__(db_url)
        self.public_reads = 0

    def get_public_by_id(self, user_id: int):
        self.public_reads += 1
        return super().get_public_by_id(user_id)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def db_url(tmp_path: Path, name: str = "auth") -> str:
    return f"sqlite:///{tmp_path / f'{name}.db'}"


def add_user(
    store: UserStore,
    email: str = "user@carterisland.com",
    password: str = "testpassword",
    role: Role = Role.USER,
    status: UserStatus = UserStatus.ACTIVE,
    **profile,
) -> int:
    """Insert a user with a real bcrypt hash and return its ID."""
    return store.create_user(
        User(
            email=email,
            hashed_password=hash_password(password),
            role=role,
            status=status,
            **profile,
        )
    )


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store(tmp_path: Path) -> Generator[CountingUserStore, None, None]:
    s = CountingUserStore(db_url(tmp_path))
    yield s
    s.close()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis: FakeRedis) -> CacheService:
    return CacheService(fake_redis)


@pytest.fixture
def resolver(store: CountingUserStore, cache: CacheService) -> IdentityResolver:
    return IdentityResolver(store, cache, ttl_seconds=900)


@pytest.fixture
def recorder(store: CountingUserStore, cache: CacheService) -> ActivityRecorder:
    return ActivityRecorder(store, cache)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    store: CountingUserStore
    cache: CacheService
    fake_redis: FakeRedis | None
    recorder: ActivityRecorder


def _patch_lifespan(store: UserStore, cache: CacheService, recorder: ActivityRecorder):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test objects into app.state so TestClient routes see an
    isolated database and a fake (or disabled) cache.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = store
        app.state.cache = cache
        app.state.resolver = IdentityResolver(store, cache, ttl_seconds=900)
        app.state.recorder = recorder
        yield
        await recorder.drain()

    return test_lifespan


def _make_harness(tmp_path: Path, with_cache: bool) -> Generator[ApiHarness, None, None]:
    s = CountingUserStore(db_url(tmp_path, "api"))
    fake = FakeRedis() if with_cache else None
    c = CacheService(fake)
    rec = ActivityRecorder(s, c)
    app.router.lifespan_context = _patch_lifespan(s, c, rec)
    with TestClient(app, raise_server_exceptions=False) as client:
        yield ApiHarness(client=client, store=s, cache=c, fake_redis=fake, recorder=rec)
    s.close()


@pytest.fixture
def api(tmp_path: Path) -> Generator[ApiHarness, None, None]:
    """TestClient over the real app, backed by a fake redis cache."""
    yield from _make_harness(tmp_path, with_cache=True)


@pytest.fixture
def api_no_cache(tmp_path: Path) -> Generator[ApiHarness, None, None]:
    """TestClient over the real app with caching disabled entirely."""
    yield from _make_harness(tmp_path, with_cache=False)


def wait_for(predicate, timeout: float = 2.0) -> bool:
    """Poll predicate until true; used for fire-and-forget writes behind TestClient."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()

