"""
api/routes/v1/auth.py -- Authentication and user management REST endpoints.

Routes:
  POST  /api/v1/auth/login         -- password login; returns bearer token
  POST  /api/v1/auth/register      -- self-registration (role USER)
  GET   /api/v1/auth/me            -- current user projection (requires auth)
  GET   /api/v1/auth/sessions      -- current user's sessions (requires auth)
  GET   /api/v1/auth/activity      -- current user's audit trail (requires auth)
  GET   /api/v1/auth/users         -- list all users (admin only)
  PATCH /api/v1/auth/users/{id}    -- update role/status/profile (admin only)

Security:
  Unknown email, inactive account and wrong password all produce the same
  401 body, byte for byte. Only missing fields (400) and server faults (500)
  look different.
  Cache-Control: no-store on login and register responses.
  /me responses may be held by private caches for me_max_age_seconds.
  Session listings expose a 12-character token prefix, never the token.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import (
    ActivityResponse,
    AuthResponse,
    LoginRequest,
    MeResponse,
    RegisterRequest,
    SessionResponse,
    UserPatch,
    UserResponse,
)
from auth.dependencies import GatedRoute, client_info, get_current_user, require_admin
from auth.login import login, register
from auth.models import AuthUser, User, UserStatus
from cache.store import user_activities_key, user_sessions_key
from core.config import get_settings

logger = logging.getLogger("carterisland.api.auth")

_settings = get_settings()

MISSING_FIELDS_MESSAGE = "Email dan password harus diisi"
BAD_CREDENTIALS_MESSAGE = "Email atau password salah"
LOGIN_OK_MESSAGE = "Login berhasil"
SERVER_ERROR_MESSAGE = "Terjadi kesalahan server"
ACCOUNT_TAKEN_MESSAGE = "Email atau username sudah digunakan"
REGISTER_OK_MESSAGE = "User berhasil dibuat"

# Auth policy:
# - POST  /auth/login, /auth/register:       public
# - GET   /auth/me, /auth/sessions, /auth/activity: requires auth (get_current_user)
# - GET   /auth/users, PATCH /auth/users/{id}: requires admin (require_admin)
# Handler errors behind the gate come back as 401 (GatedRoute).
router = APIRouter(route_class=GatedRoute)


def _auth_json(status_code: int, body: AuthResponse) -> JSONResponse:
    """Serialize an AuthResponse, omitting token/user when absent."""
    content = body.model_dump(mode="json")
    for key in ("token", "user"):
        if content[key] is None:
            del content[key]
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=AuthResponse)
async def login_route(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return a bearer token.

    A successful login evicts every earlier session of the same user.
    """
    if not body.email or not body.password:
        return _auth_json(400, AuthResponse(success=False, message=MISSING_FIELDS_MESSAGE))

    state = request.app.state
    try:
        result = await login(
            state.user_store,
            state.resolver,
            state.recorder,
            body.email,
            body.password,
            client_info(request),
        )
    except Exception:
        logger.exception("Login error")
        return _auth_json(500, AuthResponse(success=False, message=SERVER_ERROR_MESSAGE))

    if result is None:
        return _auth_json(401, AuthResponse(success=False, message=BAD_CREDENTIALS_MESSAGE))

    return _auth_json(
        200,
        AuthResponse(
            success=True,
            message=LOGIN_OK_MESSAGE,
            token=result.token,
            user=UserResponse.from_auth_user(result.user),
        ),
    )


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
async def register_route(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a USER account from the submitted profile."""
    if not body.email or not body.password:
        return _auth_json(400, AuthResponse(success=False, message=MISSING_FIELDS_MESSAGE))

    state = request.app.state
    new_user = User(
        email=body.email,
        username=body.username or None,
        first_name=body.first_name,
        last_name=body.last_name,
        department=body.department,
        position=body.position,
        phone=body.phone,
    )
    try:
        created = await register(state.user_store, state.recorder, new_user, body.password, client_info(request))
    except Exception:
        logger.exception("Register error")
        return _auth_json(500, AuthResponse(success=False, message=SERVER_ERROR_MESSAGE))

    if created is None:
        return _auth_json(400, AuthResponse(success=False, message=ACCOUNT_TAKEN_MESSAGE))

    return _auth_json(
        201,
        AuthResponse(success=True, message=REGISTER_OK_MESSAGE, user=UserResponse.from_auth_user(created)),
    )


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(current_user: AuthUser = Depends(get_current_user)) -> JSONResponse:
    """Return the projection of the currently authenticated user."""
    resp = JSONResponse(content=MeResponse(user=UserResponse.from_auth_user(current_user)).model_dump(mode="json"))
    resp.headers["Cache-Control"] = f"private, max-age={_settings.me_max_age_seconds}"
    return resp


@router.get("/auth/sessions", response_model=list[SessionResponse])
async def list_my_sessions(
    request: Request,
    current_user: AuthUser = Depends(get_current_user),
) -> list[SessionResponse]:
    """List the caller's session rows (at most one under the exclusive-session policy)."""
    cache = request.app.state.cache
    key = user_sessions_key(current_user.id)
    cached = await cache.get(key)
    if isinstance(cached, list):
        return [SessionResponse(**item) for item in cached]

    sessions = await asyncio.to_thread(request.app.state.user_store.list_sessions, current_user.id)
    items = [SessionResponse.from_session(s) for s in sessions]
    await cache.set(key, [i.model_dump() for i in items], ttl_seconds=_settings.index_cache_ttl_seconds)
    return items


@router.get("/auth/activity", response_model=list[ActivityResponse])
async def list_my_activity(
    request: Request,
    current_user: AuthUser = Depends(get_current_user),
) -> list[ActivityResponse]:
    """Return the caller's most recent audit records, newest first."""
    cache = request.app.state.cache
    key = user_activities_key(current_user.id)
    cached = await cache.get(key)
    if isinstance(cached, list):
        return [ActivityResponse(**item) for item in cached]

    entries = await asyncio.to_thread(request.app.state.user_store.list_activities, current_user.id)
    items = [ActivityResponse.from_activity(e) for e in entries]
    await cache.set(key, [i.model_dump() for i in items], ttl_seconds=_settings.index_cache_ttl_seconds)
    return items


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[UserResponse])
async def list_users(
    request: Request,
    current_user: AuthUser = Depends(require_admin),
) -> list[UserResponse]:
    """List all user accounts. Admin only."""
    users = await asyncio.to_thread(request.app.state.user_store.list_users)
    return [UserResponse.from_auth_user(u) for u in users]


@router.patch("/auth/users/{user_id}", response_model=UserResponse)
async def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    current_user: AuthUser = Depends(require_admin),
) -> UserResponse:
    """Update a user's role, status or profile. Admin only.

    The user's cached projection and indexes are invalidated so the change
    is visible on the next request rather than after the cache TTL. Moving a
    user out of ACTIVE also revokes their sessions.
    """
    state = request.app.state
    store = state.user_store

    target = await asyncio.to_thread(store.get_public_by_id, user_id)
    if target is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )

    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    if "status" in updates and target.id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_status_change", "message": "You cannot change your own account status."},
        )

    await asyncio.to_thread(store.update_user, user_id, **updates)
    if updates.get("status", UserStatus.ACTIVE) != UserStatus.ACTIVE:
        revoked = await asyncio.to_thread(store.revoke_sessions, user_id)
        logger.info("Revoked %d session(s) for user %d", revoked, user_id)
    await state.cache.invalidate_user(user_id)

    state.recorder.dispatch(
        current_user.id,
        "USER_UPDATED",
        f"Updated user {user_id}: {', '.join(sorted(updates))}",
        client_info(request),
    )

    updated = await asyncio.to_thread(store.get_public_by_id, user_id)
    if updated is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return UserResponse.from_auth_user(updated)
