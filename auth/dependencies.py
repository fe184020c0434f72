"""
auth/dependencies.py -- FastAPI Depends() helpers: the authorization gate.

get_current_user() is the gate. Any route that declares it as a dependency
only runs once the gate has:
  1. found an "Authorization: Bearer <token>" header (else 401 "no token"),
  2. resolved the token to an ACTIVE identity through the IdentityResolver
     on app.state (else 401 "unauthorized"),
  3. attached that identity to request.state.user.

Both 401 bodies have the same shape. The concrete reason (expired token,
deleted user, suspended account, ...) goes to the log, never to the caller.
Any unexpected error while authorizing fails closed as 401 rather than 500 so
error shapes do not leak internal state.

require_admin() wraps get_current_user() and raises HTTP 403 if not ADMIN.

GatedRoute extends the same fail-closed rule to the handler itself: once the
gate has attached an identity, any error the handler raises (other than an
HTTPException or a validation error) is answered with the same 401 body.
Routers opt in with APIRouter(route_class=GatedRoute).

Layer rule: auth/dependencies.py may import from fastapi (for
HTTPException/Request) because this module is part of the FastAPI dependency
injection system.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import Depends, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.routing import APIRoute
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth.errors import Unauthorized
from auth.models import AuthUser, ClientInfo, Role

logger = logging.getLogger("carterisland.auth.gate")

NO_TOKEN_MESSAGE = "No token provided"
UNAUTHORIZED_MESSAGE = "Unauthorized"

_BEARER_PREFIX = "Bearer "


def extract_bearer_token(request: Request) -> str | None:
    """Return the token from the Authorization header, or None if absent."""
    header = request.headers.get("Authorization", "")
    if not header.startswith(_BEARER_PREFIX):
        return None
    return header[len(_BEARER_PREFIX) :].strip() or None


def client_info(request: Request) -> ClientInfo:
    """Audit metadata: first X-Forwarded-For hop, else the socket peer; plus User-Agent."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    ip_address = forwarded.split(",")[0].strip() or None
    if ip_address is None and request.client is not None:
        ip_address = request.client.host
    return ClientInfo(ip_address=ip_address, user_agent=request.headers.get("User-Agent"))


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(request: Request) -> AuthUser:
    """Require an authenticated ACTIVE user. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: AuthUser = Depends(get_current_user)): ...
    """
    path = request.url.path
    token = extract_bearer_token(request)
    if token is None:
        logger.info("Rejected %s %s: no_token", request.method, path)
        raise _unauthorized("no_token", NO_TOKEN_MESSAGE)

    try:
        user = await request.app.state.resolver.resolve(token)
    except Unauthorized as exc:
        logger.info("Rejected %s %s: %s", request.method, path, exc.reason)
        raise _unauthorized("unauthorized", UNAUTHORIZED_MESSAGE) from exc
    except Exception as exc:
        logger.exception("Authorization failed unexpectedly on %s %s", request.method, path)
        raise _unauthorized("unauthorized", UNAUTHORIZED_MESSAGE) from exc

    request.state.user = user
    return user


async def require_admin(user: AuthUser = Depends(get_current_user)) -> AuthUser:
    """Require the ADMIN role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    if user.role != Role.ADMIN:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user


class GatedRoute(APIRoute):
    """APIRoute whose handler errors fail closed when the gate has run.

    Routes that never passed through get_current_user (login, register) keep
    the normal error path.
    """

    def get_route_handler(self) -> Callable[[Request], Awaitable[Response]]:
        handler = super().get_route_handler()

        async def gated_handler(request: Request) -> Response:
            try:
                return await handler(request)
            except (StarletteHTTPException, RequestValidationError):
                raise
            except Exception as exc:
                if getattr(request.state, "user", None) is None:
                    raise
                logger.exception("Gated handler failed on %s %s", request.method, request.url.path)
                raise _unauthorized("unauthorized", UNAUTHORIZED_MESSAGE) from exc

        return gated_handler
