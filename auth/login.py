"""
auth/login.py -- Login and registration protocols.

login() order matters:
  1. Drop cached projections for any user holding this email, so a stale
     entry from an earlier account state cannot outlive the new login.
  2. authenticate_user(): unknown email, inactive account and wrong password
     all come back as None -- the route answers them with one message.
  3. Issue the token, then open the session with create_exclusive_session(),
     which evicts every earlier session of the user in the same transaction.
     The session index key is dropped again afterwards, since a listing read
     between steps 1 and 3 may have re-cached the evicted session.
  4. Cache the fresh projection (user:<id>, 900 s).
  5. Dispatch the LOGIN audit write. The response is already decided by step
     3; the audit write is never awaited here.

Blocking work (SQL, bcrypt) runs in worker threads via asyncio.to_thread.
Store and hashing errors propagate; the route turns them into a 500.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from auth.activity import ActivityRecorder
from auth.models import AuthUser, ClientInfo, LoginResult, Role, TokenPayload, User, UserStatus
from auth.resolver import IdentityResolver
from auth.store import UserStore, to_auth_user
from auth.tokens import authenticate_user, create_access_token, hash_password, token_expiry
from cache.store import user_sessions_key

logger = logging.getLogger("carterisland.auth.login")


async def login(
    store: UserStore,
    resolver: IdentityResolver,
    recorder: ActivityRecorder,
    email: str,
    password: str,
    client: ClientInfo | None = None,
) -> LoginResult | None:
    """Run the full login protocol. Returns None for any credential failure."""
    client = client or ClientInfo()
    cache = resolver.cache

    for user_id in await asyncio.to_thread(store.find_ids_by_email, email):
        await cache.invalidate_user(user_id)

    user = await asyncio.to_thread(authenticate_user, store, email, password)
    if user is None:
        logger.info("Login rejected (ip=%s)", client.ip_address)
        return None

    issued_at = datetime.now(timezone.utc)
    token = create_access_token(TokenPayload(user_id=user.id, email=user.email, role=user.role), issued_at=issued_at)
    session = await asyncio.to_thread(
        store.create_exclusive_session, user.id, token, token_expiry(issued_at), client
    )
    await cache.delete(user_sessions_key(user.id))

    public = to_auth_user(user)
    public.last_login_at = session.created_at
    await resolver.remember(public)

    recorder.dispatch(user.id, "LOGIN", f"User logged in successfully - Role: {user.role.value}", client)
    logger.info("Login succeeded for user %d (session %d)", user.id, session.id)
    return LoginResult(token=token, user=public, session=session)


async def register(
    store: UserStore,
    recorder: ActivityRecorder,
    user: User,
    password: str,
    client: ClientInfo | None = None,
) -> AuthUser | None:
    """Create a USER account. Returns None if the email or username is taken.

    Self-registration always yields role USER and status ACTIVE, whatever the
    caller put on the User.
    """
    if await asyncio.to_thread(store.email_or_username_taken, user.email, user.username):
        return None
    user.hashed_password = await asyncio.to_thread(hash_password, password)
    user.role = Role.USER
    user.status = UserStatus.ACTIVE
    try:
        user_id = await asyncio.to_thread(store.create_user, user)
    except IntegrityError:
        # A concurrent registration took the email/username after our check.
        return None
    created = await asyncio.to_thread(store.get_public_by_id, user_id)
    recorder.dispatch(user_id, "REGISTER", "User registered", client)
    return created
