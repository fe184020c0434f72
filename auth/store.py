"""
auth/store.py -- SQLAlchemy Core persistence layer for users, sessions and
the activity log.

Pattern: Repository + Data Mapper. UserStore is the repository; the _row_to_*
functions are the mappers. Route and service code never touches SQL directly.

The store is the single source of truth for user and session state. Nothing
else mutates users or sessions; the cache only ever holds projections.

Security:
  All queries use bound parameters. No f-strings in SQL.
  get_public_by_id() selects only non-secret columns, so the digest never
  reaches the identity cache even by accident.

Exclusive sessions:
  create_exclusive_session() deletes every session row for the user, inserts
  the new one and stamps last_login_at inside ONE transaction. A concurrent
  reader sees either the old state or the new state, never both sessions and
  never a login stamp without its session. Two racing logins for the same user
  are serialized by the database; the last commit wins.

Layer rule: no imports from api/, core/, or cache/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine

from auth.models import ActivityLog, AuthUser, ClientInfo, Role, Session, User, UserStatus

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'carterisland_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(100), unique=True),  # optional; NULLs are distinct
    Column("hashed_password", Text, nullable=False),
    Column("role", String(10), nullable=False, server_default=Role.USER.value),
    Column("status", String(10), nullable=False, server_default=UserStatus.ACTIVE.value),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("department", String(100)),
    Column("position", String(100)),
    Column("phone", String(30)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token", Text, nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False),
)

_activity_logs = Table(
    "activity_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("action", String(30), nullable=False),
    Column("description", Text, nullable=False),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False),
)

# Every users column except hashed_password.
_PUBLIC_COLUMNS = [c for c in _users.c if c.name != "hashed_password"]

# Fields update_user() accepts. Column names come from this whitelist only.
_UPDATABLE_FIELDS = {"username", "role", "status", "first_name", "last_name", "department", "position", "phone"}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(moment: datetime) -> str:
    # Fixed-width UTC so stored timestamps compare correctly as text.
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return _iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Session and ActivityLog entities.

    Usage:
        store = UserStore()
        store.create_user(User(email="admin@example.com", role=Role.ADMIN, hashed_password=hash_password("secret")))
        user = store.get_by_email("admin@example.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> None:
        """Run a trivial query. Raises on any connectivity problem."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email or username is taken.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    username=user.username,
                    hashed_password=user.hashed_password,
                    role=Role(user.role).value,
                    status=UserStatus(user.status).value,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    department=user.department,
                    position=user.position,
                    phone=user.phone,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email, digest included. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key, digest included. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_public_by_id(self, user_id: int) -> AuthUser | None:
        """Load the non-secret projection of a user. This is the identity-resolution read."""
        with self.engine.connect() as conn:
            row = conn.execute(select(*_PUBLIC_COLUMNS).where(_users.c.id == user_id)).fetchone()
        return _row_to_auth_user(row) if row is not None else None

    def find_ids_by_email(self, email: str) -> list[int]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(_users.c.id).where(_users.c.email == email)).fetchall()
        return [r.id for r in rows]

    def email_or_username_taken(self, email: str, username: str | None) -> bool:
        """Return True if another user already holds this email or username."""
        condition = _users.c.email == email
        if username:
            condition = or_(condition, _users.c.username == username)
        with self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).where(condition).limit(1)).fetchone()
        return row is not None

    def list_users(self) -> list[AuthUser]:
        """Return all users (projection only) ordered by email. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(select(*_PUBLIC_COLUMNS).order_by(_users.c.email)).fetchall()
        return [_row_to_auth_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Apply an administrative update. Returns True if the user exists.

        Only keys in _UPDATABLE_FIELDS are accepted; unknown keys raise
        ValueError. updated_at is always bumped.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        values = {k: (v.value if isinstance(v, (Role, UserStatus)) else v) for k, v in fields.items()}
        values["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_exclusive_session(
        self,
        user_id: int,
        token: str,
        expires_at: datetime,
        client: ClientInfo | None = None,
    ) -> Session:
        """Replace every session of user_id with a new one and stamp last_login_at.

        All three statements share one transaction (engine.begin()). If the
        user row no longer exists the transaction is rolled back and
        LookupError is raised.
        """
        client = client or ClientInfo()
        now = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            result = conn.execute(
                _sessions.insert().values(
                    user_id=user_id,
                    token=token,
                    expires_at=_iso(expires_at),
                    ip_address=client.ip_address,
                    user_agent=client.user_agent,
                    created_at=now,
                )
            )
            session_id = result.inserted_primary_key[0]
            updated = conn.execute(_users.update().where(_users.c.id == user_id).values(last_login_at=now))
            if updated.rowcount == 0:
                raise LookupError(f"user {user_id} does not exist")
        return Session(
            id=session_id,
            user_id=user_id,
            token=token,
            expires_at=_iso(expires_at),
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            created_at=now,
        )

    def find_active_session_by_token(self, token: str) -> Session | None:
        """Return the unexpired session holding this token, if any. Debugging/audit only."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where((_sessions.c.token == token) & (_sessions.c.expires_at > _now_iso()))
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def list_sessions(self, user_id: int) -> list[Session]:
        """Return all session rows for a user, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select().where(_sessions.c.user_id == user_id).order_by(_sessions.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def list_active_sessions(self, limit: int = 10) -> list[Session]:
        """Return the most recent unexpired sessions across all users."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where(_sessions.c.expires_at > _now_iso())
                .order_by(_sessions.c.created_at.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def revoke_sessions(self, user_id: int) -> int:
        """Delete every session of a user. Returns the number of rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return result.rowcount

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------

    def record_activity(self, entry: ActivityLog) -> int:
        """Append one audit record and return its ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _activity_logs.insert().values(
                    user_id=entry.user_id,
                    action=entry.action,
                    description=entry.description,
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_activities(self, user_id: int, limit: int = 20) -> list[ActivityLog]:
        """Return a user's most recent audit records, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _activity_logs.select()
                .where(_activity_logs.c.user_id == user_id)
                .order_by(_activity_logs.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_activity(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        status=UserStatus(row.status),
        first_name=row.first_name,
        last_name=row.last_name,
        department=row.department,
        position=row.position,
        phone=row.phone,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login_at=row.last_login_at,
    )


def _row_to_auth_user(row) -> AuthUser:
    return AuthUser(
        id=row.id,
        email=row.email,
        username=row.username,
        role=Role(row.role),
        status=UserStatus(row.status),
        first_name=row.first_name,
        last_name=row.last_name,
        department=row.department,
        position=row.position,
        phone=row.phone,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login_at=row.last_login_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=row.expires_at,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=row.created_at,
    )


def _row_to_activity(row) -> ActivityLog:
    return ActivityLog(
        id=row.id,
        user_id=row.user_id,
        action=row.action,
        description=row.description,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=row.created_at,
    )


def to_auth_user(user: User) -> AuthUser:
    """Strip the digest from a full User record."""
    return AuthUser(
        id=user.id,
        email=user.email,
        username=user.username,
        role=user.role,
        status=user.status,
        first_name=user.first_name,
        last_name=user.last_name,
        department=user.department,
        position=user.position,
        phone=user.phone,
        created_at=user.created_at,
        updated_at=user.updated_at,
        last_login_at=user.last_login_at,
    )
