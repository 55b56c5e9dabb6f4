"""
auth/store.py -- SQLAlchemy Core persistence layer for users and web sessions.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_session are the mappers.
Gateway stages and route code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Session ids are secrets.token_urlsafe(32) -- 256 bits, unguessable. The id
  is the only thing the browser holds, inside the signed session cookie.

Concurrency:
  touch_session() is the hot path: every authenticated web request renews its
  session. Renewals are serialized behind a lock and the UPDATE writes only
  last_seen_at, so two concurrent renewals of the same session resolve as
  last-write-wins and never clobber revoked or any other column.

Layer rule: no imports from api/, web/ or gateway/.
"""

from __future__ import annotations

import secrets
import threading
import time
from datetime import datetime, timezone

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine

from auth.models import Session, User
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),  # NULL for token-only service accounts
    Column("role", String(30), nullable=False, server_default="member"),
    Column("created_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("last_seen_at", Float, nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),
)


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


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and Session entities.

    Usage:
        store = UserStore()
        uid = store.create_user(User(username="admin", role="admin", hashed_password=hash_password("secret")))
        session = store.create_session(uid)
        store.touch_session(session.id)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)
        self._renew_lock = threading.Lock()

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists."""
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    hashed_password=user.hashed_password,
                    role=user.role,
                    created_at=_now_iso(),
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user (role, is_active, hashed_password).

        Returns True if a row was updated, False if user_id was not found.
        """
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Session queries
    # ------------------------------------------------------------------

    def create_session(self, user_id: int) -> Session:
        """Open a new session for user_id, already renewed as of now."""
        session = Session(
            id=secrets.token_urlsafe(32),
            user_id=user_id,
            last_seen_at=time.time(),
            created_at=_now_iso(),
        )
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    created_at=session.created_at,
                    last_seen_at=session.last_seen_at,
                    revoked=0,
                )
            )
            conn.commit()
        return session

    def get_session(self, session_id: str) -> Session | None:
        """Look up a session by id, revoked or not. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def touch_session(self, session_id: str) -> float:
        """Renew a session's liveness and return the new last_seen_at.

        Only last_seen_at is written. The lock serializes concurrent renewals
        from parallel requests on the same process; across processes SQLite's
        write lock gives the same last-write-wins outcome.
        """
        with self._renew_lock:
            now = time.time()
            with self.engine.connect() as conn:
                conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(last_seen_at=now))
                conn.commit()
        return now

    def revoke_session(self, session_id: str) -> bool:
        """Invalidate a session (logout). Returns True if a row was updated."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(revoked=1))
            conn.commit()
        return result.rowcount > 0

    def purge_sessions(self, retention_seconds: int) -> int:
        """Delete revoked sessions and sessions idle longer than retention_seconds.

        retention_seconds must exceed the idle lifetime: an offline session
        keeps its row so the authenticator can still answer it with a login
        redirect instead of treating the browser as anonymous.

        Returns number of rows removed.
        """
        cutoff = time.time() - retention_seconds
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.delete().where((_sessions.c.revoked == 1) | (_sessions.c.last_seen_at < cutoff))
            )
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        role=row.role,
        created_at=row.created_at,
        is_active=bool(row.is_active),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        created_at=row.created_at,
        last_seen_at=float(row.last_seen_at),
        revoked=bool(row.revoked),
    )
