"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts, sessions and codes.

Pattern: Repository + Data Mapper.
AccountStore is the repository; _row_to_user / _row_to_code are the mappers. Managers and routes never touch SQL directly.

Concurrency:
  There is no in-process lock anywhere in the engine. Correctness under
  concurrent requests rests on what this module asks of the database:
    - UNIQUE(username), UNIQUE(email), UNIQUE(provider, federation_subject)
      and UNIQUE(token_digest) reject duplicate inserts; the IntegrityError
      surfaces as Conflict.
    - login_attempts is incremented in SQL (``login_attempts + 1``), never
      read-modify-written in Python, and only while it is below the limit,
      so the lockout check and the increment are one statement.
    - Code redemption is one conditional ``UPDATE ... WHERE used = 0`` inside
      the same transaction as its effect. Zero rows changed means somebody
      else consumed the code first; a failing effect rolls the mark back.

  SQLite treats NULLs as distinct in UNIQUE constraints, which is what we want
  for federation_subject: every local account has NULL there.

Security:
  All queries use bound parameters. No f-strings in SQL.

Failures:
  OperationalError and other DBAPI errors become StorageError. Connection
  checkout and SQLite's busy wait are bounded by ``timeout`` seconds so no
  call blocks indefinitely.

Layer rule: no imports from api/, core/ or mail/.
"""

from __future__ import annotations

import functools
import logging
import time

from sqlalchemy import (
    CheckConstraint,
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError

from auth.errors import Conflict, StorageError
from auth.models import AuthLevel, CodeKind, IdentityProvider, Session, User, VerificationCode

logger = logging.getLogger("keyward.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(100), nullable=False, unique=True),
    Column("email", String(300), nullable=False, unique=True),
    Column("hashed_password", Text),  # NULL for Google-only accounts
    Column("auth_level", String(20), nullable=False, server_default=AuthLevel.unverified.value),
    Column("provider", String(20), nullable=False, server_default=IdentityProvider.default.value),
    Column("federation_subject", String(255)),  # NULL for local accounts
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("login_attempts", Integer, nullable=False, server_default="0"),
    Column("registration_ts", Integer, nullable=False),
    UniqueConstraint("provider", "federation_subject", name="uq_users_federation"),
    CheckConstraint("login_attempts >= 0", name="ck_users_login_attempts"),
    CheckConstraint(
        "(provider = 'default' AND hashed_password IS NOT NULL)"
        " OR (provider = 'google' AND federation_subject IS NOT NULL AND hashed_password IS NULL)",
        name="ck_users_credential",
    ),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token_digest", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("username", String(100), nullable=False, index=True),
    Column("expiry", Integer, nullable=False, index=True),
)

_codes = Table(
    "codes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(16), nullable=False),
    Column("email", String(300), nullable=False),
    Column("kind", String(32), nullable=False),
    Column("created_ts", Integer, nullable=False),
    Column("expiry_ts", Integer, nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
    Index("ix_codes_lookup", "email", "kind", "code"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by the writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


def _storage_call(method):
    """Translate driver failures into the engine's error taxonomy."""

    @functools.wraps(method)
    def wrapper(*args, **kwargs):
        try:
            return method(*args, **kwargs)
        except IntegrityError as exc:
            raise Conflict("That record already exists.") from exc
        except (DBAPIError, SQLAlchemyError) as exc:
            logger.error("Storage failure in %s: %s", method.__name__, exc.__class__.__name__)
            raise StorageError("The account store is unavailable.") from exc

    return wrapper


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for User, Session and VerificationCode entities.

    Usage:
        store = AccountStore("sqlite:///keyward.db")
        uid = store.create_user(User(username="alice", email="a@example.com", hashed_password=h))
        user = store.get_by_email("a@example.com")
        store.close()
    """

    def __init__(self, db_url: str, timeout: float = 10.0) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout
        else:
            engine_kwargs["pool_timeout"] = timeout
            engine_kwargs["pool_pre_ping"] = True
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @_storage_call
    def create_user(self, user: User) -> int:
        """Insert a new user and return its database ID.

        Raises Conflict when the username, email or federation subject is
        already taken -- including when a concurrent request won the race
        after the caller's own uniqueness pre-check.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    auth_level=AuthLevel(user.auth_level).value,
                    provider=IdentityProvider(user.provider).value,
                    federation_subject=user.federation_subject,
                    email_verified=1 if user.email_verified else 0,
                    login_attempts=0,
                    registration_ts=user.registration_ts or int(time.time()),
                )
            )
            return result.inserted_primary_key[0]

    @_storage_call
    def get_by_username(self, username: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    @_storage_call
    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    @_storage_call
    def get_by_federation(self, provider: IdentityProvider, subject: str) -> User | None:
        """Look up a federated account by its (provider, subject) pair."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    (_users.c.provider == IdentityProvider(provider).value) & (_users.c.federation_subject == subject)
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    @_storage_call
    def reserve_login_attempt(self, user_id: int, max_attempts: int) -> int | None:
        """Count one login attempt before the password is checked.

        The increment only applies while the counter is below max_attempts, in
        a single conditional UPDATE, so concurrent logins can never take more
        than max_attempts password checks between them. Returns the new counter
        value, or None when the account is already locked.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.login_attempts < max_attempts))
                .values(login_attempts=_users.c.login_attempts + 1)
            )
            if result.rowcount == 0:
                return None
            value = conn.execute(select(_users.c.login_attempts).where(_users.c.id == user_id)).scalar()
        return int(value or 0)

    @_storage_call
    def reset_login_attempts(self, user_id: int) -> None:
        with self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(login_attempts=0))

    @_storage_call
    def update_password(self, user_id: int, hashed_password: str) -> bool:
        """Replace a local account's password hash. Returns False if no row matched."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.provider == IdentityProvider.default.value))
                .values(hashed_password=hashed_password)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @_storage_call
    def create_session(self, session: Session) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    token_digest=session.token_digest,
                    username=session.username,
                    expiry=session.expiry,
                )
            )
            return result.inserted_primary_key[0]

    @_storage_call
    def get_session_username(self, token_digest: str, now: int) -> str | None:
        """Return the owner of a live session, or None.

        The expiry predicate lives in the query, so a missing row and an
        expired row are indistinguishable to the caller.
        """
        with self.engine.connect() as conn:
            return conn.execute(
                select(_sessions.c.username).where(
                    (_sessions.c.token_digest == token_digest) & (_sessions.c.expiry > now)
                )
            ).scalar()

    @_storage_call
    def delete_session(self, token_digest: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.token_digest == token_digest))
        return result.rowcount > 0

    @_storage_call
    def delete_sessions_for_user(self, username: str, keep_digest: str | None = None) -> int:
        """Delete every session owned by username, optionally sparing one."""
        condition = _sessions.c.username == username
        if keep_digest is not None:
            condition = condition & (_sessions.c.token_digest != keep_digest)
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(condition))
        return result.rowcount

    @_storage_call
    def delete_expired_sessions(self, now: int) -> int:
        """Delete all sessions with expiry <= now. Returns the number removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expiry <= now))
        return result.rowcount

    # ------------------------------------------------------------------
    # Verification codes
    # ------------------------------------------------------------------

    @_storage_call
    def create_code(self, code: VerificationCode) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                _codes.insert().values(
                    code=code.code,
                    email=code.email,
                    kind=CodeKind(code.kind).value,
                    created_ts=code.created_ts,
                    expiry_ts=code.expiry_ts,
                    used=1 if code.used else 0,
                )
            )
            return result.inserted_primary_key[0]

    @_storage_call
    def get_codes(self, email: str, kind: CodeKind) -> list[VerificationCode]:
        """Return every code of one kind for an email, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _codes.select()
                .where((_codes.c.email == email) & (_codes.c.kind == CodeKind(kind).value))
                .order_by(_codes.c.created_ts.desc(), _codes.c.id.desc())
            ).fetchall()
        return [_row_to_code(r) for r in rows]

    @_storage_call
    def redeem_email_verification(self, email: str, code: str, now: int) -> bool:
        """Consume an EmailVerification code and mark the account verified.

        Admin accounts keep their level; unverified accounts become verified.
        Returns False when no matching, unused, unexpired code was consumed.
        """
        with self.engine.begin() as conn:
            if not _consume_code(conn, email, code, CodeKind.email_verification, now):
                return False
            conn.execute(_users.update().where(_users.c.email == email).values(email_verified=1))
            conn.execute(
                _users.update()
                .where((_users.c.email == email) & (_users.c.auth_level == AuthLevel.unverified.value))
                .values(auth_level=AuthLevel.verified.value)
            )
        return True

    @_storage_call
    def redeem_password_reset(self, email: str, code: str, now: int, hashed_password: str) -> bool:
        """Consume a PasswordReset code, store the new hash and zero the counter.

        Only local accounts can take a password, so the effect is restricted
        to provider='default'. If that update matches nothing the transaction
        is rolled back and the code stays usable.
        """
        try:
            with self.engine.begin() as conn:
                if not _consume_code(conn, email, code, CodeKind.password_reset, now):
                    return False
                result = conn.execute(
                    _users.update()
                    .where((_users.c.email == email) & (_users.c.provider == IdentityProvider.default.value))
                    .values(hashed_password=hashed_password, login_attempts=0)
                )
                if result.rowcount == 0:
                    raise _EffectNotApplied
        except _EffectNotApplied:
            return False
        return True

    @_storage_call
    def ping(self) -> None:
        """Round-trip a trivial query. Raises StorageError if the database is unreachable."""
        with self.engine.connect() as conn:
            conn.execute(select(1))

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _EffectNotApplied(Exception):
    """Raised inside a transaction to roll back a code that had no effect."""


def _consume_code(conn: Connection, email: str, code: str, kind: CodeKind, now: int) -> bool:
    """Mark the newest matching live code used. Must run inside a transaction.

    A single UPDATE with the lookup as a subquery, so the transaction's first
    statement is already a write and two redeemers cannot both see the code live.
    """
    newest_live = (
        select(_codes.c.id)
        .where(
            (_codes.c.email == email)
            & (_codes.c.code == code)
            & (_codes.c.kind == CodeKind(kind).value)
            & (_codes.c.used == 0)
            & (_codes.c.expiry_ts > now)
        )
        .order_by(_codes.c.created_ts.desc(), _codes.c.id.desc())
        .limit(1)
        .scalar_subquery()
    )
    result = conn.execute(_codes.update().where((_codes.c.id == newest_live) & (_codes.c.used == 0)).values(used=1))
    return result.rowcount == 1


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        auth_level=AuthLevel(row.auth_level),
        provider=IdentityProvider(row.provider),
        federation_subject=row.federation_subject,
        email_verified=bool(row.email_verified),
        login_attempts=row.login_attempts,
        registration_ts=row.registration_ts,
    )


def _row_to_code(row) -> VerificationCode:
    return VerificationCode(
        id=row.id,
        code=row.code,
        email=row.email,
        kind=CodeKind(row.kind),
        created_ts=row.created_ts,
        expiry_ts=row.expiry_ts,
        used=bool(row.used),
    )
