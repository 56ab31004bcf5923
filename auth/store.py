"""
auth/store.py -- SQLAlchemy Core persistence layer for the user directory.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Services and routes never touch SQL directly.

Contract:
  get_by_id / get_by_email / update_user raise AppError(USER_NOT_FOUND) when
  no row matches -- a distinguishable outcome, separate from every other
  failure. Any other database error is wrapped as AppError(STORAGE) with the
  original exception chained.

  Email uniqueness is a UNIQUE constraint on users.email, not an in-process
  lock, so concurrent registrations for one email are resolved correctly even
  across server processes. create_user() translates the IntegrityError into
  AppError(EMAIL_ALREADY_EXISTS).

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or circles/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import User
from core.errors import AppError, ErrorKind

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("password_hash", Text),  # NULL for OAuth-only users
    Column("name", String(255), nullable=False),
    Column("oauth_provider", String(30)),  # "google", "github"
    Column("oauth_subject", Text),  # provider's stable user ID
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Columns update_user() may change. id, email and created_at are immutable.
_MUTABLE_FIELDS = frozenset({"name", "password_hash", "oauth_provider", "oauth_subject"})


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine with the SQLite tweaks every store needs."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", set_wal_mode)
    return engine


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user = store.create_user(User(email="a@b.com", name="A", password_hash=hash_password("secret12")))
        same = store.get_by_email("a@b.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    def create_user(self, user: User) -> User:
        """Insert a new user and return it with id and timestamps filled in.

        Raises AppError(EMAIL_ALREADY_EXISTS) if the email is taken, including
        when a concurrent request inserted it first.
        """
        stamp = now_iso()
        created = User(
            id=user.id or new_id(),
            email=user.email,
            name=user.name,
            password_hash=user.password_hash,
            oauth_provider=user.oauth_provider,
            oauth_subject=user.oauth_subject,
            created_at=stamp,
            updated_at=stamp,
        )
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _users.insert().values(
                        id=created.id,
                        email=created.email,
                        password_hash=created.password_hash,
                        name=created.name,
                        oauth_provider=created.oauth_provider,
                        oauth_subject=created.oauth_subject,
                        created_at=created.created_at,
                        updated_at=created.updated_at,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise AppError(ErrorKind.EMAIL_ALREADY_EXISTS) from exc
        except SQLAlchemyError as exc:
            raise AppError(ErrorKind.STORAGE, "failed to create user") from exc
        return created

    def get_by_id(self, user_id: str) -> User:
        """Look up a user by primary key. Raises AppError(USER_NOT_FOUND)."""
        return self._fetch_one(_users.c.id == user_id, "failed to find user by id")

    def get_by_email(self, email: str) -> User:
        """Look up a user by exact email. Raises AppError(USER_NOT_FOUND)."""
        return self._fetch_one(_users.c.email == email, "failed to find user by email")

    def update_user(self, user_id: str, **fields) -> User:
        """Update mutable fields on an existing user and return the fresh record.

        Accepted fields: name, password_hash, oauth_provider, oauth_subject.
        updated_at is always stamped. Unknown fields raise ValueError.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.update().where(_users.c.id == user_id).values(updated_at=now_iso(), **fields)
                )
                conn.commit()
        except SQLAlchemyError as exc:
            raise AppError(ErrorKind.STORAGE, "failed to update user") from exc
        if result.rowcount == 0:
            raise AppError(ErrorKind.USER_NOT_FOUND)
        return self.get_by_id(user_id)

    def link_oauth(self, user_id: str, provider: str, subject: str) -> User:
        """Backfill the provider linkage on a user that has none.

        The WHERE clause only matches unlinked rows, so two concurrent first
        logins through different providers cannot overwrite each other: the
        loser's update matches nothing and the stored link is returned as-is.
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _users.update()
                    .where((_users.c.id == user_id) & (_users.c.oauth_provider.is_(None)))
                    .values(oauth_provider=provider, oauth_subject=subject, updated_at=now_iso())
                )
                conn.commit()
        except SQLAlchemyError as exc:
            raise AppError(ErrorKind.STORAGE, "failed to link oauth identity") from exc
        return self.get_by_id(user_id)

    def close(self) -> None:
        self.engine.dispose()

    def _fetch_one(self, clause, context: str) -> User:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(_users.select().where(clause)).fetchone()
        except SQLAlchemyError as exc:
            raise AppError(ErrorKind.STORAGE, context) from exc
        if row is None:
            raise AppError(ErrorKind.USER_NOT_FOUND)
        return _row_to_user(row)


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        password_hash=row.password_hash,
        oauth_provider=row.oauth_provider,
        oauth_subject=row.oauth_subject,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
