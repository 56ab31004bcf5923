"""
circles/store.py -- SQLAlchemy Core persistence for circles and memberships.

Tables:
  circles         one row per circle (id, name, owner_id, timestamps)
  circle_members  one row per (circle_id, user_id), UNIQUE on the pair

Every membership write loads the circle, applies the pure Circle operation
(circles/models.py) so the model invariants are checked in one place, then
persists the change. The UNIQUE constraint still decides the race when two
requests add the same user at once: the loser gets MEMBER_ALREADY_EXISTS.

Timestamps are stored as ISO-8601 strings and mapped back to datetimes.

Layer rule: no imports from api/. The engine helpers come from auth.store so
both repositories configure SQLite the same way.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import Column, ForeignKey, MetaData, String, Table, UniqueConstraint, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.store import make_engine, new_id, now_iso
from circles.models import AccessLevel, Circle, CircleMember
from core.errors import AppError, ErrorKind

logger = logging.getLogger("hobbytracker.circles")

_metadata = MetaData()

_circles = Table(
    "circles",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("owner_id", String(32), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_members = Table(
    "circle_members",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("circle_id", String(32), ForeignKey("circles.id"), nullable=False, index=True),
    Column("user_id", String(32), nullable=False, index=True),
    Column("access_level", String(10), nullable=False),
    Column("invited_at", String(32), nullable=False),
    Column("accepted_at", String(32)),
    UniqueConstraint("circle_id", "user_id", name="uq_circle_member"),
)


class CircleStore:
    """Repository for Circle aggregates (circle row plus its member rows)."""

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Circles
    # ------------------------------------------------------------------

    def create_circle(self, name: str, owner_id: str) -> Circle:
        name = (name or "").strip()
        if not name:
            raise AppError(ErrorKind.CIRCLE_NAME_REQUIRED)
        stamp = now_iso()
        circle_id = new_id()
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _circles.insert().values(
                        id=circle_id, name=name, owner_id=owner_id, created_at=stamp, updated_at=stamp
                    )
                )
                conn.commit()
        except SQLAlchemyError as exc:
            raise AppError(ErrorKind.STORAGE, "failed to create circle") from exc
        logger.info("Circle %s created by %s", circle_id, owner_id)
        return Circle(
            id=circle_id,
            name=name,
            owner_id=owner_id,
            created_at=_parse(stamp),
            updated_at=_parse(stamp),
        )

    def get_circle(self, circle_id: str) -> Circle:
        """Load a circle with its members. Raises AppError(CIRCLE_NOT_FOUND)."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(_circles.select().where(_circles.c.id == circle_id)).fetchone()
                if row is None:
                    raise AppError(ErrorKind.CIRCLE_NOT_FOUND)
                member_rows = conn.execute(
                    _members.select().where(_members.c.circle_id == circle_id).order_by(_members.c.invited_at)
                ).fetchall()
        except SQLAlchemyError as exc:
            raise AppError(ErrorKind.STORAGE, "failed to load circle") from exc
        return _row_to_circle(row, member_rows)

    def list_for_user(self, user_id: str) -> list[Circle]:
        """Circles the user owns or belongs to, oldest first."""
        member_of = select(_members.c.circle_id).where(_members.c.user_id == user_id)
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(
                    _circles.select()
                    .where(or_(_circles.c.owner_id == user_id, _circles.c.id.in_(member_of)))
                    .order_by(_circles.c.created_at)
                ).fetchall()
                ids = [row.id for row in rows]
                member_rows = (
                    conn.execute(
                        _members.select().where(_members.c.circle_id.in_(ids)).order_by(_members.c.invited_at)
                    ).fetchall()
                    if ids
                    else []
                )
        except SQLAlchemyError as exc:
            raise AppError(ErrorKind.STORAGE, "failed to list circles") from exc

        by_circle: dict[str, list] = {}
        for member_row in member_rows:
            by_circle.setdefault(member_row.circle_id, []).append(member_row)
        return [_row_to_circle(row, by_circle.get(row.id, [])) for row in rows]

    def rename_circle(self, circle_id: str, name: str) -> Circle:
        name = (name or "").strip()
        if not name:
            raise AppError(ErrorKind.CIRCLE_NAME_REQUIRED)
        self._execute(
            _circles.update().where(_circles.c.id == circle_id).values(name=name, updated_at=now_iso()),
            "failed to rename circle",
            expect_row=ErrorKind.CIRCLE_NOT_FOUND,
        )
        return self.get_circle(circle_id)

    def delete_circle(self, circle_id: str) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(_members.delete().where(_members.c.circle_id == circle_id))
                result = conn.execute(_circles.delete().where(_circles.c.id == circle_id))
                if result.rowcount == 0:
                    conn.rollback()
                    raise AppError(ErrorKind.CIRCLE_NOT_FOUND)
                conn.commit()
        except SQLAlchemyError as exc:
            raise AppError(ErrorKind.STORAGE, "failed to delete circle") from exc
        logger.info("Circle %s deleted", circle_id)

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def add_member(self, circle_id: str, user_id: str, access_level: AccessLevel) -> Circle:
        circle = self.get_circle(circle_id)
        member = circle.add_member(user_id, access_level)
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _members.insert().values(
                        id=new_id(),
                        circle_id=circle_id,
                        user_id=member.user_id,
                        access_level=member.access_level.value,
                        invited_at=member.invited_at.isoformat(),
                        accepted_at=None,
                    )
                )
                conn.execute(_circles.update().where(_circles.c.id == circle_id).values(updated_at=now_iso()))
                conn.commit()
        except IntegrityError as exc:
            raise AppError(ErrorKind.MEMBER_ALREADY_EXISTS) from exc
        except SQLAlchemyError as exc:
            raise AppError(ErrorKind.STORAGE, "failed to add member") from exc
        logger.info("User %s added to circle %s as %s", user_id, circle_id, member.access_level.value)
        return self.get_circle(circle_id)

    def remove_member(self, circle_id: str, user_id: str) -> Circle:
        circle = self.get_circle(circle_id)
        circle.remove_member(user_id)
        self._execute(
            _members.delete().where((_members.c.circle_id == circle_id) & (_members.c.user_id == user_id)),
            "failed to remove member",
            expect_row=ErrorKind.MEMBER_NOT_FOUND,
        )
        self._touch(circle_id)
        logger.info("User %s removed from circle %s", user_id, circle_id)
        return self.get_circle(circle_id)

    def update_member_access(self, circle_id: str, user_id: str, access_level: AccessLevel) -> Circle:
        circle = self.get_circle(circle_id)
        member = circle.update_member_access(user_id, access_level)
        self._execute(
            _members.update()
            .where((_members.c.circle_id == circle_id) & (_members.c.user_id == user_id))
            .values(access_level=member.access_level.value),
            "failed to update member access",
            expect_row=ErrorKind.MEMBER_NOT_FOUND,
        )
        self._touch(circle_id)
        return self.get_circle(circle_id)

    def accept_invitation(self, circle_id: str, user_id: str) -> Circle:
        circle = self.get_circle(circle_id)
        member = circle.accept_invitation(user_id)
        # Only the first acceptance is stored.
        self._execute(
            _members.update()
            .where(
                (_members.c.circle_id == circle_id)
                & (_members.c.user_id == user_id)
                & (_members.c.accepted_at.is_(None))
            )
            .values(accepted_at=member.accepted_at.isoformat()),
            "failed to accept invitation",
        )
        return self.get_circle(circle_id)

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _execute(self, statement, context: str, expect_row: ErrorKind | None = None) -> None:
        try:
            with self.engine.connect() as conn:
                result = conn.execute(statement)
                conn.commit()
        except SQLAlchemyError as exc:
            raise AppError(ErrorKind.STORAGE, context) from exc
        if expect_row is not None and result.rowcount == 0:
            raise AppError(expect_row)

    def _touch(self, circle_id: str) -> None:
        self._execute(
            _circles.update().where(_circles.c.id == circle_id).values(updated_at=now_iso()),
            "failed to stamp circle",
        )


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_member(row) -> CircleMember:
    return CircleMember(
        user_id=row.user_id,
        access_level=AccessLevel(row.access_level),
        invited_at=_parse(row.invited_at),
        accepted_at=_parse(row.accepted_at),
    )


def _row_to_circle(row, member_rows) -> Circle:
    return Circle(
        id=row.id,
        name=row.name,
        owner_id=row.owner_id,
        members=[_row_to_member(m) for m in member_rows],
        created_at=_parse(row.created_at),
        updated_at=_parse(row.updated_at),
    )
