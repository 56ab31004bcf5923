"""
circles/models.py -- Circle access-control model.

A circle is a named group sharing a set of categories. It has one owner and a
membership list. Permission resolution is a pure function of the Circle value:

  owner            -> admin, whether or not the owner appears in members
  member           -> the member's stored access level
  anyone else      -> None (no access)

AccessLevel is ordered: private < view < edit < admin. admin implies edit,
edit implies view. "private" describes a circle nobody else can see; it is
never stored on a member entry.

The membership methods enforce the per-circle invariants (a user appears at
most once, private is not assignable). Deciding who may call them -- only an
admin-level caller -- is the service layer's job (see api/routes/v1/circles.py).

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from core.errors import AppError, ErrorKind


class AccessLevel(str, Enum):
    PRIVATE = "private"
    VIEW = "view"
    EDIT = "edit"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _RANK[self]

    def implies(self, required: "AccessLevel") -> bool:
        """True if holding this level grants `required` as well."""
        return self.rank >= required.rank


_RANK = {
    AccessLevel.PRIVATE: 0,
    AccessLevel.VIEW: 1,
    AccessLevel.EDIT: 2,
    AccessLevel.ADMIN: 3,
}

ASSIGNABLE_LEVELS = frozenset({AccessLevel.VIEW, AccessLevel.EDIT, AccessLevel.ADMIN})


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _check_assignable(level: AccessLevel) -> AccessLevel:
    try:
        level = AccessLevel(level)
    except ValueError:
        raise AppError(ErrorKind.INVALID_ACCESS_LEVEL, repr(level)) from None
    if level not in ASSIGNABLE_LEVELS:
        raise AppError(ErrorKind.INVALID_ACCESS_LEVEL, level.value)
    return level


@dataclass
class CircleMember:
    user_id: str
    access_level: AccessLevel
    invited_at: datetime = field(default_factory=_now)
    accepted_at: datetime | None = None


@dataclass
class Circle:
    """A sharing group. Examples: Partner, Friends, Family, Colleagues."""

    name: str
    owner_id: str
    id: str | None = None
    members: list[CircleMember] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def get_member(self, user_id: str) -> CircleMember | None:
        for member in self.members:
            if member.user_id == user_id:
                return member
        return None

    def has_member(self, user_id: str) -> bool:
        return self.get_member(user_id) is not None

    def resolve_access(self, user_id: str) -> AccessLevel | None:
        """Effective level of user_id in this circle, or None for no access."""
        if user_id == self.owner_id:
            return AccessLevel.ADMIN
        member = self.get_member(user_id)
        return member.access_level if member is not None else None

    def can(self, user_id: str, required: AccessLevel) -> bool:
        level = self.resolve_access(user_id)
        return level is not None and level.implies(required)

    @property
    def default_access(self) -> AccessLevel:
        """PRIVATE while nobody but the owner is in the circle."""
        return AccessLevel.PRIVATE if not self.members else AccessLevel.VIEW

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def add_member(self, user_id: str, access_level: AccessLevel) -> CircleMember:
        # The owner is implicitly an admin member.
        if user_id == self.owner_id or self.has_member(user_id):
            raise AppError(ErrorKind.MEMBER_ALREADY_EXISTS)
        member = CircleMember(user_id=user_id, access_level=_check_assignable(access_level))
        self.members.append(member)
        self.updated_at = _now()
        return member

    def remove_member(self, user_id: str) -> CircleMember:
        member = self.get_member(user_id)
        if member is None:
            raise AppError(ErrorKind.MEMBER_NOT_FOUND)
        self.members.remove(member)
        self.updated_at = _now()
        return member

    def update_member_access(self, user_id: str, access_level: AccessLevel) -> CircleMember:
        member = self.get_member(user_id)
        if member is None:
            raise AppError(ErrorKind.MEMBER_NOT_FOUND)
        member.access_level = _check_assignable(access_level)
        self.updated_at = _now()
        return member

    def accept_invitation(self, user_id: str) -> CircleMember:
        """Stamp accepted_at for an invited member. Accepting twice keeps the first stamp."""
        member = self.get_member(user_id)
        if member is None:
            raise AppError(ErrorKind.MEMBER_NOT_FOUND)
        if member.accepted_at is None:
            member.accepted_at = _now()
            self.updated_at = member.accepted_at
        return member
