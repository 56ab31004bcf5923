"""
api/routes/v1/circles.py -- Circle management endpoints.

Routes (all require a bearer token):
  POST   /api/v1/circles                               -- create; caller becomes owner
  GET    /api/v1/circles                               -- circles the caller owns or belongs to
  GET    /api/v1/circles/{circle_id}                   -- detail (view)
  PATCH  /api/v1/circles/{circle_id}                   -- rename (admin)
  DELETE /api/v1/circles/{circle_id}                   -- delete (owner only)
  GET    /api/v1/circles/{circle_id}/access            -- caller's effective level
  POST   /api/v1/circles/{circle_id}/members           -- add member (admin)
  PATCH  /api/v1/circles/{circle_id}/members/{user_id} -- change level (admin)
  DELETE /api/v1/circles/{circle_id}/members/{user_id} -- remove (admin, or the member themself)
  POST   /api/v1/circles/{circle_id}/accept            -- accept an invitation (invited member)

Authorization:
  The caller's level comes from Circle.resolve_access(). No access at all is
  reported as 404 circle_not_found so strangers cannot discover circle ids;
  a member below the required level gets 403 forbidden.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import (
    AccessResponse,
    CircleCreate,
    CircleRename,
    CircleResponse,
    MemberAccessUpdate,
    MemberAdd,
)
from auth.dependencies import get_current_identity
from auth.models import Identity
from circles.models import AccessLevel, Circle
from circles.store import CircleStore
from core.errors import AppError, ErrorKind

router = APIRouter()


def _store(request: Request) -> CircleStore:
    return request.app.state.circle_store


def _authorize(request: Request, circle_id: str, identity: Identity, required: AccessLevel) -> Circle:
    """Load a circle and require the caller to hold `required` in it."""
    circle = _store(request).get_circle(circle_id)
    level = circle.resolve_access(identity.user_id)
    if level is None:
        raise AppError(ErrorKind.CIRCLE_NOT_FOUND)
    if not level.implies(required):
        raise AppError(ErrorKind.ACCESS_DENIED, f"{identity.user_id} has {level.value}, needs {required.value}")
    return circle


# ---------------------------------------------------------------------------
# Circles
# ---------------------------------------------------------------------------


@router.post("/circles", response_model=CircleResponse, status_code=201)
def create_circle(
    request: Request,
    body: CircleCreate,
    identity: Identity = Depends(get_current_identity),
) -> CircleResponse:
    circle = _store(request).create_circle(body.name, identity.user_id)
    return CircleResponse.from_circle(circle, identity.user_id)


@router.get("/circles", response_model=list[CircleResponse])
def list_circles(request: Request, identity: Identity = Depends(get_current_identity)) -> list[CircleResponse]:
    """Return every circle the caller owns or is a member of."""
    return [CircleResponse.from_circle(c, identity.user_id) for c in _store(request).list_for_user(identity.user_id)]


@router.get("/circles/{circle_id}", response_model=CircleResponse)
def get_circle(
    request: Request,
    circle_id: str,
    identity: Identity = Depends(get_current_identity),
) -> CircleResponse:
    circle = _authorize(request, circle_id, identity, AccessLevel.VIEW)
    return CircleResponse.from_circle(circle, identity.user_id)


@router.patch("/circles/{circle_id}", response_model=CircleResponse)
def rename_circle(
    request: Request,
    circle_id: str,
    body: CircleRename,
    identity: Identity = Depends(get_current_identity),
) -> CircleResponse:
    _authorize(request, circle_id, identity, AccessLevel.ADMIN)
    circle = _store(request).rename_circle(circle_id, body.name)
    return CircleResponse.from_circle(circle, identity.user_id)


@router.delete("/circles/{circle_id}", status_code=204)
def delete_circle(
    request: Request,
    circle_id: str,
    identity: Identity = Depends(get_current_identity),
) -> Response:
    """Delete a circle. Only the owner may do this; admin members may not."""
    circle = _authorize(request, circle_id, identity, AccessLevel.VIEW)
    if circle.owner_id != identity.user_id:
        raise AppError(ErrorKind.ACCESS_DENIED, "only the owner may delete a circle")
    _store(request).delete_circle(circle_id)
    return Response(status_code=204)


@router.get("/circles/{circle_id}/access", response_model=AccessResponse)
def get_access(
    request: Request,
    circle_id: str,
    identity: Identity = Depends(get_current_identity),
) -> AccessResponse:
    circle = _authorize(request, circle_id, identity, AccessLevel.VIEW)
    return AccessResponse(
        circle_id=circle.id,
        user_id=identity.user_id,
        access=circle.resolve_access(identity.user_id),
        is_owner=circle.owner_id == identity.user_id,
    )


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


@router.post("/circles/{circle_id}/members", response_model=CircleResponse, status_code=201)
def add_member(
    request: Request,
    circle_id: str,
    body: MemberAdd,
    identity: Identity = Depends(get_current_identity),
) -> CircleResponse:
    """Invite an existing user into the circle at the given level."""
    _authorize(request, circle_id, identity, AccessLevel.ADMIN)
    request.app.state.user_store.get_by_id(body.user_id)
    circle = _store(request).add_member(circle_id, body.user_id, body.access_level)
    return CircleResponse.from_circle(circle, identity.user_id)


@router.patch("/circles/{circle_id}/members/{user_id}", response_model=CircleResponse)
def update_member(
    request: Request,
    circle_id: str,
    user_id: str,
    body: MemberAccessUpdate,
    identity: Identity = Depends(get_current_identity),
) -> CircleResponse:
    _authorize(request, circle_id, identity, AccessLevel.ADMIN)
    circle = _store(request).update_member_access(circle_id, user_id, body.access_level)
    return CircleResponse.from_circle(circle, identity.user_id)


@router.delete("/circles/{circle_id}/members/{user_id}", status_code=204)
def remove_member(
    request: Request,
    circle_id: str,
    user_id: str,
    identity: Identity = Depends(get_current_identity),
) -> Response:
    """Remove a member. Admins may remove anyone; a member may leave on their own."""
    required = AccessLevel.VIEW if user_id == identity.user_id else AccessLevel.ADMIN
    _authorize(request, circle_id, identity, required)
    _store(request).remove_member(circle_id, user_id)
    return Response(status_code=204)


@router.post("/circles/{circle_id}/accept", response_model=CircleResponse)
def accept_invitation(
    request: Request,
    circle_id: str,
    identity: Identity = Depends(get_current_identity),
) -> CircleResponse:
    _authorize(request, circle_id, identity, AccessLevel.VIEW)
    circle = _store(request).accept_invitation(circle_id, identity.user_id)
    return CircleResponse.from_circle(circle, identity.user_id)
