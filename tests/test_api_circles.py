"""
tests/test_api_circles.py -- Integration tests for /api/v1/circles/*.

Covers:
  - create/list/get with the caller's effective access level
  - admin-only membership management; 403 for members below admin
  - strangers get 404, never 403, so circle ids cannot be discovered
  - invitation acceptance and leaving a circle
  - owner-only deletion
"""

from __future__ import annotations

import pytest


@pytest.fixture(scope="module")
def users(api) -> dict[str, dict]:
    """Register one account per role once per module."""
    roles = ("owner", "admin", "editor", "viewer", "stranger", "invitee")
    return {role: api.register(f"{role}@circles.example.com", name=role.title()) for role in roles}


def _h(api, users: dict, role: str) -> dict[str, str]:
    return api.bearer(users[role]["token"])


@pytest.fixture
def circle_id(api, users: dict) -> str:
    """A circle owned by `owner` with admin, editor and viewer members."""
    resp = api.client.post("/api/v1/circles", json={"name": "Friends"}, headers=_h(api, users, "owner"))
    assert resp.status_code == 201, resp.text
    cid = resp.json()["id"]
    for role, level in (("admin", "admin"), ("editor", "edit"), ("viewer", "view")):
        added = api.client.post(
            f"/api/v1/circles/{cid}/members",
            json={"userId": users[role]["userId"], "accessLevel": level},
            headers=_h(api, users, "owner"),
        )
        assert added.status_code == 201, added.text
    return cid


class TestCircleLifecycle:
    def test_create_makes_caller_owner(self, api, users: dict) -> None:
        resp = api.client.post("/api/v1/circles", json={"name": "Partner"}, headers=_h(api, users, "owner"))
        assert resp.status_code == 201
        body = resp.json()
        assert body["ownerId"] == users["owner"]["userId"]
        assert body["access"] == "admin"
        assert body["members"] == []

    def test_requires_authentication(self, api) -> None:
        assert api.client.get("/api/v1/circles").status_code == 401
        assert api.client.post("/api/v1/circles", json={"name": "X"}).status_code == 401

    def test_blank_name_rejected(self, api, users: dict) -> None:
        resp = api.client.post("/api/v1/circles", json={"name": "   "}, headers=_h(api, users, "owner"))
        assert resp.status_code == 400

    def test_list_shows_owned_and_joined(self, api, users: dict, circle_id: str) -> None:
        owned = {c["id"] for c in api.client.get("/api/v1/circles", headers=_h(api, users, "owner")).json()}
        joined = {c["id"]: c for c in api.client.get("/api/v1/circles", headers=_h(api, users, "viewer")).json()}
        stranger = api.client.get("/api/v1/circles", headers=_h(api, users, "stranger")).json()
        assert circle_id in owned
        assert joined[circle_id]["access"] == "view"
        assert circle_id not in {c["id"] for c in stranger}

    @pytest.mark.parametrize(
        ("role", "level"),
        [("owner", "admin"), ("admin", "admin"), ("editor", "edit"), ("viewer", "view")],
    )
    def test_access_endpoint(self, api, users: dict, circle_id: str, role: str, level: str) -> None:
        resp = api.client.get(f"/api/v1/circles/{circle_id}/access", headers=_h(api, users, role))
        assert resp.status_code == 200
        assert resp.json()["access"] == level
        assert resp.json()["isOwner"] is (role == "owner")

    def test_stranger_sees_not_found(self, api, users: dict, circle_id: str) -> None:
        for path in (f"/api/v1/circles/{circle_id}", f"/api/v1/circles/{circle_id}/access"):
            resp = api.client.get(path, headers=_h(api, users, "stranger"))
            assert resp.status_code == 404
            assert resp.json()["error"]["code"] == "circle_not_found"

    def test_missing_circle_looks_the_same(self, api, users: dict) -> None:
        resp = api.client.get("/api/v1/circles/does-not-exist", headers=_h(api, users, "stranger"))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "circle_not_found"

    def test_rename_requires_admin(self, api, users: dict, circle_id: str) -> None:
        path = f"/api/v1/circles/{circle_id}"
        denied = api.client.patch(path, json={"name": "Nope"}, headers=_h(api, users, "editor"))
        assert denied.status_code == 403
        ok = api.client.patch(path, json={"name": "Besties"}, headers=_h(api, users, "admin"))
        assert ok.status_code == 200
        assert ok.json()["name"] == "Besties"

    def test_delete_owner_only(self, api, users: dict, circle_id: str) -> None:
        assert api.client.delete(f"/api/v1/circles/{circle_id}", headers=_h(api, users, "admin")).status_code == 403
        assert api.client.delete(f"/api/v1/circles/{circle_id}", headers=_h(api, users, "owner")).status_code == 204
        assert api.client.get(f"/api/v1/circles/{circle_id}", headers=_h(api, users, "owner")).status_code == 404


class TestMembership:
    def test_non_admin_cannot_add(self, api, users: dict, circle_id: str) -> None:
        for role in ("editor", "viewer"):
            resp = api.client.post(
                f"/api/v1/circles/{circle_id}/members",
                json={"userId": users["invitee"]["userId"], "accessLevel": "view"},
                headers=_h(api, users, role),
            )
            assert resp.status_code == 403
            assert resp.json()["error"]["code"] == "forbidden"

    def test_admin_member_can_add(self, api, users: dict, circle_id: str) -> None:
        resp = api.client.post(
            f"/api/v1/circles/{circle_id}/members",
            json={"userId": users["invitee"]["userId"], "accessLevel": "edit"},
            headers=_h(api, users, "admin"),
        )
        assert resp.status_code == 201
        members = {m["userId"]: m for m in resp.json()["members"]}
        assert members[users["invitee"]["userId"]]["accessLevel"] == "edit"
        assert members[users["invitee"]["userId"]]["acceptedAt"] is None

    def test_duplicate_member_conflicts(self, api, users: dict, circle_id: str) -> None:
        resp = api.client.post(
            f"/api/v1/circles/{circle_id}/members",
            json={"userId": users["viewer"]["userId"], "accessLevel": "admin"},
            headers=_h(api, users, "owner"),
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "member_already_exists"

    def test_private_not_assignable(self, api, users: dict, circle_id: str) -> None:
        resp = api.client.post(
            f"/api/v1/circles/{circle_id}/members",
            json={"userId": users["invitee"]["userId"], "accessLevel": "private"},
            headers=_h(api, users, "owner"),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_access_level"

    def test_unknown_user(self, api, users: dict, circle_id: str) -> None:
        resp = api.client.post(
            f"/api/v1/circles/{circle_id}/members",
            json={"userId": "no-such-user", "accessLevel": "view"},
            headers=_h(api, users, "owner"),
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "user_not_found"

    def test_update_access(self, api, users: dict, circle_id: str) -> None:
        viewer_id = users["viewer"]["userId"]
        denied = api.client.patch(
            f"/api/v1/circles/{circle_id}/members/{viewer_id}",
            json={"accessLevel": "admin"},
            headers=_h(api, users, "editor"),
        )
        assert denied.status_code == 403
        resp = api.client.patch(
            f"/api/v1/circles/{circle_id}/members/{viewer_id}",
            json={"accessLevel": "edit"},
            headers=_h(api, users, "owner"),
        )
        assert resp.status_code == 200
        access = api.client.get(f"/api/v1/circles/{circle_id}/access", headers=_h(api, users, "viewer"))
        assert access.json()["access"] == "edit"

    def test_remove_member(self, api, users: dict, circle_id: str) -> None:
        editor_id = users["editor"]["userId"]
        resp = api.client.delete(f"/api/v1/circles/{circle_id}/members/{editor_id}", headers=_h(api, users, "admin"))
        assert resp.status_code == 204
        after = api.client.get(f"/api/v1/circles/{circle_id}", headers=_h(api, users, "editor"))
        assert after.status_code == 404

    def test_member_can_leave(self, api, users: dict, circle_id: str) -> None:
        viewer_id = users["viewer"]["userId"]
        resp = api.client.delete(f"/api/v1/circles/{circle_id}/members/{viewer_id}", headers=_h(api, users, "viewer"))
        assert resp.status_code == 204

    def test_viewer_cannot_remove_others(self, api, users: dict, circle_id: str) -> None:
        editor_id = users["editor"]["userId"]
        resp = api.client.delete(f"/api/v1/circles/{circle_id}/members/{editor_id}", headers=_h(api, users, "viewer"))
        assert resp.status_code == 403

    def test_accept_invitation(self, api, users: dict, circle_id: str) -> None:
        resp = api.client.post(f"/api/v1/circles/{circle_id}/accept", headers=_h(api, users, "viewer"))
        assert resp.status_code == 200
        members = {m["userId"]: m for m in resp.json()["members"]}
        assert members[users["viewer"]["userId"]]["acceptedAt"] is not None

    def test_stranger_cannot_accept(self, api, users: dict, circle_id: str) -> None:
        resp = api.client.post(f"/api/v1/circles/{circle_id}/accept", headers=_h(api, users, "stranger"))
        assert resp.status_code == 404
