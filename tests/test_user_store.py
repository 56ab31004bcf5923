"""
tests/test_user_store.py -- Unit tests for the UserStore repository.
"""

from __future__ import annotations

import pytest

from auth.models import User
from auth.store import UserStore
from core.errors import AppError, ErrorKind


def _user(email: str = "a@example.com", **kwargs) -> User:
    return User(email=email, name=kwargs.pop("name", "A"), **kwargs)


class TestUserStore:
    def test_create_assigns_id_and_timestamps(self, user_store: UserStore) -> None:
        created = user_store.create_user(_user(password_hash="hash"))
        assert created.id
        assert created.created_at and created.created_at == created.updated_at

    def test_lookup_by_id_and_email(self, user_store: UserStore) -> None:
        created = user_store.create_user(_user())
        assert user_store.get_by_id(created.id).email == "a@example.com"
        assert user_store.get_by_email("a@example.com").id == created.id

    def test_not_found_is_distinguishable(self, user_store: UserStore) -> None:
        with pytest.raises(AppError) as by_id:
            user_store.get_by_id("missing")
        with pytest.raises(AppError) as by_email:
            user_store.get_by_email("missing@example.com")
        assert by_id.value.kind is by_email.value.kind is ErrorKind.USER_NOT_FOUND

    def test_email_unique_constraint(self, user_store: UserStore) -> None:
        user_store.create_user(_user())
        with pytest.raises(AppError) as excinfo:
            user_store.create_user(_user(name="Other"))
        assert excinfo.value.kind is ErrorKind.EMAIL_ALREADY_EXISTS

    def test_update_user(self, user_store: UserStore) -> None:
        created = user_store.create_user(_user())
        updated = user_store.update_user(created.id, name="Renamed")
        assert updated.name == "Renamed"
        assert updated.email == created.email

    def test_update_rejects_unknown_fields(self, user_store: UserStore) -> None:
        created = user_store.create_user(_user())
        with pytest.raises(ValueError):
            user_store.update_user(created.id, email="b@example.com")

    def test_update_missing_user(self, user_store: UserStore) -> None:
        with pytest.raises(AppError) as excinfo:
            user_store.update_user("missing", name="X")
        assert excinfo.value.kind is ErrorKind.USER_NOT_FOUND

    def test_link_oauth_first_link_wins(self, user_store: UserStore) -> None:
        created = user_store.create_user(_user(password_hash="hash"))
        linked = user_store.link_oauth(created.id, "google", "g-1")
        assert (linked.oauth_provider, linked.oauth_subject) == ("google", "g-1")

        again = user_store.link_oauth(created.id, "github", "gh-2")
        assert (again.oauth_provider, again.oauth_subject) == ("google", "g-1")
        assert again.password_hash == "hash"

    def test_ping(self, user_store: UserStore) -> None:
        assert user_store.ping() is True
