"""Unit tests for auth/store.py -- UserStore repository.

Covers:
- register() creates a hashed local account and rejects a taken username
  without touching the original credential
- find_or_create() is idempotent per (provider, subject) and keeps providers apart
- find_or_create() / register() survive losing a uniqueness race
- update_secret() overwrites and raises UserNotFound for unknown ids
- list_secrets() only returns non-NULL secrets, once per user
"""

import pytest
from conftest import count_users, memory_db_url

from auth.errors import UsernameTaken, UserNotFound, ValidationFailure
from auth.passwords import verify_password
from auth.store import UserStore


@pytest.fixture
def store():
    s = UserStore(memory_db_url(), bcrypt_rounds=4)
    yield s
    s.close()


class TestRegister:
    def test_register_hashes_password(self, store: UserStore) -> None:
        user = store.register("alice", "pw1")
        assert user.id is not None
        assert user.username == "alice"
        assert user.hashed_password != "pw1"
        assert verify_password("pw1", user.hashed_password)
        assert user.google_id is None and user.facebook_id is None
        assert user.secret is None
        assert user.created_at

    def test_register_twice_fails_and_keeps_original_credential(self, store: UserStore) -> None:
        original = store.register("alice", "pw1")
        with pytest.raises(UsernameTaken):
            store.register("alice", "different")
        assert isinstance(UsernameTaken("alice"), ValidationFailure)

        after = store.get_by_username("alice")
        assert after.hashed_password == original.hashed_password
        assert verify_password("pw1", after.hashed_password)
        assert count_users(store) == 1

    def test_register_race_reports_username_taken(self, store: UserStore, monkeypatch) -> None:
        """The UNIQUE constraint catches a concurrent insert that slipped past the lookup."""
        store.register("alice", "pw1")
        monkeypatch.setattr(store, "get_by_username", lambda username: None)
        with pytest.raises(UsernameTaken):
            store.register("alice", "pw2")

    def test_register_rejects_overlong_password(self, store: UserStore) -> None:
        with pytest.raises(ValidationFailure):
            store.register("alice", "x" * 73)
        assert count_users(store) == 0

    def test_salts_differ_between_users(self, store: UserStore) -> None:
        a = store.register("alice", "same-password")
        b = store.register("bob", "same-password")
        assert a.hashed_password != b.hashed_password


class TestFindOrCreate:
    def test_same_identity_returns_same_record(self, store: UserStore) -> None:
        first = store.find_or_create("google", "g-123")
        second = store.find_or_create("google", "g-123")
        assert first.id == second.id
        assert count_users(store) == 1

    def test_new_record_leaves_other_provider_null(self, store: UserStore) -> None:
        user = store.find_or_create("facebook", "fb-9")
        assert user.facebook_id == "fb-9"
        assert user.google_id is None
        assert user.username is None
        assert user.hashed_password is None

    def test_providers_do_not_collide(self, store: UserStore) -> None:
        google_user = store.find_or_create("google", "shared-subject")
        facebook_user = store.find_or_create("facebook", "shared-subject")
        assert google_user.id != facebook_user.id
        assert google_user.external_id("google") == "shared-subject"
        assert facebook_user.external_id("google") is None

    def test_lost_insert_race_returns_winner(self, store: UserStore, monkeypatch) -> None:
        winner = store.find_or_create("google", "g-race")
        real_lookup = store.get_by_external_id
        calls = []

        def racing_lookup(provider, subject):
            calls.append(subject)
            # First lookup misses, as if the winner had not committed yet.
            return None if len(calls) == 1 else real_lookup(provider, subject)

        monkeypatch.setattr(store, "get_by_external_id", racing_lookup)
        user = store.find_or_create("google", "g-race")
        assert user.id == winner.id
        assert len(calls) == 2
        assert count_users(store) == 1

    def test_unknown_provider_rejected(self, store: UserStore) -> None:
        with pytest.raises(ValueError):
            store.find_or_create("myspace", "tom")


class TestSecrets:
    def test_update_secret_overwrites(self, store: UserStore) -> None:
        user = store.register("alice", "pw1")
        store.update_secret(user.id, "first")
        store.update_secret(user.id, "second")
        assert store.get_by_id(user.id).secret == "second"
        assert store.list_secrets() == ["second"]

    def test_update_secret_unknown_user(self, store: UserStore) -> None:
        with pytest.raises(UserNotFound):
            store.update_secret(424242, "nobody")

    def test_users_without_secret_are_not_listed(self, store: UserStore) -> None:
        alice = store.register("alice", "pw1")
        store.register("bob", "pw2")
        oauth_user = store.find_or_create("google", "g-1")
        assert store.list_secrets() == []

        store.update_secret(oauth_user.id, "from google")
        store.update_secret(alice.id, "from alice")
        assert store.list_secrets() == ["from alice", "from google"]

    def test_get_by_id_missing(self, store: UserStore) -> None:
        assert store.get_by_id(999) is None

    def test_ping(self, store: UserStore) -> None:
        assert store.ping() is True
