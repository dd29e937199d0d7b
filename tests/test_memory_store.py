"""Tests for the in-process credential store and cache."""

from datetime import timedelta

import pytest

from identity_service.storage.errors import ConstraintViolation
from identity_service.storage.memory import MemoryCache, MemoryStore
from identity_service.storage.models import RefreshToken, utcnow


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def alice(store):
    return store.create_user("alice", "alice@x.com", "hash-a")


class TestUsers:
    def test_lookups(self, store, alice):
        assert store.find_user_by_id(alice.id).username == "alice"
        assert store.find_user_by_email("alice@x.com").id == alice.id
        assert store.find_user_by_email_or_username("other@x.com", "alice").id == alice.id
        assert store.find_user_by_email_or_username("other@x.com", "bob") is None
        assert store.find_user_by_id("missing") is None

    def test_unique_email_and_username(self, store, alice):
        with pytest.raises(ConstraintViolation) as by_email:
            store.create_user("bob", "alice@x.com", "h")
        assert by_email.value.field == "email"
        with pytest.raises(ConstraintViolation) as by_name:
            store.create_user("alice", "bob@x.com", "h")
        assert by_name.value.field == "username"
        assert by_name.value.detail == {"field": "username"}

    def test_returned_records_are_copies(self, store, alice):
        alice.password_hash = "tampered"
        assert store.find_user_by_id(alice.id).password_hash == "hash-a"


class TestRefreshTokens:
    def test_create_and_find(self, store, alice):
        token = store.create_refresh_token(RefreshToken.new("h1", alice.id, timedelta(days=7)))
        assert store.find_refresh_token_by_hash("h1").id == token.id
        assert store.find_refresh_token_by_hash("nope") is None

    def test_hash_is_unique(self, store, alice):
        store.create_refresh_token(RefreshToken.new("h1", alice.id, timedelta(days=7)))
        with pytest.raises(ConstraintViolation):
            store.create_refresh_token(RefreshToken.new("h1", alice.id, timedelta(days=7)))

    def test_owner_must_exist(self, store):
        with pytest.raises(ConstraintViolation) as exc_info:
            store.create_refresh_token(RefreshToken.new("h1", "ghost", timedelta(days=7)))
        assert exc_info.value.field == "user_id"

    def test_update_compare_and_swap(self, store, alice):
        token = store.create_refresh_token(RefreshToken.new("h1", alice.id, timedelta(days=7)))
        new_expiry = utcnow() + timedelta(days=7)

        assert store.update_refresh_token(token.id, "h2", new_expiry, expected_hash="h1")
        assert not store.update_refresh_token(token.id, "h3", new_expiry, expected_hash="h1")
        assert store.find_refresh_token_by_hash("h1") is None
        assert store.find_refresh_token_by_hash("h2").expires_at == new_expiry
        assert not store.update_refresh_token("missing", "h4", new_expiry)

    def test_update_rejects_duplicate_hash(self, store, alice):
        first = store.create_refresh_token(RefreshToken.new("h1", alice.id, timedelta(days=7)))
        store.create_refresh_token(RefreshToken.new("h2", alice.id, timedelta(days=7)))
        with pytest.raises(ConstraintViolation):
            store.update_refresh_token(first.id, "h2", utcnow())

    def test_deletes(self, store, alice):
        a = store.create_refresh_token(RefreshToken.new("h1", alice.id, timedelta(days=7)))
        store.create_refresh_token(RefreshToken.new("h2", alice.id, timedelta(days=7)))

        assert store.delete_refresh_token_by_id(a.id) is True
        assert store.delete_refresh_token_by_id(a.id) is False
        deleted = store.delete_refresh_token_by_hash("h2")
        assert deleted.token_hash == "h2"
        assert store.delete_refresh_token_by_hash("h2") is None

    def test_purge_expired(self, store, alice):
        store.create_refresh_token(RefreshToken.new("old", alice.id, timedelta(seconds=-1)))
        store.create_refresh_token(RefreshToken.new("new", alice.id, timedelta(days=1)))
        assert store.purge_expired_refresh_tokens() == 1
        assert store.find_refresh_token_by_hash("old") is None
        assert store.find_refresh_token_by_hash("new") is not None


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestMemoryCache:
    async def test_get_set_delete(self):
        cache = MemoryCache()
        assert await cache.get("k") is None
        await cache.set("k", "v", 60)
        assert await cache.get("k") == "v"
        await cache.delete("k")
        assert await cache.get("k") is None

    async def test_entries_expire(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        await cache.set("k", "v", 10)
        clock.now += 9
        assert await cache.get("k") == "v"
        clock.now += 1
        assert await cache.get("k") is None

    async def test_ttl_is_at_least_one_second(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        await cache.set("k", "v", 0)
        assert await cache.get("k") == "v"

    async def test_close_clears(self):
        cache = MemoryCache()
        await cache.set("k", "v", 60)
        await cache.close()
        assert await cache.get("k") is None
