from identity_service.service.session_cache import SessionCache
from identity_service.storage.models import User


def _user():
    return User(id="u1", username="alice", email="alice@x.com", password_hash="h")


async def test_remember_user_writes_both_keys(memory_cache):
    cache = SessionCache(memory_cache, 86400)
    assert await cache.remember_user(_user()) is True
    assert await cache.lookup_user_id("alice@x.com") == "u1"
    assert await cache.get_snapshot("u1") == {
        "userId": "u1",
        "username": "alice",
        "email": "alice@x.com",
    }


async def test_corrupt_snapshot_is_a_miss(memory_cache):
    await memory_cache.set("user:u1", "{not json", 60)
    assert await SessionCache(memory_cache, 60).get_snapshot("u1") is None


async def test_failures_are_swallowed(failing_cache):
    cache = SessionCache(failing_cache, 60)
    assert await cache.remember_user(_user()) is False
    assert await cache.lookup_user_id("alice@x.com") is None
    assert await cache.is_blacklisted("token") is False
    assert await cache.blacklist("token", 60) is False


async def test_absent_backend_behaves_like_empty_cache():
    cache = SessionCache(None, 60)
    assert not cache.enabled
    assert await cache.get_snapshot("u1") is None
    assert await cache.blacklist("token", 60) is False


async def test_blacklist_round_trip(memory_cache):
    cache = SessionCache(memory_cache, 60)
    assert await cache.is_blacklisted("token") is False
    assert await cache.blacklist("token", 30) is True
    assert await cache.is_blacklisted("token") is True
    assert memory_cache.writes[-1] == ("bl:token", "blacklisted", 30)
