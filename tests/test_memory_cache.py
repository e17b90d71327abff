"""Tests for the in-memory TTL store and the in-memory user directory."""

import pytest

from tokengate.storage.errors import ConstraintViolation
from tokengate.storage.memory import MemoryCache, MemoryUserStore
from tokengate.storage.models import UserRole


@pytest.fixture
def cache(clock):
    return MemoryCache(clock=clock)


class TestMemoryCache:
    async def test_value_readable_until_ttl(self, cache, clock):
        await cache.set("RT:alice@example.com", "token-1", 10)

        clock.advance(9.5)
        assert await cache.get("RT:alice@example.com") == "token-1"
        assert await cache.exists("RT:alice@example.com")

        clock.advance(0.5)
        assert await cache.get("RT:alice@example.com") is None
        assert not await cache.exists("RT:alice@example.com")

    async def test_set_overwrites_value_and_ttl(self, cache, clock):
        await cache.set("k", "old", 5)
        await cache.set("k", "new", 20)
        clock.advance(10)

        assert await cache.get("k") == "new"

    async def test_delete_is_idempotent(self, cache):
        await cache.set("k", "v", 5)
        await cache.delete("k")
        await cache.delete("k")

        assert await cache.get("k") is None

    async def test_ttl_reports_remaining_seconds(self, cache, clock):
        await cache.set("k", "v", 30)
        clock.advance(12)

        assert await cache.ttl("k") == pytest.approx(18)
        assert await cache.ttl("missing") is None

    async def test_non_positive_ttl_rejected(self, cache):
        with pytest.raises(ValueError):
            await cache.set("k", "v", 0)

    async def test_purge_expired_drops_only_stale_entries(self, cache, clock):
        await cache.set("short", "v", 1)
        await cache.set("long", "v", 100)
        clock.advance(2)

        assert cache.purge_expired() == 1
        assert await cache.get("long") == "v"


class TestMemoryUserStore:
    def test_create_and_lookup(self):
        store = MemoryUserStore()
        user = store.create_user("alice@example.com", "hash", "Alice")

        assert user.id == 1
        assert user.role is UserRole.USER
        assert store.get_user_by_email("alice@example.com") is user
        assert store.get_user(user.id) is user
        assert user.audit.created_at == user.audit.updated_at

    def test_duplicate_email_rejected(self):
        store = MemoryUserStore()
        store.create_user("alice@example.com", "hash", "Alice")

        with pytest.raises(ConstraintViolation):
            store.create_user("alice@example.com", "hash2", "Alice Again")

    def test_role_update_touches_audit_stamp(self):
        store = MemoryUserStore()
        user = store.create_user("alice@example.com", "hash", "Alice")
        created = user.audit.created_at

        updated = store.update_user_role(user.id, UserRole.ADMIN)

        assert updated.role is UserRole.ADMIN
        assert updated.audit.created_at == created
        assert updated.audit.updated_at >= created
        assert store.update_user_role(999, UserRole.ADMIN) is None
