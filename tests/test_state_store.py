"""
Tests for the shared state store adapters.

Both adapters must behave the same: TTL expiry, overwrite semantics,
prefix listing and deletes.
"""

import pytest

from opportunity_engine.core.state_store import InMemoryStateStore, SqlStateStore


class Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture(params=["memory", "sql"])
def store_and_clock(request, test_engine):
    clock = Clock()
    if request.param == "memory":
        return InMemoryStateStore(timer=clock), clock
    return SqlStateStore(test_engine, clock=clock), clock


class TestSharedStateStore:
    def test_get_missing_returns_none(self, store_and_clock):
        store, _ = store_and_clock
        assert store.get("missing") is None

    def test_set_then_get(self, store_and_clock):
        store, _ = store_and_clock
        store.set_with_ttl("circuit-breaker:a", b'{"state": "OPEN"}', 60)
        assert store.get("circuit-breaker:a") == b'{"state": "OPEN"}'

    def test_last_writer_wins(self, store_and_clock):
        store, _ = store_and_clock
        store.set_with_ttl("k", b"one", 60)
        store.set_with_ttl("k", b"two", 60)
        assert store.get("k") == b"two"

    def test_entry_expires_after_ttl(self, store_and_clock):
        store, clock = store_and_clock
        store.set_with_ttl("k", b"v", 10)

        clock.now += 9
        assert store.get("k") == b"v"

        clock.now += 2
        assert store.get("k") is None

    def test_overwrite_refreshes_ttl(self, store_and_clock):
        store, clock = store_and_clock
        store.set_with_ttl("k", b"v", 10)
        clock.now += 8
        store.set_with_ttl("k", b"v2", 10)
        clock.now += 8
        assert store.get("k") == b"v2"

    def test_delete(self, store_and_clock):
        store, _ = store_and_clock
        store.set_with_ttl("k", b"v", 60)
        store.delete("k")
        store.delete("never-set")
        assert store.get("k") is None

    def test_list_keys_by_prefix(self, store_and_clock):
        store, clock = store_and_clock
        store.set_with_ttl("circuit-breaker:b", b"1", 60)
        store.set_with_ttl("circuit-breaker:a", b"1", 60)
        store.set_with_ttl("circuit-breaker:short", b"1", 5)
        store.set_with_ttl("other:c", b"1", 60)

        clock.now += 6
        assert store.list_keys_by_prefix("circuit-breaker:") == ["circuit-breaker:a", "circuit-breaker:b"]


class TestSqlStateStore:
    def test_purge_expired(self, test_engine):
        clock = Clock()
        store = SqlStateStore(test_engine, clock=clock)
        store.set_with_ttl("a", b"1", 5)
        store.set_with_ttl("b", b"1", 50)

        clock.now += 10
        assert store.purge_expired() == 1
        assert store.get("b") == b"1"

    def test_shared_between_instances(self, test_engine):
        clock = Clock()
        SqlStateStore(test_engine, clock=clock).set_with_ttl("k", b"v", 60)
        assert SqlStateStore(test_engine, clock=clock).get("k") == b"v"
