"""Unit tests for ExpiringCache."""

import pytest

from chat.expiring_cache import ExpiringCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def test_get_missing_returns_default(clock):
    cache = ExpiringCache(default_ttl=10, clock=clock)
    assert cache.get("nope") is None
    assert cache.get("nope", ()) == ()
    assert "nope" not in cache


def test_entry_expires_after_ttl(clock):
    cache = ExpiringCache(default_ttl=10, clock=clock)
    cache.set("k", "v")
    clock.advance(9.9)
    assert cache.get("k") == "v"
    clock.advance(0.1)
    assert cache.get("k") is None


def test_per_key_ttl_override(clock):
    cache = ExpiringCache(default_ttl=10, clock=clock)
    cache.set("short", 1, ttl=2)
    cache.set("long", 2)
    clock.advance(5)
    assert "short" not in cache
    assert cache.get("long") == 2


def test_update_resets_ttl(clock):
    cache = ExpiringCache(default_ttl=10, clock=clock)
    cache.set("k", 1)
    clock.advance(8)
    assert cache.update("k", lambda v: v + 1) == 2
    clock.advance(8)
    assert cache.get("k") == 2


def test_update_uses_default_for_missing_key(clock):
    cache = ExpiringCache(default_ttl=10, clock=clock)
    assert cache.update("k", lambda v: v + [1], default=[]) == [1]


def test_delete_is_idempotent(clock):
    cache = ExpiringCache(default_ttl=10, clock=clock)
    cache.set("k", 1)
    cache.delete("k")
    cache.delete("k")
    assert cache.get("k") is None


def test_sweep_removes_expired_entries(clock):
    cache = ExpiringCache(default_ttl=10, clock=clock, sweep_interval=5)
    cache.set("a", 1)
    cache.set("b", 2, ttl=100)
    clock.advance(20)
    assert cache.sweep() == 1
    assert len(cache) == 1


def test_rejects_non_positive_ttl():
    with pytest.raises(ValueError):
        ExpiringCache(default_ttl=0)


@pytest.mark.parametrize("ttl", [0, -1])
def test_set_rejects_explicit_non_positive_ttl(clock, ttl):
    cache = ExpiringCache(default_ttl=10, clock=clock)
    with pytest.raises(ValueError):
        cache.set("a", 1, ttl=ttl)
    with pytest.raises(ValueError):
        cache.update("a", lambda current: 1, ttl=ttl)
    assert "a" not in cache
