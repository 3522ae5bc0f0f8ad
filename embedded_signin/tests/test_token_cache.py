"""Tests for the in-memory token cache: TTL expiry, session-scoped flush, sweeping, concurrency."""
import threading
import time

import pytest

from embedded_signin.token_cache import TokenCache, cache_key


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return TokenCache(default_ttl=3600, sweep_interval=300, clock=clock)


def test_cache_key_shape():
    assert cache_key("abc", "id_token") == "abc-id_token"


def test_get_before_ttl_returns_value(cache, clock):
    cache.put("s1-id_token", "tok", ttl=3600)
    clock.advance(3599)
    assert cache.get("s1-id_token") == "tok"


def test_entry_past_ttl_is_absent(cache, clock):
    """Stored with 1 hour TTL, queried at 1 hour + 1 second."""
    cache.put("s1-id_token", "tok", ttl=3600)
    clock.advance(3601)
    assert cache.get("s1-id_token") is None
    assert len(cache) == 0


def test_default_ttl_applies(cache, clock):
    cache.put("k", "v")
    clock.advance(3600)
    assert cache.get("k") is None


def test_missing_key(cache):
    assert cache.get("nope") is None


def test_flush_session_only_removes_that_session(cache):
    cache.put(cache_key("a", "id_token"), "a-id")
    cache.put(cache_key("a", "access_token"), "a-at")
    cache.put(cache_key("b", "id_token"), "b-id")
    cache.put(cache_key("ab", "id_token"), "ab-id")

    assert cache.flush_session("a") == 2
    assert cache.get(cache_key("a", "id_token")) is None
    assert cache.get(cache_key("b", "id_token")) == "b-id"
    assert cache.get(cache_key("ab", "id_token")) == "ab-id"


def test_flush_removes_everything(cache):
    cache.put("a-id_token", "1")
    cache.put("b-id_token", "2")
    cache.flush()
    assert len(cache) == 0


def test_sweep_evicts_only_expired(cache, clock):
    cache.put("short", "1", ttl=60)
    cache.put("long", "2", ttl=3600)
    clock.advance(61)
    assert cache.sweep() == 1
    assert len(cache) == 1
    assert cache.get("long") == "2"


def test_background_sweeper_runs_and_stops():
    clock = FakeClock()
    cache = TokenCache(default_ttl=10, sweep_interval=0.01, clock=clock)
    cache.put("k", "v")
    clock.advance(11)
    cache.start()
    try:
        deadline = time.monotonic() + 2
        while len(cache) and time.monotonic() < deadline:
            time.sleep(0.01)
        assert len(cache) == 0
    finally:
        cache.stop()


def test_concurrent_puts_and_gets():
    cache = TokenCache()

    def worker(n):
        for i in range(200):
            cache.put(cache_key(f"s{n}", str(i)), "v")
            cache.get(cache_key(f"s{n}", str(i)))
        cache.flush_session(f"s{n}")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(cache) == 0
