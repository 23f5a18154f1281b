from conftest import FakeClock

from momo_payments.providers.token_cache import TokenCache


def test_token_served_until_buffer_before_expiry():
    clock = FakeClock()
    cache = TokenCache(buffer_seconds=300, clock=clock)
    cache.store("tok", 3600)

    clock.advance(3600 - 301)
    assert cache.get() == "tok"

    clock.advance(1)
    assert cache.get() is None


def test_buffer_capped_at_half_lifetime():
    clock = FakeClock()
    cache = TokenCache(buffer_seconds=300, clock=clock)
    cache.store("short", 120)

    clock.advance(59)
    assert cache.get() == "short"
    clock.advance(1)
    assert cache.get() is None


def test_empty_and_cleared_cache():
    cache = TokenCache()
    assert cache.get() is None

    cache.store("tok", 3600)
    cache.clear()
    assert cache.get() is None
