from __future__ import annotations

import asyncio

from courtline.degradable import DegradableDependency
from courtline.rate_limit import RateLimiter


def _limiter(redis, clock, limit=5) -> RateLimiter:
    dep = DegradableDependency("rate-limiter", redis, interval=5.0, clock=clock)
    return RateLimiter(dep, limit=limit, window=60, clock=clock)


def _checks(limiter, n, provider="openai"):
    async def go():
        return [await limiter.check(provider) for _ in range(n)]

    return asyncio.run(go())


def test_rate_limit_enforces_limit(fake_redis, clock) -> None:
    clock.now = 1_700_000_010.0
    limiter = _limiter(fake_redis, clock, limit=5)

    results = _checks(limiter, 6)

    assert all(r.allowed for r in results[:5])
    assert [r.remaining for r in results[:5]] == [4, 3, 2, 1, 0]
    sixth = results[5]
    assert not sixth.allowed
    assert sixth.remaining == 0
    assert 0 < sixth.retry_after <= 60
    assert sixth.retry_after == sixth.reset_at - int(clock.now)


def test_rate_limit_resets_next_window(fake_redis, clock) -> None:
    limiter = _limiter(fake_redis, clock, limit=2)
    assert [r.allowed for r in _checks(limiter, 3)] == [True, True, False]

    clock.advance(60)
    assert _checks(limiter, 1)[0].allowed


def test_counter_key_and_expiry(fake_redis, clock) -> None:
    clock.now = 1_700_000_025.0
    _checks(_limiter(fake_redis, clock), 1)
    window_start = (1_700_000_025 // 60) * 60
    key = f"ratelimit:openai:{window_start}"
    assert fake_redis.store[key] == "1"
    assert fake_redis.ttl[key] == 120


def test_providers_are_independent(fake_redis, clock) -> None:
    limiter = _limiter(fake_redis, clock, limit=1)
    assert _checks(limiter, 1, "openai")[0].allowed
    assert _checks(limiter, 1, "other")[0].allowed
    assert not _checks(limiter, 1, "openai")[0].allowed


def test_fails_open_when_store_down(fake_redis, clock) -> None:
    fake_redis.down = True
    limiter = _limiter(fake_redis, clock, limit=1)
    results = _checks(limiter, 3)
    assert all(r.allowed for r in results)
    assert all(r.store_available is False for r in results)


def test_fails_open_when_not_configured(clock) -> None:
    r = _checks(_limiter(None, clock, limit=1), 2)
    assert all(x.allowed for x in r)


def test_reset_deletes_provider_counters(fake_redis, clock) -> None:
    limiter = _limiter(fake_redis, clock, limit=1)
    _checks(limiter, 1, "openai")
    clock.advance(60)
    _checks(limiter, 1, "openai")
    _checks(limiter, 1, "other")

    removed = asyncio.run(limiter.reset("openai"))

    assert removed == 2
    assert [k for k in fake_redis.store if k.startswith("ratelimit:")] == [
        k for k in fake_redis.store if k.startswith("ratelimit:other:")
    ]
    assert _checks(limiter, 1, "openai")[0].allowed


def test_concurrent_checks_never_exceed_limit(fake_redis, clock) -> None:
    limiter = _limiter(fake_redis, clock, limit=5)

    async def go():
        return await asyncio.gather(*(limiter.check("openai") for _ in range(8)))

    results = asyncio.run(go())
    assert sum(r.allowed for r in results) == 5
    assert sorted(r.remaining for r in results if r.allowed) == [0, 1, 2, 3, 4]
