"""Redis backed fixed-window rate limiter.

Each provider gets one counter per 60 second window, stored under
``ratelimit:{provider}:{window_start}``. A check increments the counter and
refreshes a ``2 * window`` expiry in a single pipeline, then rejects when the
count that ``INCR`` returned exceeds ``limit``. Concurrent callers each see a
distinct count, so at most ``limit`` requests pass per window, and old windows
clean themselves up.

When the store is unavailable the limiter fails open: availability of the
guarded feature wins over precise local enforcement, and the provider's own
limits are the backstop.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from .degradable import DegradableDependency, FailurePolicy
from .types import RateLimitResult

log = logging.getLogger(__name__)

__all__ = ["RateLimiter", "KEY_PREFIX"]

KEY_PREFIX = "ratelimit"


class RateLimiter:
    def __init__(
        self,
        dependency: DegradableDependency,
        *,
        limit: int,
        window: int = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.dep = dependency
        self.limit = int(limit)
        self.window = int(window)
        self._clock = clock

    def _key(self, provider: str, window_start: int) -> str:
        return f"{KEY_PREFIX}:{provider}:{window_start}"

    def _open(self, provider: str, reset_at: int) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            remaining=self.limit,
            reset_at=reset_at,
            provider=provider,
            store_available=False,
        )

    async def check(self, provider: str) -> RateLimitResult:
        """Count one request for ``provider`` in the current window.

        Parameters
        ----------
        provider:
            Namespace of the counter, e.g. ``"openai"``.

        Returns
        -------
        RateLimitResult
            ``allowed=False`` with ``retry_after`` seconds once ``limit``
            requests were counted in this window.
        """

        now = int(self._clock())
        window_start = (now // self.window) * self.window
        reset_at = window_start + self.window
        key = self._key(provider, window_start)
        redis = self.dep.client

        async def op() -> RateLimitResult:
            async with redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, self.window * 2)
                count, _ = await pipe.execute()
            count = int(count)

            if count > self.limit:
                retry_after = max(1, reset_at - now)
                log.warning(
                    "rate limit exceeded provider=%s count=%s limit=%s retry_after=%ss",
                    provider, count, self.limit, retry_after,
                )
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=reset_at,
                    provider=provider,
                    retry_after=retry_after,
                )

            return RateLimitResult(
                allowed=True,
                remaining=self.limit - count,
                reset_at=reset_at,
                provider=provider,
            )

        return await self.dep.guard(
            op,
            fallback=self._open(provider, reset_at),
            policy=FailurePolicy.FAIL_OPEN,
        )

    async def reset(self, provider: str) -> int:
        """Delete every counter of ``provider``; returns the number removed."""

        redis = self.dep.client

        async def op() -> int:
            keys = [k async for k in redis.scan_iter(match=f"{KEY_PREFIX}:{provider}:*")]
            if not keys:
                return 0
            return int(await redis.delete(*keys))

        removed = await self.dep.guard(op, fallback=0, policy=FailurePolicy.FAIL_OPEN)
        log.info("rate limit counters reset provider=%s removed=%s", provider, removed)
        return removed
