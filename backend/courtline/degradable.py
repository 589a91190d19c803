"""Availability tracking for optional external stores.

Both the cache and the rate limiter sit on a key-value store that may be
missing or down. :class:`DegradableDependency` owns the shared part:

* an active probe (``PING``) whose verdict is cached for ``interval`` seconds,
  so a dead store costs one probe per interval instead of one per call;
* ``mark_unavailable`` for operational failures, which pins the "down"
  verdict until the interval elapses;
* ``guard``, which runs an operation and returns a caller-chosen fallback on
  any failure. The policy only labels the outcome: ``FAIL_MISS`` for reads
  that turn into misses, ``FAIL_OPEN`` for checks that let traffic through.

Failures are logged at most once per interval. A ``None`` client is the
"not configured" mode: never probed, always unavailable.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = ["DegradableDependency", "FailurePolicy"]


class FailurePolicy(str, Enum):
    FAIL_MISS = "fail-miss"
    FAIL_OPEN = "fail-open"


class DegradableDependency:
    def __init__(
        self,
        name: str,
        client: Any,
        *,
        interval: float,
        probe: Optional[Callable[[], Awaitable[Any]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.client = client
        self.interval = float(interval)
        self._probe = probe or (client.ping if client is not None else None)
        self._clock = clock
        self._verdict: Optional[bool] = None
        self._checked_at = 0.0
        self._last_logged_at: Optional[float] = None
        if client is None:
            log.info("%s: store not configured; running without it", name)

    @property
    def configured(self) -> bool:
        return self.client is not None

    def _expired(self, now: float) -> bool:
        return self._verdict is None or now - self._checked_at >= self.interval

    def _log_once(self, level: int, msg: str, *args: Any) -> None:
        now = self._clock()
        if self._last_logged_at is not None and now - self._last_logged_at < self.interval:
            return
        self._last_logged_at = now
        log.log(level, msg, *args)

    async def is_available(self) -> bool:
        if self.client is None:
            return False
        now = self._clock()
        if not self._expired(now):
            return bool(self._verdict)
        try:
            await self._probe()
            ok = True
        except Exception as e:  # any transport error means "down"
            ok = False
            self._log_once(logging.WARNING, "%s: probe failed, disabling for %.0fs: %s", self.name, self.interval, e)
        self._verdict = ok
        self._checked_at = now
        return ok

    def mark_unavailable(self, exc: Optional[BaseException] = None) -> None:
        self._verdict = False
        self._checked_at = self._clock()
        self._log_once(logging.WARNING, "%s: operation failed, disabling for %.0fs: %s", self.name, self.interval, exc)

    async def guard(
        self,
        op: Callable[[], Awaitable[T]],
        *,
        fallback: T,
        policy: FailurePolicy = FailurePolicy.FAIL_MISS,
    ) -> T:
        if not await self.is_available():
            return fallback
        try:
            return await op()
        except Exception as e:  # store errors never reach callers
            log.debug("%s: %s after error: %s", self.name, policy.value, e)
            self.mark_unavailable(e)
            return fallback
