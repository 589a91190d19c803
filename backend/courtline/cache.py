"""Degrade-safe JSON cache over redis.

The cache is purely an optimization: every failure turns into a miss (reads)
or a no-op (writes), so results are the same with or without it.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from .degradable import DegradableDependency, FailurePolicy

log = logging.getLogger(__name__)

__all__ = ["Cache"]


class Cache:
    def __init__(self, dependency: DegradableDependency, *, default_ttl: int = 300) -> None:
        self.dep = dependency
        self.default_ttl = default_ttl

    @property
    def redis(self) -> Any:
        return self.dep.client

    async def is_available(self) -> bool:
        return await self.dep.is_available()

    async def get(self, key: str) -> Optional[Any]:
        async def op() -> Optional[Any]:
            data = await self.redis.get(key)
            if data is None:
                return None
            try:
                return json.loads(data)
            except ValueError:
                log.warning("cache: dropping undecodable value for %s", key[:50])
                return None

        return await self.dep.guard(op, fallback=None, policy=FailurePolicy.FAIL_MISS)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        payload = json.dumps(value, separators=(",", ":"), default=str)
        ttl = int(ttl_seconds or self.default_ttl)

        async def op() -> None:
            await self.redis.set(key, payload, ex=ttl)

        await self.dep.guard(op, fallback=None, policy=FailurePolicy.FAIL_MISS)

    async def delete(self, key: str) -> None:
        async def op() -> None:
            await self.redis.delete(key)

        await self.dep.guard(op, fallback=None, policy=FailurePolicy.FAIL_MISS)
