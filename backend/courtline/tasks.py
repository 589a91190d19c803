# backend/courtline/tasks.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, TypeVar

from .celery_app import celery
from .schemas import League
from .services import Services, build_services

log = logging.getLogger(__name__)

T = TypeVar("T")

# Swapped out in tests; builds and closes one service container per task run.
_services_factory: Callable[[], Awaitable[Services]] = build_services


def _run(fn: Callable[[Services], Awaitable[T]]) -> T:
    async def _main() -> T:
        svc = await _services_factory()
        try:
            return await fn(svc)
        finally:
            await svc.aclose()

    return asyncio.run(_main())


# -------------------------------------------------------------------
# Minimal heartbeat so you can verify the worker is alive
# -------------------------------------------------------------------
@celery.task(name="courtline.tasks.heartbeat")
def heartbeat() -> Dict[str, Any]:
    return {"ok": True}


@celery.task(name="snapshots.refresh")
def refresh_snapshot(league: str = "ALL") -> Dict[str, Any]:
    """
    Re-aggregate one league bypassing the cache. The live path saves the
    snapshot itself, so an unchanged list costs no write.
    """
    lg = League(league.upper())

    async def _go(svc: Services) -> Dict[str, Any]:
        page = await svc.markets.list_games(lg, page=1, page_size=1, use_cache=False)
        return {"league": lg.value, "total": page.total, "fallback": page.fallback}

    out = _run(_go)
    log.info("snapshots.refresh league=%s total=%s fallback=%s", out["league"], out["total"], out["fallback"])
    return out


@celery.task(name="ratelimit.reset")
def reset_rate_limit(provider: str = "openai") -> Dict[str, Any]:
    async def _go(svc: Services) -> Dict[str, Any]:
        removed = await svc.limiter.reset(provider)
        return {"provider": provider, "removed": removed}

    return _run(_go)
