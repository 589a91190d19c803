"""Process-level wiring: build every client and service once, close them on shutdown."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from exchanges.polymarket import PolymarketExchange

from .aggregation import MarketAggregationService
from .analysis import AnalysisOrchestrator
from .cache import Cache
from .dao import SnapshotRepository
from .db import make_http, make_redis, make_supabase
from .degradable import DegradableDependency
from .llm import LLMClient
from .rate_limit import RateLimiter
from .settings import Settings, get_settings
from .snapshots import SnapshotService

log = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    markets: MarketAggregationService
    analysis: AnalysisOrchestrator
    cache: Cache
    limiter: RateLimiter
    snapshots: SnapshotService
    http: Optional[httpx.AsyncClient] = None
    redis: Any = None
    extra_closers: list = field(default_factory=list)

    async def aclose(self) -> None:
        if self.http is not None:
            await self.http.aclose()
        if self.redis is not None:
            await self.redis.aclose()
        for close in self.extra_closers:
            await close()


async def build_services(settings: Optional[Settings] = None) -> Services:
    s = settings or get_settings()

    http = make_http(s)
    redis = make_redis(s)
    supabase = await make_supabase(s)

    cache = Cache(
        DegradableDependency("cache", redis, interval=s.cache_probe_interval_s),
        default_ttl=s.games_cache_ttl_s,
    )
    limiter = RateLimiter(
        DegradableDependency("rate-limiter", redis, interval=s.rate_limit_probe_interval_s),
        limit=s.openai_rpm,
    )
    snapshots = SnapshotService(SnapshotRepository(supabase) if supabase is not None else None)

    exchange = PolymarketExchange(http, base_url=s.gamma_api_base)
    markets = MarketAggregationService(
        exchange,
        cache,
        snapshots,
        page_limit=s.upstream_page_limit,
        games_cache_ttl=s.games_cache_ttl_s,
    )

    llm = LLMClient(
        s.openai_api_key,
        s.openai_model,
        max_attempts=s.llm_max_attempts,
        base_delay=s.llm_base_delay_s,
        max_delay=s.llm_max_delay_s,
    )
    analysis = AnalysisOrchestrator(llm, cache, limiter, cache_ttl=s.analysis_cache_ttl_s)

    log.info(
        "services ready env=%s redis=%s snapshots=%s llm=%s",
        s.environment, bool(redis), snapshots.configured, llm.configured,
    )
    return Services(
        settings=s,
        markets=markets,
        analysis=analysis,
        cache=cache,
        limiter=limiter,
        snapshots=snapshots,
        http=http,
        redis=redis,
        extra_closers=[llm.aclose],
    )
