from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from courtline.aggregation import MarketAggregationService
from courtline.analysis import AnalysisOrchestrator
from courtline.cache import Cache
from courtline.dao import SnapshotRepository
from courtline.degradable import DegradableDependency
from courtline.llm import LLMRateLimitedError
from courtline.main import create_app
from courtline.rate_limit import RateLimiter
from courtline.services import Services
from courtline.settings import Settings
from courtline.snapshots import SnapshotService

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


class FakeLLM:
    provider = "OpenAI"
    model = "gpt-4o"

    def __init__(self, *outcomes, configured=True) -> None:
        self.configured = configured
        self.outcomes = list(outcomes)

    async def complete(self, system, prompt, **kw):
        out = self.outcomes.pop(0)
        if isinstance(out, BaseException):
            raise out
        return out


@pytest.fixture
def build(fake_exchange, fake_redis, fake_supabase, clock, make_event, make_market):
    fake_exchange.events_by_topic[745] = [
        make_event("g1", title="Lakers vs Celtics", start_time=T0 + timedelta(hours=1), markets=[
            make_market("ml", slug="lal-bos-moneyline", outcomes=["Lakers", "Celtics"], outcome_prices=[0.6, 0.4]),
        ]),
        make_event("g2", title="Knicks @ Bulls", start_time=T0 + timedelta(hours=2)),
        make_event("lp", title="NBA Champion 2026", markets=[make_market("c", group_item_title="Celtics", outcome_prices=[0.3, 0.7])]),
    ]
    fake_exchange.events["g1"] = fake_exchange.events_by_topic[745][0]

    def _build(llm=None, limit=60):
        cache = Cache(DegradableDependency("cache", fake_redis, interval=30.0, clock=clock))
        limiter = RateLimiter(DegradableDependency("rl", fake_redis, interval=5.0, clock=clock), limit=limit, clock=clock)
        snaps = SnapshotService(SnapshotRepository(fake_supabase))
        markets = MarketAggregationService(fake_exchange, cache, snaps)
        analysis = AnalysisOrchestrator(llm or FakeLLM(), cache, limiter)
        svc = Services(
            settings=Settings(), markets=markets, analysis=analysis,
            cache=cache, limiter=limiter, snapshots=snaps,
        )
        return TestClient(create_app(svc))

    return _build


def test_health(build):
    body = build().get("/health").json()
    assert body["status"] == "ok"
    assert body["cache_available"] is True
    assert body["snapshots_configured"] is True


def test_games_route(build):
    res = build().get("/api/v1/games", params={"league": "NBA", "page": 1, "pageSize": 1})
    assert res.status_code == 200
    body = res.json()
    assert body["pagination"] == {"total": 2, "page": 1, "pageSize": 1, "totalPages": 2}
    assert body["fallback_data"] is False
    game = body["games"][0]
    assert game["event_id"] == "g1"
    assert game["moneyline"]["home"] == {"name": "Lakers", "price": 0.6}


def test_games_route_clamps_page_size(build):
    body = build().get("/api/v1/games", params={"pageSize": 1000, "page": -3}).json()
    assert body["pagination"]["pageSize"] == 100
    assert body["pagination"]["page"] == 1


def test_games_route_fallback_flag(build, fake_exchange):
    client = build()
    client.get("/api/v1/games", params={"league": "NBA", "search": "x"})
    fake_exchange.down = True
    body = client.get("/api/v1/games", params={"league": "NBA", "pageSize": 5}).json()
    assert body["fallback_data"] is True
    assert [g["event_id"] for g in body["games"]] == ["g1", "g2"]


def test_games_route_upstream_error_without_snapshot(build, fake_exchange):
    fake_exchange.down = True
    res = build().get("/api/v1/games", params={"league": "EURO"})
    assert res.status_code == 502
    assert res.json()["code"] == "UPSTREAM_ERROR"


def test_invalid_league_is_400(build):
    res = build().get("/api/v1/games", params={"league": "WNBA"})
    assert res.status_code == 400
    assert res.json()["code"] == "INVALID_REQUEST"


def test_props_route(build):
    body = build().get("/api/v1/games/g1/props").json()
    assert body["event_id"] == "g1"
    assert [p["prop_type"] for p in body["props"]] == ["moneyline"]


def test_props_route_unknown_game(build):
    res = build().get("/api/v1/games/missing/props")
    assert res.status_code == 404
    assert res.json()["code"] == "GAME_NOT_FOUND"


def test_markets_route_props(build):
    body = build().get("/api/markets", params={"type": "props", "league": "NBA"}).json()
    assert body["total"] == 1
    assert body["markets"][0]["title"] == "NBA Champion 2026"
    assert body["fallback"] is False
    assert body["totalPages"] == 1


def test_analyze_route(build):
    text = "## Context\nClose game.\n```json\n" + json.dumps({"confidence": 61}) + "\n```"
    res = build(FakeLLM(text)).post("/api/analyze", json={"type": "game", "data": {"home_team": "Lakers"}})
    assert res.status_code == 200
    body = res.json()
    assert body["analysis"] == "## Context\nClose game."
    assert body["structuredData"] == {"confidence": 61}
    assert body["rawResponse"] == text
    assert body["cached"] is False
    assert body["usedFallback"] is False
    assert body["provider"] == "OpenAI"


def test_analyze_rate_limited_has_retry_after_and_fallback(build):
    res = build(FakeLLM(LLMRateLimitedError("429", retry_after=30))).post(
        "/api/analyze", json={"type": "game", "data": {}}
    )
    assert res.status_code == 429
    assert res.headers["Retry-After"] == "30"
    body = res.json()
    assert body["code"] == "LLM_RATE_LIMITED"
    assert body["retryAfter"] == 30
    assert body["fallback"].startswith("## Analysis Temporarily Unavailable")


def test_analyze_not_configured(build):
    res = build(FakeLLM(configured=False)).post("/api/analyze", json={"type": "prop", "data": {}})
    assert res.status_code == 503
    assert res.json()["code"] == "LLM_NOT_CONFIGURED"
    assert "fallback" in res.json()


def test_analyze_malformed_body_has_fallback(build):
    res = build().post("/api/analyze", content="not json", headers={"content-type": "application/json"})
    assert res.status_code == 400
    assert res.json()["fallback"].startswith("## Analysis Temporarily Unavailable")
