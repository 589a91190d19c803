from __future__ import annotations

import asyncio
import fnmatch
from typing import Any, Dict, List, Optional

import pytest

from courtline.errors import UpstreamError
from courtline.types import RawEvent, RawMarket
from exchanges.base import BaseExchange
from exchanges.polymarket import PolymarketExchange


# ---------------------------
# Fake redis.asyncio client
# ---------------------------

class FakeRedis:
    """Tiny async Redis stand-in covering the calls cache and limiter make."""

    def __init__(self) -> None:
        self.store: Dict[str, str] = {}
        self.ttl: Dict[str, int] = {}
        self.down = False
        self.pings = 0

    def _check(self) -> None:
        if self.down:
            raise ConnectionError("redis is down")

    async def ping(self) -> bool:
        self.pings += 1
        self._check()
        return True

    async def get(self, key: str) -> Optional[str]:
        await asyncio.sleep(0)
        self._check()
        return self.store.get(key)

    async def set(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        self._check()
        self.store[key] = str(value)
        if ex is not None:
            self.ttl[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for k in keys:
            if self.store.pop(k, None) is not None:
                removed += 1
            self.ttl.pop(k, None)
        return removed

    async def scan_iter(self, match: str = "*"):
        self._check()
        for k in list(self.store):
            if fnmatch.fnmatch(k, match):
                yield k

    class _Pipeline:
        def __init__(self, parent: "FakeRedis") -> None:
            self.parent = parent
            self.ops: List[tuple] = []

        async def __aenter__(self) -> "FakeRedis._Pipeline":
            return self

        async def __aexit__(self, exc_type, exc, tb) -> None:
            pass

        def incr(self, key: str) -> None:
            self.ops.append(("incr", key))

        def expire(self, key: str, ttl: int) -> None:
            self.ops.append(("expire", key, ttl))

        async def execute(self) -> List[Any]:
            await asyncio.sleep(0)
            self.parent._check()
            out: List[Any] = []
            for op in self.ops:
                if op[0] == "incr":
                    value = int(self.parent.store.get(op[1], "0")) + 1
                    self.parent.store[op[1]] = str(value)
                    out.append(value)
                else:
                    self.parent.ttl[op[1]] = op[2]
                    out.append(True)
            self.ops = []
            return out

    def pipeline(self, transaction: bool = True) -> "FakeRedis._Pipeline":
        return FakeRedis._Pipeline(self)


class ManualClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------
# Fake supabase async client
# ---------------------------

class _ExecuteResult:
    def __init__(self, data=None):
        self.data = data or []


class FakeQuery:
    def __init__(self, root: "FakeSupabase", name: str) -> None:
        self._root = root
        self._name = name
        self._filters: List[tuple] = []
        self._order: Optional[tuple] = None
        self._limit: Optional[int] = None
        self._insert: Optional[Dict[str, Any]] = None

    def insert(self, payload):
        self._insert = payload
        return self

    def select(self, cols: str):
        return self

    def eq(self, col: str, val: Any):
        self._filters.append(("eq", col, val))
        return self

    def gte(self, col: str, val: Any):
        self._filters.append(("gte", col, val))
        return self

    def order(self, col: str, desc: bool = False):
        self._order = (col, desc)
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    async def execute(self) -> _ExecuteResult:
        if self._root.fail:
            raise RuntimeError("supabase unavailable")
        rows = self._root.tables.setdefault(self._name, [])
        if self._insert is not None:
            row = {"id": len(rows) + 1, **self._insert}
            rows.append(row)
            return _ExecuteResult([row])

        out = list(rows)
        for op, col, val in self._filters:
            if op == "eq":
                out = [r for r in out if r.get(col) == val]
            else:
                out = [r for r in out if str(r.get(col)) >= str(val)]
        if self._order:
            col, desc = self._order
            out.sort(key=lambda r: str(r.get(col)), reverse=desc)
        if self._limit is not None:
            out = out[: self._limit]
        return _ExecuteResult(out)


class FakeSupabase:
    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.fail = False

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)


# ---------------------------
# Fake upstream exchange
# ---------------------------

class FakeExchange(BaseExchange):
    platform = "fake"

    def __init__(self) -> None:
        super().__init__(http=None)
        self.events_by_topic: Dict[int, List[RawEvent]] = {}
        self.markets_by_topic: Dict[int, List[RawMarket]] = {}
        self.events: Dict[str, RawEvent] = {}
        self.failing_topics: set = set()
        self.down = False
        self.calls: List[tuple] = []

    def _maybe_fail(self, topic: Any) -> None:
        if self.down or topic in self.failing_topics:
            raise UpstreamError(f"topic {topic} unavailable")

    async def fetch_events(self, topic: int, *, limit: int = 100, offset: int = 0) -> List[RawEvent]:
        self.calls.append(("events", topic))
        self._maybe_fail(topic)
        return list(self.events_by_topic.get(topic, []))

    async def fetch_event(self, event_id: str) -> Optional[RawEvent]:
        self.calls.append(("event", event_id))
        self._maybe_fail(event_id)
        return self.events.get(event_id)

    async def fetch_markets(self, topic: int, *, limit: int = 100, offset: int = 0) -> List[RawMarket]:
        self.calls.append(("markets", topic))
        self._maybe_fail(topic)
        return list(self.markets_by_topic.get(topic, []))

    def normalize_event(self, raw: Dict[str, Any]) -> RawEvent:
        return PolymarketExchange(None).normalize_event(raw)

    def normalize_market(self, raw: Dict[str, Any]) -> RawMarket:
        return PolymarketExchange(None).normalize_market(raw)


# ---------------------------
# Fixtures
# ---------------------------

@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(1_700_000_000.0)


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def fake_exchange() -> FakeExchange:
    return FakeExchange()


def _market(market_id: str = "m1", **kw: Any) -> RawMarket:
    return RawMarket(market_id=market_id, **kw)


def _event(event_id: str = "e1", title: str = "Lakers vs Celtics", **kw: Any) -> RawEvent:
    return RawEvent(event_id=event_id, title=title, **kw)


@pytest.fixture
def make_market():
    return _market


@pytest.fixture
def make_event():
    return _event
