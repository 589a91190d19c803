"""Fetch, merge, normalize and page basketball markets.

An aggregation fans out one upstream request per topic identifier, merges the
batches by id, normalizes per item type, sorts by start time and only then
applies search and pagination. Pagination therefore always runs over the
merged, de-duplicated list and never per topic.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from exchanges.base import BaseExchange

from .cache import Cache
from .classify import classify_market
from .errors import EventNotFoundError, UpstreamError
from .normalize import normalize_game, normalize_league_prop, normalize_market_prop, normalize_props
from .schemas import (
    HEAD_PROP_TYPES,
    AggregateResult,
    DomainRecord,
    Game,
    GamesPage,
    ItemType,
    League,
    LeagueProp,
    MarketType,
    Prop,
)
from .snapshots import SnapshotService
from .titles import has_matchup_separator

log = logging.getLogger(__name__)

T = TypeVar("T")

LEAGUE_TOPICS: Dict[League, List[int]] = {
    League.NBA: [745],
    League.NCAA: [100149],
    League.EURO: [100346, 103093, 103095, 100639],
}
LEAGUE_TOPICS[League.ALL] = [t for lg in (League.NBA, League.NCAA, League.EURO) for t in LEAGUE_TOPICS[lg]]

GAMES_CACHE_PREFIX = "courtline:v1:games"


def topics_for(league: League) -> List[int]:
    return list(LEAGUE_TOPICS.get(league, LEAGUE_TOPICS[League.ALL]))


# ====================================================================================
# Pure helpers
# ====================================================================================

def merge_events(batches: Iterable[Iterable[T]], key: Callable[[T], Hashable] = lambda e: e.event_id) -> List[T]:
    """De-duplicate across batches: last write wins, first-seen position is kept."""
    merged: Dict[Hashable, T] = {}
    for batch in batches:
        for item in batch:
            merged[key(item)] = item
    return list(merged.values())


def _search_fields(item: DomainRecord) -> List[str]:
    if isinstance(item, Game):
        return [item.event_title, item.home_team, item.away_team]
    if isinstance(item, LeagueProp):
        return [item.title] + [o.name for o in item.outcomes]
    return [item.prop_title] + list(item.outcomes)


def filter_search(items: Sequence[DomainRecord], search: Optional[str]) -> List[DomainRecord]:
    needle = (search or "").strip().lower()
    if not needle:
        return list(items)
    return [it for it in items if any(needle in (f or "").lower() for f in _search_fields(it))]


def paginate(items: Sequence[T], page: int = 1, page_size: Optional[int] = None) -> Tuple[List[T], int]:
    """Return ``(page_items, total)``; ``page`` is 1-based, ``page_size=None`` means everything."""
    total = len(items)
    if page_size is None:
        return list(items), total
    page = max(1, int(page))
    page_size = max(1, int(page_size))
    start = (page - 1) * page_size
    return list(items[start:start + page_size]), total


def _start_key(item: DomainRecord) -> Tuple[int, str]:
    # ISO-8601 UTC strings sort chronologically; missing times go last.
    return (0, item.start_time) if item.start_time else (1, "")


def sort_by_start_time(items: Sequence[T]) -> List[T]:
    return sorted(items, key=_start_key)


def dedupe_head_props(props: Sequence[Prop]) -> List[Prop]:
    """First prop per head type wins; head props first, then every generic prop."""
    seen: Dict[MarketType, Prop] = {}
    generic: List[Prop] = []
    for p in props:
        if p.prop_type in HEAD_PROP_TYPES:
            if p.prop_type not in seen:
                seen[p.prop_type] = p
        else:
            generic.append(p)
    return list(seen.values()) + generic


def total_pages(total: int, page_size: int) -> int:
    return (total + page_size - 1) // page_size if page_size > 0 else 0


# ====================================================================================
# Service
# ====================================================================================

@dataclass
class AggregateFilters:
    item_type: ItemType = ItemType.GAMES
    league: League = League.ALL
    search: Optional[str] = None
    page: int = 1
    page_size: Optional[int] = None


class MarketAggregationService:
    def __init__(
        self,
        exchange: BaseExchange,
        cache: Cache,
        snapshots: SnapshotService,
        *,
        page_limit: int = 100,
        games_cache_ttl: int = 300,
    ) -> None:
        self.exchange = exchange
        self.cache = cache
        self.snapshots = snapshots
        self.page_limit = page_limit
        self.games_cache_ttl = games_cache_ttl

    # ------------------------------------------------------------------ fetch

    async def _fetch_events(self, topics: Sequence[int]):
        batches = await asyncio.gather(
            *(self.exchange.fetch_events(t, limit=self.page_limit) for t in topics)
        )
        return merge_events(batches)

    async def _fetch_markets(self, topics: Sequence[int]):
        batches = await asyncio.gather(
            *(self.exchange.fetch_markets(t, limit=self.page_limit) for t in topics)
        )
        return merge_events(batches, key=lambda m: m.market_id)

    async def _normalized(self, topics: Sequence[int], item_type: ItemType, league: League) -> List[DomainRecord]:
        items: List[Any] = []
        if item_type is ItemType.MARKETS:
            for m in await self._fetch_markets(topics):
                if not m.is_open or classify_market(m) is not MarketType.NONE:
                    continue
                if has_matchup_separator(m.question):
                    continue
                items.append(normalize_market_prop(m))
        else:
            build = normalize_game if item_type is ItemType.GAMES else normalize_league_prop
            for ev in await self._fetch_events(topics):
                rec = build(ev, league)
                if rec is not None:
                    items.append(rec)
        return sort_by_start_time(items)

    async def aggregate(self, topics: Sequence[int], filters: Optional[AggregateFilters] = None) -> AggregateResult:
        """Fetch ``topics`` concurrently and return one merged, filtered page.

        The first failing topic fails the whole aggregation with its error.
        """
        f = filters or AggregateFilters()
        items = await self._normalized(topics, f.item_type, f.league)
        page_items, total = paginate(filter_search(items, f.search), f.page, f.page_size)
        return AggregateResult(items=page_items, total=total)

    # ------------------------------------------------------------------ games

    def _games_cache_key(self, league: League, page: int, page_size: int, search: Optional[str]) -> str:
        return f"{GAMES_CACHE_PREFIX}:{league.value}:{page}:{page_size}:{(search or '').strip().lower()}"

    async def list_games(
        self,
        league: League = League.ALL,
        page: int = 1,
        page_size: int = 30,
        search: Optional[str] = None,
        use_cache: bool = True,
    ) -> GamesPage:
        key = self._games_cache_key(league, page, page_size, search)
        if use_cache:
            hit = await self.cache.get(key)
            if hit is not None:
                try:
                    return GamesPage.model_validate(hit)
                except ValueError:
                    log.warning("games: ignoring malformed cache entry %s", key)

        try:
            games = await self._normalized(topics_for(league), ItemType.GAMES, league)
        except UpstreamError:
            log.exception("games: live aggregation failed for %s", league.value)
            payload = await self.snapshots.load_latest(league.value)
            if payload is None:
                raise
            log.info("games: serving fallback snapshot for %s (%d games)", league.value, len(payload))
            stored = [Game.model_validate(g) for g in payload]
            page_items, total = paginate(filter_search(stored, search), page, page_size)
            return GamesPage(games=page_items, total=total, fallback=True)

        if games:
            await self.snapshots.save(league.value, [g.model_dump(mode="json") for g in games])

        page_items, total = paginate(filter_search(games, search), page, page_size)
        result = GamesPage(games=page_items, total=total)
        if use_cache:
            await self.cache.set(key, result.model_dump(mode="json"), self.games_cache_ttl)
        return result

    # ------------------------------------------------------------------ props

    async def list_props(self, event_id: str) -> List[Prop]:
        event = await self.exchange.fetch_event(event_id)
        if event is None:
            raise EventNotFoundError(f"game {event_id} not found")
        return dedupe_head_props(normalize_props(event.event_id, event.markets))

    # ------------------------------------------------------------------ explorer

    async def list_markets(
        self,
        item_type: ItemType = ItemType.GAMES,
        league: League = League.ALL,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 30,
    ) -> AggregateResult:
        if item_type is ItemType.GAMES:
            games = await self.list_games(league, page, page_size, search)
            return AggregateResult(items=list(games.games), total=games.total, fallback=games.fallback)

        return await self.aggregate(
            topics_for(league),
            AggregateFilters(item_type=item_type, league=league, search=search, page=page, page_size=page_size),
        )
