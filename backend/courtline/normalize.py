"""Turn raw upstream events into games, props and league props."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar, Union

from .classify import classify_market, market_line, select_closest_to_even
from .schemas import (
    Game,
    League,
    LeagueProp,
    MarketType,
    Moneyline,
    OutcomeQuote,
    Prop,
    SidePrice,
    SpreadLine,
    Status,
    TotalLine,
)
from .titles import detect_league, is_league_prop, is_real_matchup, parse_teams
from .types import RawEvent, RawMarket

log = logging.getLogger(__name__)

T = TypeVar("T")

LEAGUE_PROP_MAX_OUTCOMES = 5


def iso_utc(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _status(active: bool, closed: bool) -> Status:
    return Status.ACTIVE if active and not closed else Status.CLOSED


def _contains_word(text: str, word: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(word)}(?!\w)", text) is not None


def _match_index(outcomes: Sequence[str], name: str) -> Optional[int]:
    """Index of the outcome naming ``name``: an exact label first, else the
    one label sharing a whole-word match with it. Ambiguity gives ``None``."""
    target = name.strip().lower()
    if not target:
        return None
    labels = [str(o).strip().lower() for o in outcomes]
    if target in labels:
        return labels.index(target)
    hits = [
        i for i, label in enumerate(labels)
        if label and (_contains_word(label, target) or _contains_word(target, label))
    ]
    return hits[0] if len(hits) == 1 else None


def zip_sides(market: RawMarket, first: str, second: str) -> Tuple[float, float]:
    """Return the prices for ``first`` and ``second`` from a two-way market.

    Outcome names that match the side names decide the order; otherwise the
    upstream index order (first, second) is used. Raises ``ValueError`` when
    the market does not carry two prices.
    """

    prices = market.outcome_prices
    if len(prices) < 2:
        raise ValueError(f"market {market.market_id} has {len(prices)} prices")

    i = _match_index(market.outcomes, first)
    j = _match_index(market.outcomes, second)
    if i is not None and j is not None and i != j and max(i, j) < len(prices):
        return prices[i], prices[j]
    return prices[0], prices[1]


def _slot(event: RawEvent, slot: str, build: Callable[[], Optional[T]]) -> Optional[T]:
    """Resolve one head slot; any failure leaves only that slot absent."""

    try:
        return build()
    except (ValueError, TypeError, IndexError) as e:
        log.debug("slot %s unavailable for event %s: %s", slot, event.event_id, e)
        return None


def _candidates(event: RawEvent, kind: MarketType) -> List[RawMarket]:
    return [
        m for m in event.markets
        if m.is_open and classify_market(m, full_game=True) is kind
    ]


def build_moneyline(event: RawEvent, home: str, away: str) -> Optional[Moneyline]:
    """Moneyline from an explicit market, else from the closest-to-even spread.

    The spread substitution is a heuristic: a pick'em-level spread approximates
    a moneyline. Results built that way carry ``derived_from_spread=True``.
    """

    market = select_closest_to_even(_candidates(event, MarketType.MONEYLINE))
    derived = False
    if market is None:
        market = select_closest_to_even(_candidates(event, MarketType.SPREAD))
        derived = market is not None
    if market is None:
        return None

    home_price, away_price = zip_sides(market, home, away)
    return Moneyline(
        home=SidePrice(name=home, price=home_price),
        away=SidePrice(name=away, price=away_price),
        market_id=market.market_id,
        derived_from_spread=derived,
    )


def build_spread(event: RawEvent, home: str, away: str) -> Optional[SpreadLine]:
    market = select_closest_to_even(_candidates(event, MarketType.SPREAD))
    if market is None:
        return None
    home_price, away_price = zip_sides(market, home, away)
    return SpreadLine(
        line=market_line(market),
        home=home_price,
        away=away_price,
        market_id=market.market_id,
    )


def build_total(event: RawEvent) -> Optional[TotalLine]:
    market = select_closest_to_even(_candidates(event, MarketType.TOTALS))
    if market is None:
        return None
    over, under = zip_sides(market, "Over", "Under")
    return TotalLine(
        line=market_line(market),
        over=over,
        under=under,
        market_id=market.market_id,
    )


def normalize_game(event: RawEvent, league: Optional[League] = None) -> Optional[Game]:
    """Build a :class:`Game` for a real matchup, ``None`` otherwise.

    Home/away is parsed once from the title here and reused for every slot.
    ``league`` is the fallback when the event itself names no league.
    """

    if not is_real_matchup(event):
        return None

    home, away = parse_teams(event.title)
    return Game(
        event_id=event.event_id,
        league=detect_league(event, default=league or League.ALL),
        home_team=home,
        away_team=away,
        start_time=iso_utc(event.start_time),
        event_title=event.title,
        status=_status(event.active, event.closed),
        volume=event.volume,
        moneyline=_slot(event, "moneyline", lambda: build_moneyline(event, home, away)),
        spread=_slot(event, "spread", lambda: build_spread(event, home, away)),
        total=_slot(event, "total", lambda: build_total(event)),
    )


def normalize_prop(event_id: Optional[str], market: RawMarket, prop_type: MarketType) -> Prop:
    return Prop(
        market_id=market.market_id,
        event_id=event_id,
        prop_type=prop_type,
        prop_title=market.question,
        outcomes=list(market.outcomes),
        outcome_prices=list(market.outcome_prices),
        current_status=_status(market.active, market.closed),
        start_time=iso_utc(market.start_date),
        volume=market.volume,
    )


def normalize_props(event_id: str, markets: Sequence[RawMarket]) -> List[Prop]:
    """Every market of an event as a typed :class:`Prop`, in upstream order.

    Duplicate head props are kept here; suppressing them is the aggregation
    layer's job.
    """

    return [normalize_prop(event_id, m, classify_market(m)) for m in markets]


def normalize_market_prop(market: RawMarket) -> Prop:
    return normalize_prop(None, market, classify_market(market))


def normalize_league_prop(event: RawEvent, league: Optional[League] = None) -> Optional[LeagueProp]:
    if not is_league_prop(event):
        return None

    outcomes: List[OutcomeQuote] = []
    for market in event.markets:
        if not market.is_open or not market.outcome_prices:
            continue
        price = market.outcome_prices[0]
        if price <= 0:
            continue
        outcomes.append(OutcomeQuote(name=market.group_item_title or market.question, price=price))
    outcomes.sort(key=lambda o: o.price, reverse=True)

    return LeagueProp(
        event_id=event.event_id,
        title=event.title,
        slug=event.slug,
        league=detect_league(event, default=league or League.ALL),
        volume=event.volume,
        start_time=iso_utc(event.start_time),
        outcomes=outcomes[:LEAGUE_PROP_MAX_OUTCOMES],
        status=_status(event.active, event.closed),
    )


def normalize_event(event: RawEvent, league: Optional[League] = None) -> Union[Game, LeagueProp, None]:
    """A game for matchups, a league prop for league-wide markets, else ``None``."""

    game = normalize_game(event, league)
    if game is not None:
        return game
    return normalize_league_prop(event, league)
