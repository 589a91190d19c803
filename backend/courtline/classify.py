"""Keyword classification of upstream markets into head-prop types.

The upstream API has no structured market-type field, so the type is read from
three free-text fields (question, slug, group item title). Category keywords
can co-occur, so the rules run in a fixed order and the first match wins:

1. moneyline: slug has "winner"/"moneyline", question has "who will win" /
   "will win", or group title has "moneyline"
2. spread: any field has "spread"
3. totals: any field has "total" or "over/under", or group title has "o/u"
4. otherwise ``MarketType.NONE`` (player-level or unclassified)

Everything here is a pure function of its inputs.
"""

from __future__ import annotations

import math
import re
from typing import Optional, Sequence, TypeVar

from .schemas import MarketType
from .types import RawMarket

__all__ = [
    "classify_market",
    "is_first_half",
    "extract_line",
    "line_value",
    "market_line",
    "select_closest_to_even",
]

_NUMBER_RE = re.compile(r"[-+]?\d+(?:\.\d+)?")

M = TypeVar("M", bound=RawMarket)


def _fields(market: RawMarket) -> tuple[str, str, str]:
    return (
        (market.question or "").lower(),
        (market.slug or "").lower(),
        (market.group_item_title or "").lower(),
    )


def is_first_half(market: RawMarket) -> bool:
    return "1h" in (market.group_item_title or "").lower()


def classify_market(market: RawMarket, *, full_game: bool = False) -> MarketType:
    """Classify one market.

    With ``full_game`` set, first-half qualified markets ("1H Spread -2.5")
    never count as a head prop of the full game.
    """

    if full_game and is_first_half(market):
        return MarketType.NONE

    question, slug, group = _fields(market)

    if (
        "winner" in slug
        or "moneyline" in slug
        or "who will win" in question
        or "will win" in question
        or "moneyline" in group
    ):
        return MarketType.MONEYLINE

    if "spread" in slug or "spread" in question or "spread" in group:
        return MarketType.SPREAD

    if (
        any("total" in f or "over/under" in f for f in (question, slug, group))
        or "o/u" in group
    ):
        return MarketType.TOTALS

    return MarketType.NONE


def extract_line(text: Optional[str]) -> str:
    """First signed numeric token in ``text``; ``"0"`` when there is none."""

    match = _NUMBER_RE.search(text or "")
    return match.group(0) if match else "0"


def line_value(market: RawMarket) -> Optional[float]:
    """Numeric line from the group title, falling back to the question."""

    for text in (market.group_item_title, market.question):
        match = _NUMBER_RE.search(text or "")
        if match:
            return float(match.group(0))
    return None


def market_line(market: RawMarket) -> str:
    for text in (market.group_item_title, market.question):
        if text and _NUMBER_RE.search(text):
            return extract_line(text)
    return "0"


def select_closest_to_even(markets: Sequence[M]) -> Optional[M]:
    """Pick the market whose line has the smallest absolute value.

    Markets without a numeric line sort last; ties keep input order, so the
    choice is reproducible for a given upstream ordering.
    """

    if not markets:
        return None

    def key(m: RawMarket) -> float:
        value = line_value(m)
        return math.inf if value is None else abs(value)

    return min(markets, key=key)
