"""Domain records served by the API and stored in cache and snapshots."""

from __future__ import annotations

from enum import Enum
from typing import Union

from pydantic import BaseModel, Field


class League(str, Enum):
    NBA = "NBA"
    NCAA = "NCAA"
    EURO = "EURO"
    ALL = "ALL"


class MarketType(str, Enum):
    MONEYLINE = "moneyline"
    SPREAD = "spread"
    TOTALS = "totals"
    NONE = "none"


HEAD_PROP_TYPES = (MarketType.MONEYLINE, MarketType.SPREAD, MarketType.TOTALS)


class Status(str, Enum):
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class ItemType(str, Enum):
    GAMES = "games"
    PROPS = "props"
    MARKETS = "markets"


class SidePrice(BaseModel):
    name: str
    price: float


class Moneyline(BaseModel):
    home: SidePrice
    away: SidePrice
    market_id: str
    # True when no moneyline market existed and the closest-to-even spread stood in.
    derived_from_spread: bool = False


class SpreadLine(BaseModel):
    line: str
    home: float
    away: float
    market_id: str


class TotalLine(BaseModel):
    line: str
    over: float
    under: float
    market_id: str


class Game(BaseModel):
    event_id: str
    league: League
    home_team: str
    away_team: str
    start_time: str | None = None
    event_title: str
    status: Status = Status.ACTIVE
    volume: float | None = None
    moneyline: Moneyline | None = None
    spread: SpreadLine | None = None
    total: TotalLine | None = None


class Prop(BaseModel):
    market_id: str
    event_id: str | None = None
    prop_type: MarketType
    prop_title: str
    outcomes: list[str] = Field(default_factory=list)
    outcome_prices: list[float] = Field(default_factory=list)
    current_status: Status = Status.ACTIVE
    start_time: str | None = None
    volume: float | None = None


class OutcomeQuote(BaseModel):
    name: str
    price: float


class LeagueProp(BaseModel):
    event_id: str
    title: str
    slug: str = ""
    league: League = League.ALL
    volume: float | None = None
    start_time: str | None = None
    outcomes: list[OutcomeQuote] = Field(default_factory=list)
    status: Status = Status.ACTIVE


DomainRecord = Union[Game, LeagueProp, Prop]


class AggregateResult(BaseModel):
    items: list[DomainRecord] = Field(default_factory=list)
    total: int = 0
    fallback: bool = False


class GamesPage(BaseModel):
    games: list[Game] = Field(default_factory=list)
    total: int = 0
    fallback: bool = False
