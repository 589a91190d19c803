from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class RawMarket:
    """One upstream market, with its JSON-in-string arrays already parsed."""

    market_id: str
    question: str = ""
    slug: str = ""
    group_item_title: str = ""
    outcomes: List[str] = field(default_factory=lambda: ["Yes", "No"])
    outcome_prices: List[float] = field(default_factory=lambda: [0.5, 0.5])
    active: bool = True
    closed: bool = False
    volume: Optional[float] = None
    start_date: Optional[datetime] = None
    category: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.active and not self.closed


@dataclass(frozen=True)
class RawEvent:
    event_id: str
    title: str
    slug: str = ""
    category: str = ""
    tags: List[str] = field(default_factory=list)
    active: bool = True
    closed: bool = False
    start_time: Optional[datetime] = None
    end_date: Optional[datetime] = None
    volume: Optional[float] = None
    markets: List[RawMarket] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.active and not self.closed


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: int
    provider: str
    retry_after: Optional[int] = None
    store_available: bool = True


@dataclass
class ParsedAnalysis:
    markdown: str
    structured_data: Dict[str, Any]
    strategy: str
    used_fallback: bool = False


@dataclass
class AnalysisResult:
    analysis: str
    structured_data: Dict[str, Any]
    raw_response: str
    model: str
    provider: str
    cached: bool = False
    used_fallback: bool = False
