from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from courtline.types import RawEvent, RawMarket


class BaseExchange(ABC):
    """Minimal base class for upstream market fetchers.

    Holds a shared :class:`httpx.AsyncClient` that is constructed and closed by
    the process entry point; adapters never create clients at import time.
    Subclasses fetch raw JSON and normalize it into :class:`RawEvent` /
    :class:`RawMarket` records, parsing every JSON-in-string field exactly
    once.
    """

    platform: str = ""
    base_url: str = ""

    def __init__(self, http: httpx.AsyncClient, base_url: Optional[str] = None) -> None:
        self.http = http
        if base_url:
            self.base_url = base_url.rstrip("/")

    # ------------------------------------------------------------------
    # Interface to implement
    # ------------------------------------------------------------------
    @abstractmethod
    async def fetch_events(self, topic: int, *, limit: int = 100, offset: int = 0) -> List[RawEvent]:
        raise NotImplementedError

    @abstractmethod
    async def fetch_event(self, event_id: str) -> Optional[RawEvent]:
        raise NotImplementedError

    @abstractmethod
    async def fetch_markets(self, topic: int, *, limit: int = 100, offset: int = 0) -> List[RawMarket]:
        raise NotImplementedError

    @abstractmethod
    def normalize_event(self, raw: Dict[str, Any]) -> RawEvent:
        raise NotImplementedError

    @abstractmethod
    def normalize_market(self, raw: Dict[str, Any]) -> RawMarket:
        raise NotImplementedError
