from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from .base import BaseExchange
from courtline.errors import UpstreamError
from courtline.types import RawEvent, RawMarket

log = logging.getLogger(__name__)

DEFAULT_OUTCOMES = ["Yes", "No"]
DEFAULT_PRICES = [0.5, 0.5]


class PolymarketExchange(BaseExchange):
    """Adapter for the Polymarket Gamma REST API."""

    platform = "polymarket"
    base_url = "https://gamma-api.polymarket.com"

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            resp = await self.http.get(f"{self.base_url}{path}", params=params)
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            log.error("gamma request failed path=%s params=%s: %s", path, params, e)
            raise UpstreamError(f"failed to fetch {path} from {self.platform}") from e

    async def fetch_events(self, topic: int, *, limit: int = 100, offset: int = 0) -> List[RawEvent]:
        """Fetch active, open events for one tag id, ordered by start time."""

        payload = await self._get(
            "/events",
            params={
                "tag_id": topic,
                "active": "true",
                "closed": "false",
                "limit": limit,
                "offset": offset,
                "order": "startTime",
                "ascending": "true",
            },
        )
        return [self.normalize_event(e) for e in _as_list(payload)]

    async def fetch_event(self, event_id: str) -> Optional[RawEvent]:
        """Fetch one event; ``None`` when the upstream does not know it."""

        try:
            resp = await self.http.get(f"{self.base_url}/events/{event_id}")
        except httpx.HTTPError as e:
            log.error("gamma event fetch failed id=%s: %s", event_id, e)
            raise UpstreamError(f"failed to fetch event {event_id}") from e
        if resp.status_code == 404:
            return None
        try:
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            log.error("gamma event fetch failed id=%s: %s", event_id, e)
            raise UpstreamError(f"failed to fetch event {event_id}") from e
        if not isinstance(payload, dict) or not payload.get("id"):
            return None
        return self.normalize_event(payload)

    async def fetch_markets(self, topic: int, *, limit: int = 100, offset: int = 0) -> List[RawMarket]:
        payload = await self._get(
            "/markets",
            params={
                "tag_id": topic,
                "active": "true",
                "closed": "false",
                "limit": limit,
                "offset": offset,
                "order": "startDate",
                "ascending": "false",
            },
        )
        return [self.normalize_market(m) for m in _as_list(payload)]

    # ------------------------------------------------------------------
    # Normalization helpers
    # ------------------------------------------------------------------
    def normalize_event(self, raw: Dict[str, Any]) -> RawEvent:
        tags = []
        for tag in raw.get("tags") or []:
            if isinstance(tag, dict):
                label = tag.get("label") or tag.get("slug")
                if label:
                    tags.append(str(label))
            elif tag:
                tags.append(str(tag))

        markets = [self.normalize_market(m) for m in raw.get("markets") or [] if isinstance(m, dict)]

        return RawEvent(
            event_id=str(raw.get("id")),
            title=raw.get("title") or "",
            slug=raw.get("slug") or "",
            category=raw.get("category") or "",
            tags=tags,
            active=bool(raw.get("active", True)),
            closed=bool(raw.get("closed", False)),
            start_time=_parse_date(raw.get("startTime") or raw.get("startDate") or raw.get("endDate")),
            end_date=_parse_date(raw.get("endDate")),
            volume=_to_float(raw.get("volume")),
            markets=markets,
        )

    def normalize_market(self, raw: Dict[str, Any]) -> RawMarket:
        return RawMarket(
            market_id=str(raw.get("id")),
            question=raw.get("question") or "",
            slug=raw.get("slug") or "",
            group_item_title=raw.get("groupItemTitle") or "",
            outcomes=parse_outcomes(raw.get("outcomes")),
            outcome_prices=parse_outcome_prices(raw.get("outcomePrices")),
            active=bool(raw.get("active", True)),
            closed=bool(raw.get("closed", False)),
            volume=_to_float(raw.get("volume")),
            start_date=_parse_date(raw.get("gameStartTime") or raw.get("startDate")),
            category=raw.get("category"),
        )


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

def _as_list(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        return [p for p in payload if isinstance(p, dict)]
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return [p for p in payload["data"] if isinstance(p, dict)]
    return []


def _load_json_list(value: Any) -> Optional[list]:
    if isinstance(value, list):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = json.loads(value)
    except ValueError:
        return None
    return parsed if isinstance(parsed, list) else None


def parse_outcomes(value: Any) -> List[str]:
    """Parse the ``outcomes`` JSON string; ``["Yes", "No"]`` when malformed."""

    items = _load_json_list(value)
    if items is None:
        return list(DEFAULT_OUTCOMES)
    return [str(i) for i in items]


def parse_outcome_prices(value: Any) -> List[float]:
    """Parse the ``outcomePrices`` JSON string; ``[0.5, 0.5]`` when malformed."""

    items = _load_json_list(value)
    if items is None:
        return list(DEFAULT_PRICES)
    try:
        return [float(i) for i in items]
    except (TypeError, ValueError):
        return list(DEFAULT_PRICES)


def _parse_date(s: Any) -> datetime | None:
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(str(s).replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _to_float(val: Any) -> float | None:
    try:
        if val is None:
            return None
        return float(val)
    except (TypeError, ValueError):
        return None
