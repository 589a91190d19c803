from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import AsyncClient

SNAPSHOTS_TABLE = "market_snapshots"


def _utc_midnight(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


class SnapshotRepository:
    """
    Row access for market_snapshots(league, payload, payload_hash, created_at).
    Errors from the client propagate; SnapshotService decides what to swallow.
    """

    def __init__(self, client: AsyncClient, table: str = SNAPSHOTS_TABLE) -> None:
        self.client = client
        self.table = table

    async def insert(self, league: str, payload: List[Dict[str, Any]], payload_hash: str) -> None:
        row = {
            "league": league,
            "payload": payload,
            "payload_hash": payload_hash,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        await self.client.table(self.table).insert(row).execute()

    async def exists_since(self, league: str, payload_hash: str, since: Optional[datetime] = None) -> bool:
        """True when a row with this league and hash was written since ``since`` (UTC midnight by default)."""
        since = since or _utc_midnight()
        res = await (
            self.client.table(self.table)
            .select("id")
            .eq("league", league)
            .eq("payload_hash", payload_hash)
            .gte("created_at", since.isoformat())
            .limit(1)
            .execute()
        )
        return bool(res.data)

    async def find_latest(self, league: str) -> Optional[Dict[str, Any]]:
        res = await (
            self.client.table(self.table)
            .select("league,payload,payload_hash,created_at")
            .eq("league", league)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        return (res.data or [None])[0]
