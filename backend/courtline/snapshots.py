"""Last-known-good game lists, kept for when the upstream API is down."""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, List, Optional

from .dao import SnapshotRepository

log = logging.getLogger(__name__)


def _json_hash(obj: Any) -> str:
    blob = json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
    return hashlib.sha256(blob).hexdigest()


class SnapshotService:
    """
    save() writes at most one row per (league, content) per UTC day;
    load_latest() returns the newest payload regardless of age.
    Store errors are logged and swallowed. Without a repository both are no-ops.
    """

    def __init__(self, repo: Optional[SnapshotRepository]) -> None:
        self.repo = repo
        if repo is None:
            log.info("snapshots: record store not configured; fallback disabled")

    @property
    def configured(self) -> bool:
        return self.repo is not None

    async def save(self, league: str, payload: List[Any]) -> bool:
        """Returns True when a new row was written."""
        if self.repo is None:
            return False
        digest = _json_hash(payload)
        try:
            if await self.repo.exists_since(league, digest):
                log.debug("snapshots: %s unchanged today (%s), skipping", league, digest[:12])
                return False
            await self.repo.insert(league, payload, digest)
        except Exception as e:
            log.warning("snapshots: save failed for %s: %s", league, e)
            return False
        log.info("snapshots: saved %d items for %s (%s)", len(payload), league, digest[:12])
        return True

    async def load_latest(self, league: str) -> Optional[List[Any]]:
        if self.repo is None:
            return None
        try:
            row = await self.repo.find_latest(league)
        except Exception as e:
            log.warning("snapshots: load failed for %s: %s", league, e)
            return None
        if not row:
            return None
        payload = row.get("payload")
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except ValueError:
                log.warning("snapshots: stored payload for %s is not JSON", league)
                return None
        return payload if isinstance(payload, list) else None
