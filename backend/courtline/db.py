from __future__ import annotations

from typing import Optional

import httpx
import redis.asyncio as aioredis
from supabase import AsyncClient, acreate_client

from .settings import Settings


def make_redis(settings: Settings) -> Optional[aioredis.Redis]:
    """Redis client, or None when REDIS_URL is empty. Connects lazily; never probes here."""
    if not settings.redis_url:
        return None
    return aioredis.Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,
    )


async def make_supabase(settings: Settings) -> Optional[AsyncClient]:
    if not (settings.supabase_url and settings.supabase_service_role):
        return None
    return await acreate_client(settings.supabase_url, settings.supabase_service_role)


def make_http(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=settings.upstream_timeout_s,
        headers={"Accept": "application/json", "User-Agent": "courtline/0.1"},
    )
