# backend/courtline/celery_app.py
from __future__ import annotations

from celery import Celery

from .settings import settings

# -------------------------------------------------------------------
# Environment / Defaults
# -------------------------------------------------------------------
BROKER_URL = settings.redis_url or "redis://127.0.0.1:6379/0"

SNAPSHOT_REFRESH_SEC = settings.snapshot_refresh_sec
HEARTBEAT_SEC = 30

# Leagues refreshed by beat; ALL is the union of the others' topics.
REFRESH_LEAGUES = ("NBA", "NCAA", "EURO", "ALL")

# -------------------------------------------------------------------
# Celery App
# -------------------------------------------------------------------
celery = Celery(
    "courtline",
    broker=BROKER_URL,
    backend=BROKER_URL,
)

celery.conf.update(
    timezone="UTC",
    enable_utc=True,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    result_expires=3600,
    worker_prefetch_multiplier=1,        # upstream is rate limited; keep fetches fair
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_queue="default",
    task_routes={
        "snapshots.refresh": {"queue": "snapshots"},
        "ratelimit.reset": {"queue": "default"},
        "courtline.tasks.heartbeat": {"queue": "default"},
    },
    task_annotations={
        "snapshots.refresh": {"rate_limit": "30/m"},
    },
    imports=["courtline.tasks"],
)

# -------------------------------------------------------------------
# Beat Schedule
# -------------------------------------------------------------------
celery.conf.beat_schedule = {
    **{
        f"snapshots-refresh-{league.lower()}": {
            "task": "snapshots.refresh",
            "schedule": SNAPSHOT_REFRESH_SEC,
            "args": (league,),
            "options": {"queue": "snapshots"},
        }
        for league in REFRESH_LEAGUES
    },
    "heartbeat": {
        "task": "courtline.tasks.heartbeat",
        "schedule": HEARTBEAT_SEC,
        "args": (),
        "options": {"queue": "default"},
    },
}
