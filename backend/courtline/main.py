# backend/courtline/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .aggregation import total_pages
from .analysis import fallback_analysis
from .errors import AnalysisError, CourtlineError
from .schemas import ItemType, League
from .services import Services, build_services
from .settings import settings

log = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _clamp_page(page: int, page_size: int) -> tuple[int, int]:
    return max(1, page), min(MAX_PAGE_SIZE, max(1, page_size))


def get_services(request: Request) -> Services:
    return request.app.state.services


class AnalyzeIn(BaseModel):
    type: str = Field("game", description="game | prop")
    data: Dict[str, Any] = Field(default_factory=dict, description="Market snapshot to analyze.")


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the API. Pass ``services`` to run against pre-built (or fake)
    dependencies; otherwise they are built on startup and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _configure_logging()
        if services is not None:
            yield
            return
        built = await build_services(settings)
        app.state.services = built
        try:
            yield
        finally:
            await built.aclose()

    app = FastAPI(title="courtline API", version="0.1.0", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    # --------------------------------------------------------------------------
    # CORS (dev-friendly; tighten for prod)
    # --------------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --------------------------------------------------------------------------
    # Errors
    # --------------------------------------------------------------------------
    @app.exception_handler(CourtlineError)
    async def courtline_error(request: Request, exc: CourtlineError) -> JSONResponse:
        body: Dict[str, Any] = {"error": exc.message, "code": exc.code}
        headers: Dict[str, str] = {}
        if isinstance(exc, AnalysisError):
            body["fallback"] = exc.fallback
            if exc.retry_after is not None:
                body["retryAfter"] = exc.retry_after
                headers["Retry-After"] = str(exc.retry_after)
            llm = request.app.state.services.analysis.llm
            body["model"] = llm.model
            body["provider"] = llm.provider
        if exc.status_code >= 500:
            log.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
        return JSONResponse(status_code=exc.status_code, content=body, headers=headers or None)

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        body: Dict[str, Any] = {"error": "Invalid request", "code": "INVALID_REQUEST", "detail": exc.errors()}
        if request.url.path == "/api/analyze":
            body["fallback"] = fallback_analysis("game")
        return JSONResponse(status_code=400, content=jsonable_encoder(body))

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception) -> JSONResponse:
        log.exception("%s %s crashed", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error", "code": "INTERNAL_ERROR"})

    # --------------------------------------------------------------------------
    # Health
    # --------------------------------------------------------------------------
    @app.get("/health")
    async def health(svc: Services = Depends(get_services)) -> Dict[str, Any]:
        return {
            "status": "ok",
            "time": int(datetime.now(tz=timezone.utc).timestamp()),
            "cache_available": await svc.cache.is_available(),
            "snapshots_configured": svc.snapshots.configured,
            "llm_configured": svc.analysis.llm.configured,
        }

    # --------------------------------------------------------------------------
    # Games
    # --------------------------------------------------------------------------
    @app.get("/api/v1/games")
    async def list_games(
        league: League = Query(League.ALL),
        page: int = Query(1),
        page_size: int = Query(30, alias="pageSize"),
        search: Optional[str] = Query(None),
        svc: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        page, page_size = _clamp_page(page, page_size)
        result = await svc.markets.list_games(league, page, page_size, search)
        return {
            "games": [g.model_dump(mode="json") for g in result.games],
            "pagination": {
                "total": result.total,
                "page": page,
                "pageSize": page_size,
                "totalPages": total_pages(result.total, page_size),
            },
            "fallback_data": result.fallback,
        }

    @app.get("/api/v1/games/{event_id}/props")
    async def list_props(event_id: str, svc: Services = Depends(get_services)) -> Dict[str, Any]:
        props = await svc.markets.list_props(event_id)
        return {"event_id": event_id, "props": [p.model_dump(mode="json") for p in props]}

    # --------------------------------------------------------------------------
    # Explorer
    # --------------------------------------------------------------------------
    @app.get("/api/markets")
    async def list_markets(
        type: ItemType = Query(ItemType.GAMES),
        league: League = Query(League.ALL),
        search: Optional[str] = Query(None),
        page: int = Query(1),
        page_size: int = Query(30, alias="pageSize"),
        svc: Services = Depends(get_services),
    ) -> Dict[str, Any]:
        page, page_size = _clamp_page(page, page_size)
        result = await svc.markets.list_markets(type, league, search, page, page_size)
        return {
            "markets": [m.model_dump(mode="json") for m in result.items],
            "total": result.total,
            "page": page,
            "pageSize": page_size,
            "totalPages": total_pages(result.total, page_size),
            "fallback": result.fallback,
        }

    # --------------------------------------------------------------------------
    # Analysis
    # --------------------------------------------------------------------------
    @app.post("/api/analyze")
    async def analyze(payload: AnalyzeIn, svc: Services = Depends(get_services)) -> Dict[str, Any]:
        res = await svc.analysis.analyze(payload.type, payload.data)
        return {
            "analysis": res.analysis,
            "structuredData": res.structured_data,
            "rawResponse": res.raw_response,
            "cached": res.cached,
            "usedFallback": res.used_fallback,
            "model": res.model,
            "provider": res.provider,
        }

    return app


app = create_app()
