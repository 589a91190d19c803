from __future__ import annotations

from typing import Optional


class CourtlineError(Exception):
    """Base error rendered by the API as ``{"error", "code", ...}``."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code


class UpstreamError(CourtlineError):
    """The market API failed (network error, 5xx or unreadable body)."""

    code = "UPSTREAM_ERROR"
    status_code = 502


class EventNotFoundError(CourtlineError):
    code = "GAME_NOT_FOUND"
    status_code = 404


class AnalysisError(CourtlineError):
    """Analysis could not be produced; ``fallback`` is always displayable."""

    code = "LLM_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        fallback: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        retry_after: Optional[int] = None,
    ) -> None:
        super().__init__(message, code=code, status_code=status_code)
        self.fallback = fallback
        self.retry_after = retry_after
