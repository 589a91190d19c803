"""OpenAI chat completions with retry, backoff and error classification.

Retry policy of :func:`call_with_retry`:

* quota / billing errors are never retried (:class:`QuotaExceededError`);
* rate-limit errors wait ``max(backoff, retry_after_hint)`` (plain ``backoff``
  without a hint) and, once attempts run out, surface as
  :class:`LLMRateLimitedError` carrying the hint or ``DEFAULT_RETRY_AFTER``;
* connection errors, timeouts and 5xx wait ``backoff`` and re-raise the last
  error on exhaustion;
* anything else propagates immediately.

``backoff`` doubles from ``base_delay`` per attempt and is capped at
``max_delay``.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
from openai import APIConnectionError, AsyncOpenAI

log = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_AFTER = 60
QUOTA_MARKERS = ("quota", "billing", "insufficient_quota")
RATE_LIMIT_MARKERS = ("rate_limit", "429")

_RETRY_IN_RE = re.compile(r"retry in\s+(\d+(?:\.\d+)?)\s*s", re.IGNORECASE)


class QuotaExceededError(Exception):
    """The provider account is out of quota or billing is not set up."""


class LLMRateLimitedError(Exception):
    def __init__(self, message: str, retry_after: int = DEFAULT_RETRY_AFTER) -> None:
        super().__init__(message)
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def status_of(exc: BaseException) -> Optional[int]:
    code = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def is_quota_error(exc: BaseException) -> bool:
    msg = str(exc).lower()
    return any(m in msg for m in QUOTA_MARKERS)


def is_rate_limit_error(exc: BaseException) -> bool:
    if status_of(exc) == 429:
        return True
    msg = str(exc).lower()
    return any(m in msg for m in RATE_LIMIT_MARKERS)


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, (APIConnectionError, httpx.TransportError, asyncio.TimeoutError)):
        return True
    status = status_of(exc)
    return status is not None and status >= 500


def _headers_of(exc: BaseException) -> Any:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None:
        headers = getattr(exc, "headers", None)
    return headers or {}


def retry_after_hint(exc: BaseException) -> Optional[int]:
    """Seconds to wait, from the ``retry-after`` header or a "retry in Ns" message.

    ``None`` when the provider gave no hint.
    """
    raw = None
    try:
        raw = _headers_of(exc).get("retry-after")
    except AttributeError:
        raw = None
    if raw is not None:
        try:
            return max(1, math.ceil(float(raw)))
        except (TypeError, ValueError):
            pass
    m = _RETRY_IN_RE.search(str(exc))
    if m:
        return max(1, math.ceil(float(m.group(1))))
    return None


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    return min(base_delay * (2 ** attempt), max_delay)


# ---------------------------------------------------------------------------
# Retry loop
# ---------------------------------------------------------------------------

async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    attempts = max(1, int(max_attempts))
    for attempt in range(attempts):
        last = attempt == attempts - 1
        try:
            return await fn()
        except Exception as e:
            if is_quota_error(e):
                log.warning("llm: quota/billing error, not retrying: %s", str(e)[:200])
                raise QuotaExceededError(str(e)) from e

            if is_rate_limit_error(e):
                hint = retry_after_hint(e)
                if last:
                    raise LLMRateLimitedError(str(e), retry_after=hint or DEFAULT_RETRY_AFTER) from e
                delay = backoff_delay(attempt, base_delay, max_delay)
                if hint is not None:
                    delay = max(delay, hint)
                log.warning("llm: rate limited, retrying in %.1fs (attempt %d/%d)", delay, attempt + 1, attempts)
                await sleep(delay)
                continue

            if is_transient_error(e) and not last:
                delay = backoff_delay(attempt, base_delay, max_delay)
                log.warning("llm: transient error %r, retrying in %.1fs (attempt %d/%d)", e, delay, attempt + 1, attempts)
                await sleep(delay)
                continue

            raise
    raise AssertionError("unreachable")  # pragma: no cover


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class LLMClient:
    provider = "OpenAI"

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        *,
        client: Any = None,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        if client is None and api_key:
            # call_with_retry is the only retry loop; the SDK must not retry on its own.
            client = AsyncOpenAI(api_key=api_key, base_url=base_url, http_client=http_client, max_retries=0)
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.api_key) and self._client is not None

    async def complete(
        self,
        system: str,
        prompt: str,
        *,
        max_tokens: int = 2000,
        temperature: float = 0.2,
    ) -> str:
        """Single chat completion with retries; returns the message text."""

        async def _call() -> Any:
            return await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=max_tokens,
                temperature=temperature,
            )

        completion = await call_with_retry(
            _call,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            sleep=self._sleep,
        )
        choices = getattr(completion, "choices", None) or []
        text = choices[0].message.content if choices else None
        return text or "Analysis unavailable."

    async def aclose(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
