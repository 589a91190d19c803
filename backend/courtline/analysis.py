"""LLM market analysis: prompt, call, parse, cache.

The model is asked for markdown followed by a fenced JSON object. Responses
are parsed with an ordered list of strategies; every strategy swallows its
own decode error so a broken block can fall through to a well-formed
sibling, and a response with no usable JSON still yields a displayable
result built on ``default_structured_data``.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import math
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .cache import Cache
from .errors import AnalysisError
from .llm import LLMClient, LLMRateLimitedError, QuotaExceededError
from .rate_limit import RateLimiter
from .types import AnalysisResult, ParsedAnalysis

log = logging.getLogger(__name__)

ANALYSIS_TYPES = ("game", "prop")
RATE_LIMIT_PROVIDER = "openai"
CACHE_PREFIX = "openai:analysis"

_GAME_DEFAULT: Dict[str, Any] = {
    "confidence": 50,
    "edgeScore": 5,
    "marketBias": "unclear",
    "recommendedSide": "none",
    "recommendationReason": "Unable to parse structured analysis. Please review the markdown analysis above.",
    "keyFactors": [
        {"label": "Pace", "impact": 0},
        {"label": "Offensive Efficiency", "impact": 0},
        {"label": "Defensive Matchup", "impact": 0},
        {"label": "Market Sentiment", "impact": 0},
    ],
    "charts": {
        "probabilityComparison": {"modelProbability": 50, "marketImpliedProbability": 50},
        "riskDistribution": [
            {"factor": "Injuries", "weight": 33},
            {"factor": "Pace Variance", "weight": 33},
            {"factor": "Blowout Risk", "weight": 34},
        ],
    },
}

_PROP_DEFAULT: Dict[str, Any] = {
    "confidence": 50,
    "edgeScore": 5,
    "marketBias": "unclear",
    "recommendedOption": "none",
    "recommendationReason": "Unable to parse structured analysis. Please review the markdown analysis above.",
    "keyFactors": [
        {"label": "Statistical Edge", "impact": 0},
        {"label": "Market Pricing", "impact": 0},
        {"label": "Value Opportunity", "impact": 0},
        {"label": "Risk Assessment", "impact": 0},
        {"label": "Market Sentiment", "impact": 0},
    ],
    "charts": {
        "probabilityComparison": {"modelProbability": 50, "marketImpliedProbability": 50},
        "riskDistribution": [
            {"factor": "Statistical Variance", "weight": 25},
            {"factor": "Information Asymmetry", "weight": 25},
            {"factor": "Timing Risk", "weight": 25},
            {"factor": "Market Volatility", "weight": 25},
        ],
    },
}


def default_structured_data(analysis_type: str) -> Dict[str, Any]:
    return copy.deepcopy(_GAME_DEFAULT if analysis_type == "game" else _PROP_DEFAULT)


# ====================================================================================
# Response parsing
# ====================================================================================

_FENCE_RE = re.compile(r"```[ \t]*([A-Za-z0-9_+-]*)[ \t]*\r?\n?([\s\S]*?)```")
_NESTED_OBJ_RE = re.compile(r"\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}")

# A candidate is (json text, markdown left over when it is consumed).
Candidate = Tuple[str, str]


def _cut(text: str, start: int, end: int) -> str:
    return (text[:start] + text[end:]).strip()


def _tagged_blocks(text: str) -> Iterable[Candidate]:
    for m in _FENCE_RE.finditer(text):
        if m.group(1).lower() == "json":
            yield m.group(2).strip(), _cut(text, m.start(), m.end())


def _untagged_blocks(text: str) -> Iterable[Candidate]:
    for m in _FENCE_RE.finditer(text):
        body = m.group(2).strip()
        if not m.group(1) and body.startswith("{") and body.endswith("}"):
            yield body, _cut(text, m.start(), m.end())


def _trailing_object(text: str) -> Iterable[Candidate]:
    stripped = text.rstrip()
    if not stripped.endswith("}"):
        return
    start = stripped.find("{")
    while start != -1:
        yield stripped[start:], stripped[:start].strip()
        start = stripped.find("{", start + 1)


def _embedded_objects(text: str) -> Iterable[Candidate]:
    for m in _NESTED_OBJ_RE.finditer(text):
        yield m.group(0), _cut(text, m.start(), m.end())


STRATEGIES: List[Tuple[str, Callable[[str], Iterable[Candidate]]]] = [
    ("json_block", _tagged_blocks),
    ("code_block", _untagged_blocks),
    ("trailing_object", _trailing_object),
    ("embedded_object", _embedded_objects),
]


def parse_analysis_response(text: str, analysis_type: str) -> ParsedAnalysis:
    """Split a model response into markdown and a structured JSON object.

    Strategies are tried in order, and within a strategy every candidate is
    tried in position order. Only a JSON *object* counts as success. When all
    strategies fail the full text is the markdown and the structured data is
    the default object for ``analysis_type`` (``used_fallback=True``).
    """

    text = text or ""
    for name, candidates in STRATEGIES:
        for blob, markdown in candidates(text):
            try:
                data = json.loads(blob)
            except ValueError:
                log.debug("analysis: %s candidate did not decode", name)
                continue
            if isinstance(data, dict):
                return ParsedAnalysis(markdown=markdown, structured_data=data, strategy=name)

    log.warning(
        "analysis: no structured JSON in response (len=%d), using defaults; preview=%r",
        len(text), text[:200],
    )
    return ParsedAnalysis(
        markdown=text.strip(),
        structured_data=default_structured_data(analysis_type),
        strategy="default",
        used_fallback=True,
    )


# ====================================================================================
# Fallback body and prompts
# ====================================================================================

def fallback_analysis(analysis_type: str, retry_after: Optional[int] = None, model: Optional[str] = None) -> str:
    """Markdown shown in place of an analysis whenever one cannot be produced."""
    subject = "Game" if analysis_type == "game" else "Market"
    retry_info = f"in {math.ceil(retry_after / 60)} minutes" if retry_after else "automatically"
    model_info = f" ({model})" if model else ""
    return (
        "## Analysis Temporarily Unavailable\n\n"
        f"{subject} analysis could not be generated right now. Real-time analysis will resume shortly.\n\n"
        "## Retry Information\n\n"
        f"Rate limit will reset {retry_info}. Please try again later.\n\n"
        "## Model Information\n\n"
        f"Using OpenAI{model_info} for analysis generation."
    )


SYSTEM_PROMPT = (
    "You are a senior sports analytics assistant and basketball betting analyst. "
    "Respond with markdown analysis followed by one valid JSON object wrapped in "
    "triple backticks with the 'json' language tag."
)


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    for k in keys:
        if data.get(k) is not None:
            return data[k]
    return None


def _cents(p: Any) -> str:
    try:
        return f"{round(float(p) * 100)}c"
    except (TypeError, ValueError):
        return "N/A"


def _volume(v: Any) -> str:
    try:
        return f"${float(v):,.0f}"
    except (TypeError, ValueError):
        return "N/A"


def _side_price(side: Any) -> Any:
    return side.get("price") if isinstance(side, dict) else side


def build_game_prompt(data: Dict[str, Any]) -> str:
    home = _pick(data, "home_team", "homeTeam") or "Home"
    away = _pick(data, "away_team", "awayTeam") or "Away"
    ml = data.get("moneyline") or None
    spread = data.get("spread") or None
    total = data.get("total") or None

    ml_line = (
        f"{away} {_cents(_side_price(ml.get('away')))} / {home} {_cents(_side_price(ml.get('home')))}"
        if isinstance(ml, dict) else "N/A"
    )
    spread_line = (
        f"{home} {spread.get('line')} (Home {_cents(spread.get('home'))} / Away {_cents(spread.get('away'))})"
        if isinstance(spread, dict) else "N/A"
    )
    total_line = (
        f"O/U {total.get('line')} (Over {_cents(total.get('over'))} / Under {_cents(total.get('under'))})"
        if isinstance(total, dict) else "N/A"
    )

    return "\n".join([
        "Analyze this basketball game for bettors.",
        "",
        "GAME CONTEXT:",
        f"- Matchup: {away} @ {home}",
        f"- Start Time: {_pick(data, 'start_time', 'startTime') or 'N/A'}",
        f"- Volume Traded: {_volume(data.get('volume'))}",
        "",
        "CURRENT MARKET LINES:",
        f"- Moneyline: {ml_line}",
        f"- Spread: {spread_line}",
        f"- Total: {total_line}",
        "",
        "PART 1: markdown sections Game Context & Stakes, Statistical Matchup Breakdown, "
        "Home/Away Dynamics & Recent Form, Key Matchups & Tactical Factors, Market & Line Analysis. "
        "Two to three sentences each, no emojis, no guarantees.",
        "",
        "PART 2: a ```json block with keys confidence (0-100), edgeScore (0-10), marketBias, "
        "recommendedSide (home|away|over|under|none), recommendationReason, "
        "keyFactors [{label, impact -5..5}], charts {probabilityComparison "
        "{modelProbability, marketImpliedProbability}, riskDistribution [{factor, weight}]}.",
    ])


def build_prop_prompt(data: Dict[str, Any]) -> str:
    question = _pick(data, "question", "title", "prop_title") or "N/A"
    outcomes = data.get("outcomes") or []
    prices = data.get("outcome_prices") or []

    lines: List[str] = []
    for i, o in enumerate(outcomes):
        if isinstance(o, dict):
            name, price = o.get("name"), o.get("price")
        else:
            name, price = o, prices[i] if i < len(prices) else None
        lines.append(f"{i + 1}. {name}: {_cents(price)}")

    return "\n".join([
        "Analyze this basketball prop or futures market for bettors.",
        "",
        "MARKET CONTEXT:",
        f"- Market Question: {question}",
        f"- Total Volume Traded: {_volume(data.get('volume'))}",
        f"- Number of Options: {len(outcomes)}",
        "",
        "OPTIONS AND PRICES:",
        "\n".join(lines) or "N/A",
        "",
        "PART 1: markdown sections Market Overview, Statistical Analysis, Market Efficiency, "
        "Value Assessment, Risk Factors. Two to three sentences each, no emojis, no guarantees.",
        "",
        "PART 2: a ```json block with keys confidence (0-100), edgeScore (0-10), marketBias, "
        "recommendedOption (an option name or none), recommendationReason, "
        "keyFactors [{label, impact -5..5}], charts {probabilityComparison "
        "{modelProbability, marketImpliedProbability}, riskDistribution [{factor, weight}]}.",
    ])


def analysis_cache_key(analysis_type: str, data: Dict[str, Any]) -> str:
    blob = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
    return f"{CACHE_PREFIX}:{analysis_type}:{hashlib.sha256(blob).hexdigest()}"


# ====================================================================================
# Orchestrator
# ====================================================================================

class AnalysisOrchestrator:
    def __init__(
        self,
        llm: LLMClient,
        cache: Cache,
        limiter: RateLimiter,
        *,
        cache_ttl: int = 300,
    ) -> None:
        self.llm = llm
        self.cache = cache
        self.limiter = limiter
        self.cache_ttl = cache_ttl

    def _error(self, analysis_type: str, message: str, *, code: str, status_code: int,
               retry_after: Optional[int] = None) -> AnalysisError:
        return AnalysisError(
            message,
            code=code,
            status_code=status_code,
            retry_after=retry_after,
            fallback=fallback_analysis(analysis_type, retry_after, self.llm.model),
        )

    def _result(self, parsed: ParsedAnalysis, raw: str, *, cached: bool) -> AnalysisResult:
        return AnalysisResult(
            analysis=parsed.markdown,
            structured_data=parsed.structured_data,
            raw_response=raw,
            model=self.llm.model,
            provider=self.llm.provider,
            cached=cached,
            used_fallback=parsed.used_fallback,
        )

    async def analyze(self, analysis_type: str, market_snapshot: Any) -> AnalysisResult:
        """Produce markdown plus structured data for a game or prop snapshot.

        Raises :class:`AnalysisError` (always carrying ``fallback`` markdown)
        when the request is invalid, no API key is configured, the local rate
        limit is exhausted or the provider call fails.
        """

        if analysis_type not in ANALYSIS_TYPES:
            raise self._error("game", f"unknown analysis type {analysis_type!r}",
                              code="INVALID_REQUEST", status_code=400)
        if not isinstance(market_snapshot, dict):
            raise self._error(analysis_type, "analysis data must be an object",
                              code="INVALID_REQUEST", status_code=400)
        if not self.llm.configured:
            raise self._error(analysis_type, "OpenAI API key not configured",
                              code="LLM_NOT_CONFIGURED", status_code=503)

        key = analysis_cache_key(analysis_type, market_snapshot)
        cached = await self.cache.get(key)
        if isinstance(cached, str) and cached:
            log.debug("analysis: cache hit %s", key[:60])
            return self._result(parse_analysis_response(cached, analysis_type), cached, cached=True)

        rl = await self.limiter.check(RATE_LIMIT_PROVIDER)
        if not rl.allowed:
            raise self._error(
                analysis_type,
                f"OpenAI rate limit reached ({self.limiter.limit} requests/minute)",
                code="LLM_RATE_LIMITED", status_code=429, retry_after=rl.retry_after,
            )

        prompt = build_game_prompt(market_snapshot) if analysis_type == "game" else build_prop_prompt(market_snapshot)
        max_tokens = 2500 if analysis_type == "game" else 2000
        try:
            text = await self.llm.complete(SYSTEM_PROMPT, prompt, max_tokens=max_tokens)
        except QuotaExceededError as e:
            raise self._error(analysis_type, "OpenAI quota exceeded",
                              code="LLM_QUOTA_EXCEEDED", status_code=402) from e
        except LLMRateLimitedError as e:
            raise self._error(analysis_type, "OpenAI rate limit reached",
                              code="LLM_RATE_LIMITED", status_code=429, retry_after=e.retry_after) from e
        except Exception as e:
            log.exception("analysis: provider call failed")
            raise self._error(analysis_type, str(e) or "Failed to generate analysis",
                              code="LLM_ERROR", status_code=500) from e

        parsed = parse_analysis_response(text, analysis_type)
        await self.cache.set(key, text, self.cache_ttl)

        log.info(
            "analysis generated type=%s model=%s strategy=%s keys=%s markdown_len=%d used_fallback=%s",
            analysis_type, self.llm.model, parsed.strategy,
            sorted(parsed.structured_data.keys()), len(parsed.markdown), parsed.used_fallback,
        )
        return self._result(parsed, text, cached=False)
