"""Team and matchup heuristics over free-text event titles.

Upstream events carry no structured home/away fields, so the matchup is read
from the title:

``"Away @ Home"``
    The ``@`` form lists the visitor first, so the split is reversed.
``"Home vs. Away"`` / ``"Home vs Away"``
    The period-qualified token is checked before the plain one so that the
    shorter separator never matches inside the longer one.

A title with no separator parses to the ``UNKNOWN_TEAM`` sentinel on both
sides. That is a silent degradation: callers treat it as "unparseable
matchup" rather than an error.
"""

from __future__ import annotations

from typing import Iterable, Optional, Tuple

from .schemas import League
from .types import RawEvent

__all__ = [
    "UNKNOWN_TEAM",
    "parse_teams",
    "has_matchup_separator",
    "is_speculative_title",
    "is_real_matchup",
    "is_league_prop",
    "detect_league",
]

UNKNOWN_TEAM = "Unknown"

_AT = " @ "
_VS_DOT = " vs. "
_VS = " vs "

# Season-long futures that can still look like "X vs Y" in edge cases.
SPECULATIVE_KEYWORDS = ("winner", "champion", "award", "draft")


def parse_teams(title: str) -> Tuple[str, str]:
    """Return ``(home_team, away_team)`` parsed from ``title``."""

    text = title or ""
    lowered = text.lower()
    for sep in (_AT, _VS_DOT, _VS):
        idx = lowered.find(sep)
        if idx < 0:
            continue
        left = text[:idx].strip() or UNKNOWN_TEAM
        right = text[idx + len(sep):].strip() or UNKNOWN_TEAM
        if sep == _AT:
            return right, left
        return left, right
    return UNKNOWN_TEAM, UNKNOWN_TEAM


def has_matchup_separator(title: str) -> bool:
    lowered = (title or "").lower()
    return _AT in lowered or _VS_DOT in lowered or _VS in lowered


def is_speculative_title(title: str) -> bool:
    lowered = (title or "").lower()
    return any(k in lowered for k in SPECULATIVE_KEYWORDS)


def is_real_matchup(event: RawEvent) -> bool:
    return (
        has_matchup_separator(event.title)
        and not is_speculative_title(event.title)
        and event.is_open
    )


def is_league_prop(event: RawEvent) -> bool:
    return not has_matchup_separator(event.title) and event.is_open


def _league_from_text(text: str) -> Optional[League]:
    upper = text.upper()
    if "NBA" in upper:
        return League.NBA
    if "NCAA" in upper or "MARCH MADNESS" in upper:
        return League.NCAA
    if "EURO" in upper:
        return League.EURO
    return None


def detect_league(event: RawEvent, default: League = League.ALL) -> League:
    """Infer the league from title and category first, then tag labels."""

    found = _league_from_text(f"{event.title} {event.category or ''}")
    if found:
        return found
    for label in _labels(event.tags):
        found = _league_from_text(label)
        if found:
            return found
    return default


def _labels(tags: Iterable[str]) -> Iterable[str]:
    return (t for t in tags or () if t)
