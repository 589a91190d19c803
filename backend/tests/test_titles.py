from __future__ import annotations

import pytest

from courtline.schemas import League
from courtline.titles import (
    UNKNOWN_TEAM,
    detect_league,
    is_league_prop,
    is_real_matchup,
    parse_teams,
)


@pytest.mark.parametrize(
    "title,home,away",
    [
        ("Lakers vs Celtics", "Lakers", "Celtics"),
        ("Grizzlies vs. Lakers", "Grizzlies", "Lakers"),
        ("Knicks @ Bulls", "Bulls", "Knicks"),
        ("Warriors VS Suns", "Warriors", "Suns"),
    ],
)
def test_parse_teams(title, home, away):
    assert parse_teams(title) == (home, away)


def test_parse_teams_without_separator_is_unknown():
    assert parse_teams("NBA Champion 2026") == (UNKNOWN_TEAM, UNKNOWN_TEAM)
    assert parse_teams("") == (UNKNOWN_TEAM, UNKNOWN_TEAM)


def test_parse_teams_period_form_does_not_leak_dot():
    home, away = parse_teams("Heat vs. Magic")
    assert home == "Heat"
    assert not away.startswith(".")


@pytest.mark.parametrize(
    "title",
    ["NBA Winner 2026", "MVP Awards", "Western Conference Champion", "NBA Draft: Lakers vs Celtics pick"],
)
def test_speculative_titles_are_not_matchups(make_event, title):
    assert not is_real_matchup(make_event(title=title))


def test_real_matchup_requires_open_event(make_event):
    assert is_real_matchup(make_event(title="Lakers vs. Celtics"))
    assert is_real_matchup(make_event(title="Knicks @ Bulls"))
    assert not is_real_matchup(make_event(title="Lakers vs Celtics", closed=True))
    assert not is_real_matchup(make_event(title="Lakers vs Celtics", active=False))


def test_league_prop_is_open_non_matchup(make_event):
    assert is_league_prop(make_event(title="NBA Champion 2026"))
    assert not is_league_prop(make_event(title="Lakers vs Celtics"))
    assert not is_league_prop(make_event(title="NBA Champion 2026", closed=True))


def test_detect_league_from_title_category_and_tags(make_event):
    assert detect_league(make_event(title="NBA: Lakers vs Celtics")) is League.NBA
    assert detect_league(make_event(title="Duke vs UNC", category="March Madness")) is League.NCAA
    assert detect_league(make_event(title="Real Madrid vs Olympiacos", tags=["Euroleague"])) is League.EURO
    assert detect_league(make_event(title="Duke vs UNC", tags=["NCAA Basketball"])) is League.NCAA


def test_detect_league_falls_back_to_default(make_event):
    ev = make_event(title="Team A vs Team B")
    assert detect_league(ev) is League.ALL
    assert detect_league(ev, default=League.NBA) is League.NBA
