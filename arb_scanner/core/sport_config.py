"""Sport registry: league keys and user-facing sport categories.

This module is the **registry** for every sport identifier the scanner
understands.  Nowhere else in the codebase should The Odds API sport keys
or category groupings be hard-coded.

Architecture
------------
:class:`SportCategory` is a frozen dataclass naming a user-friendly group
("soccer", "basketball", …) and the league keys it expands to.
:func:`expand_sports` turns whatever the caller sent (categories, league
keys, ``"all"``, ``"upcoming"``) into a de-duplicated, order-preserving
list of league keys suitable for one request per sport.

Typical usage::

    from arb_scanner.core.sport_config import expand_sports

    expand_sports(["basketball", "soccer_epl"])
    # → ["basketball_nba", "basketball_ncaab", "soccer_epl"]
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Iterable, Optional

#: Pseudo-sport accepted by The Odds API: next games plus live games across
#: every sport.
UPCOMING: Final[str] = "upcoming"

#: Category that expands to every supported league.
ALL: Final[str] = "all"

#: Every league key the scanner will request.
SUPPORTED_SPORTS: Final[tuple[str, ...]] = (
    UPCOMING,
    "americanfootball_nfl",
    "americanfootball_ncaaf",
    "basketball_nba",
    "basketball_ncaab",
    "baseball_mlb",
    "icehockey_nhl",
    "soccer_epl",
    "soccer_spain_la_liga",
    "soccer_germany_bundesliga",
    "soccer_italy_serie_a",
    "soccer_france_ligue_one",
    "soccer_usa_mls",
    "tennis_atp",
    "tennis_wta",
    "mma_mixed_martial_arts",
    "aussierules_afl",
    "rugbyleague_nrl",
)

#: Market keys the best-price selector knows how to read.
SUPPORTED_MARKETS: Final[frozenset[str]] = frozenset({"h2h", "spreads", "totals"})

#: Market used for arbitrage scans unless the caller asks otherwise.
DEFAULT_MARKET: Final[str] = "h2h"


@dataclass(frozen=True)
class SportCategory:
    """A user-facing sport group and the league keys behind it.

    Attributes:
        name: Category identifier sent by clients (``"soccer"``).
        leagues: League keys requested from the provider, in display order.
    """

    name: str
    leagues: tuple[str, ...]


CATEGORIES: Final[dict[str, SportCategory]] = {
    c.name: c
    for c in (
        SportCategory(
            "soccer",
            (
                "soccer_epl",
                "soccer_spain_la_liga",
                "soccer_germany_bundesliga",
                "soccer_italy_serie_a",
                "soccer_france_ligue_one",
                "soccer_usa_mls",
            ),
        ),
        SportCategory("basketball", ("basketball_nba", "basketball_ncaab")),
        SportCategory("football", ("americanfootball_nfl", "americanfootball_ncaaf")),
        SportCategory("baseball", ("baseball_mlb",)),
        SportCategory("hockey", ("icehockey_nhl",)),
        SportCategory("mma", ("mma_mixed_martial_arts",)),
    )
}

#: League keys covered by ``"all"`` (every category, in category order).
ALL_LEAGUES: Final[tuple[str, ...]] = tuple(
    league for category in CATEGORIES.values() for league in category.leagues
)


def is_valid_sport_input(value: str) -> bool:
    """True for a known category, ``"all"``, or a supported league key."""
    return value in CATEGORIES or value == ALL or value in SUPPORTED_SPORTS


def expand_sports(inputs: Optional[Iterable[str]]) -> list[str]:
    """Map categories and league keys to a unique, ordered league list.

    An empty or ``None`` input means ``["upcoming"]``.  Unknown values are
    passed through unchanged so new leagues work without a code change; the
    request schema is where strict validation happens.
    """
    requested = [s.strip() for s in (inputs or []) if s and s.strip()]
    if not requested:
        return [UPCOMING]

    expanded: list[str] = []
    for value in requested:
        if value == ALL:
            expanded.extend(ALL_LEAGUES)
        elif value in CATEGORIES:
            expanded.extend(CATEGORIES[value].leagues)
        else:
            expanded.append(value)

    return list(dict.fromkeys(expanded))
