"""Fundamental decimal-odds mathematics: the single source of truth.

Every function here is **pure**: no I/O, no logging, no side effects.
Import from this module; never reimplement locally in services.

The pillars exposed are:

1. **Implied probability**: decimal price → percentage chance.
2. **Market hold**: how far a market's total implied probability sits
   above (bookmaker margin) or below (arbitrage) 100%.
3. **Fair price & expected value**: consensus probability across
   bookmakers, and the EV of a single price measured against it.

Design decisions
----------------
* Prices are **decimal odds** throughout (payout per unit staked, stake
  included).  The Odds API is queried with ``oddsFormat=decimal`` so no
  conversion happens at ingestion.
* :func:`implied_probability` returns full precision.  Rounding to two
  decimals happens only where a value leaves the engine; summing rounded
  probabilities would let the equal-payout invariant drift by more than a
  cent on three-way markets.

Run tests with::

    pytest tests/test_odds_math.py -v
"""

from __future__ import annotations

import math
from typing import Final, Iterable, Optional

from arb_scanner.core.errors import InputValidationError, InvalidPriceError

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

#: Minimum number of bookmakers quoting an outcome before a consensus
#: ("fair") probability is trusted.
DEFAULT_MIN_BOOKMAKERS: Final[int] = 3

#: Default stake used when expressing EV in currency units.
DEFAULT_EV_STAKE: Final[float] = 100.0


def validate_price(price: float) -> float:
    """Return ``price`` as a float, raising :class:`InvalidPriceError` if unusable."""
    try:
        value = float(price)
    except (TypeError, ValueError):
        raise InvalidPriceError(price, "not a number") from None
    if not math.isfinite(value) or value <= 0.0:
        raise InvalidPriceError(price)
    return value


# ---------------------------------------------------------------------------
# Implied probability
# ---------------------------------------------------------------------------


def implied_probability(price: float) -> float:
    """Implied win probability of a decimal price, as a percentage.

    Formula::

        implied = (1 / price) * 100

    Examples::

        implied_probability(2.0)  → 50.0
        implied_probability(4.0)  → 25.0
        implied_probability(1.5)  → 66.666…

    Args:
        price: Decimal odds, strictly positive.

    Returns:
        Unrounded percentage.  Strictly decreasing in ``price``.

    Raises:
        InvalidPriceError: If ``price`` is not a finite number > 0.
    """
    return (1.0 / validate_price(price)) * 100.0


def market_hold(prices: Iterable[float]) -> float:
    """Bookmaker hold of a full market, in percentage points.

    ``hold = Σ implied_i − 100``.  Positive values are the bookmaker margin;
    negative values mean the prices form an arbitrage.

    Raises:
        InputValidationError: If ``prices`` is empty.
    """
    prices = list(prices)
    if not prices:
        raise InputValidationError("market_hold requires at least one price.")
    total = sum(implied_probability(p) for p in prices)
    return round(total - 100.0, 2)


# ---------------------------------------------------------------------------
# Fair price and expected value
# ---------------------------------------------------------------------------


def fair_market_price(
    prices: Iterable[float],
    min_bookmakers: int = DEFAULT_MIN_BOOKMAKERS,
) -> Optional[float]:
    """Consensus probability for one outcome, averaged across bookmakers.

    Each bookmaker's implied probability for the same outcome is averaged.
    The result still contains the average bookmaker margin; it is a
    reference point for EV, not a vig-free estimate.

    Args:
        prices: Decimal prices for the *same* outcome from different books.
        min_bookmakers: Fewer quotes than this yields ``None``.

    Returns:
        Fair probability as a percentage rounded to 2dp, or ``None`` when
        there is not enough data.
    """
    prices = list(prices)
    if len(prices) < min_bookmakers or not prices:
        return None
    probabilities = [implied_probability(p) for p in prices]
    return round(sum(probabilities) / len(probabilities), 2)


def expected_value(
    price: float,
    fair_probability_pct: float,
    stake: float = DEFAULT_EV_STAKE,
) -> tuple[float, float]:
    """Expected value of backing ``price`` when the fair chance is known.

    ::

        EV% = (fair − implied) / implied × 100  =  (price × fair − 1) × 100

    A price longer than fair (lower implied probability) has positive EV.

    Args:
        price: Decimal price on offer.
        fair_probability_pct: Consensus probability, 0–100.
        stake: Currency amount the dollar figure is expressed against.

    Returns:
        ``(ev_percentage, ev_dollars)``, both rounded to 2dp.
    """
    if not 0.0 <= fair_probability_pct <= 100.0:
        raise InputValidationError(
            f"fair_probability_pct must be in [0, 100], got {fair_probability_pct!r}."
        )
    implied = 1.0 / validate_price(price)
    fair = fair_probability_pct / 100.0
    ev_pct = (fair - implied) / implied * 100.0
    ev_dollars = stake * ev_pct / 100.0
    return round(ev_pct, 2), round(ev_dollars, 2)
