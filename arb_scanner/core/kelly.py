"""Kelly criterion stake sizing.

All functions here are **pure**: no I/O, no logging.

The Kelly sizer is independent of the arbitrage evaluator.  It is meant for
single-sided speculative bets where the true win probability is an
*external* estimate (a consensus price, a model, a tipster) rather than
something derived from the prices on offer.

Design decisions
----------------
* **Fractional Kelly** is applied as a multiplier (default one half).  Full
  Kelly maximises long-run log-wealth only when the edge estimate is exact;
  a conservative multiplier keeps the stake sane when it is not.
* A negative edge is clamped to zero *before* the multiplier, so a bad bet
  never yields a negative stake regardless of ``fraction``.

Run tests with::

    pytest tests/test_kelly.py -v
"""

from __future__ import annotations

from typing import Final

from arb_scanner.core.errors import InputValidationError, InvalidPriceError
from arb_scanner.core.odds_math import validate_price

#: Default fractional multiplier applied to full Kelly (half-Kelly).
DEFAULT_KELLY_FRACTION: Final[float] = 0.5


def kelly_fraction(price: float, true_probability_pct: float) -> float:
    """Full-Kelly fraction of bankroll for a win/loss bet, clamped at zero.

    The closed-form solution (Kelly 1956)::

        f*  =  (b · p − q) / b

    where ``b = price − 1`` is the net profit per unit, ``p`` the true win
    probability and ``q = 1 − p``.

    Args:
        price: Decimal odds, must be > 1.0 (otherwise ``b ≤ 0``).
        true_probability_pct: Estimated true win probability, 0–100.

    Returns:
        ``max(0, f*)`` as a fraction of bankroll.

    Raises:
        InvalidPriceError: If ``price <= 1.0``.
        InputValidationError: If the probability is outside ``[0, 100]``.
    """
    price = validate_price(price)
    if price <= 1.0:
        raise InvalidPriceError(price, "Kelly sizing needs a price > 1.0")
    if not 0.0 <= true_probability_pct <= 100.0:
        raise InputValidationError(
            f"true_probability_pct must be in [0, 100], got {true_probability_pct!r}."
        )

    b = price - 1.0
    p = true_probability_pct / 100.0
    q = 1.0 - p
    return max(0.0, (b * p - q) / b)


def kelly_stake(
    price: float,
    true_probability_pct: float,
    bankroll: float,
    fraction: float = DEFAULT_KELLY_FRACTION,
) -> float:
    """Risk-adjusted stake in currency units.

    ``stake = bankroll · max(0, f*) · fraction``, rounded to 2dp.

    Examples::

        kelly_stake(2.0, 60, 1000)                → 100.0   (half-Kelly)
        kelly_stake(2.0, 60, 1000, fraction=1.0)  → 200.0
        kelly_stake(1.5, 50, 1000)                → 0.0     (negative edge)

    Raises:
        InputValidationError: If ``bankroll < 0`` or ``fraction`` is not
            in ``(0, 1]``.
    """
    if bankroll < 0:
        raise InputValidationError(f"bankroll must be >= 0, got {bankroll!r}.")
    if not 0.0 < fraction <= 1.0:
        raise InputValidationError(f"fraction must be in (0, 1], got {fraction!r}.")

    full = kelly_fraction(price, true_probability_pct)
    return round(bankroll * full * fraction, 2)
