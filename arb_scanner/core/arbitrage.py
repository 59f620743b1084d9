"""Arbitrage detection and equal-payout stake allocation.

Given one price per outcome (each the best available from some bookmaker),
:func:`evaluate_arbitrage` decides whether the market can be beaten and how
to split a fixed total stake so that every outcome pays the same amount.

Derivation
----------
Let ``p_i = 100 / price_i`` be the implied probability of outcome *i* and
``T = Σ p_i``.  Staking ``s_i`` on every outcome returns ``s_i · price_i``
if outcome *i* wins.  Requiring the payout to be equal for every *i*::

    s_i · price_i = K     for all i
    Σ s_i = S        ⇒    K = S · 100 / T
                     ⇒    s_i = S · p_i / T                     (1)

The position is profitable in every world iff ``K > S``, i.e. ``T < 100``.
The guaranteed profit as a percentage of ``S`` is ``(100 / T − 1) · 100``.

Equation (1) is the *only* split with equal payouts, so it is the invariant
tests assert on: ``stake_i · price_i`` must agree across outcomes to within
a cent for the exact split, and to within a cent times the largest price
once stakes are rounded.

Run tests with::

    pytest tests/test_arbitrage.py -v
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final, Sequence

from arb_scanner.core.errors import InputValidationError
from arb_scanner.core.odds_math import implied_probability

#: Default total stake the split is expressed against.
DEFAULT_TOTAL_STAKE: Final[float] = 1000.0

#: Tolerance (currency units) used by :func:`payouts_are_equal`.
PAYOUT_TOLERANCE: Final[float] = 0.01


@dataclass(frozen=True)
class Bet:
    """A single bookmaker's best price on one outcome of a market."""

    source: str
    outcome: str
    price: float


@dataclass(frozen=True)
class ArbitrageResult:
    """Outcome of :func:`evaluate_arbitrage`.

    ``stakes`` and ``implied_probabilities`` follow the input bet order.
    When ``has_arbitrage`` is False the stakes are still the proportional
    split but carry no guarantee; callers must not present them as a
    position.

    ``exact_stakes`` holds the unrounded split for callers that chain
    further arithmetic on it (payout checks, scaling to a bankroll).
    """

    has_arbitrage: bool
    profit_percentage: float
    stakes: tuple[float, ...]
    implied_probabilities: tuple[float, ...]
    total_implied_probability: float
    exact_stakes: tuple[float, ...] = field(default=(), repr=False, compare=False)


def evaluate_arbitrage(
    bets: Sequence[Bet],
    total_stake: float = DEFAULT_TOTAL_STAKE,
) -> ArbitrageResult:
    """Evaluate a set of competing prices for a guaranteed profit.

    Works for any number of outcomes ≥ 2 (two-way moneylines, three-way
    soccer markets, …).

    Args:
        bets: One :class:`Bet` per outcome, in the order results are wanted.
        total_stake: Amount to distribute across outcomes.

    Returns:
        :class:`ArbitrageResult` with every numeric field rounded to 2dp.
        "No arbitrage" is a normal result with ``profit_percentage == 0``.

    Raises:
        InputValidationError: Fewer than two bets or ``total_stake <= 0``.
        InvalidPriceError: Any price that is not > 0.

    Examples::

        evaluate_arbitrage([Bet("A", "x", 2.10), Bet("B", "y", 2.10)])
        → has_arbitrage=True, profit_percentage=5.0, stakes=(500.0, 500.0)

        The 5.0% is return on the total stake (1050 back on 1000).  As a
        share of the payout the same edge is ``100 − T = 4.76``.
    """
    if len(bets) < 2:
        raise InputValidationError(
            f"Arbitrage needs at least 2 outcomes, got {len(bets)}."
        )
    if not total_stake > 0:
        raise InputValidationError(f"total_stake must be > 0, got {total_stake!r}.")

    probabilities = [implied_probability(bet.price) for bet in bets]
    total = sum(probabilities)
    has_arbitrage = total < 100.0

    profit = (100.0 / total - 1.0) * 100.0 if has_arbitrage else 0.0
    stakes = [total_stake * (p / total) for p in probabilities]

    return ArbitrageResult(
        has_arbitrage=has_arbitrage,
        profit_percentage=round(profit, 2),
        stakes=tuple(round(s, 2) for s in stakes),
        implied_probabilities=tuple(round(p, 2) for p in probabilities),
        total_implied_probability=round(total, 2),
        exact_stakes=tuple(stakes),
    )


def payouts(bets: Sequence[Bet], stakes: Sequence[float]) -> list[float]:
    """Gross return for each outcome if that outcome wins."""
    if len(bets) != len(stakes):
        raise InputValidationError(
            f"{len(bets)} bets but {len(stakes)} stakes; lengths must match."
        )
    return [stake * bet.price for bet, stake in zip(bets, stakes)]


def payouts_are_equal(
    bets: Sequence[Bet],
    stakes: Sequence[float],
    tolerance: float = PAYOUT_TOLERANCE,
) -> bool:
    """Check that every outcome's payout is within ``tolerance`` of the first.

    The tolerance is scaled by the largest price because each stake is
    rounded to a cent, and a half-cent rounding error is multiplied by the
    price when it becomes a payout.
    """
    values = payouts(bets, stakes)
    if not values:
        return True
    scaled = tolerance * max(1.0, max(bet.price for bet in bets))
    first = values[0]
    return all(abs(v - first) <= scaled for v in values)
