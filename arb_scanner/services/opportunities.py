"""
Best-price selection and opportunity assembly.

Turns validated market snapshots into ranked opportunity lists:

    1. Best-price selector: per outcome, the single highest price across
       every bookmaker quoting the market (line shopping).
    2. Arbitrage assembler: runs the selector and the arbitrage evaluator
       over every event, filters by minimum profit, sorts by profit.
    3. Middles: spreads/totals where the best lines leave a gap in which
       both legs win.
    4. Positive EV: individual prices longer than the cross-book consensus.

Opportunities are immutable and built fresh on every run; nothing here
keeps history between calls.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from arb_scanner.core.arbitrage import (
    DEFAULT_TOTAL_STAKE,
    ArbitrageResult,
    Bet,
    evaluate_arbitrage,
)
from arb_scanner.core.errors import InputValidationError
from arb_scanner.core.odds_math import (
    DEFAULT_EV_STAKE,
    expected_value,
    fair_market_price,
    market_hold,
)
from arb_scanner.core.sport_config import DEFAULT_MARKET, SUPPORTED_MARKETS
from arb_scanner.schemas import DataSource, OddsApiEvent

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StakedBet:
    """A :class:`Bet` annotated with its stake and optional EV figures."""

    source: str
    outcome: str
    price: float
    stake: float
    ev: Optional[float] = None
    ev_dollars: Optional[float] = None


@dataclass(frozen=True)
class MiddleInfo:
    """Line gap details for a middle: both legs win inside the gap."""

    line1: float
    line2: float
    win_scenarios: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Opportunity:
    """One actionable finding for one event-market pair."""

    id: str
    event_id: str
    sport: str
    match: str
    market: str
    bets: tuple
    profit_percentage: float
    discovered_at: datetime
    source: DataSource
    commence_time: Optional[str] = None
    hold: Optional[float] = None
    middle: Optional[MiddleInfo] = None


@dataclass(frozen=True)
class HistoricalOddsRecord:
    """Flat price observation pushed to the external record store."""

    event_id: str
    bookmaker: str
    outcome: str
    price: float
    timestamp: datetime
    market: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _opportunity_id(event_id: str, market: str, at: datetime, suffix: str = "") -> str:
    millis = int(at.timestamp() * 1000)
    return f"{event_id}-{market}{suffix}-{millis}"


def _usable(price: float) -> bool:
    return math.isfinite(price) and price > 0


# ---------------------------------------------------------------------------
# Best-price selector
# ---------------------------------------------------------------------------

def _check_market(market_key: str) -> None:
    if market_key not in SUPPORTED_MARKETS:
        raise InputValidationError(
            f"Unsupported market {market_key!r}; expected one of {sorted(SUPPORTED_MARKETS)}."
        )


def select_best_prices(event: OddsApiEvent, market_key: str = DEFAULT_MARKET) -> List[Bet]:
    """Best available price per outcome of one market, across all bookmakers.

    Outcomes appear in the order they are first listed by any bookmaker.
    For each, the highest positive price wins.  On an exact tie the
    bookmaker that comes first in ``event.bookmakers`` keeps the outcome;
    later books must be strictly better to replace it.

    Spreads and totals are keyed by outcome name only; books hanging
    different points on the same side are compared on price alone.  Use
    :func:`find_middles` when the line itself matters.

    Returns:
        One :class:`Bet` per outcome with a usable price.  An empty list
        (market absent everywhere) or a single bet means "no opportunity",
        not an error.

    Raises:
        InputValidationError: If ``market_key`` is not supported.
    """
    _check_market(market_key)

    best: Dict[str, Optional[Bet]] = {}
    for bookmaker in event.bookmakers:
        market = bookmaker.market(market_key)
        if market is None:
            continue
        for outcome in market.outcomes:
            current = best.setdefault(outcome.name, None)
            if not _usable(outcome.price):
                continue
            if current is None or outcome.price > current.price:
                best[outcome.name] = Bet(
                    source=bookmaker.title, outcome=outcome.name, price=outcome.price
                )

    return [bet for bet in best.values() if bet is not None]


def prices_for_outcome(event: OddsApiEvent, outcome: str, market_key: str) -> List[float]:
    """Every usable price quoted for ``outcome`` across all bookmakers."""
    prices = []
    for bookmaker in event.bookmakers:
        market = bookmaker.market(market_key)
        if market is None:
            continue
        for o in market.outcomes:
            if o.name == outcome and _usable(o.price):
                prices.append(o.price)
                break
    return prices


def _stake_bets(
    event: OddsApiEvent,
    bets: Sequence[Bet],
    result: ArbitrageResult,
    market_key: str,
) -> tuple:
    staked = []
    for bet, stake in zip(bets, result.stakes):
        ev = ev_dollars = None
        fair = fair_market_price(prices_for_outcome(event, bet.outcome, market_key))
        if fair is not None:
            ev, ev_dollars = expected_value(bet.price, fair, stake)
        staked.append(
            StakedBet(
                source=bet.source,
                outcome=bet.outcome,
                price=bet.price,
                stake=stake,
                ev=ev,
                ev_dollars=ev_dollars,
            )
        )
    return tuple(staked)


# ---------------------------------------------------------------------------
# Arbitrage assembler
# ---------------------------------------------------------------------------

def find_arbitrage(
    event: OddsApiEvent,
    market_key: str = DEFAULT_MARKET,
    total_stake: float = DEFAULT_TOTAL_STAKE,
    source: DataSource = "live",
    now: Optional[datetime] = None,
) -> Optional[Opportunity]:
    """Arbitrage opportunity for a single event, or ``None``."""
    bets = select_best_prices(event, market_key)
    if len(bets) < 2:
        return None

    result = evaluate_arbitrage(bets, total_stake)
    if not result.has_arbitrage:
        return None

    at = now or _utcnow()
    return Opportunity(
        id=_opportunity_id(event.id, market_key, at),
        event_id=event.id,
        sport=event.sport_title,
        match=event.match,
        market=market_key,
        bets=_stake_bets(event, bets, result, market_key),
        profit_percentage=result.profit_percentage,
        discovered_at=at,
        source=source,
        commence_time=event.commence_time,
        hold=round(result.total_implied_probability - 100.0, 2),
    )


def find_opportunities(
    events: Iterable[OddsApiEvent],
    min_profit_pct: float = 0.0,
    market_key: str = DEFAULT_MARKET,
    total_stake: float = DEFAULT_TOTAL_STAKE,
    source: DataSource = "live",
    now: Optional[datetime] = None,
) -> List[Opportunity]:
    """Every arbitrage at or above ``min_profit_pct``, best first.

    The sort is stable: equal-profit opportunities keep their input order
    so consumers diffing successive polls do not see phantom reorders.
    """
    _check_market(market_key)
    at = now or _utcnow()

    opportunities = []
    for event in events:
        opp = find_arbitrage(event, market_key, total_stake, source=source, now=at)
        if opp is not None and opp.profit_percentage >= min_profit_pct:
            opportunities.append(opp)

    ranked = sorted(opportunities, key=lambda o: o.profit_percentage, reverse=True)
    logger.debug(
        "Arbitrage scan: %d opportunities (min_profit=%.2f%%, market=%s, source=%s)",
        len(ranked), min_profit_pct, market_key, source,
    )
    return ranked


# ---------------------------------------------------------------------------
# Middles
# ---------------------------------------------------------------------------

@dataclass
class _Line:
    bookmaker: str
    outcome: str
    price: float
    point: float


def _best_lines(event: OddsApiEvent, market_key: str) -> Dict[str, _Line]:
    """Highest-priced line per outcome name; first book wins ties."""
    best: Dict[str, _Line] = {}
    for bookmaker in event.bookmakers:
        market = bookmaker.market(market_key)
        if market is None:
            continue
        for o in market.outcomes:
            if o.point is None or not _usable(o.price):
                continue
            current = best.get(o.name)
            if current is None or o.price > current.price:
                best[o.name] = _Line(bookmaker.title, o.name, o.price, o.point)
    return best


def _format_point(point: float) -> str:
    text = f"{point:g}"
    return f"+{text}" if point >= 0 else text


def _middle_opportunity(
    event: OddsApiEvent,
    market_key: str,
    legs: List[_Line],
    labels: List[str],
    info: MiddleInfo,
    at: datetime,
    source: DataSource,
) -> Opportunity:
    bets = [Bet(leg.bookmaker, label, leg.price) for leg, label in zip(legs, labels)]
    result = evaluate_arbitrage(bets)
    return Opportunity(
        id=_opportunity_id(event.id, market_key, at, suffix="-middle"),
        event_id=event.id,
        sport=event.sport_title,
        match=event.match,
        market=market_key,
        bets=tuple(
            StakedBet(source=b.source, outcome=b.outcome, price=b.price, stake=s)
            for b, s in zip(bets, result.stakes)
        ),
        profit_percentage=result.profit_percentage,
        discovered_at=at,
        source=source,
        commence_time=event.commence_time,
        hold=market_hold(b.price for b in bets),
        middle=info,
    )


def find_middles(
    events: Iterable[OddsApiEvent],
    source: DataSource = "live",
    now: Optional[datetime] = None,
) -> List[Opportunity]:
    """Spread and total middles across bookmakers, best profit first.

    * Spreads: the best underdog line (``+x``) and best favourite line
      (``−y``) with ``x − y ≥ 1``.  Both win when the favourite wins by
      more than ``y`` and less than ``x``.
    * Totals: best Over line below best Under line by at least a point.
      Both win when the final total lands strictly between the lines.
    """
    at = now or _utcnow()
    middles = []

    for event in events:
        spreads = _best_lines(event, "spreads")
        dogs = [l for l in spreads.values() if l.point > 0]
        favs = [l for l in spreads.values() if l.point < 0]
        if dogs and favs:
            dog = max(dogs, key=lambda l: l.point)
            fav = max(favs, key=lambda l: l.point)
            gap = dog.point + fav.point
            if gap >= 1:
                margins = [
                    m for m in range(math.floor(abs(fav.point)) + 1, math.ceil(dog.point))
                    if abs(fav.point) < m < dog.point
                ]
                info = MiddleInfo(
                    line1=dog.point,
                    line2=fav.point,
                    win_scenarios=[
                        f"Win both if {fav.outcome} wins by "
                        + ", ".join(str(m) for m in margins)
                        + " points"
                    ] if margins else [],
                )
                middles.append(_middle_opportunity(
                    event, "spreads", [dog, fav],
                    [f"{dog.outcome} {_format_point(dog.point)}",
                     f"{fav.outcome} {_format_point(fav.point)}"],
                    info, at, source,
                ))

        totals = _best_lines(event, "totals")
        over, under = totals.get("Over"), totals.get("Under")
        if over and under and under.point - over.point >= 1:
            scores = [
                s for s in range(math.floor(over.point) + 1, math.ceil(under.point))
                if over.point < s < under.point
            ]
            info = MiddleInfo(
                line1=over.point,
                line2=under.point,
                win_scenarios=[
                    "Win both if total is: " + ", ".join(str(s) for s in scores)
                ] if scores else [],
            )
            middles.append(_middle_opportunity(
                event, "totals", [over, under],
                [f"Over {over.point:g}", f"Under {under.point:g}"],
                info, at, source,
            ))

    return sorted(middles, key=lambda o: o.profit_percentage, reverse=True)


# ---------------------------------------------------------------------------
# Positive expected value
# ---------------------------------------------------------------------------

def find_positive_ev_opportunities(
    events: Iterable[OddsApiEvent],
    min_ev_pct: float = 0.0,
    market_key: str = DEFAULT_MARKET,
    stake: float = DEFAULT_EV_STAKE,
    source: DataSource = "live",
    now: Optional[datetime] = None,
) -> List[Opportunity]:
    """Prices that beat the cross-book consensus by at least ``min_ev_pct``.

    An event qualifies only when every outcome has a fair price (enough
    bookmakers quoting it).  +EV bets carry no guaranteed profit, so
    ``profit_percentage`` is 0; results are ranked by their best EV.
    """
    _check_market(market_key)
    at = now or _utcnow()
    opportunities = []

    for event in events:
        outcomes = [b.outcome for b in select_best_prices(event, market_key)]
        if not outcomes:
            continue
        fair = {o: fair_market_price(prices_for_outcome(event, o, market_key)) for o in outcomes}
        if any(v is None for v in fair.values()):
            continue

        positive = []
        for outcome in outcomes:
            for bookmaker in event.bookmakers:
                market = bookmaker.market(market_key)
                if market is None:
                    continue
                quote = next((o for o in market.outcomes if o.name == outcome), None)
                if quote is None or not _usable(quote.price):
                    continue
                ev, ev_dollars = expected_value(quote.price, fair[outcome], stake)
                if ev >= min_ev_pct:
                    positive.append(StakedBet(
                        source=bookmaker.title,
                        outcome=outcome,
                        price=quote.price,
                        stake=stake,
                        ev=ev,
                        ev_dollars=ev_dollars,
                    ))

        if not positive:
            continue
        positive.sort(key=lambda b: b.ev, reverse=True)
        opportunities.append(Opportunity(
            id=_opportunity_id(event.id, market_key, at, suffix="-ev"),
            event_id=event.id,
            sport=event.sport_title,
            match=event.match,
            market=market_key,
            bets=tuple(positive),
            profit_percentage=0.0,
            discovered_at=at,
            source=source,
            commence_time=event.commence_time,
        ))

    return sorted(opportunities, key=lambda o: max(b.ev for b in o.bets), reverse=True)


# ---------------------------------------------------------------------------
# History export
# ---------------------------------------------------------------------------

def historical_odds_rows(
    events: Iterable[OddsApiEvent],
    timestamp: Optional[datetime] = None,
) -> List[HistoricalOddsRecord]:
    """Flatten snapshots into one record per bookmaker/market/outcome price."""
    at = timestamp or _utcnow()
    rows = []
    for event in events:
        for bookmaker in event.bookmakers:
            for market in bookmaker.markets:
                for outcome in market.outcomes:
                    rows.append(HistoricalOddsRecord(
                        event_id=event.id,
                        bookmaker=bookmaker.title,
                        outcome=outcome.name,
                        price=outcome.price,
                        timestamp=at,
                        market=market.key,
                    ))
    return rows
