"""
Cost model for a negRisk basket. Every cost is expressed as a fraction of the
deployed notional, the same unit as gross edge.

- Fees: fee_rate x leg notional on every leg, so fee_rate of total notional.
  An unknown fee rate stays unknown (None); it is never replaced by a guess.
- Slippage: depth-weighted fill within the price-impact band vs best ask.
- Settlement: on-chain convert cost for the NO basket, from a pluggable estimator.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from scanner.depth import DEFAULT_PRICE_BAND, walk_notional
from scanner.models import OpportunityType, OutcomeLeg, PriceLevel

logger = logging.getLogger(__name__)


@runtime_checkable
class SettlementCostEstimator(Protocol):
    """Estimates the USD cost of settling (converting) an n-leg basket."""

    def estimate_usd(self, n_legs: int) -> float: ...


def estimate_fees(fee_rate: float | None) -> float | None:
    """Fee cost as a fraction of notional. None when the rate is unknown."""
    if fee_rate is None:
        return None
    return fee_rate


def leg_deployable_depth(leg: OutcomeLeg) -> float:
    return leg.depth if leg.depth > 0 else 0.0


def max_deployable_notional(legs: list[OutcomeLeg] | tuple[OutcomeLeg, ...]) -> float:
    """All legs fill together, so the thinnest leg bounds the basket."""
    if not legs:
        return 0.0
    return min(leg_deployable_depth(leg) for leg in legs)


def leg_slippage_cost(
    levels: tuple[PriceLevel, ...],
    best_price: float,
    fill_notional: float,
) -> float:
    """
    USD paid above the best price when spending `fill_notional` across the
    in-band levels: fill - shares * best.
    """
    if fill_notional <= 0 or not levels:
        return 0.0
    shares = walk_notional(levels, fill_notional)
    return max(0.0, fill_notional - shares * best_price)


def estimate_slippage(
    legs: list[OutcomeLeg] | tuple[OutcomeLeg, ...],
    notional: float,
    band: float = DEFAULT_PRICE_BAND,
) -> float:
    """
    Expected slippage as a fraction of notional. The notional is split evenly
    across legs. If nothing is deployable the full band is assumed.
    """
    if not legs:
        return 0.0
    if notional <= 0:
        return band

    per_leg = notional / len(legs)
    total_cost = 0.0
    for leg in legs:
        if not leg.levels:
            total_cost += per_leg * band
            continue
        try:
            total_cost += leg_slippage_cost(leg.levels, leg.levels[0].price, per_leg)
        except ValueError:
            # levels can't absorb the share; charge the full band
            logger.debug("Leg %s cannot absorb $%.2f inside band", leg.outcome[:40], per_leg)
            total_cost += per_leg * band
    return total_cost / notional


def estimate_settlement(
    opp_type: OpportunityType,
    n_legs: int,
    notional: float,
    estimator: SettlementCostEstimator | None,
    floor_notional: float,
) -> float:
    """
    Settlement (convert) cost as a fraction of notional. Zero for the YES
    basket, which settles by resolution. The cost is spread over at least
    `floor_notional` so an undeployable basket never looks cheaper.
    """
    if opp_type == OpportunityType.BUY_ALL_YES or estimator is None:
        return 0.0
    cost_usd = estimator.estimate_usd(n_legs)
    basis = max(notional, floor_notional)
    if basis <= 0:
        return 0.0
    return cost_usd / basis


def net_edge(
    gross: float,
    fees: float | None,
    slippage: float,
    settlement: float,
) -> float:
    """
    gross - fees - slippage - settlement. Unknown fees are left out, which
    makes the result an upper bound; classification refuses GO in that case.
    """
    return gross - (fees if fees is not None else 0.0) - slippage - settlement


def estimate_capital_lock_days(end_date: str, now: float) -> float | None:
    """Days from `now` until the market's end date. None if unknown or past."""
    if not end_date:
        return None
    try:
        dt_str = end_date.replace("Z", "+00:00")
        if "T" not in dt_str:
            dt_str += "T23:59:59+00:00"
        end_dt = datetime.fromisoformat(dt_str)
        if end_dt.tzinfo is None:
            end_dt = end_dt.replace(tzinfo=timezone.utc)
    except (ValueError, TypeError):
        return None
    days = (end_dt.timestamp() - now) / 86400.0
    if days < 0:
        return None
    return round(days, 2)
