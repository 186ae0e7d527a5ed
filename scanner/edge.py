"""
Gross arbitrage edge for a negRisk outcome set.

For n mutually exclusive, exhaustive outcomes with YES asks p1..pn:
- BUY_ALL_YES (sum < 1): one YES of every outcome costs sum(p) and pays
  exactly 1 at resolution. Edge = 1 - sum(p).
- BUY_ALL_NO_CONVERT (sum > 1): one NO of every outcome costs n - sum(p);
  converting the NO basket releases n - 1. Edge = sum(p) - 1, only real if
  convert is available.
"""

from __future__ import annotations

from scanner.models import OpportunityType, OutcomeLeg


def sum_prices(legs: list[OutcomeLeg] | tuple[OutcomeLeg, ...]) -> float:
    return sum(leg.price for leg in legs)


def detect_type(total: float) -> OpportunityType | None:
    """Which basket shape a price sum triggers, if any."""
    if total < 1.0:
        return OpportunityType.BUY_ALL_YES
    if total > 1.0:
        return OpportunityType.BUY_ALL_NO_CONVERT
    return None


def gross_edge(opp_type: OpportunityType, total: float) -> float:
    """
    Gross edge per unit notional. Raises ValueError if `total` does not
    trigger `opp_type`; an edge is never reported for the wrong shape.
    """
    if opp_type == OpportunityType.BUY_ALL_YES:
        if total >= 1.0:
            raise ValueError(f"BUY_ALL_YES requires sum < 1, got {total:.6f}")
        return 1.0 - total
    if total <= 1.0:
        raise ValueError(f"BUY_ALL_NO_CONVERT requires sum > 1, got {total:.6f}")
    return total - 1.0
