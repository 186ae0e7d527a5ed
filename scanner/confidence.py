"""
Data-quality confidence for a negRisk basket. Scores how far the inputs of an
opportunity can be trusted: depth sufficiency, orderbook freshness, fee-rate
certainty and leg count. Pure; recomputed every scan, never persisted on its own.
"""

from __future__ import annotations

from scanner.costs import leg_deployable_depth
from scanner.models import ConfidenceScore, OutcomeLeg

PENALTY_DEPTH = 0.25
PENALTY_STALE = 0.20
PENALTY_FEE_UNKNOWN = 0.30
PENALTY_PER_EXTRA_LEG = 0.02
MAX_LEG_PENALTY = 0.20

# Stale legs named individually up to this many, then summarized.
_MAX_NAMED_LEGS = 3


def leg_count_penalty(n_legs: int) -> float:
    """Multi-fill risk: zero for a pair, growing with each extra leg, capped."""
    return min(MAX_LEG_PENALTY, PENALTY_PER_EXTRA_LEG * max(0, n_legs - 2))


def _name_legs(legs: list[OutcomeLeg]) -> str:
    names = [leg.outcome[:30] for leg in legs[:_MAX_NAMED_LEGS]]
    if len(legs) > _MAX_NAMED_LEGS:
        names.append(f"+{len(legs) - _MAX_NAMED_LEGS} more")
    return ", ".join(names)


def score_confidence(
    legs: list[OutcomeLeg] | tuple[OutcomeLeg, ...],
    fee_rate: float | None,
    min_depth_usdc: float,
) -> ConfidenceScore:
    """
    Start at 1.0 and deduct for each data-quality gap. Factors are listed in a
    fixed order (depth, freshness, fee rate, leg count) so identical inputs
    always produce identical output.
    """
    legs = list(legs)
    thin = [leg for leg in legs if leg_deployable_depth(leg) < min_depth_usdc]
    stale = [leg for leg in legs if leg.stale]
    depth_complete = not thin
    all_legs_live = not stale
    fee_rate_known = fee_rate is not None
    n_legs = len(legs)

    score = 1.0
    factors: list[str] = []

    if not depth_complete:
        score -= PENALTY_DEPTH
        factors.append(f"depth below ${min_depth_usdc:,.0f} on {len(thin)} leg(s): {_name_legs(thin)}")
    if not all_legs_live:
        score -= PENALTY_STALE
        if len(stale) == 1:
            factors.append(f"{stale[0].outcome[:30]} leg stale")
        else:
            factors.append(f"{len(stale)} legs stale: {_name_legs(stale)}")
    if not fee_rate_known:
        score -= PENALTY_FEE_UNKNOWN
        factors.append("fee rate unknown: confidence reduced")

    leg_penalty = leg_count_penalty(n_legs)
    if leg_penalty > 0:
        score -= leg_penalty
        factors.append(f"{n_legs} legs increase multi-fill risk")

    if not factors:
        factors.append("All data quality checks passed")

    return ConfidenceScore(
        overall=round(max(0.0, min(1.0, score)), 6),
        depth_complete=depth_complete,
        all_legs_live=all_legs_live,
        fee_rate_known=fee_rate_known,
        leg_count=n_legs,
        factors=tuple(factors),
    )
