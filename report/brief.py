"""
Deterministic operator brief for one opportunity. Plain templating over the
computed fields: same opportunity in, same brief out. Advisory only; nothing
here feeds back into status or approval.
"""

from __future__ import annotations

import math

from scanner.models import Opportunity, OpportunityStatus, OpportunityType
from scanner.status import kill_reason

TYPE_LABELS = {
    OpportunityType.BUY_ALL_YES: "Resolution arbitrage (buy all YES)",
    OpportunityType.BUY_ALL_NO_CONVERT: "Instant extract (buy all NO + convert)",
}

_STATUS_ACTIONS = {
    OpportunityStatus.GO: ("EXECUTE", "Edge is actionable at current depth and data quality."),
    OpportunityStatus.CONDITIONAL: ("MONITOR", "Edge exists but depth, freshness or fee rate needs confirmation."),
    OpportunityStatus.KILL: ("SKIP", "No edge after costs, or convert is unavailable."),
}


def edge_strength(net_edge: float) -> str:
    if net_edge > 0.03:
        return "STRONG"
    if net_edge > 0.01:
        return "MODERATE"
    return "MARGINAL"


def _pct(x: float) -> str:
    return f"{x * 100:.2f}%"


def _summary(opp: Opportunity) -> str:
    action, _ = _STATUS_ACTIONS[opp.status]
    return (
        f"{opp.status.value}: {opp.market_name}. {TYPE_LABELS[opp.type]} across "
        f"{opp.outcome_count} outcomes, sum {opp.sum_prices:.4f}. Net edge {_pct(opp.net_edge)} "
        f"on up to ${opp.max_notional:,.0f} (expected ${opp.expected_profit_usd:,.2f}). "
        f"Recommended: {action}."
    )


def _highlights(opp: Opportunity) -> list[str]:
    costs = [f"slippage {_pct(opp.estimated_slippage)}"]
    if opp.estimated_fees is not None:
        costs.insert(0, f"fees {_pct(opp.estimated_fees)}")
    if opp.estimated_settlement_cost:
        costs.append(f"settlement {_pct(opp.estimated_settlement_cost)}")

    lines = [
        f"Gross edge {_pct(opp.gross_edge)}, net {_pct(opp.net_edge)} "
        f"({edge_strength(opp.net_edge)}) after {', '.join(costs)}",
        f"Thinnest leg ${opp.min_depth:,.0f} in band; max deployable ${opp.max_notional:,.0f}",
    ]
    if opp.fee_rate is not None:
        lines.append(f"Fee rate confirmed: {_pct(opp.fee_rate)}")
    else:
        lines.append("Fee rate UNKNOWN: net edge excludes fees and is an upper bound. Verify before execution.")
    if opp.type == OpportunityType.BUY_ALL_NO_CONVERT and not opp.convert_active:
        lines.append("Convert unavailable: this basket cannot be settled.")
    lines.append(
        f"Data confidence {opp.confidence.overall * 100:.0f}%: {'; '.join(opp.confidence.factors)}"
    )
    return lines


def _actions(opp: Opportunity) -> list[dict]:
    action, rationale = _STATUS_ACTIONS[opp.status]
    if opp.status == OpportunityStatus.KILL:
        reason = kill_reason(opp.type, opp.net_edge, opp.convert_active)
        if reason:
            rationale = f"Killed: {reason}."
    if opp.type == OpportunityType.BUY_ALL_YES:
        lock = (
            f"Capital locked until resolution, est. {opp.capital_lock_days:.1f}d."
            if opp.capital_lock_days is not None
            else "Capital locked until resolution; duration unknown."
        )
        hold = {"timeframe": "to resolution", "action": "HOLD_TO_RESOLUTION", "rationale": lock}
    else:
        hold = {"timeframe": "on fill", "action": "CONVERT", "rationale": "Profit is realized when the NO basket is converted."}
    return [
        {"timeframe": "now", "action": action, "rationale": rationale},
        {
            "timeframe": "24h",
            "action": "ACCUMULATE" if opp.net_edge > 0.03 else "MONITOR",
            "rationale": "Watch for depth improvement or edge compression.",
        },
        hold,
    ]


def _risk_rules(opp: Opportunity) -> list[dict]:
    compress = "sum of YES >= 0.99" if opp.type == OpportunityType.BUY_ALL_YES else "sum of YES <= 1.01"
    n = opp.outcome_count
    return [
        {
            "type": "invalidation",
            "trigger": f"{compress}: edge evaporates",
            "action": "Cancel unfilled legs.",
        },
        {
            "type": "partial_fill",
            "trigger": f"Filled fewer than {math.ceil(n * 0.7)} of {n} legs",
            "action": "Evaluate the partial basket; unwinding single legs may lose money.",
        },
        {
            "type": "depth",
            "trigger": f"Any leg depth below ${max(10.0, opp.min_depth * 0.3):,.0f}",
            "action": "Pause and re-evaluate fill feasibility.",
        },
    ]


def generate_brief(opp: Opportunity) -> dict:
    return {
        "summary": _summary(opp),
        "highlights": _highlights(opp),
        "actions": _actions(opp),
        "risk_rules": _risk_rules(opp),
    }
