"""
GO / CONDITIONAL / KILL classification. A pure rule evaluation recomputed
fresh every scan; status is never transitioned incrementally.
"""

from __future__ import annotations

from scanner.models import ConfidenceScore, OpportunityStatus, OpportunityType

DEFAULT_CONFIDENCE_FLOOR = 0.6


def classify(
    opp_type: OpportunityType,
    net_edge: float,
    confidence: ConfidenceScore,
    convert_active: bool,
    min_edge_threshold: float,
    confidence_floor: float = DEFAULT_CONFIDENCE_FLOOR,
) -> OpportunityStatus:
    """
    KILL: net edge <= 0, or NO basket without convert.
    GO: net edge >= threshold, depth complete, all legs live, fee rate known,
        confidence >= floor.
    CONDITIONAL: anything else with positive net edge.
    """
    if opp_type == OpportunityType.BUY_ALL_NO_CONVERT and not convert_active:
        return OpportunityStatus.KILL
    if net_edge <= 0:
        return OpportunityStatus.KILL

    if (
        net_edge >= min_edge_threshold
        and confidence.depth_complete
        and confidence.all_legs_live
        and confidence.fee_rate_known
        and confidence.overall >= confidence_floor
    ):
        return OpportunityStatus.GO

    return OpportunityStatus.CONDITIONAL


def kill_reason(
    opp_type: OpportunityType,
    net_edge: float,
    convert_active: bool,
) -> str | None:
    """Short explanation for a KILL status, None if the inputs don't kill."""
    if opp_type == OpportunityType.BUY_ALL_NO_CONVERT and not convert_active:
        return "convert unavailable"
    if net_edge <= 0:
        return "net edge non-positive after costs"
    return None
