"""
NegRisk multi-outcome basket evaluation.

For an event with mutually exclusive, exhaustive outcomes:
- sum(YES ask) < 1.0: buy one YES of every outcome (BUY_ALL_YES).
- sum(YES ask) > 1.0: buy one NO of every outcome and convert (BUY_ALL_NO_CONVERT).

Each basket is priced net of fees, slippage and settlement, scored for data
quality and classified GO / CONDITIONAL / KILL. Everything here is pure; book
fetching happens in the scan cycle.
"""

from __future__ import annotations

import logging
import time
import uuid

from scanner.confidence import score_confidence
from scanner.costs import (
    SettlementCostEstimator,
    estimate_capital_lock_days,
    estimate_fees,
    estimate_settlement,
    estimate_slippage,
    max_deployable_notional,
    net_edge,
)
from scanner.depth import DEFAULT_PRICE_BAND
from scanner.edge import detect_type, gross_edge, sum_prices
from scanner.legs import DEFAULT_FRESHNESS_WINDOW_SEC, normalize_group
from scanner.models import (
    BookFetch,
    Opportunity,
    OpportunityType,
    OutcomeGroup,
    OutcomeLeg,
)
from scanner.status import DEFAULT_CONFIDENCE_FLOOR, classify

logger = logging.getLogger(__name__)

MIN_LEGS = 2


def evaluate_legs(
    group: OutcomeGroup,
    legs: list[OutcomeLeg],
    opp_type: OpportunityType,
    fee_rate: float | None,
    convert_active: bool,
    min_edge_threshold: float,
    min_depth_usdc: float,
    settlement_estimator: SettlementCostEstimator | None = None,
    band: float = DEFAULT_PRICE_BAND,
    confidence_floor: float = DEFAULT_CONFIDENCE_FLOOR,
    now: float | None = None,
) -> Opportunity | None:
    """
    Assemble one Opportunity from normalized legs.

    Returns None when fewer than two legs remain (a data-quality event, not an
    error) or when the price sum does not trigger `opp_type`.
    """
    if len(legs) < MIN_LEGS:
        logger.warning(
            "Data quality: group %s has %d usable leg(s), need %d; dropped",
            group.group_id, len(legs), MIN_LEGS,
        )
        return None

    total = sum_prices(legs)
    if detect_type(total) != opp_type:
        return None

    now = time.time() if now is None else now
    gross = gross_edge(opp_type, total)
    notional = max_deployable_notional(legs)
    fees = estimate_fees(fee_rate)
    slippage = estimate_slippage(legs, notional, band)
    settlement = estimate_settlement(
        opp_type, len(legs), notional, settlement_estimator, min_depth_usdc,
    )
    net = net_edge(gross, fees, slippage, settlement)
    confidence = score_confidence(legs, fee_rate, min_depth_usdc)
    status = classify(
        opp_type, net, confidence, convert_active, min_edge_threshold, confidence_floor,
    )

    lock_days = None
    if opp_type == OpportunityType.BUY_ALL_YES:
        lock_days = estimate_capital_lock_days(group.end_date, now)

    opp = Opportunity(
        id=str(uuid.uuid4()),
        market_id=group.group_id,
        event_id=group.event_id,
        market_name=group.title,
        type=opp_type,
        legs=tuple(legs),
        sum_prices=total,
        gross_edge=gross,
        fee_rate=fee_rate,
        estimated_fees=fees,
        estimated_slippage=slippage,
        estimated_settlement_cost=settlement,
        net_edge=net,
        min_depth=min(leg.depth for leg in legs),
        max_notional=notional,
        convert_active=convert_active,
        confidence=confidence,
        status=status,
        condition_id=group.outcomes[0].condition_id if group.outcomes else "",
        market_slug=group.slug,
        capital_lock_days=lock_days,
        discovered_at=now,
        updated_at=now,
    )
    logger.debug(
        "%s %s: sum=%.4f gross=%.4f net=%.4f conf=%.2f -> %s",
        opp_type.value, group.title[:50], total, gross, net,
        confidence.overall, status.value,
    )
    return opp


def evaluate_group(
    group: OutcomeGroup,
    fetches: dict[str, BookFetch],
    fee_rate: float | None,
    convert_active: bool,
    min_edge_threshold: float,
    min_depth_usdc: float,
    settlement_estimator: SettlementCostEstimator | None = None,
    band: float = DEFAULT_PRICE_BAND,
    freshness_window_sec: float = DEFAULT_FRESHNESS_WINDOW_SEC,
    confidence_floor: float = DEFAULT_CONFIDENCE_FLOOR,
    now: float | None = None,
    yes_legs: list[OutcomeLeg] | None = None,
) -> list[Opportunity]:
    """
    Evaluate both basket shapes for one group from a single cycle's fetches.
    `yes_legs` may carry the YES legs already normalized from `fetches`.

    The YES shape is checked first. The NO shape is evaluated on its own leg
    set, where a failed leg prices at 0, so an unreachable YES book can never
    fabricate a sum above 1.
    """
    now = time.time() if now is None else now
    shared = dict(
        fee_rate=fee_rate,
        convert_active=convert_active,
        min_edge_threshold=min_edge_threshold,
        min_depth_usdc=min_depth_usdc,
        settlement_estimator=settlement_estimator,
        band=band,
        confidence_floor=confidence_floor,
        now=now,
    )

    if yes_legs is None:
        yes_legs = normalize_group(
            group.outcomes, fetches, OpportunityType.BUY_ALL_YES, now=now,
            freshness_window_sec=freshness_window_sec, band=band,
        )
    if len(yes_legs) < MIN_LEGS:
        logger.warning(
            "Data quality: group %s has %d distinct outcome(s); dropped",
            group.group_id, len(yes_legs),
        )
        return []

    yes_total = sum_prices(yes_legs)
    if detect_type(yes_total) == OpportunityType.BUY_ALL_YES:
        opp = evaluate_legs(group, yes_legs, OpportunityType.BUY_ALL_YES, **shared)
        return [opp] if opp is not None else []

    if detect_type(yes_total) != OpportunityType.BUY_ALL_NO_CONVERT:
        return []

    no_legs = normalize_group(
        group.outcomes, fetches, OpportunityType.BUY_ALL_NO_CONVERT, now=now,
        freshness_window_sec=freshness_window_sec, band=band,
    )
    opp = evaluate_legs(group, no_legs, OpportunityType.BUY_ALL_NO_CONVERT, **shared)
    return [opp] if opp is not None else []


def rank_opportunities(opps: list[Opportunity]) -> list[Opportunity]:
    """Net edge descending. Ties keep insertion order."""
    return sorted(opps, key=lambda o: o.net_edge, reverse=True)
