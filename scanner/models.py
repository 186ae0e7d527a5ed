"""
Data models for the negRisk opportunity engine. Pure data, no behavior beyond
derived properties.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


class OpportunityType(Enum):
    BUY_ALL_YES = "BUY_ALL_YES"
    BUY_ALL_NO_CONVERT = "BUY_ALL_NO_CONVERT"


class OpportunityStatus(Enum):
    GO = "GO"
    CONDITIONAL = "CONDITIONAL"
    KILL = "KILL"


class ApprovalStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SIMULATED = "simulated"
    EXECUTED = "executed"


@dataclass(frozen=True)
class PriceLevel:
    price: float
    size: float


@dataclass(frozen=True)
class OrderBook:
    token_id: str
    bids: tuple[PriceLevel, ...]
    asks: tuple[PriceLevel, ...]
    timestamp: float = 0.0  # upstream last-update, epoch seconds (0 = unknown)

    @property
    def best_bid(self) -> PriceLevel | None:
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> PriceLevel | None:
        return self.asks[0] if self.asks else None

    @property
    def spread(self) -> float | None:
        if self.best_bid and self.best_ask:
            return self.best_ask.price - self.best_bid.price
        return None


@dataclass(frozen=True)
class BookFetch:
    """Outcome of one orderbook fetch: either a book or a failure reason."""

    token_id: str
    book: OrderBook | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.book is not None and not self.error


@dataclass(frozen=True)
class OutcomeRef:
    """One mutually exclusive outcome of a negRisk group, as discovered upstream."""

    label: str
    yes_token_id: str
    no_token_id: str
    condition_id: str = ""
    end_date: str = ""  # ISO 8601 (empty = unknown)


@dataclass(frozen=True)
class OutcomeGroup:
    """All outcomes sharing one negRisk market id."""

    group_id: str
    event_id: str
    title: str
    outcomes: tuple[OutcomeRef, ...]
    slug: str = ""

    @property
    def end_date(self) -> str:
        dates = [o.end_date for o in self.outcomes if o.end_date]
        return max(dates) if dates else ""


@dataclass(frozen=True)
class OutcomeLeg:
    token_id: str
    outcome: str
    price: float           # YES best ask, used by the edge math for both shapes
    depth: float           # quote-currency depth inside the price-impact band
    spread: float
    stale: bool
    levels: tuple[PriceLevel, ...] = ()  # in-band ask levels of the book being lifted
    error: str = ""

    @property
    def failed(self) -> bool:
        return bool(self.error)

    def to_dict(self) -> dict:
        return {
            "token_id": self.token_id,
            "outcome": self.outcome,
            "price": self.price,
            "depth": self.depth,
            "spread": self.spread,
            "stale": self.stale,
            "error": self.error,
        }


@dataclass(frozen=True)
class ConfidenceScore:
    overall: float
    depth_complete: bool
    all_legs_live: bool
    fee_rate_known: bool
    leg_count: int
    factors: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "overall": self.overall,
            "depth_complete": self.depth_complete,
            "all_legs_live": self.all_legs_live,
            "fee_rate_known": self.fee_rate_known,
            "leg_count": self.leg_count,
            "factors": list(self.factors),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ConfidenceScore:
        return cls(
            overall=float(data.get("overall", 0.0)),
            depth_complete=bool(data.get("depth_complete", False)),
            all_legs_live=bool(data.get("all_legs_live", False)),
            fee_rate_known=bool(data.get("fee_rate_known", False)),
            leg_count=int(data.get("leg_count", 0)),
            factors=tuple(data.get("factors", ())),
        )


@dataclass(frozen=True)
class Opportunity:
    id: str
    market_id: str
    event_id: str
    market_name: str
    type: OpportunityType
    legs: tuple[OutcomeLeg, ...]
    sum_prices: float
    gross_edge: float
    fee_rate: float | None
    estimated_fees: float | None     # fraction of notional; None when fee rate unknown
    estimated_slippage: float
    estimated_settlement_cost: float
    net_edge: float
    min_depth: float
    max_notional: float
    convert_active: bool
    confidence: ConfidenceScore
    status: OpportunityStatus
    condition_id: str = ""
    market_slug: str = ""
    capital_lock_days: float | None = None
    discovered_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    approved_by: str | None = None
    approved_at: float | None = None
    narrative: str | None = None

    @property
    def outcome_count(self) -> int:
        return len(self.legs)

    @property
    def expected_profit_usd(self) -> float:
        return self.net_edge * self.max_notional

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "market_id": self.market_id,
            "event_id": self.event_id,
            "condition_id": self.condition_id,
            "market_name": self.market_name,
            "market_slug": self.market_slug,
            "type": self.type.value,
            "outcome_count": self.outcome_count,
            "legs": [leg.to_dict() for leg in self.legs],
            "sum_prices": self.sum_prices,
            "gross_edge": self.gross_edge,
            "fee_rate": self.fee_rate,
            "estimated_fees": self.estimated_fees,
            "estimated_slippage": self.estimated_slippage,
            "estimated_settlement_cost": self.estimated_settlement_cost,
            "net_edge": self.net_edge,
            "min_depth": self.min_depth,
            "max_notional": self.max_notional,
            "expected_profit_usd": self.expected_profit_usd,
            "capital_lock_days": self.capital_lock_days,
            "convert_active": self.convert_active,
            "confidence": self.confidence.to_dict(),
            "status": self.status.value,
            "discovered_at": self.discovered_at,
            "updated_at": self.updated_at,
            "approval_status": self.approval_status.value,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at,
            "narrative": self.narrative,
        }


@dataclass(frozen=True)
class SystemControl:
    """Global control-plane switches and risk limits."""

    kill_switch: bool = False
    observation_only: bool = True
    manual_approval_required: bool = True
    auto_exec: bool = False
    min_edge_threshold: float = 0.02
    min_depth_usdc: float = 100.0
    max_exposure_per_market: float = 500.0
    daily_max_exposure: float = 2000.0


@dataclass(frozen=True)
class AuditRecord:
    id: str
    timestamp: float
    module: str
    action: str
    inputs: dict
    metrics: dict
    narrative: str | None = None
    operator_action: str | None = None
    result: str | None = None
