"""
Append-only audit trail. Every scored opportunity, every scan summary and
every operator action leaves one record. Writing is a best-effort side
channel: a failure is logged and reported to the health monitor, never
raised into the operation being recorded.
"""

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from typing import Any

from monitor.health import HealthMonitor
from scanner.models import AuditRecord, Opportunity, OpportunityStatus
from scanner.status import kill_reason
from state.store import ArbStore

logger = logging.getLogger(__name__)

MODULE_EVALUATION = "evaluation"
MODULE_APPROVAL = "approval"
MODULE_CONTROL = "control"


class AuditTrail:
    def __init__(self, store: ArbStore, health: HealthMonitor | None = None) -> None:
        self._store = store
        self._health = health

    def record(
        self,
        module: str,
        action: str,
        inputs: dict[str, Any] | None = None,
        metrics: dict[str, Any] | None = None,
        narrative: str | None = None,
        operator_action: str | None = None,
        result: str | None = None,
    ) -> str | None:
        """Append one record. Returns its id, or None if the write failed."""
        rec = AuditRecord(
            id=str(uuid.uuid4()),
            timestamp=time.time(),
            module=module,
            action=action,
            inputs=inputs or {},
            metrics=metrics or {},
            narrative=narrative,
            operator_action=operator_action,
            result=result,
        )
        try:
            self._store.insert_audit(rec)
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error("Audit record %s/%s not written: %s", module, action, e)
            if self._health is not None:
                self._health.record_audit_failure(f"{module}/{action}", e)
            return None
        return rec.id

    def record_opportunity(self, opp: Opportunity) -> str | None:
        """One `evaluation` / `opportunity scored` record: legs in, decision out."""
        return self.record(
            MODULE_EVALUATION,
            "opportunity scored",
            inputs={
                "opportunity_id": opp.id,
                "market_id": opp.market_id,
                "type": opp.type.value,
                "legs": [leg.to_dict() for leg in opp.legs],
            },
            metrics={
                "sum_prices": opp.sum_prices,
                "gross_edge": opp.gross_edge,
                "fee_rate": opp.fee_rate,
                "estimated_fees": opp.estimated_fees,
                "estimated_slippage": opp.estimated_slippage,
                "estimated_settlement_cost": opp.estimated_settlement_cost,
                "net_edge": opp.net_edge,
                "max_notional": opp.max_notional,
                "confidence": opp.confidence.to_dict(),
                "status": opp.status.value,
                "kill_reason": (
                    kill_reason(opp.type, opp.net_edge, opp.convert_active)
                    if opp.status == OpportunityStatus.KILL else None
                ),
            },
            narrative=opp.narrative,
            result=opp.status.value,
        )

    def recent(self, limit: int = 100, module: str | None = None) -> list[AuditRecord]:
        return self._store.get_audit(limit=limit, module=module)
