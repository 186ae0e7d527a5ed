"""
Approval gate. The only path by which an opportunity's approval status
changes.

    pending   -> approved | rejected | simulated
    simulated -> executed

`approve` and `execute` are refused while the kill switch is on or while the
system is in observation-only mode. `simulate` and `reject` are always
allowed. Control flags are read inside the same write transaction as the
status update, so a kill switch flipped a moment earlier is never missed.
While `manual_approval_required` is on, a decision without a named operator
is refused. Every attempt is audited with the approval flags in its metrics;
`auto_exec` is recorded only, since nothing here places orders.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from audit.trail import MODULE_APPROVAL, MODULE_CONTROL, AuditTrail
from scanner.models import ApprovalStatus, SystemControl
from state.store import ArbStore

logger = logging.getLogger(__name__)


class ApprovalAction(Enum):
    APPROVE = "approve"
    SIMULATE = "simulate"
    REJECT = "reject"
    EXECUTE = "execute"


class BlockReason(Enum):
    KILL_SWITCH_ACTIVE = "kill-switch-active"
    OBSERVATION_ONLY_MODE = "observation-only-mode"


# action -> (required current status, resulting status)
TRANSITIONS: dict[ApprovalAction, tuple[ApprovalStatus, ApprovalStatus]] = {
    ApprovalAction.APPROVE: (ApprovalStatus.PENDING, ApprovalStatus.APPROVED),
    ApprovalAction.SIMULATE: (ApprovalStatus.PENDING, ApprovalStatus.SIMULATED),
    ApprovalAction.REJECT: (ApprovalStatus.PENDING, ApprovalStatus.REJECTED),
    ApprovalAction.EXECUTE: (ApprovalStatus.SIMULATED, ApprovalStatus.EXECUTED),
}

_GUARDED_ACTIONS = frozenset({ApprovalAction.APPROVE, ApprovalAction.EXECUTE})


class OpportunityNotFound(KeyError):
    """No opportunity with this id in the current snapshot."""
    pass


class InvalidTransition(ValueError):
    """The requested action is not allowed from the opportunity's current status."""
    pass


class OperatorRequired(ValueError):
    """Manual approval is on and the decision carries no operator identity."""
    pass


class ApprovalBlocked(Exception):
    """Raised when a blocked result is escalated to an exception."""

    def __init__(self, opportunity_id: str, reason: BlockReason) -> None:
        super().__init__(f"{opportunity_id}: {reason.value}")
        self.opportunity_id = opportunity_id
        self.reason = reason


@dataclass(frozen=True)
class ApprovalResult:
    opportunity_id: str
    action: ApprovalAction
    status: ApprovalStatus | None = None
    blocked: BlockReason | None = None

    @property
    def ok(self) -> bool:
        return self.blocked is None

    def raise_if_blocked(self) -> ApprovalResult:
        if self.blocked is not None:
            raise ApprovalBlocked(self.opportunity_id, self.blocked)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.opportunity_id,
            "action": self.action.value,
            "status": self.status.value if self.status else None,
            "blocked": self.blocked.value if self.blocked else None,
        }


def block_reason(action: ApprovalAction, control: SystemControl) -> BlockReason | None:
    """Which control flag, if any, refuses `action`. Kill switch takes precedence."""
    if action not in _GUARDED_ACTIONS:
        return None
    if control.kill_switch:
        return BlockReason.KILL_SWITCH_ACTIVE
    if control.observation_only:
        return BlockReason.OBSERVATION_ONLY_MODE
    return None


class ApprovalGate:
    def __init__(self, store: ArbStore, audit: AuditTrail) -> None:
        self._store = store
        self._audit = audit

    def decide(
        self,
        opportunity_id: str,
        action: ApprovalAction | str,
        operator: str,
        reason: str | None = None,
    ) -> ApprovalResult:
        """
        Apply one operator action.

        Returns an ApprovalResult carrying either the new status or the block
        reason. Raises OpportunityNotFound for an unknown id, OperatorRequired
        for an anonymous decision under manual approval, and
        InvalidTransition when the current status does not allow `action`.
        """
        action = ApprovalAction(action)
        required, target = TRANSITIONS[action]
        now = time.time()

        with self._store.transaction() as conn:
            opp = self._store.get_opportunity(opportunity_id, conn=conn)
            control = self._store.get_control(conn)
            anonymous = control.manual_approval_required and not operator.strip()
            current = opp.approval_status if opp is not None else None
            blocked = None
            if opp is not None and not anonymous:
                blocked = block_reason(action, control)
                if blocked is None and current == required:
                    self._store.update_approval(conn, opportunity_id, target, operator, now)

        inputs = {
            "opportunity_id": opportunity_id,
            "action": action.value,
            "operator": operator,
            "reason": reason,
            "from_status": current.value if current else None,
        }
        log_ctx = {"opportunity_id": opportunity_id, "operator": operator}
        flags = {
            "manual_approval_required": control.manual_approval_required,
            "auto_exec": control.auto_exec,
        }

        if opp is None:
            logger.warning("Approval %s: opportunity not found", action.value, extra=log_ctx)
            self._audit.record(
                MODULE_APPROVAL, "opportunity_not_found",
                inputs=inputs,
                metrics=flags,
                operator_action=action.value,
                result="not-found",
            )
            raise OpportunityNotFound(opportunity_id)

        metrics = {"net_edge": opp.net_edge, "status": opp.status.value, **flags}

        if anonymous:
            logger.warning("Approval %s refused: manual approval needs a named operator",
                           action.value, extra=log_ctx)
            self._audit.record(
                MODULE_APPROVAL, "opportunity_operator_required",
                inputs=inputs,
                metrics=metrics,
                operator_action=action.value,
                result="operator-required",
            )
            raise OperatorRequired(f"Cannot {action.value} opportunity {opportunity_id} without an operator")

        if blocked is not None:
            logger.warning("Approval %s blocked: %s", action.value, blocked.value, extra=log_ctx)
            self._audit.record(
                MODULE_APPROVAL, "opportunity_blocked",
                inputs=inputs,
                metrics=metrics,
                operator_action=action.value,
                result=blocked.value,
            )
            return ApprovalResult(opportunity_id, action, blocked=blocked)

        if current != required:
            self._audit.record(
                MODULE_APPROVAL, "opportunity_invalid_transition",
                inputs=inputs,
                metrics=metrics,
                operator_action=action.value,
                result=f"{current.value} -> {action.value} not allowed",
            )
            raise InvalidTransition(
                f"Cannot {action.value} opportunity {opportunity_id} in status {current.value}"
            )

        logger.info("Opportunity %s -> %s", current.value, target.value, extra=log_ctx)
        self._audit.record(
            MODULE_APPROVAL, f"opportunity_{target.value}",
            inputs=inputs,
            metrics=metrics,
            operator_action=action.value,
            result=target.value,
        )
        return ApprovalResult(opportunity_id, action, status=target)

    def set_control(self, operator: str, **updates: Any) -> SystemControl:
        """Operator path for flipping switches and limits. Audited as config_updated."""
        before = self._store.get_control()
        control = self._store.set_control(**updates)
        logger.info("Control updated by %s: %s", operator, updates)
        self._audit.record(
            MODULE_CONTROL, "config_updated",
            inputs={"operator": operator, "updates": updates},
            metrics={k: getattr(before, k) for k in updates},
            operator_action="set_control",
            result="ok",
        )
        return control
