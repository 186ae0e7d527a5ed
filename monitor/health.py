"""
Operator-visible health channel. Heartbeats and audit-write failures land in
the agent_health table and on the `monitor.health` logger. Nothing here ever
raises into the scan or approval path.
"""

from __future__ import annotations

import logging
import sqlite3
import threading

from state.store import ArbStore

logger = logging.getLogger(__name__)

AGENT_ID = "negrisk_scanner"


class HealthMonitor:
    def __init__(self, store: ArbStore, agent_id: str = AGENT_ID) -> None:
        self._store = store
        self._agent_id = agent_id
        self._lock = threading.Lock()
        self._audit_failures = 0
        self._last_status = "starting"

    @property
    def audit_failures(self) -> int:
        with self._lock:
            return self._audit_failures

    @property
    def last_status(self) -> str:
        return self._last_status

    def heartbeat(self, status: str = "ok", error: str | None = None) -> bool:
        """Best effort. Returns False if the heartbeat could not be stored."""
        self._last_status = status
        try:
            self._store.upsert_agent_health(self._agent_id, status, last_error=error)
        except sqlite3.Error as e:
            logger.warning("Heartbeat write failed (%s): %s", status, e)
            return False
        if error:
            logger.warning("Agent %s status=%s: %s", self._agent_id, status, error)
        return True

    def record_audit_failure(self, action: str, error: Exception | str) -> None:
        """Surface a failed audit write. The failed operation itself is unaffected."""
        with self._lock:
            self._audit_failures += 1
            count = self._audit_failures
        logger.error("Audit write failed for %s (%d total): %s", action, count, error)
        try:
            self._store.upsert_agent_health(
                self._agent_id,
                "degraded",
                last_error=f"audit write failed: {action}: {error}",
                audit_failures=count,
            )
        except sqlite3.Error as e:
            logger.error("Health row update failed after audit failure: %s", e)

    def snapshot(self) -> dict:
        try:
            agents = self._store.get_agent_health()
        except sqlite3.Error as e:
            logger.warning("Health read failed: %s", e)
            agents = []
        return {
            "status": self._last_status,
            "audit_failures": self.audit_failures,
            "agents": agents,
        }
