"""
Transactional SQLite store shared by the scan loop, the approval gate and the
HTTP surface. WAL mode, one connection per thread.

Tables:
  opportunities   current scan snapshot, replaced wholesale each cycle
  system_config   control plane (kill switch, observation-only, limits)
  audit_log       append-only; UPDATE and DELETE are rejected by triggers
  agent_health    one heartbeat row per agent
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any

from scanner.models import (
    ApprovalStatus,
    AuditRecord,
    ConfidenceScore,
    Opportunity,
    OpportunityStatus,
    OpportunityType,
    OutcomeLeg,
    SystemControl,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("data") / "negrisk.db"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS opportunities (
    id TEXT PRIMARY KEY,
    rank INTEGER NOT NULL,
    market_id TEXT NOT NULL,
    event_id TEXT NOT NULL,
    condition_id TEXT NOT NULL DEFAULT '',
    market_name TEXT NOT NULL,
    market_slug TEXT NOT NULL DEFAULT '',
    type TEXT NOT NULL,
    outcome_count INTEGER NOT NULL,
    legs_json TEXT NOT NULL,
    sum_prices REAL NOT NULL,
    gross_edge REAL NOT NULL,
    fee_rate REAL,
    estimated_fees REAL,
    estimated_slippage REAL NOT NULL,
    estimated_settlement_cost REAL NOT NULL,
    net_edge REAL NOT NULL,
    min_depth REAL NOT NULL,
    max_notional REAL NOT NULL,
    capital_lock_days REAL,
    convert_active INTEGER NOT NULL,
    confidence REAL NOT NULL,
    confidence_json TEXT NOT NULL,
    status TEXT NOT NULL,
    discovered_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    approval_status TEXT NOT NULL DEFAULT 'pending',
    approved_by TEXT,
    approved_at REAL,
    narrative TEXT
);

CREATE INDEX IF NOT EXISTS idx_opportunities_rank ON opportunities(rank);

CREATE TABLE IF NOT EXISTS system_config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_log (
    id TEXT PRIMARY KEY,
    timestamp REAL NOT NULL,
    module TEXT NOT NULL,
    action TEXT NOT NULL,
    inputs_json TEXT NOT NULL DEFAULT '{}',
    metrics_json TEXT NOT NULL DEFAULT '{}',
    narrative TEXT,
    operator_action TEXT,
    result TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_ts ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_module ON audit_log(module);

CREATE TRIGGER IF NOT EXISTS audit_log_no_update
BEFORE UPDATE ON audit_log
BEGIN
    SELECT RAISE(ABORT, 'audit_log is append-only');
END;

CREATE TRIGGER IF NOT EXISTS audit_log_no_delete
BEFORE DELETE ON audit_log
BEGIN
    SELECT RAISE(ABORT, 'audit_log is append-only');
END;

CREATE TABLE IF NOT EXISTS agent_health (
    agent_id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    last_heartbeat REAL NOT NULL,
    last_error TEXT,
    audit_failures INTEGER NOT NULL DEFAULT 0,
    updated_at REAL NOT NULL
);
"""

_OPP_COLUMNS = (
    "id", "rank", "market_id", "event_id", "condition_id", "market_name",
    "market_slug", "type", "outcome_count", "legs_json", "sum_prices",
    "gross_edge", "fee_rate", "estimated_fees", "estimated_slippage",
    "estimated_settlement_cost", "net_edge", "min_depth", "max_notional",
    "capital_lock_days", "convert_active", "confidence", "confidence_json",
    "status", "discovered_at", "updated_at", "approval_status", "approved_by",
    "approved_at", "narrative",
)

_CONTROL_FIELDS = {f.name: f.type for f in fields(SystemControl)}


def _dict_factory(cursor: sqlite3.Cursor, row: tuple) -> dict[str, Any]:
    return {col[0]: row[i] for i, col in enumerate(cursor.description)}


def _opportunity_row(opp: Opportunity, rank: int) -> tuple:
    return (
        opp.id, rank, opp.market_id, opp.event_id, opp.condition_id, opp.market_name,
        opp.market_slug, opp.type.value, opp.outcome_count,
        json.dumps([leg.to_dict() for leg in opp.legs]),
        opp.sum_prices, opp.gross_edge, opp.fee_rate, opp.estimated_fees,
        opp.estimated_slippage, opp.estimated_settlement_cost, opp.net_edge,
        opp.min_depth, opp.max_notional, opp.capital_lock_days,
        int(opp.convert_active), opp.confidence.overall,
        json.dumps(opp.confidence.to_dict()), opp.status.value,
        opp.discovered_at, opp.updated_at, opp.approval_status.value,
        opp.approved_by, opp.approved_at, opp.narrative,
    )


def _opportunity_from_row(row: dict[str, Any]) -> Opportunity:
    legs = tuple(
        OutcomeLeg(
            token_id=d["token_id"],
            outcome=d["outcome"],
            price=d["price"],
            depth=d["depth"],
            spread=d["spread"],
            stale=bool(d["stale"]),
            error=d.get("error", ""),
        )
        for d in json.loads(row["legs_json"])
    )
    return Opportunity(
        id=row["id"],
        market_id=row["market_id"],
        event_id=row["event_id"],
        market_name=row["market_name"],
        type=OpportunityType(row["type"]),
        legs=legs,
        sum_prices=row["sum_prices"],
        gross_edge=row["gross_edge"],
        fee_rate=row["fee_rate"],
        estimated_fees=row["estimated_fees"],
        estimated_slippage=row["estimated_slippage"],
        estimated_settlement_cost=row["estimated_settlement_cost"],
        net_edge=row["net_edge"],
        min_depth=row["min_depth"],
        max_notional=row["max_notional"],
        convert_active=bool(row["convert_active"]),
        confidence=ConfidenceScore.from_dict(json.loads(row["confidence_json"])),
        status=OpportunityStatus(row["status"]),
        condition_id=row["condition_id"],
        market_slug=row["market_slug"],
        capital_lock_days=row["capital_lock_days"],
        discovered_at=row["discovered_at"],
        updated_at=row["updated_at"],
        approval_status=ApprovalStatus(row["approval_status"]),
        approved_by=row["approved_by"],
        approved_at=row["approved_at"],
        narrative=row["narrative"],
    )


def _encode_control(value: Any) -> str:
    return json.dumps(value)


def _decode_control(key: str, raw: str) -> Any:
    value = json.loads(raw)
    kind = _CONTROL_FIELDS.get(key)
    if kind == "bool":
        return bool(value)
    if kind == "float":
        return float(value)
    return value


class ArbStore:
    """Thread-safe SQLite store for the opportunity snapshot and control plane."""

    def __init__(self, db_path: str | Path | None = None) -> None:
        path = Path(db_path) if db_path is not None else DEFAULT_DB_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = str(path)
        self._local = threading.local()
        self._init_schema()

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def _conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            # isolation_level=None: transactions are explicit BEGIN/COMMIT
            conn = sqlite3.connect(self._db_path, check_same_thread=False, isolation_level=None)
            conn.row_factory = _dict_factory
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
            self._local.conn = conn
        return conn

    def _init_schema(self) -> None:
        self._conn.executescript(_SCHEMA)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        BEGIN IMMEDIATE ... COMMIT. Takes the write lock up front so reads made
        inside the block cannot be invalidated by a concurrent writer.
        """
        conn = self._conn
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    # ── Opportunity snapshot ──

    def replace_opportunities(self, opps: list[Opportunity]) -> int:
        """Swap the whole snapshot in one transaction. `opps` must already be ranked."""
        rows = [_opportunity_row(opp, rank) for rank, opp in enumerate(opps)]
        placeholders = ", ".join("?" for _ in _OPP_COLUMNS)
        with self.transaction() as conn:
            conn.execute("DELETE FROM opportunities")
            conn.executemany(
                f"INSERT INTO opportunities ({', '.join(_OPP_COLUMNS)}) VALUES ({placeholders})",
                rows,
            )
        logger.debug("Snapshot replaced: %d opportunities", len(rows))
        return len(rows)

    def get_opportunities(self) -> list[Opportunity]:
        rows = self._conn.execute("SELECT * FROM opportunities ORDER BY rank").fetchall()
        return [_opportunity_from_row(r) for r in rows]

    def get_opportunity(self, opportunity_id: str, conn: sqlite3.Connection | None = None) -> Opportunity | None:
        conn = conn or self._conn
        row = conn.execute(
            "SELECT * FROM opportunities WHERE id = ?", (opportunity_id,)
        ).fetchone()
        return _opportunity_from_row(row) if row else None

    def update_approval(
        self,
        conn: sqlite3.Connection,
        opportunity_id: str,
        status: ApprovalStatus,
        operator: str,
        at: float,
    ) -> None:
        """Write an approval transition. Caller holds the transaction."""
        conn.execute(
            "UPDATE opportunities SET approval_status = ?, approved_by = ?, approved_at = ?, "
            "updated_at = ? WHERE id = ?",
            (status.value, operator, at, at, opportunity_id),
        )

    # ── Control plane ──

    def seed_control(self, defaults: SystemControl) -> None:
        """Write defaults for keys not yet present. Existing values win."""
        now = time.time()
        with self.transaction() as conn:
            conn.executemany(
                "INSERT OR IGNORE INTO system_config (key, value, updated_at) VALUES (?, ?, ?)",
                [(k, _encode_control(v), now) for k, v in asdict(defaults).items()],
            )

    def get_control(self, conn: sqlite3.Connection | None = None) -> SystemControl:
        conn = conn or self._conn
        rows = conn.execute("SELECT key, value FROM system_config").fetchall()
        values = {
            r["key"]: _decode_control(r["key"], r["value"])
            for r in rows
            if r["key"] in _CONTROL_FIELDS
        }
        return SystemControl(**values)

    def set_control(self, **updates: Any) -> SystemControl:
        """Update control keys atomically. Unknown keys raise KeyError."""
        unknown = set(updates) - set(_CONTROL_FIELDS)
        if unknown:
            raise KeyError(f"Unknown control key(s): {', '.join(sorted(unknown))}")
        now = time.time()
        with self.transaction() as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO system_config (key, value, updated_at) VALUES (?, ?, ?)",
                [(k, _encode_control(v), now) for k, v in updates.items()],
            )
            control = self.get_control(conn)
        return control

    # ── Audit ──

    def insert_audit(self, record: AuditRecord) -> None:
        self._conn.execute(
            """INSERT INTO audit_log
               (id, timestamp, module, action, inputs_json, metrics_json,
                narrative, operator_action, result)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                record.id, record.timestamp, record.module, record.action,
                json.dumps(record.inputs, default=str),
                json.dumps(record.metrics, default=str),
                record.narrative, record.operator_action, record.result,
            ),
        )

    def get_audit(self, limit: int = 100, module: str | None = None) -> list[AuditRecord]:
        """Most recent first."""
        if module:
            rows = self._conn.execute(
                "SELECT * FROM audit_log WHERE module = ? ORDER BY timestamp DESC, rowid DESC LIMIT ?",
                (module, limit),
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM audit_log ORDER BY timestamp DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [
            AuditRecord(
                id=r["id"],
                timestamp=r["timestamp"],
                module=r["module"],
                action=r["action"],
                inputs=json.loads(r["inputs_json"]),
                metrics=json.loads(r["metrics_json"]),
                narrative=r["narrative"],
                operator_action=r["operator_action"],
                result=r["result"],
            )
            for r in rows
        ]

    # ── Agent health ──

    def upsert_agent_health(
        self,
        agent_id: str,
        status: str,
        last_error: str | None = None,
        audit_failures: int | None = None,
    ) -> None:
        now = time.time()
        self._conn.execute(
            """INSERT INTO agent_health
               (agent_id, status, last_heartbeat, last_error, audit_failures, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(agent_id) DO UPDATE SET
                 status = excluded.status,
                 last_heartbeat = excluded.last_heartbeat,
                 last_error = excluded.last_error,
                 audit_failures = COALESCE(?, agent_health.audit_failures),
                 updated_at = excluded.updated_at""",
            (agent_id, status, now, last_error, audit_failures or 0, now, audit_failures),
        )

    def get_agent_health(self) -> list[dict[str, Any]]:
        return self._conn.execute(
            "SELECT * FROM agent_health ORDER BY agent_id"
        ).fetchall()
