"""
Tests for state/store.py -- snapshot replacement, control plane, append-only audit.
"""

import sqlite3
import threading

import pytest

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
from state.store import ArbStore


def _opp(oid, net=0.03, status=OpportunityStatus.GO, fees=0.02):
    legs = tuple(
        OutcomeLeg(token_id=f"{oid}-y{i}", outcome=f"O{i}", price=0.3, depth=300.0, spread=0.01, stale=False)
        for i in range(3)
    )
    return Opportunity(
        id=oid, market_id=f"m-{oid}", event_id="e1", market_name=f"Market {oid}",
        type=OpportunityType.BUY_ALL_YES, legs=legs, sum_prices=0.9, gross_edge=0.1,
        fee_rate=fees, estimated_fees=fees, estimated_slippage=0.001,
        estimated_settlement_cost=0.0, net_edge=net, min_depth=300.0, max_notional=300.0,
        convert_active=False,
        confidence=ConfidenceScore(0.98, True, True, fees is not None, 3, ("3 legs increase multi-fill risk",)),
        status=status, discovered_at=1.0, updated_at=1.0,
    )


@pytest.fixture
def store(tmp_path):
    s = ArbStore(tmp_path / "test.db")
    yield s
    s.close()


class TestSnapshot:
    def test_round_trip_preserves_fields(self, store):
        opp = _opp("a", fees=None)
        store.replace_opportunities([opp])
        loaded = store.get_opportunity("a")
        assert loaded.net_edge == opp.net_edge
        assert loaded.estimated_fees is None
        assert loaded.fee_rate is None
        assert loaded.confidence == opp.confidence
        assert [leg.token_id for leg in loaded.legs] == [leg.token_id for leg in opp.legs]
        assert loaded.approval_status == ApprovalStatus.PENDING

    def test_rank_order_kept(self, store):
        store.replace_opportunities([_opp("b", net=0.05), _opp("a", net=0.03), _opp("c", net=0.01)])
        assert [o.id for o in store.get_opportunities()] == ["b", "a", "c"]

    def test_replace_leaves_no_carryover(self, store):
        store.replace_opportunities([_opp("a"), _opp("b")])
        store.replace_opportunities([_opp("c")])
        assert [o.id for o in store.get_opportunities()] == ["c"]
        assert store.get_opportunity("a") is None

    def test_empty_cycle_clears(self, store):
        store.replace_opportunities([_opp("a")])
        store.replace_opportunities([])
        assert store.get_opportunities() == []

    def test_failed_replace_keeps_previous(self, store):
        store.replace_opportunities([_opp("a")])
        with pytest.raises(sqlite3.IntegrityError):
            store.replace_opportunities([_opp("x"), _opp("x")])
        assert [o.id for o in store.get_opportunities()] == ["a"]

    def test_visible_from_other_thread(self, store):
        store.replace_opportunities([_opp("a")])
        seen = []
        t = threading.Thread(target=lambda: seen.extend(o.id for o in store.get_opportunities()))
        t.start()
        t.join()
        assert seen == ["a"]


class TestControl:
    def test_seed_then_read(self, store):
        store.seed_control(SystemControl())
        c = store.get_control()
        assert c.observation_only is True
        assert c.kill_switch is False
        assert c.min_edge_threshold == 0.02
        assert c.min_depth_usdc == 100.0

    def test_seed_does_not_overwrite(self, store):
        store.seed_control(SystemControl())
        store.set_control(kill_switch=True, min_edge_threshold=0.05)
        store.seed_control(SystemControl())
        c = store.get_control()
        assert c.kill_switch is True
        assert c.min_edge_threshold == 0.05

    def test_unknown_key_rejected(self, store):
        with pytest.raises(KeyError):
            store.set_control(launch_missiles=True)

    def test_unseeded_defaults(self, store):
        assert store.get_control() == SystemControl()


class TestAuditLog:
    def _rec(self, rid, ts=1.0, module="evaluation"):
        return AuditRecord(id=rid, timestamp=ts, module=module, action="opportunity scored",
                           inputs={"legs": [1, 2]}, metrics={"net_edge": 0.03})

    def test_insert_and_read_newest_first(self, store):
        store.insert_audit(self._rec("r1", ts=1.0))
        store.insert_audit(self._rec("r2", ts=2.0, module="approval"))
        recs = store.get_audit()
        assert [r.id for r in recs] == ["r2", "r1"]
        assert recs[1].inputs == {"legs": [1, 2]}
        assert [r.id for r in store.get_audit(module="approval")] == ["r2"]

    def test_update_rejected(self, store):
        store.insert_audit(self._rec("r1"))
        with pytest.raises(sqlite3.IntegrityError):
            store._conn.execute("UPDATE audit_log SET action = 'edited' WHERE id = 'r1'")
        assert store.get_audit()[0].action == "opportunity scored"

    def test_delete_rejected(self, store):
        store.insert_audit(self._rec("r1"))
        with pytest.raises(sqlite3.IntegrityError):
            store._conn.execute("DELETE FROM audit_log")
        assert len(store.get_audit()) == 1


class TestAgentHealth:
    def test_upsert(self, store):
        store.upsert_agent_health("scanner", "ok")
        store.upsert_agent_health("scanner", "error", last_error="boom")
        rows = store.get_agent_health()
        assert len(rows) == 1
        assert rows[0]["status"] == "error"
        assert rows[0]["last_error"] == "boom"

    def test_audit_failure_count_survives_heartbeat(self, store):
        store.upsert_agent_health("scanner", "degraded", audit_failures=3)
        store.upsert_agent_health("scanner", "ok")
        assert store.get_agent_health()[0]["audit_failures"] == 3
