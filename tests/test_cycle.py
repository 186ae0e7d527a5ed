"""
Tests for pipeline/cycle.py -- one scan cycle end to end with fake sources.
"""

import threading

import pytest

from audit.trail import AuditTrail
from client.fee_rate import FeeRate, FeeRateUnavailable
from config import Config, control_defaults
from monitor.health import HealthMonitor
from pipeline.cycle import ScanCycle, ScanLoop
from scanner.models import (
    BookFetch,
    OpportunityStatus,
    OpportunityType,
    OrderBook,
    OutcomeGroup,
    OutcomeRef,
    PriceLevel,
)
from state.store import ArbStore

NOW = 1_700_000_000.0


def _group(gid, n):
    return OutcomeGroup(
        group_id=gid,
        event_id=f"e-{gid}",
        title=f"Event {gid}",
        outcomes=tuple(OutcomeRef(f"{gid} outcome {i}", f"{gid}-y{i}", f"{gid}-n{i}") for i in range(n)),
    )


class FakeMarkets:
    def __init__(self, groups):
        self.groups = groups
        self.calls = 0

    def fetch_groups(self):
        self.calls += 1
        return list(self.groups)


class FakeBooks:
    """Serves a fixed ask price per token; unknown tokens fail."""

    def __init__(self, prices, raise_for=()):
        self.prices = prices
        self.raise_for = set(raise_for)
        self.fetched = []

    def fetch_book(self, token_id):
        self.fetched.append(token_id)
        if token_id in self.raise_for:
            raise RuntimeError("socket closed")
        price = self.prices.get(token_id)
        if price is None:
            return BookFetch(token_id, error="404")
        book = OrderBook(
            token_id=token_id,
            bids=(PriceLevel(max(0.0, price - 0.01), 1000.0),),
            asks=(PriceLevel(price, 1000.0),),
            timestamp=NOW,
        )
        return BookFetch(token_id, book=book)


class FakeFees:
    def __init__(self, result):
        self.result = result

    def get(self):
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


@pytest.fixture
def env(tmp_path):
    cfg = Config(_env_file=None, db_path=str(tmp_path / "cycle.db"), book_fetch_delay_sec=0.2)
    store = ArbStore(cfg.db_path)
    store.seed_control(control_defaults(cfg))
    health = HealthMonitor(store)
    audit = AuditTrail(store, health)
    yield cfg, store, audit, health
    store.close()


def _cycle(env, groups, prices, fee=None, sleeps=None, **kw):
    cfg, store, audit, health = env
    fee = fee or FeeRate(rate=0.02, source="config", fetched_at=NOW)
    books = kw.pop("books", None) or FakeBooks(prices)
    sleep = (lambda s: sleeps.append(s)) if sleeps is not None else (lambda s: None)
    cycle = ScanCycle(
        cfg, store, audit, health,
        market_source=FakeMarkets(groups),
        book_source=books,
        fee_source=FakeFees(fee),
        sleep=sleep,
        clock=lambda: NOW,
        **kw,
    )
    return cycle, books


def _yes_prices(gid, prices):
    return {f"{gid}-y{i}": p for i, p in enumerate(prices)}


class TestRunOnce:
    def test_finds_and_persists_ranked(self, env):
        _, store, _, _ = env
        prices = {**_yes_prices("a", [0.40, 0.50]), **_yes_prices("b", [0.20, 0.25, 0.30, 0.20])}
        cycle, _ = _cycle(env, [_group("a", 2), _group("b", 4)], prices)
        opps = cycle.run_once()
        assert [o.market_id for o in opps] == ["a", "b"]
        assert opps[0].net_edge >= opps[1].net_edge
        assert [o.id for o in store.get_opportunities()] == [o.id for o in opps]
        assert opps[1].status == OpportunityStatus.GO

    def test_no_carryover_between_cycles(self, env):
        _, store, _, _ = env
        prices = _yes_prices("a", [0.40, 0.50])
        cycle, _ = _cycle(env, [_group("a", 2)], prices)
        first = cycle.run_once()
        second = cycle.run_once()
        stored = store.get_opportunities()
        assert len(stored) == 1
        assert stored[0].id == second[0].id != first[0].id

    def test_group_exception_isolated(self, env):
        prices = {**_yes_prices("a", [0.40, 0.50]), **_yes_prices("b", [0.30, 0.30])}
        books = FakeBooks(prices, raise_for={"b-y1"})
        cycle, _ = _cycle(env, [_group("b", 2), _group("a", 2)], prices, books=books)
        opps = cycle.run_once()
        assert [o.market_id for o in opps] == ["a"]
        assert cycle.last_stats.failed == 1
        assert cycle.last_stats.evaluated == 1

    def test_single_outcome_group_dropped(self, env):
        cycle, books = _cycle(env, [_group("solo", 1)], _yes_prices("solo", [0.3]))
        assert cycle.run_once() == []
        assert cycle.last_stats.dropped == 1
        assert books.fetched == []

    def test_fee_unknown_blocks_go(self, env):
        cycle, _ = _cycle(
            env, [_group("b", 4)], _yes_prices("b", [0.20, 0.25, 0.30, 0.20]),
            fee=FeeRateUnavailable("RPC down", NOW),
        )
        opp = cycle.run_once()[0]
        assert opp.fee_rate is None
        assert opp.status == OpportunityStatus.CONDITIONAL
        assert cycle.last_stats.fee_source == "unavailable"

    def test_raising_fee_source_treated_as_unknown(self, env):
        _, store, _, _ = env
        cycle, _ = _cycle(
            env, [_group("b", 4)], _yes_prices("b", [0.20, 0.25, 0.30, 0.20]),
            fee=AttributeError("'list' object has no attribute 'get'"),
        )
        opps = cycle.run_once()
        assert len(opps) == 1
        assert opps[0].fee_rate is None
        assert opps[0].status == OpportunityStatus.CONDITIONAL
        assert cycle.last_stats.fee_source == "unavailable"
        assert [o.id for o in store.get_opportunities()] == [opps[0].id]

    def test_yes_legs_normalized_once(self, env, monkeypatch):
        import scanner.negrisk

        calls = []
        real = scanner.negrisk.normalize_group

        def spy(outcomes, fetches, opp_type, **kw):
            calls.append(opp_type)
            return real(outcomes, fetches, opp_type, **kw)

        monkeypatch.setattr(scanner.negrisk, "normalize_group", spy)
        cycle, _ = _cycle(env, [_group("a", 2)], _yes_prices("a", [0.40, 0.50]))
        assert len(cycle.run_once()) == 1
        assert OpportunityType.BUY_ALL_YES not in calls

    def test_sequential_fetch_with_delay(self, env):
        sleeps = []
        cycle, books = _cycle(env, [_group("a", 3)], _yes_prices("a", [0.3, 0.3, 0.3]), sleeps=sleeps)
        cycle.run_once()
        assert books.fetched == ["a-y0", "a-y1", "a-y2"]
        assert sleeps == [0.2, 0.2]

    def test_no_books_only_when_yes_sum_above_one(self, env):
        prices = {**_yes_prices("a", [0.40, 0.70]), "a-n0": 0.60, "a-n1": 0.30}
        cycle, books = _cycle(env, [_group("a", 2)], prices)
        opp = cycle.run_once()[0]
        assert "a-n0" in books.fetched and "a-n1" in books.fetched
        assert opp.type == OpportunityType.BUY_ALL_NO_CONVERT
        assert opp.status == OpportunityStatus.KILL

    def test_convert_checker_per_group(self, env):
        prices = {**_yes_prices("a", [0.40, 0.70]), "a-n0": 0.60, "a-n1": 0.30}
        cycle, _ = _cycle(env, [_group("a", 2)], prices, convert_checker=lambda g: True)
        opp = cycle.run_once()[0]
        assert opp.convert_active
        assert opp.status != OpportunityStatus.KILL

    def test_control_thresholds_read_each_cycle(self, env):
        _, store, _, _ = env
        prices = _yes_prices("b", [0.20, 0.25, 0.30, 0.20])
        cycle, _ = _cycle(env, [_group("b", 4)], prices)
        assert cycle.run_once()[0].status == OpportunityStatus.GO
        store.set_control(min_edge_threshold=0.05)
        assert cycle.run_once()[0].status == OpportunityStatus.CONDITIONAL

    def test_audits_each_opportunity_and_summary(self, env):
        _, store, _, _ = env
        prices = {**_yes_prices("a", [0.40, 0.50]), **_yes_prices("b", [0.30, 0.30])}
        cycle, _ = _cycle(env, [_group("a", 2), _group("b", 2)], prices)
        cycle.run_once()
        recs = store.get_audit(module="evaluation")
        actions = sorted(r.action for r in recs)
        assert actions == ["opportunity scored", "opportunity scored", "scan complete"]

    def test_narrator_cannot_change_status(self, env):
        def narrator(opp):
            return f"{opp.status.value} basket"

        cycle, _ = _cycle(env, [_group("b", 4)], _yes_prices("b", [0.20, 0.25, 0.30, 0.20]), narrator=narrator)
        opp = cycle.run_once()[0]
        assert opp.narrative == "GO basket"
        assert opp.status == OpportunityStatus.GO

    def test_narrator_failure_ignored(self, env):
        def narrator(opp):
            raise RuntimeError("llm down")

        cycle, _ = _cycle(env, [_group("a", 2)], _yes_prices("a", [0.40, 0.50]), narrator=narrator)
        assert cycle.run_once()[0].narrative is None

    def test_heartbeat(self, env):
        _, store, _, health = env
        cycle, _ = _cycle(env, [_group("a", 2)], _yes_prices("a", [0.40, 0.50]))
        cycle.run_once()
        assert health.last_status == "ok"
        assert store.get_agent_health()[0]["status"] == "ok"


class TestScanLoop:
    def test_failed_cycle_does_not_stop_loop(self, env):
        _, _, _, health = env

        class Flaky:
            calls = 0

            def run_once(self):
                Flaky.calls += 1
                if Flaky.calls == 1:
                    raise RuntimeError("gamma down")
                return []

        loop = ScanLoop(Flaky(), interval_sec=0.0, health=health)
        loop.run(threading.Event(), max_cycles=3)
        assert loop.cycles_run == 3
        assert loop.cycles_failed == 1

    def test_stop_event(self, env):
        _, _, _, health = env
        stop = threading.Event()

        class StopAfterOne:
            def run_once(self):
                stop.set()
                return []

        loop = ScanLoop(StopAfterOne(), interval_sec=60.0, health=health)
        loop.run(stop)
        assert loop.cycles_run == 1

    def test_start_stop_thread(self, env):
        _, _, _, health = env

        class Noop:
            def run_once(self):
                return []

        loop = ScanLoop(Noop(), interval_sec=0.01, health=health)
        loop.start()
        assert loop.running
        loop.stop(timeout=2.0)
        assert not loop.running
