"""
Scan cycle and scheduled loop.

One cycle: read the control plane, look up the fee rate, discover groups,
fetch each group's books one at a time, evaluate, rank, swap the snapshot,
then audit. The snapshot swap is the only point where the outside world sees
the cycle's result.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Protocol

from audit.trail import MODULE_EVALUATION, AuditTrail
from client.fee_rate import FeeRate, FeeRateSource, FeeRateUnavailable
from config import Config
from monitor.health import HealthMonitor
from scanner.costs import SettlementCostEstimator
from scanner.edge import detect_type, sum_prices
from scanner.legs import normalize_group
from scanner.models import (
    BookFetch,
    Opportunity,
    OpportunityStatus,
    OpportunityType,
    OutcomeGroup,
    OutcomeLeg,
)
from scanner.negrisk import MIN_LEGS, evaluate_group, rank_opportunities
from state.store import ArbStore

logger = logging.getLogger(__name__)


class MarketSource(Protocol):
    def fetch_groups(self) -> list[OutcomeGroup]: ...


class BookSource(Protocol):
    def fetch_book(self, token_id: str) -> BookFetch: ...


@dataclass
class CycleStats:
    groups: int = 0
    evaluated: int = 0
    dropped: int = 0
    failed: int = 0
    books_fetched: int = 0
    opportunities: int = 0
    go: int = 0
    conditional: int = 0
    kill: int = 0
    fee_rate: float | None = None
    fee_source: str = ""
    elapsed_sec: float = 0.0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "groups": self.groups,
            "evaluated": self.evaluated,
            "dropped": self.dropped,
            "failed": self.failed,
            "books_fetched": self.books_fetched,
            "opportunities": self.opportunities,
            "go": self.go,
            "conditional": self.conditional,
            "kill": self.kill,
            "fee_rate": self.fee_rate,
            "fee_source": self.fee_source,
            "elapsed_sec": round(self.elapsed_sec, 3),
        }


class ScanCycle:
    def __init__(
        self,
        cfg: Config,
        store: ArbStore,
        audit: AuditTrail,
        health: HealthMonitor,
        market_source: MarketSource,
        book_source: BookSource,
        fee_source: FeeRateSource,
        convert_checker: Callable[[OutcomeGroup], bool] | None = None,
        settlement_estimator: SettlementCostEstimator | None = None,
        narrator: Callable[[Opportunity], str | None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cfg = cfg
        self._store = store
        self._audit = audit
        self._health = health
        self._markets = market_source
        self._books = book_source
        self._fees = fee_source
        self._convert_checker = convert_checker or (lambda _group: cfg.convert_active)
        self._settlement = settlement_estimator
        self._narrator = narrator
        self._sleep = sleep
        self._clock = clock
        self._fetches_this_cycle = 0
        self.last_stats: CycleStats | None = None

    def _fetch(self, token_id: str, fetches: dict[str, BookFetch]) -> None:
        if token_id in fetches:
            return
        if self._fetches_this_cycle and self._cfg.book_fetch_delay_sec > 0:
            self._sleep(self._cfg.book_fetch_delay_sec)
        self._fetches_this_cycle += 1
        fetches[token_id] = self._books.fetch_book(token_id)

    def _fetch_group(
        self, group: OutcomeGroup, now: float,
    ) -> tuple[dict[str, BookFetch], list[OutcomeLeg]]:
        """
        YES books for every outcome. NO books only when the YES sum is above 1,
        since that is the only case the NO shape can trigger. Returns the
        fetches and the normalized YES legs, which evaluation reuses.
        """
        fetches: dict[str, BookFetch] = {}
        for ref in group.outcomes:
            self._fetch(ref.yes_token_id, fetches)

        yes_legs = normalize_group(
            group.outcomes, fetches, OpportunityType.BUY_ALL_YES, now=now,
            freshness_window_sec=self._cfg.freshness_window_sec, band=self._cfg.price_band,
        )
        if detect_type(sum_prices(yes_legs)) == OpportunityType.BUY_ALL_NO_CONVERT:
            for ref in group.outcomes:
                self._fetch(ref.no_token_id, fetches)
        return fetches, yes_legs

    def _narrate(self, opp: Opportunity) -> Opportunity:
        if self._narrator is None:
            return opp
        try:
            text = self._narrator(opp)
        except Exception as e:
            logger.warning("Narrative for %s failed: %s", opp.id, e)
            return opp
        # advisory only: status and numbers are untouched
        return replace(opp, narrative=text)

    def run_once(self) -> list[Opportunity]:
        """Run one full cycle and return the ranked snapshot it stored."""
        start = self._clock()
        stats = CycleStats()
        self._fetches_this_cycle = 0

        control = self._store.get_control()
        try:
            fee = self._fees.get()
        except Exception as e:
            logger.exception("Fee rate lookup raised: %s", e)
            fee = FeeRateUnavailable(f"fee lookup error: {e}", self._clock())
        if isinstance(fee, FeeRate):
            fee_rate: float | None = fee.rate
            stats.fee_source = fee.source
        else:
            fee_rate = None
            stats.fee_source = "unavailable"
            logger.warning("Fee rate unknown this cycle: %s", fee.reason)
        stats.fee_rate = fee_rate

        groups = self._markets.fetch_groups()
        if self._cfg.max_groups:
            groups = groups[: self._cfg.max_groups]
        stats.groups = len(groups)
        logger.info("Scanning %d negRisk groups (fee rate %s)", len(groups),
                    f"{fee_rate:.4f}" if fee_rate is not None else "unknown")

        opps: list[Opportunity] = []
        for group in groups:
            distinct = {ref.yes_token_id for ref in group.outcomes}
            if len(distinct) < MIN_LEGS:
                logger.warning(
                    "Data quality: group %s (%s) has %d outcome(s); dropped",
                    group.group_id, group.title[:50], len(distinct),
                )
                stats.dropped += 1
                continue
            try:
                now = self._clock()
                fetches, yes_legs = self._fetch_group(group, now)
                found = evaluate_group(
                    group,
                    fetches,
                    fee_rate=fee_rate,
                    convert_active=self._convert_checker(group),
                    min_edge_threshold=control.min_edge_threshold,
                    min_depth_usdc=control.min_depth_usdc,
                    settlement_estimator=self._settlement,
                    band=self._cfg.price_band,
                    freshness_window_sec=self._cfg.freshness_window_sec,
                    confidence_floor=self._cfg.confidence_floor,
                    now=now,
                    yes_legs=yes_legs,
                )
            except Exception as e:
                logger.exception("Group skipped: %s", e, extra={"group_id": group.group_id})
                stats.failed += 1
                stats.errors.append(f"{group.group_id}: {e}")
                continue
            stats.evaluated += 1
            opps.extend(found)

        stats.books_fetched = self._fetches_this_cycle
        ranked = [self._narrate(o) for o in rank_opportunities(opps)]
        self._store.replace_opportunities(ranked)

        for opp in ranked:
            self._audit.record_opportunity(opp)

        stats.opportunities = len(ranked)
        stats.go = sum(1 for o in ranked if o.status == OpportunityStatus.GO)
        stats.conditional = sum(1 for o in ranked if o.status == OpportunityStatus.CONDITIONAL)
        stats.kill = sum(1 for o in ranked if o.status == OpportunityStatus.KILL)
        stats.elapsed_sec = self._clock() - start
        self._audit.record(
            MODULE_EVALUATION,
            "scan complete",
            inputs={"groups": stats.groups, "fee_source": stats.fee_source},
            metrics=stats.to_dict(),
            result="ok" if not stats.failed else "partial",
        )
        self.last_stats = stats

        self._health.heartbeat("ok" if not stats.failed else "degraded",
                               error=stats.errors[-1] if stats.errors else None)
        logger.info(
            "Scan complete in %.1fs: %d opportunities (%d GO, %d CONDITIONAL, %d KILL), "
            "%d group(s) failed, %d dropped",
            stats.elapsed_sec, stats.opportunities, stats.go, stats.conditional,
            stats.kill, stats.failed, stats.dropped,
        )
        return ranked


class ScanLoop:
    """
    Runs ScanCycle every `interval_sec` until stopped. A failed cycle is
    logged and reported as an error heartbeat; the loop keeps going.
    """

    def __init__(self, cycle: ScanCycle, interval_sec: float, health: HealthMonitor) -> None:
        self._cycle = cycle
        self._interval = interval_sec
        self._health = health
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.cycles_run = 0
        self.cycles_failed = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self, stop_event: threading.Event | None = None, max_cycles: int = 0) -> None:
        """Blocking loop. `max_cycles` > 0 stops after that many cycles."""
        stop = stop_event or self._stop
        while not stop.is_set():
            try:
                self._cycle.run_once()
            except Exception as e:
                self.cycles_failed += 1
                logger.exception("Scan cycle failed: %s", e)
                self._health.heartbeat("error", error=str(e))
            self.cycles_run += 1
            if max_cycles and self.cycles_run >= max_cycles:
                break
            stop.wait(self._interval)

    def start(self) -> threading.Thread:
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="scan-loop", daemon=True)
        self._thread.start()
        logger.info("Scan loop started (every %.0fs)", self._interval)
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Scan loop stopped after %d cycle(s)", self.cycles_run)
