#!/usr/bin/env python3
"""
NegRisk opportunity engine -- scanner, approval gate and operator API.

Pipeline per cycle:
  1. Read control plane + fee rate
  2. Discover negRisk outcome groups
  3. Fetch books, price each basket net of costs, score, classify
  4. Swap the ranked snapshot, audit every decision
  5. Wait for the next interval

Nothing here places orders. Operators approve, simulate or reject through
the API or the `decide` command; approvals are refused while the kill switch
or observation-only mode is on.

Usage:
  python run.py scan                    # loop every SCAN_INTERVAL_SEC
  python run.py scan --once             # single cycle, print the snapshot
  python run.py scan --serve            # loop + HTTP API
  python run.py serve                   # HTTP API only
  python run.py control                 # show control plane
  python run.py control --kill-switch on --operator alice
  python run.py decide <id> simulate --operator alice
  python run.py audit --limit 20
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from dataclasses import asdict

from audit.trail import AuditTrail
from client.clob import ClobBookSource, create_client
from client.fee_rate import FeeRateOracle, StaticFeeRate
from client.gamma import GammaMarketSource
from client.gas import ConvertCostEstimator, GasOracle
from config import Config, control_defaults, load_config
from executor.approval import (
    ApprovalBlocked,
    ApprovalGate,
    InvalidTransition,
    OperatorRequired,
    OpportunityNotFound,
)
from monitor.health import HealthMonitor
from monitor.logger import setup_logging
from pipeline.cycle import ScanCycle, ScanLoop
from report.server import start_server
from scanner.models import Opportunity
from state.store import ArbStore

logger = logging.getLogger(__name__)

_CONTROL_FLAGS = ("kill_switch", "observation_only", "manual_approval_required", "auto_exec")
_CONTROL_NUMBERS = ("min_edge_threshold", "min_depth_usdc", "max_exposure_per_market", "daily_max_exposure")


def _on_off(value: str) -> bool:
    v = value.strip().lower()
    if v in ("on", "true", "1", "yes"):
        return True
    if v in ("off", "false", "0", "no"):
        return False
    raise argparse.ArgumentTypeError(f"expected on/off, got {value!r}")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="NegRisk opportunity engine")
    parser.add_argument("--json-log", type=str, default=None, help="Path to JSON log file for machine-readable output")
    parser.add_argument("--db", type=str, default=None, help="SQLite path (default: DB_PATH)")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Run the scan loop")
    scan.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    scan.add_argument("--serve", action="store_true", help="Also start the HTTP API")

    sub.add_parser("serve", help="Run the HTTP API only")

    control = sub.add_parser("control", help="Show or change the control plane")
    control.add_argument("--operator", default="cli")
    for flag in _CONTROL_FLAGS:
        control.add_argument(f"--{flag.replace('_', '-')}", dest=flag, type=_on_off, default=None)
    for num in _CONTROL_NUMBERS:
        control.add_argument(f"--{num.replace('_', '-')}", dest=num, type=float, default=None)

    decide = sub.add_parser("decide", help="Approve, simulate, reject or execute an opportunity")
    decide.add_argument("opportunity_id")
    decide.add_argument("action", choices=["approve", "simulate", "reject", "execute"])
    decide.add_argument("--operator", required=True)
    decide.add_argument("--reason", default=None)

    audit = sub.add_parser("audit", help="Show recent audit records")
    audit.add_argument("--limit", type=int, default=20)
    audit.add_argument("--module", default=None)

    return parser.parse_args(argv)


def _open_store(cfg: Config, db_path: str | None) -> ArbStore:
    store = ArbStore(db_path or cfg.db_path)
    store.seed_control(control_defaults(cfg))
    return store


def build_cycle(cfg: Config, store: ArbStore, audit: AuditTrail, health: HealthMonitor) -> ScanCycle:
    if cfg.fee_rate_override is not None:
        fee_source = StaticFeeRate(cfg.fee_rate_override)
    else:
        fee_source = FeeRateOracle(
            rpc_url=cfg.polygon_rpc_url,
            adapter_address=cfg.negrisk_adapter_address,
            cache_sec=cfg.fee_rate_cache_sec,
            chain_id=cfg.chain_id,
            timeout=cfg.http_timeout_sec,
        )
    gas = GasOracle(
        rpc_url=cfg.polygon_rpc_url,
        cache_sec=cfg.gas_cache_sec,
        default_gas_gwei=cfg.gas_price_gwei,
        allow_network=cfg.allow_network_gas,
    )
    return ScanCycle(
        cfg,
        store,
        audit,
        health,
        market_source=GammaMarketSource(cfg.gamma_host, max_legs=cfg.max_legs),
        book_source=ClobBookSource(create_client(cfg.clob_host, cfg.chain_id)),
        fee_source=fee_source,
        settlement_estimator=ConvertCostEstimator(gas, cfg.gas_per_convert),
    )


def _print_snapshot(opps: list[Opportunity]) -> None:
    if not opps:
        print("No opportunities this cycle.")
        return
    for rank, opp in enumerate(opps, 1):
        fees = f"{opp.estimated_fees:.4f}" if opp.estimated_fees is not None else "unknown"
        print(
            f"{rank:>3}. [{opp.status.value:<11}] {opp.type.value:<18} "
            f"net={opp.net_edge:+.4f} gross={opp.gross_edge:.4f} fees={fees} "
            f"conf={opp.confidence.overall:.2f} max=${opp.max_notional:,.0f}  "
            f"{opp.market_name[:60]}  ({opp.id})"
        )


def _cmd_scan(args: argparse.Namespace, cfg: Config) -> int:
    store = _open_store(cfg, args.db)
    health = HealthMonitor(store)
    audit = AuditTrail(store, health)
    gate = ApprovalGate(store, audit)
    cycle = build_cycle(cfg, store, audit, health)

    if args.once:
        _print_snapshot(cycle.run_once())
        return 0

    if args.serve:
        start_server(store, gate, health, host=cfg.server_host, port=cfg.server_port)

    stop = threading.Event()

    def handle_signal(signum, frame):
        logger.info("Signal %d received, stopping after current cycle", signum)
        stop.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    health.heartbeat("starting")
    loop = ScanLoop(cycle, cfg.scan_interval_sec, health)
    loop.run(stop)
    health.heartbeat("stopped")
    return 0


def _cmd_serve(args: argparse.Namespace, cfg: Config) -> int:
    store = _open_store(cfg, args.db)
    health = HealthMonitor(store)
    gate = ApprovalGate(store, AuditTrail(store, health))
    thread = start_server(store, gate, health, host=cfg.server_host, port=cfg.server_port)
    try:
        thread.join()
    except KeyboardInterrupt:
        pass
    return 0


def _cmd_control(args: argparse.Namespace, cfg: Config) -> int:
    store = _open_store(cfg, args.db)
    updates = {
        k: getattr(args, k)
        for k in _CONTROL_FLAGS + _CONTROL_NUMBERS
        if getattr(args, k) is not None
    }
    if updates:
        gate = ApprovalGate(store, AuditTrail(store, HealthMonitor(store)))
        control = gate.set_control(args.operator, **updates)
    else:
        control = store.get_control()
    print(json.dumps(asdict(control), indent=2))
    return 0


def _cmd_decide(args: argparse.Namespace, cfg: Config) -> int:
    store = _open_store(cfg, args.db)
    gate = ApprovalGate(store, AuditTrail(store, HealthMonitor(store)))
    try:
        result = gate.decide(args.opportunity_id, args.action, args.operator, reason=args.reason)
        result.raise_if_blocked()
    except OpportunityNotFound:
        logger.error("Opportunity %s not found in current snapshot", args.opportunity_id)
        return 2
    except (InvalidTransition, OperatorRequired) as e:
        logger.error("%s", e)
        return 2
    except ApprovalBlocked as e:
        logger.error("Blocked: %s", e.reason.value)
        return 3
    print(json.dumps(result.to_dict(), indent=2))
    return 0


def _cmd_audit(args: argparse.Namespace, cfg: Config) -> int:
    store = _open_store(cfg, args.db)
    for rec in store.get_audit(limit=args.limit, module=args.module):
        print(json.dumps(asdict(rec), default=str))
    return 0


_COMMANDS = {
    "scan": _cmd_scan,
    "serve": _cmd_serve,
    "control": _cmd_control,
    "decide": _cmd_decide,
    "audit": _cmd_audit,
}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    cfg = load_config()
    log_file_path = setup_logging(
        cfg.log_level, json_log_file=args.json_log or cfg.json_log_file, command=args.command,
    )
    logger.debug("Log file: %s", log_file_path)
    return _COMMANDS[args.command](args, cfg)


if __name__ == "__main__":
    sys.exit(main())
