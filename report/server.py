"""
FastAPI server for operators. Runs as a daemon thread next to the scan loop.

Reads come straight from the SQLite snapshot. The only writes are approval
decisions and control-plane changes, both routed through the ApprovalGate.
Handlers are plain functions so FastAPI runs their SQLite calls in its
threadpool instead of on the event loop.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict
from typing import Any

from pydantic import BaseModel, Field

from executor.approval import (
    ApprovalBlocked,
    ApprovalGate,
    InvalidTransition,
    OperatorRequired,
    OpportunityNotFound,
)
from monitor.health import HealthMonitor
from report.brief import generate_brief
from scanner.models import SystemControl
from state.store import ArbStore

logger = logging.getLogger(__name__)


class ApproveRequest(BaseModel):
    id: str
    action: str = Field(pattern="^(approve|simulate|reject|execute)$")
    operator: str = "operator"
    reason: str | None = None


class ControlUpdate(BaseModel):
    operator: str = "operator"
    kill_switch: bool | None = None
    observation_only: bool | None = None
    manual_approval_required: bool | None = None
    auto_exec: bool | None = None
    min_edge_threshold: float | None = Field(default=None, ge=0.0, lt=1.0)
    min_depth_usdc: float | None = Field(default=None, ge=0.0)
    max_exposure_per_market: float | None = Field(default=None, gt=0.0)
    daily_max_exposure: float | None = Field(default=None, gt=0.0)


def _control_json(control: SystemControl) -> dict[str, Any]:
    return asdict(control)


def create_app(store: ArbStore, gate: ApprovalGate, health: HealthMonitor | None = None) -> Any:
    """Build and return the FastAPI application."""
    from fastapi import FastAPI, Query
    from fastapi.responses import JSONResponse

    app = FastAPI(title="NegRisk Opportunity Engine", docs_url="/docs")

    # ── Opportunities ──

    @app.get("/api/opportunities")
    def list_opportunities():
        out = []
        for opp in store.get_opportunities():
            row = opp.to_dict()
            row["brief"] = generate_brief(opp)
            out.append(row)
        return out

    @app.get("/api/opportunities/{opportunity_id}")
    def get_opportunity(opportunity_id: str):
        opp = store.get_opportunity(opportunity_id)
        if opp is None:
            return JSONResponse({"error": "Opportunity not found"}, status_code=404)
        row = opp.to_dict()
        row["brief"] = generate_brief(opp)
        return row

    # ── Approval ──

    @app.post("/api/approve")
    def approve(req: ApproveRequest):
        try:
            result = gate.decide(req.id, req.action, req.operator, reason=req.reason)
            result.raise_if_blocked()
        except OpportunityNotFound:
            return JSONResponse({"error": "Opportunity not found", "id": req.id}, status_code=404)
        except InvalidTransition as e:
            return JSONResponse({"error": str(e), "id": req.id}, status_code=409)
        except OperatorRequired as e:
            return JSONResponse({"error": str(e), "id": req.id}, status_code=400)
        except ApprovalBlocked as e:
            return JSONResponse(
                {"error": "Approval blocked", "id": req.id, "blocked": e.reason.value},
                status_code=403,
            )
        return result.to_dict()

    # ── Control plane ──

    @app.get("/api/control")
    def get_control():
        return _control_json(store.get_control())

    @app.post("/api/control")
    def set_control(update: ControlUpdate):
        changes = update.model_dump(exclude_none=True, exclude={"operator"})
        if not changes:
            return JSONResponse({"error": "No control keys given"}, status_code=400)
        control = gate.set_control(update.operator, **changes)
        return _control_json(control)

    # ── Health + audit ──

    @app.get("/api/health")
    def get_health():
        if health is not None:
            return health.snapshot()
        return {"status": "unknown", "agents": store.get_agent_health()}

    @app.get("/api/audit")
    def get_audit(
        limit: int = Query(default=100, ge=1, le=1000),
        module: str | None = None,
    ):
        return [asdict(rec) for rec in store.get_audit(limit=limit, module=module)]

    return app


def start_server(
    store: ArbStore,
    gate: ApprovalGate,
    health: HealthMonitor | None = None,
    host: str = "127.0.0.1",
    port: int = 8000,
) -> threading.Thread:
    """Start FastAPI in a daemon thread. Returns the thread."""
    import uvicorn

    app = create_app(store, gate, health)

    def _run():
        uvicorn.run(
            app,
            host=host,
            port=port,
            log_level="warning",
            access_log=False,
        )

    thread = threading.Thread(target=_run, daemon=True, name="api-server")
    thread.start()
    logger.info("API server started at http://%s:%d", host, port)
    return thread
