import logging
import os
from typing import Any, Dict

from fastapi import FastAPI, HTTPException

from core.config.loader import load_settings, setup_logging
from core.errors import CollaboratorFailure
from core.pipeline import CoachPipeline, build_local_pipeline
from planner.capacity import build_capacity_config, capacity_report
from planner.decision import generate_weekly_plan_pack
from planner.risk import RiskSignals

from .contracts import CapacityConfigIn, ChatMessageIn, ChatMessageOut, ConfirmIn, ConfirmOut

logger = logging.getLogger(__name__)

_settings: Dict[str, Any] = load_settings(os.environ.get("COACH_CONFIG"))
setup_logging(_settings)
_simple_minutes = int((_settings.get("estimates") or {}).get("simple_task_minutes") or 60)

_pipeline: CoachPipeline = build_local_pipeline(_settings)

app = FastAPI(title="Coach Momentum")

_CONFIRM_ERRORS = {"not_found": 404, "expired": 410}


def _unavailable(exc: CollaboratorFailure) -> HTTPException:
    logger.warning(f"collaborator failure: {exc.message}")
    return HTTPException(status_code=503, detail=exc.message)


@app.get("/healthz")
def healthz():
    return {
        "ok": True,
        "database": (_settings.get("database") or {}).get("path"),
        "oracle_enabled": bool((_settings.get("oracle") or {}).get("enable", False)),
    }


@app.post("/coach/chat/message", response_model=ChatMessageOut)
def chat_message(inp: ChatMessageIn):
    reply = _pipeline.handle_message(inp.sessionId, inp.message)
    return reply.to_dict()


@app.post("/coach/chat/confirm", response_model=ConfirmOut)
def chat_confirm(inp: ConfirmIn):
    try:
        outcome = _pipeline.confirm_action(inp.actionId, inp.confirm)
    except CollaboratorFailure as exc:
        raise _unavailable(exc)
    status = _CONFIRM_ERRORS.get(outcome.status)
    if status is not None:
        raise HTTPException(status_code=status, detail=outcome.message)
    return outcome.to_dict()


@app.get("/capacity")
def capacity():
    try:
        snapshot = _pipeline.service.read_snapshot()
    except CollaboratorFailure as exc:
        raise _unavailable(exc)
    return capacity_report(snapshot, simple_task_minutes=_simple_minutes).to_dict()


@app.patch("/capacity/config")
def update_capacity(inp: CapacityConfigIn):
    try:
        _pipeline.service.set_capacity_profile(inp.changes())
        snapshot = _pipeline.service.read_snapshot()
    except CollaboratorFailure as exc:
        raise _unavailable(exc)
    return capacity_report(snapshot, simple_task_minutes=_simple_minutes).to_dict()


@app.get("/objectives/risk-signals")
def risk_signals():
    result = _pipeline.fetch_risk_signals()
    body = result.unwrap_or(RiskSignals()).to_dict()
    body["degraded"] = result.reason.value if result.reason else None
    return body


@app.get("/plan/weekly")
def weekly_plan():
    try:
        snapshot = _pipeline.service.read_snapshot()
    except CollaboratorFailure as exc:
        raise _unavailable(exc)
    result = _pipeline.fetch_risk_signals()
    config = build_capacity_config(snapshot.profile, simple_task_minutes=_simple_minutes)
    pack = generate_weekly_plan_pack(snapshot.tasks, config, result.unwrap_or(RiskSignals()), _pipeline.today())
    body = pack.to_dict()
    body["degraded"] = result.reason.value if result.reason else None
    return body
