"""REST API endpoints: status, operator intents and diagnostics."""

from __future__ import annotations

import logging
from typing import Any, Literal

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from power_switch.config.schema import AppConfig
from power_switch.control.command import CommandResult
from power_switch.control.executor import ExecutionResult
from power_switch.control.mode import ModeError
from power_switch.control.state import PowerMode, PowerSource

router = APIRouter()
logger = logging.getLogger(__name__)


# ── Request models ───────────────────────────────────

class ModeRequest(BaseModel):
    mode: PowerMode
    confirm: bool = False


class SourceRequest(BaseModel):
    source: Literal["solar", "battery", "grid", "all"]
    state: Literal["on", "off"] = "on"


class ResetRequest(BaseModel):
    mode: Literal["auto", "manual"] = "manual"
    source: PowerSource = PowerSource.GRID


class BrushRequest(BaseModel):
    command: Literal["auto_mode", "manual_mode", "forward", "reverse", "stop"]


class PumpRequest(BaseModel):
    state: Literal["on", "off"]


class CleaningRequest(BaseModel):
    action: Literal["start", "stop"]
    duration: int = Field(30, gt=0)
    interval: int = Field(6, gt=0)


class ServoRequest(BaseModel):
    direction: Literal["left", "right", "up", "down", "center"]
    angle: int = Field(5, gt=0, le=180)


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"status": "error", "message": message}, status_code=status_code)


def _command_response(result: CommandResult, **extra) -> dict | JSONResponse:
    if not result.success:
        return JSONResponse(
            {"status": "error", "message": result.message, "latency_ms": result.latency_ms, **extra},
            status_code=502,
        )
    return {"status": "ok", "latency_ms": result.latency_ms, **extra}


# ── Status ───────────────────────────────────────────

@router.get("/status")
async def system_status(request: Request) -> dict:
    """Get current operating state, telemetry and connectivity."""
    return request.app.state.session.status()


# ── Mode control ─────────────────────────────────────

@router.post("/mode")
async def set_mode(request: Request, body: ModeRequest):
    """Switch between auto and manual, or stop (requires confirm)."""
    session = request.app.state.session
    if body.mode == PowerMode.STOP and not body.confirm:
        return _error("Emergency stop requires confirm=true", 400)
    try:
        await session.mode.set_mode(body.mode)
    except ModeError as e:
        return _error(str(e), 409)
    return {"status": "ok", "mode": session.state.mode.value,
            "active_source": session.state.active_source.value}


@router.post("/source")
async def set_source(request: Request, body: SourceRequest):
    """Manual source selection; ``all``/off opens every relay."""
    session = request.app.state.session
    if body.source == "all" or body.state == "off":
        target = PowerSource.OFF
    else:
        target = PowerSource(body.source)

    try:
        result = await session.mode.select_source(target)
    except ModeError as e:
        return _error(str(e), 409)

    if isinstance(result, CommandResult):
        return _command_response(result, active_source=session.state.active_source.value)

    execution: ExecutionResult = result
    if not execution.executed:
        return JSONResponse(
            {"status": "rejected", "message": execution.outcome.value,
             "active_source": session.state.active_source.value},
            status_code=409,
        )
    return _command_response(execution.command, active_source=session.state.active_source.value)


@router.post("/emergency-stop")
async def emergency_stop(request: Request):
    session = request.app.state.session
    result = await session.mode.emergency_stop()
    return _command_response(result, mode=session.state.mode.value)


@router.post("/reset")
async def reset_system(request: Request, body: ResetRequest):
    """Leave stop into the requested mode and source."""
    session = request.app.state.session
    try:
        result = await session.mode.reset(PowerMode(body.mode), body.source)
    except ModeError as e:
        return _error(str(e), 409)
    return _command_response(
        result, mode=session.state.mode.value, active_source=session.state.active_source.value,
    )


# ── Auxiliary actuators ──────────────────────────────

@router.post("/auxiliary/brush")
async def brush_control(request: Request, body: BrushRequest):
    aux = request.app.state.session.auxiliary
    try:
        result = await aux.brush_control(body.command)
    except ValueError as e:
        return _error(str(e), 400)
    return _command_response(result, brush_mode=aux.brush.mode, brush_status=aux.brush.status)


@router.post("/auxiliary/pump")
async def pump_control(request: Request, body: PumpRequest):
    aux = request.app.state.session.auxiliary
    result = await aux.pump_control(body.state == "on")
    return _command_response(result, pump_on=aux.pump_on)


@router.post("/auxiliary/cleaning")
async def cleaning_control(request: Request, body: CleaningRequest):
    aux = request.app.state.session.auxiliary
    result = await aux.cleaning_control(body.action, body.duration, body.interval)
    return _command_response(result)


@router.post("/auxiliary/servo")
async def servo_control(request: Request, body: ServoRequest):
    aux = request.app.state.session.auxiliary
    result = await aux.control_servo(body.direction, body.angle)
    return _command_response(result)


# ── Alerts / notifications / logs ────────────────────

@router.get("/alerts")
async def get_alerts(request: Request) -> dict:
    return {"alerts": request.app.state.session.alerts.recent()}


@router.get("/notifications")
async def get_notifications(request: Request, limit: int = 20, after: int = 0) -> dict:
    notifier = request.app.state.session.notifier
    return {"notifications": notifier.recent(limit=min(limit, 200), after_id=after)}


@router.get("/logs")
async def get_logs(request: Request, limit: int = 200, level: str = "") -> dict:
    """Get recent application log entries from the in-memory buffer."""
    from power_switch.dashboard.log_buffer import log_buffer

    records = log_buffer.get_records(limit=min(limit, 1000), min_level=level or None)
    return {"records": records}


# ── Config ───────────────────────────────────────────

@router.get("/config")
async def get_config(request: Request) -> dict:
    """Get current configuration (credentials masked)."""
    data = request.app.state.config.model_dump()
    store = data.get("store", {})
    if store.get("firebase", {}).get("auth_token"):
        store["firebase"]["auth_token"] = "***"
    if store.get("mqtt", {}).get("password"):
        store["mqtt"]["password"] = "***"
    return data


@router.put("/config")
async def update_config(request: Request, updates: dict[str, Any]):
    """Validate and save user overrides. Thresholds apply to the next session."""
    config_manager = request.app.state.config_manager
    if config_manager is None:
        return _error("Configuration is read-only", 409)

    merged = config_manager._deep_merge(config_manager.get_raw(), updates)
    try:
        AppConfig.model_validate(merged)
    except ValidationError as e:
        logger.warning("Config validation failed: %s", str(e).replace("\n", " ")[:200])
        return _error(str(e).replace("\n", " ")[:200], 422)

    request.app.state.config = config_manager.save_user_config(updates)
    logger.info("Settings saved: changed=%s", list(updates.keys()))
    return {"status": "ok", "changed": list(updates.keys())}
