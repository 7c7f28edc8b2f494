"""Command endpoint — FastAPI front for the reporting loop.

  POST /command                     start | stop | status | list
  GET  /api/status                  instance summary
  GET  /api/events                  recent lifecycle events
  GET  /api/processes/{id}/output   output tail for one process

The app holds no module state: ``create_app`` stores the loop and bus on
``app.state`` so every app instance owns its own registry.
"""

from __future__ import annotations

import time
from typing import Any

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from hostagent import __version__
from hostagent.events.bus import EventBus
from hostagent.reporting.loop import ReportingLoop
from hostagent.types import CommandRequest

router = APIRouter()

_STATUS_CODES = {
    "MissingField": 400,
    "InvalidAction": 400,
    "NotFound": 404,
    "AlreadyRunning": 409,
    "SpawnFailure": 500,
}


def create_app(loop: ReportingLoop, event_bus: EventBus | None = None) -> FastAPI:
    app = FastAPI(title="hostagent", version=__version__)
    app.state.loop = loop
    app.state.event_bus = event_bus
    app.state.started_at = time.time()
    app.include_router(router)
    return app


def _error(code: str, message: str) -> JSONResponse:
    return JSONResponse(
        {"status": "error", "error": code, "message": message},
        status_code=_STATUS_CODES.get(code, 500),
    )


@router.post("/command")
async def command(request: Request, payload: dict[str, Any]) -> JSONResponse:
    """Dispatch one command to the registry."""
    try:
        cmd = CommandRequest.model_validate(payload)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        return _error("MissingField", f"Invalid command request: {fields}")

    loop: ReportingLoop = request.app.state.loop
    result = await loop.execute(cmd)
    if not result.ok:
        return _error(result.error or "AgentError", result.message)
    return JSONResponse({"status": "success", **result.data})


@router.get("/api/status")
async def agent_status(request: Request) -> dict:
    loop: ReportingLoop = request.app.state.loop
    views = loop.registry.list()
    return {
        "version": __version__,
        "instance_id": loop.instance_id,
        "processes_total": len(views),
        "processes_running": sum(1 for v in views if v.running),
        "reporting": loop.is_running,
        "report_cycles": loop.cycles,
        "report_failures": loop.failures,
        "uptime_s": int(time.time() - request.app.state.started_at),
    }


@router.get("/api/events")
async def list_events(request: Request, topic: str = "*", limit: int = 50) -> list[dict]:
    bus: EventBus | None = request.app.state.event_bus
    if bus is None:
        return []
    return [e.model_dump(mode="json") for e in bus.history(topic_filter=topic, limit=limit)]


@router.get("/api/processes/{process_id}/output")
async def process_output(request: Request, process_id: str, lines: int = 50) -> JSONResponse:
    loop: ReportingLoop = request.app.state.loop
    output = loop.registry.output(process_id, lines=lines)
    if output is None:
        return _error("NotFound", f"Process {process_id} not found")
    return JSONResponse({"processId": process_id, "lines": output})
