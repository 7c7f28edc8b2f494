"""Reporting loop — periodic drain-and-deliver, plus the command surface.

Every ``interval_seconds`` the loop drains the registry, samples metrics and
hands one payload to the sink. Delivery is at-most-once: a cycle that fails
to deliver is logged and its drained lines are gone.

The loop is also what the command endpoint talks to. ``execute`` runs
start/stop/status/list against the registry and turns registry errors into
``CommandResult`` failures.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

import structlog

from hostagent.events.bus import EventBus
from hostagent.exceptions import HostAgentError, InvalidActionError, MissingFieldError
from hostagent.processes.registry import ProcessRegistry
from hostagent.reporting.metrics import CounterMetricsSampler, MetricsSampler
from hostagent.types import CommandRequest, CommandResult, InstanceId, ReportPayload

logger = structlog.get_logger()


class ReportSink(Protocol):
    async def report(self, payload: ReportPayload) -> Any: ...


@dataclass
class ReportOutcome:
    payload: ReportPayload
    delivered: bool
    error: str | None = None


class ReportingLoop:
    """Drives reporting on a fixed interval and fronts the registry."""

    def __init__(
        self,
        registry: ProcessRegistry,
        instance_id: InstanceId,
        sink: ReportSink,
        sampler: MetricsSampler | None = None,
        interval_seconds: float = 60.0,
        region: str = "unknown",
        event_bus: EventBus | None = None,
    ) -> None:
        self._registry = registry
        self._instance_id = instance_id
        self._sink = sink
        self._sampler = sampler or CounterMetricsSampler()
        self._interval = interval_seconds
        self._region = region
        self._event_bus = event_bus
        self._running = False
        self._task: asyncio.Task | None = None
        self._cycles = 0
        self._failures = 0
        self._handlers: dict[str, Callable[[CommandRequest], Awaitable[dict[str, Any]]]] = {
            "start": self._handle_start,
            "stop": self._handle_stop,
            "status": self._handle_status,
            "list": self._handle_list,
        }

    # ── Reporting ────────────────────────────────────────────────

    async def connect(self) -> bool:
        """Announce the instance to the controller. Failure is not fatal."""
        connect = getattr(self._sink, "connect", None)
        if connect is None:
            return False
        try:
            await connect(self._instance_id, self._region)
        except Exception as e:
            logger.warning("controller_connect_failed", instance_id=self._instance_id, error=str(e))
            return False
        return True

    async def run_once(self) -> ReportOutcome:
        """Run a single drain-sample-deliver cycle."""
        processes = self._registry.drain_all()
        self._sampler.record_lines(sum(len(p.new_lines) for p in processes.values()))
        payload = ReportPayload(
            instance_id=self._instance_id,
            metrics=self._sampler.sample(),
            processes=processes,
            correlation_token=self._registry.active_campaign,
        )
        self._cycles += 1

        try:
            await self._sink.report(payload)
        except Exception as e:
            self._failures += 1
            dropped = sum(len(p.new_lines) for p in processes.values())
            logger.error("report_delivery_failed", error=str(e), dropped_lines=dropped)
            self._emit("report.failed", {"error": str(e)[:300], "dropped_lines": dropped})
            return ReportOutcome(payload=payload, delivered=False, error=str(e))

        logger.debug("report_delivered", processes=len(processes))
        self._emit("report.sent", {
            "processes": len(processes),
            "rps": payload.metrics.rps,
            "gps": payload.metrics.gps,
        })
        return ReportOutcome(payload=payload, delivered=True)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("reporting_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def shutdown(self) -> None:
        """Stop reporting, then stop every registered process, best-effort."""
        await self.stop()
        logger.info("agent_shutting_down", processes=len(self._registry))
        for process_id in self._registry.ids():
            try:
                await self._registry.stop(process_id)
            except Exception as e:
                logger.warning("shutdown_stop_failed", process_id=process_id, error=str(e))
        await self._registry.aclose()

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break
            try:
                await self.run_once()
            except Exception as e:
                logger.error("report_cycle_failed", error=str(e))

    # ── Commands ─────────────────────────────────────────────────

    async def execute(self, request: CommandRequest) -> CommandResult:
        """Run one command against the registry."""
        self._sampler.record_request()
        handler = self._handlers.get(request.action)
        try:
            if handler is None:
                raise InvalidActionError(f"Invalid action: {request.action}")
            data = await handler(request)
        except HostAgentError as e:
            logger.info("command_rejected", action=request.action, error=e.code, message=str(e))
            return CommandResult.failure(e.code, str(e))
        return CommandResult.success(**data)

    async def _handle_start(self, request: CommandRequest) -> dict[str, Any]:
        if not request.process_id or not request.command:
            raise MissingFieldError("processId and command are required")
        return await self._registry.start(
            request.process_id,
            request.command,
            request.args,
            metadata=request.metadata,
            campaign=request.campaign,
        )

    async def _handle_stop(self, request: CommandRequest) -> dict[str, Any]:
        if not request.process_id:
            raise MissingFieldError("processId is required")
        return await self._registry.stop(request.process_id)

    async def _handle_status(self, request: CommandRequest) -> dict[str, Any]:
        if not request.process_id:
            return {"processes": self._views()}
        view = self._registry.status(request.process_id)
        if view is None:
            return {"process": {"processId": request.process_id, "status": "not_found"}}
        return {"process": view.model_dump(by_alias=True, mode="json")}

    async def _handle_list(self, request: CommandRequest) -> dict[str, Any]:
        processes = self._views()
        return {"processes": processes, "count": len(processes)}

    def _views(self) -> list[dict[str, Any]]:
        return [v.model_dump(by_alias=True, mode="json") for v in self._registry.list()]

    # ── Introspection ────────────────────────────────────────────

    @property
    def instance_id(self) -> InstanceId:
        return self._instance_id

    @property
    def registry(self) -> ProcessRegistry:
        return self._registry

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cycles(self) -> int:
        return self._cycles

    @property
    def failures(self) -> int:
        return self._failures

    def _emit(self, topic: str, data: dict[str, Any]) -> None:
        if self._event_bus:
            self._event_bus.emit(topic, data, source="reporting_loop")
