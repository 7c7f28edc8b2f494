"""Core types shared across hostagent subsystems."""

from __future__ import annotations

from datetime import datetime
from typing import Any, TypeAlias

from pydantic import AliasChoices, BaseModel, Field

# ── ID Types ──────────────────────────────────────────────────────────────────

ProcessId: TypeAlias = str
InstanceId: TypeAlias = str


# ── Process views ─────────────────────────────────────────────────────────────


class ProcessStatusView(BaseModel):
    """Read-only snapshot of one registered process. Never carries output."""

    process_id: ProcessId = Field(alias="processId")
    status: str  # "running" | "exited"
    running: bool
    pid: int | None = None
    start_time: datetime = Field(alias="startTime")
    command: str
    exit_code: int | None = Field(default=None, alias="exitCode")
    metadata: dict[str, Any] = Field(default_factory=dict)
    campaign: str | None = None

    model_config = {"populate_by_name": True}


class ProcessDrain(BaseModel):
    """Output captured for one process since the previous drain."""

    new_lines: list[str] = Field(default_factory=list, alias="newLines")
    running: bool
    exit_code: int | None = Field(default=None, alias="exitCode")
    command: str
    start_time: datetime = Field(alias="startTime")

    model_config = {"populate_by_name": True}


# ── Reporting ────────────────────────────────────────────────────────────────


class Metrics(BaseModel):
    rps: float = 0.0
    gps: float = 0.0


class ReportPayload(BaseModel):
    """What one reporting cycle sends to the controller."""

    instance_id: InstanceId = Field(alias="instanceId")
    metrics: Metrics = Field(default_factory=Metrics)
    processes: dict[ProcessId, ProcessDrain] = Field(default_factory=dict)
    correlation_token: str | None = Field(default=None, alias="correlationToken")

    model_config = {"populate_by_name": True}


# ── Commands ─────────────────────────────────────────────────────────────────


class CommandRequest(BaseModel):
    """One inbound command. Field presence is checked per action, not here."""

    action: str
    process_id: ProcessId | None = Field(
        default=None,
        validation_alias=AliasChoices("processId", "process_id", "id"),
        serialization_alias="processId",
    )
    command: str | None = None
    args: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    campaign: str | None = None


class CommandResult(BaseModel):
    """Outcome of a command, independent of any transport."""

    ok: bool
    data: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None  # HostAgentError.code
    message: str = ""

    @classmethod
    def success(cls, **data: Any) -> CommandResult:
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: str, message: str) -> CommandResult:
        return cls(ok=False, error=error, message=message)
