"""ProcessRegistry — the agent's process table.

Owns every subprocess the agent was told to start: its identity, its OS
handle, and the output it produced. Output is captured line by line into a
per-process pending buffer; ``drain_all`` hands that buffer to the reporting
loop and folds it into a bounded history.

Lifecycle of an entry has two independent axes:

    Running -> Exited        the OS process terminated (set once, never undone)
    Registered -> Removed    ``stop`` was called

An exited process stays registered until someone stops it. There is no
auto-reap: callers notice the exit through ``status``/``drain_all``.

All mutation happens on the event loop thread. ``drain_all``, ``status`` and
``list`` never await, so they observe each entry atomically.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from hostagent.events.bus import EventBus
from hostagent.exceptions import (
    AlreadyRunningError,
    ProcessNotFoundError,
    SpawnFailureError,
)
from hostagent.processes.launcher import (
    LAUNCHERS,
    SHELL,
    assemble_command,
    build_argv,
    build_env,
)
from hostagent.types import ProcessDrain, ProcessId, ProcessStatusView

_logger = logging.getLogger(__name__)

STDERR_PREFIX = "ERROR: "


@dataclass
class ProcessEntry:
    """One registered subprocess and its buffers."""

    id: ProcessId
    command: str
    handle: asyncio.subprocess.Process
    history: deque[str]
    pending: deque[str]
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)
    campaign: str | None = None
    running: bool = True
    exit_code: int | None = None
    overflowed: int = 0

    @property
    def pid(self) -> int | None:
        return self.handle.pid

    def capture(self, line: str) -> bool:
        """Buffer a line. Output arriving after exit is dropped."""
        if not self.running:
            return False
        if len(self.pending) == self.pending.maxlen:
            self.overflowed += 1
        self.pending.append(line)
        return True

    def mark_exited(self, exit_code: int) -> bool:
        """Record termination. Returns False if it was already recorded."""
        if not self.running:
            return False
        self.running = False
        self.exit_code = exit_code
        return True

    def take_pending(self) -> list[str]:
        lines = list(self.pending)
        self.pending.clear()
        self.overflowed = 0
        self.history.extend(lines)
        return lines

    def view(self) -> ProcessStatusView:
        return ProcessStatusView(
            process_id=self.id,
            status="running" if self.running else "exited",
            running=self.running,
            pid=self.pid,
            start_time=self.start_time,
            command=self.command,
            exit_code=self.exit_code,
            metadata=dict(self.metadata),
            campaign=self.campaign,
        )


class ProcessRegistry:
    """Spawns, tracks and stops subprocesses keyed by caller-supplied IDs.

    At most one entry exists per ID. ``stop`` is fire-and-forget: it signals
    the process group and forgets the entry without waiting for the exit.
    """

    def __init__(
        self,
        event_bus: EventBus | None = None,
        history_limit: int = 1000,
        pending_limit: int = 10_000,
        line_limit: int = 1024 * 1024,
        launcher: str = SHELL,
        shell: str = "/bin/sh",
        python_executable: str = "python3",
    ) -> None:
        if launcher not in LAUNCHERS:
            raise ValueError(f"Unknown launcher {launcher!r}")
        self._bus = event_bus
        self._history_limit = history_limit
        self._pending_limit = pending_limit
        self._line_limit = line_limit
        self._launcher = launcher
        self._shell = shell
        self._python = python_executable
        self._new_session = os.name == "posix"
        self._entries: dict[ProcessId, ProcessEntry] = {}
        self._tasks: set[asyncio.Task] = set()
        self._lock = asyncio.Lock()

    # ── Commands ──────────────────────────────────────────────────

    async def start(
        self,
        process_id: ProcessId,
        command: str,
        args: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
        campaign: str | None = None,
        env: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Spawn ``command args...`` and begin capturing its output.

        Returns as soon as the OS has created the process.
        """
        async with self._lock:
            if process_id in self._entries:
                raise AlreadyRunningError(f"Process {process_id} is already running")

            command_line = assemble_command(command, args)
            argv = build_argv(command_line, self._launcher, self._shell, self._python)
            try:
                proc = await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env=build_env(self._launcher, env),
                    limit=self._line_limit,
                    start_new_session=self._new_session,
                )
            except OSError as e:
                _logger.error("[%s] spawn failed: %s", process_id, e)
                self._emit("process.error", {
                    "process_id": process_id,
                    "command": command_line,
                    "error": str(e)[:300],
                })
                raise SpawnFailureError(f"Failed to start process {process_id}: {e}") from e

            entry = ProcessEntry(
                id=process_id,
                command=command_line,
                handle=proc,
                history=deque(maxlen=self._history_limit),
                pending=deque(maxlen=self._pending_limit),
                metadata=dict(metadata or {}),
                campaign=campaign,
            )
            self._entries[process_id] = entry

        task = asyncio.create_task(self._watch(entry))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        _logger.info("[%s] started (pid %s): %s", process_id, proc.pid, command_line)
        self._emit("process.started", {
            "process_id": process_id,
            "os_pid": proc.pid,
            "command": command_line,
            "campaign": campaign,
        })
        return {"processId": process_id, "status": "started"}

    async def stop(self, process_id: ProcessId) -> dict[str, Any]:
        """Signal the process and drop it from the table.

        The entry is removed even if the signal cannot be delivered.
        """
        entry = self._entries.get(process_id)
        if entry is None:
            raise ProcessNotFoundError(f"Process {process_id} not found")

        self._terminate(entry)
        del self._entries[process_id]
        entry.campaign = None

        _logger.info("[%s] stopped", process_id)
        self._emit("process.stopped", {
            "process_id": process_id,
            "was_running": entry.running,
        })
        return {"processId": process_id, "status": "stopped"}

    def status(self, process_id: ProcessId) -> ProcessStatusView | None:
        entry = self._entries.get(process_id)
        return entry.view() if entry else None

    def list(self) -> list[ProcessStatusView]:
        return [entry.view() for entry in self._entries.values()]

    def drain_all(self) -> dict[ProcessId, ProcessDrain]:
        """Take every entry's pending output, moving it into history.

        Entries with nothing new are still reported so that exit codes
        surface without output. Lines pushed out of a full pending buffer
        since the previous drain are logged as lost.
        """
        drained: dict[ProcessId, ProcessDrain] = {}
        for process_id, entry in self._entries.items():
            if entry.overflowed:
                _logger.warning(
                    "[%s] %d output lines lost before drain (pending limit %d)",
                    process_id, entry.overflowed, self._pending_limit,
                )
            drained[process_id] = ProcessDrain(
                new_lines=entry.take_pending(),
                running=entry.running,
                exit_code=entry.exit_code,
                command=entry.command,
                start_time=entry.start_time,
            )
        return drained

    def output(self, process_id: ProcessId, lines: int = 50) -> list[str] | None:
        """Recent output (drained history plus anything still pending)."""
        entry = self._entries.get(process_id)
        if entry is None:
            return None
        combined = [*entry.history, *entry.pending]
        return combined[-lines:] if lines > 0 else []

    @property
    def active_campaign(self) -> str | None:
        """Campaign of the most recently started entry that carries one."""
        for entry in reversed(self._entries.values()):
            if entry.campaign is not None:
                return entry.campaign
        return None

    def ids(self) -> list[ProcessId]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, process_id: object) -> bool:
        return process_id in self._entries

    async def aclose(self) -> None:
        """Cancel outstanding capture tasks."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── Internals ─────────────────────────────────────────────────

    def _terminate(self, entry: ProcessEntry) -> None:
        proc = entry.handle
        if proc.returncode is not None:
            return
        try:
            if self._new_session:
                os.killpg(proc.pid, signal.SIGTERM)
            else:
                proc.terminate()
        except (ProcessLookupError, PermissionError) as e:
            _logger.warning("[%s] could not signal pid %s: %s", entry.id, proc.pid, e)

    async def _watch(self, entry: ProcessEntry) -> None:
        """Capture both streams to EOF, then record the exit code once."""
        proc = entry.handle
        results = await asyncio.gather(
            self._read_stream(entry, proc.stdout, is_stderr=False),
            self._read_stream(entry, proc.stderr, is_stderr=True),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                _logger.warning("[%s] output capture failed: %s", entry.id, result)
        exit_code = await proc.wait()
        if entry.mark_exited(exit_code):
            _logger.info("[%s] exited with code %s", entry.id, exit_code)
            self._emit("process.exited", {
                "process_id": entry.id,
                "exit_code": exit_code,
                "registered": self._entries.get(entry.id) is entry,
            })

    async def _read_stream(
        self, entry: ProcessEntry, stream: asyncio.StreamReader | None, is_stderr: bool,
    ) -> None:
        if stream is None:
            return
        oversized = False
        while True:
            try:
                raw = await stream.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                raw = e.partial
            except asyncio.LimitOverrunError as e:
                # discard up to the next newline so the tail is not read as a line
                if not oversized:
                    _logger.warning(
                        "[%s] dropped output line over %d bytes", entry.id, self._line_limit,
                    )
                    oversized = True
                await stream.read(e.consumed)
                continue
            if not raw:
                break
            if oversized:
                oversized = False
                continue
            line = raw.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            if is_stderr:
                line = STDERR_PREFIX + line
            if not entry.capture(line):
                continue
            _logger.debug("[%s] %s", entry.id, line)
            self._emit("process.output", {
                "process_id": entry.id,
                "line": line[:500],
                "stderr": is_stderr,
            })

    def _emit(self, topic: str, data: dict[str, Any]) -> None:
        if self._bus:
            self._bus.emit(topic, data, source="process_registry")
