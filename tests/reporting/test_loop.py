"""Tests for the reporting loop: drain/deliver cycles and the command surface."""

import asyncio

import pytest

from hostagent.processes.registry import ProcessRegistry
from hostagent.reporting.loop import ReportingLoop
from hostagent.reporting.metrics import CounterMetricsSampler
from hostagent.types import CommandRequest


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def loop(registry, sink, event_bus):
    return ReportingLoop(
        registry=registry,
        instance_id="inst-1",
        sink=sink,
        interval_seconds=0.05,
        region="eu-west-1",
        event_bus=event_bus,
    )


def cmd(**kwargs) -> CommandRequest:
    return CommandRequest.model_validate(kwargs)


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_delivers_drained_output(self, loop, registry, sink, wait_exit):
        await registry.start("p1", "/bin/echo", ["hi"], campaign="camp-1")
        await wait_exit(registry, "p1")

        outcome = await loop.run_once()
        assert outcome.delivered is True
        assert len(sink.payloads) == 1

        payload = sink.payloads[0]
        assert payload.instance_id == "inst-1"
        assert payload.correlation_token == "camp-1"
        assert payload.processes["p1"].new_lines == ["hi"]
        assert payload.processes["p1"].exit_code == 0

    @pytest.mark.asyncio
    async def test_payload_wire_shape(self, loop, registry, sink, wait_exit):
        await registry.start("p1", "echo", ["hi"])
        await wait_exit(registry, "p1")
        await loop.run_once()

        wire = sink.payloads[0].model_dump(by_alias=True, mode="json")
        assert set(wire) == {"instanceId", "metrics", "processes", "correlationToken"}
        assert set(wire["metrics"]) == {"rps", "gps"}
        assert set(wire["processes"]["p1"]) == {
            "newLines", "running", "exitCode", "command", "startTime",
        }

    @pytest.mark.asyncio
    async def test_empty_registry_still_reports(self, loop, sink):
        outcome = await loop.run_once()
        assert outcome.delivered is True
        assert sink.payloads[0].processes == {}
        assert sink.payloads[0].correlation_token is None

    @pytest.mark.asyncio
    async def test_delivery_failure_swallowed_and_lines_lost(
        self, registry, failing_sink, event_bus, wait_exit,
    ):
        loop = ReportingLoop(registry, "inst-1", failing_sink, event_bus=event_bus)
        await registry.start("p1", "echo", ["hi"])
        await wait_exit(registry, "p1")

        outcome = await loop.run_once()
        assert outcome.delivered is False
        assert "unreachable" in outcome.error
        assert outcome.payload.processes["p1"].new_lines == ["hi"]
        assert loop.failures == 1

        again = await loop.run_once()
        assert again.payload.processes["p1"].new_lines == []
        assert event_bus.history(topic_filter="report.failed")

    @pytest.mark.asyncio
    async def test_metrics_count_requests_and_lines(self, registry, sink, wait_exit):
        clock = FakeClock()
        loop = ReportingLoop(registry, "inst-1", sink, sampler=CounterMetricsSampler(clock))

        await loop.execute(cmd(action="start", processId="p1", command="seq", args=["1", "4"]))
        await loop.execute(cmd(action="list"))
        await wait_exit(registry, "p1")

        clock.now += 2.0
        outcome = await loop.run_once()
        assert outcome.payload.metrics.rps == 1.0
        assert outcome.payload.metrics.gps == 2.0


class TestSchedule:
    @pytest.mark.asyncio
    async def test_reports_on_interval(self, loop, sink):
        await loop.start()
        assert loop.is_running
        await asyncio.sleep(0.18)
        await loop.stop()

        assert len(sink.payloads) >= 2
        assert not loop.is_running

    @pytest.mark.asyncio
    async def test_keeps_running_when_delivery_fails(self, registry, failing_sink):
        loop = ReportingLoop(registry, "inst-1", failing_sink, interval_seconds=0.05)
        await loop.start()
        await asyncio.sleep(0.18)
        assert loop.is_running
        await loop.stop()
        assert loop.failures >= 2

    @pytest.mark.asyncio
    async def test_stop_before_first_cycle(self, registry, sink):
        loop = ReportingLoop(registry, "inst-1", sink, interval_seconds=10)
        await loop.start()
        await asyncio.sleep(0.05)
        await loop.stop()
        assert sink.payloads == []

    @pytest.mark.asyncio
    async def test_connect(self, loop, sink):
        assert await loop.connect() is True
        assert sink.connects == [("inst-1", "eu-west-1")]

    @pytest.mark.asyncio
    async def test_connect_failure_not_fatal(self, registry, failing_sink):
        loop = ReportingLoop(registry, "inst-1", failing_sink)
        assert await loop.connect() is False


class TestCommands:
    @pytest.mark.asyncio
    async def test_start_and_status(self, loop):
        result = await loop.execute(cmd(action="start", processId="p1", command="sleep", args=["30"]))
        assert result.ok
        assert result.data == {"processId": "p1", "status": "started"}

        status = await loop.execute(cmd(action="status", processId="p1"))
        assert status.data["process"]["processId"] == "p1"
        assert status.data["process"]["running"] is True
        assert status.data["process"]["command"] == "sleep 30"

    @pytest.mark.asyncio
    async def test_id_alias_accepted(self, loop, registry):
        result = await loop.execute(cmd(action="start", id="p1", command="sleep", args=["30"]))
        assert result.ok
        assert "p1" in registry

    @pytest.mark.asyncio
    async def test_start_missing_fields(self, loop, registry):
        result = await loop.execute(cmd(action="start", processId="p1"))
        assert not result.ok
        assert result.error == "MissingField"

        result = await loop.execute(cmd(action="start", command="echo"))
        assert result.error == "MissingField"
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_start_duplicate(self, loop):
        await loop.execute(cmd(action="start", processId="p1", command="sleep", args=["30"]))
        result = await loop.execute(cmd(action="start", processId="p1", command="sleep", args=["30"]))
        assert not result.ok
        assert result.error == "AlreadyRunning"

    @pytest.mark.asyncio
    async def test_spawn_failure(self, sink):
        registry = ProcessRegistry(shell="/nonexistent/shell")
        loop = ReportingLoop(registry, "inst-1", sink)
        result = await loop.execute(cmd(action="start", processId="p1", command="echo"))
        assert result.error == "SpawnFailure"

    @pytest.mark.asyncio
    async def test_stop(self, loop, registry):
        await loop.execute(cmd(action="start", processId="p1", command="sleep", args=["30"]))
        result = await loop.execute(cmd(action="stop", processId="p1"))
        assert result.data == {"processId": "p1", "status": "stopped"}
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_stop_unknown(self, loop, registry):
        result = await loop.execute(cmd(action="stop", processId="missing"))
        assert result.error == "NotFound"
        assert "missing" in result.message

        result = await loop.execute(cmd(action="stop"))
        assert result.error == "MissingField"

    @pytest.mark.asyncio
    async def test_status_unknown_returns_marker(self, loop):
        result = await loop.execute(cmd(action="status", processId="ghost"))
        assert result.ok
        assert result.data == {"process": {"processId": "ghost", "status": "not_found"}}

    @pytest.mark.asyncio
    async def test_status_without_id_lists(self, loop):
        await loop.execute(cmd(action="start", processId="a", command="sleep", args=["30"]))
        await loop.execute(cmd(action="start", processId="b", command="sleep", args=["30"]))
        result = await loop.execute(cmd(action="status"))
        assert {p["processId"] for p in result.data["processes"]} == {"a", "b"}

    @pytest.mark.asyncio
    async def test_list_with_count(self, loop):
        await loop.execute(cmd(action="start", processId="a", command="sleep", args=["30"]))
        result = await loop.execute(cmd(action="list"))
        assert result.data["count"] == 1
        assert result.data["processes"][0]["processId"] == "a"

    @pytest.mark.asyncio
    async def test_invalid_action(self, loop):
        result = await loop.execute(cmd(action="reboot"))
        assert not result.ok
        assert result.error == "InvalidAction"


class TestShutdown:
    @pytest.mark.asyncio
    async def test_stops_every_process(self, loop, registry):
        for pid in ("a", "b", "c"):
            await registry.start(pid, "sleep", ["30"])
        await loop.start()

        await loop.shutdown()
        assert len(registry) == 0
        assert not loop.is_running

    @pytest.mark.asyncio
    async def test_individual_stop_failure_does_not_abort(self, loop, registry, monkeypatch):
        for pid in ("a", "b"):
            await registry.start(pid, "sleep", ["30"])
        real_stop = registry.stop

        async def flaky_stop(process_id):
            if process_id == "a":
                raise RuntimeError("kill failed")
            return await real_stop(process_id)

        monkeypatch.setattr(registry, "stop", flaky_stop)
        await loop.shutdown()

        assert "b" not in registry
        assert "a" in registry

        monkeypatch.undo()
        await registry.stop("a")
