"""hostagent live server: command endpoint and reporting loop in one event loop."""

from __future__ import annotations

import asyncio
import logging
import os
import signal

import uvicorn

from hostagent.config import AgentSettings, settings
from hostagent.events.bus import EventBus
from hostagent.identity import get_or_create_instance_id
from hostagent.processes.registry import ProcessRegistry
from hostagent.reporting.client import ControllerClient
from hostagent.reporting.loop import ReportingLoop
from hostagent.reporting.metrics import create_sampler
from hostagent.server.app import create_app

_logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_agent(config: AgentSettings) -> tuple[ReportingLoop, EventBus]:
    """Wire registry, controller client and reporting loop from settings."""
    event_bus = EventBus()
    registry = ProcessRegistry(
        event_bus=event_bus,
        history_limit=config.history_limit,
        pending_limit=config.pending_limit,
        line_limit=config.line_limit,
        launcher=config.launcher,
        shell=config.shell,
        python_executable=config.python_executable,
    )
    client = ControllerClient(config.server_url, timeout=config.request_timeout_seconds)
    loop = ReportingLoop(
        registry=registry,
        instance_id=get_or_create_instance_id(config.instance_id_file),
        sink=client,
        sampler=create_sampler(config.metrics_sampler),
        interval_seconds=config.report_interval_seconds,
        region=config.region,
        event_bus=event_bus,
    )
    return loop, event_bus


async def main(config: AgentSettings | None = None) -> None:
    config = config or settings
    loop, event_bus = build_agent(config)
    app = create_app(loop, event_bus)

    server = uvicorn.Server(uvicorn.Config(
        app,
        host=config.host,
        port=config.port,
        log_level="warning",
    ))

    def request_exit() -> None:
        _logger.info("SIGTERM received, shutting down")
        server.should_exit = True

    aio_loop = asyncio.get_running_loop()
    if os.name == "posix":
        # uvicorn restores this handler and re-raises SIGTERM when serve() returns
        aio_loop.add_signal_handler(signal.SIGTERM, request_exit)

    _logger.info("Agent %s command endpoint on %s:%d", loop.instance_id, config.host, config.port)
    await loop.connect()
    await loop.start()
    try:
        await server.serve()
    finally:
        await loop.shutdown()
        if os.name == "posix":
            aio_loop.remove_signal_handler(signal.SIGTERM)
        _logger.info("Agent %s stopped", loop.instance_id)


if __name__ == "__main__":
    configure_logging(settings.log_level)
    asyncio.run(main())
