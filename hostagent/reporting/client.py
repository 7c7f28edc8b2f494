"""Controller client — outbound HTTP to the central controller.

    client = ControllerClient("http://controller:3000")
    await client.connect(instance_id, region="eu-west-1")
    await client.report(payload)

Every call raises ``httpx.HTTPError`` on failure; deciding what to swallow is
the caller's business.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from hostagent.types import InstanceId, ReportPayload

_logger = logging.getLogger(__name__)


class ControllerClient:
    """HTTP client for the controller's /connect and /update endpoints."""

    def __init__(self, server_url: str, timeout: float = 10.0) -> None:
        self._server_url = server_url.rstrip("/")
        self._timeout = timeout

    @property
    def server_url(self) -> str:
        return self._server_url

    async def connect(self, instance_id: InstanceId, region: str = "unknown") -> dict[str, Any]:
        """Announce this instance to the controller."""
        data = await self._post("/connect", {"instanceId": instance_id, "region": region})
        _logger.info("Connected to controller %s as %s", self._server_url, instance_id)
        return data

    async def report(self, payload: ReportPayload) -> dict[str, Any]:
        """Deliver one reporting cycle."""
        return await self._post("/update", payload.model_dump(by_alias=True, mode="json"))

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._server_url}{path}"
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(url, json=body)
            resp.raise_for_status()
            if not resp.content:
                return {}
            return resp.json()
