"""Command delivery to devices.

Each device is addressed by a URL built from ``DEVICE_DISPATCH_URL_TEMPLATE``
with ``{workspace_id}`` and ``{device_id}`` placeholders. Commands are JSON
documents POSTed to that URL.
"""

import logging
from typing import Any

import httpx

from iot_automations.config import settings

logger = logging.getLogger(__name__)


class DeviceDispatchError(Exception):
    """A command could not be delivered to a device."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class DeviceDispatcher:
    def __init__(
        self,
        url_template: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.url_template = url_template if url_template is not None else settings.device_dispatch_url_template
        self.token = token if token is not None else settings.device_dispatch_token
        self.timeout = timeout if timeout is not None else settings.automation_http_timeout_seconds

    def resolve_endpoint(self, workspace_id: str, device_id: str) -> str:
        if not self.url_template:
            raise DeviceDispatchError("Device dispatch unavailable")
        return self.url_template.format(workspace_id=workspace_id, device_id=device_id)

    def send_command(self, workspace_id: str, device_id: str, command: dict[str, Any]) -> None:
        """Deliver ``command`` to the device; raise DeviceDispatchError on any failure."""
        url = self.resolve_endpoint(workspace_id, device_id)
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(url, json=command, headers=headers)
        except httpx.HTTPError as exc:
            raise DeviceDispatchError(f"Device dispatch to {device_id} failed: {exc}") from exc

        if not response.is_success:
            raise DeviceDispatchError(f"Device dispatch to {device_id} returned HTTP {response.status_code}")
        logger.debug("Delivered %s command to device %s", command.get("type"), device_id)
