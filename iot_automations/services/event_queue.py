"""Hands inbound automation events to the Celery workers."""

import logging
from datetime import datetime
from typing import Any

from iot_automations.schemas.automation import DeviceConnectivity

logger = logging.getLogger(__name__)


class CeleryEventQueue:
    def enqueue_device_data(self, workspace_id: str, device_id: str, fields: dict[str, Any]) -> str:
        from iot_automations.tasks.automations import process_device_data_event

        result = process_device_data_event.delay(workspace_id, device_id, fields)
        return result.id

    def enqueue_device_status(self, workspace_id: str, device_id: str, status: DeviceConnectivity) -> str:
        from iot_automations.tasks.automations import process_device_status_event

        result = process_device_status_event.delay(workspace_id, device_id, status.value)
        return result.id

    def enqueue_schedule_tick(self, workspace_id: str, now: datetime | None = None) -> str:
        from iot_automations.tasks.automations import run_schedule_tick

        result = run_schedule_tick.delay(workspace_id, now.isoformat() if now else None)
        return result.id


event_queue = CeleryEventQueue()
