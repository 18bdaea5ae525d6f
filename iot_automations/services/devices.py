"""Device snapshots read by condition groups."""

import logging
from datetime import UTC, datetime
from typing import Any

from iot_automations.schemas.automation import DeviceConnectivity
from iot_automations.services.entity_store import Entity, EntityStore, EntityTypes, Keys

logger = logging.getLogger(__name__)


def save_device_snapshot(
    store: EntityStore,
    workspace_id: str,
    device_id: str,
    *,
    fields: dict[str, Any] | None = None,
    status: DeviceConnectivity | None = None,
) -> Entity:
    """Record the latest fields and/or connectivity of a device.

    Values not given are carried over from the stored snapshot.
    """
    pk, sk = Keys.device(workspace_id, device_id)
    existing = store.get(pk, sk)
    data: dict[str, Any] = dict(existing.data) if existing else {"workspace_id": workspace_id, "device_id": device_id}
    now = datetime.now(UTC).isoformat()
    if fields is not None:
        data["last_data"] = dict(fields)
    if status is not None:
        data["status"] = status.value
    data["last_seen_at"] = now
    data["updated_at"] = now
    return store.put(Entity(pk=pk, sk=sk, entity_type=EntityTypes.DEVICE, data=data))
