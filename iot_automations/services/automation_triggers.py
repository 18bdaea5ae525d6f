"""Trigger matching and the condition-group gate.

Each matcher filters the workspace rule set down to active automations whose
trigger fits the event, then runs the optional condition groups. Condition
groups read the last persisted field snapshot of their device unless the
triggering event already carried that device's fields.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from iot_automations.schemas.automation import (
    Automation,
    AutomationStatus,
    DeviceConnectivity,
    DeviceDataTrigger,
    DeviceStatusTrigger,
    LogicOperator,
    ScheduleTrigger,
    TriggerType,
)
from iot_automations.services.automation_conditions import evaluate_conditions
from iot_automations.services.automation_cron import CalendarResolver, calendar_parts, cron_matches, next_cron_match
from iot_automations.services.entity_store import ConcurrentUpdateError, Entity, EntityStore, EntityTypes, Keys

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KnownDeviceFields:
    device_id: str
    fields: Mapping[str, Any]


def load_device_fields(store: EntityStore, workspace_id: str, device_id: str) -> dict[str, Any] | None:
    """Last persisted field snapshot of a device, or None if there is none."""
    entity = store.get(*Keys.device(workspace_id, device_id))
    if entity is None:
        return None
    last_data = entity.data.get("last_data")
    if not isinstance(last_data, dict):
        return None
    return last_data


def condition_groups_pass(
    store: EntityStore,
    workspace_id: str,
    automation: Automation,
    known: KnownDeviceFields | None = None,
) -> bool:
    """Evaluate the automation's secondary condition groups.

    No groups passes. A group whose device has no snapshot fails.
    """
    groups = automation.condition_groups
    if not groups:
        return True

    results: list[bool] = []
    for group in groups:
        if known is not None and known.device_id == group.device_id:
            fields: Mapping[str, Any] | None = known.fields
        else:
            fields = load_device_fields(store, workspace_id, group.device_id)

        if fields is None:
            logger.debug(
                "Automation %s: no snapshot for device %s, condition group fails",
                automation.automation_id,
                group.device_id,
            )
            results.append(False)
            continue
        results.append(evaluate_conditions(group.conditions, fields, group.logic))

    if automation.condition_logic == LogicOperator.or_:
        return any(results)
    return all(results)


def _active(automations: Iterable[Automation], trigger_type: TriggerType) -> list[Automation]:
    return [a for a in automations if a.status == AutomationStatus.active and a.trigger_type == trigger_type]


def match_device_data(
    store: EntityStore,
    workspace_id: str,
    automations: Iterable[Automation],
    device_id: str,
    fields: Mapping[str, Any],
) -> list[Automation]:
    candidates = []
    for automation in _active(automations, TriggerType.device_data):
        trigger = automation.trigger_config
        if not isinstance(trigger, DeviceDataTrigger) or trigger.device_id != device_id:
            continue
        if evaluate_conditions(trigger.conditions, fields, trigger.logic):
            candidates.append(automation)

    known = KnownDeviceFields(device_id=device_id, fields=fields)
    return [a for a in candidates if condition_groups_pass(store, workspace_id, a, known)]


def match_device_status(
    store: EntityStore,
    workspace_id: str,
    automations: Iterable[Automation],
    device_id: str,
    status: DeviceConnectivity,
) -> list[Automation]:
    candidates = []
    for automation in _active(automations, TriggerType.device_status):
        trigger = automation.trigger_config
        if not isinstance(trigger, DeviceStatusTrigger):
            continue
        if trigger.device_id == device_id and trigger.status == status:
            candidates.append(automation)

    return [a for a in candidates if condition_groups_pass(store, workspace_id, a)]


def match_schedule(
    store: EntityStore,
    workspace_id: str,
    automations: Iterable[Automation],
    now: datetime,
    resolver: CalendarResolver = calendar_parts,
) -> list[Automation]:
    candidates = []
    for automation in _active(automations, TriggerType.schedule):
        trigger = automation.trigger_config
        if not isinstance(trigger, ScheduleTrigger):
            continue
        if cron_matches(trigger.cron, now, trigger.timezone, resolver):
            candidates.append(automation)

    return [a for a in candidates if condition_groups_pass(store, workspace_id, a)]


def next_schedule_fire(automations: Iterable[Automation], after: datetime | None = None) -> datetime | None:
    """Earliest upcoming fire time across active schedule automations."""
    after = after or datetime.now(UTC)
    earliest: datetime | None = None
    for automation in _active(automations, TriggerType.schedule):
        trigger = automation.trigger_config
        if not isinstance(trigger, ScheduleTrigger):
            continue
        upcoming = next_cron_match(trigger.cron, after, trigger.timezone)
        if upcoming is not None and (earliest is None or upcoming < earliest):
            earliest = upcoming
    return earliest


def _minute_key(moment: datetime) -> str:
    aware = moment if moment.tzinfo else moment.replace(tzinfo=UTC)
    return aware.astimezone(UTC).replace(second=0, microsecond=0).strftime("%Y-%m-%dT%H:%MZ")


def claim_schedule_minute(store: EntityStore, workspace_id: str, automation_id: str, now: datetime) -> bool:
    """Claim ``now``'s minute for one schedule automation.

    Returns False when that minute, or a later one, was already claimed, so a
    duplicated or late tick never fires the same rule twice.
    """
    minute = _minute_key(now)
    pk, sk = Keys.schedule_claim(workspace_id, automation_id)
    existing = store.get(pk, sk)
    if existing is not None and existing.data.get("minute", "") >= minute:
        logger.debug("Automation %s already fired for minute %s", automation_id, minute)
        return False

    claim = Entity(
        pk=pk,
        sk=sk,
        entity_type=EntityTypes.SCHEDULE_CLAIM,
        data={"workspace_id": workspace_id, "automation_id": automation_id, "minute": minute},
    )
    try:
        store.put(claim, expected_version=existing.version if existing else 0)
    except ConcurrentUpdateError:
        logger.debug("Automation %s minute %s claimed by another worker", automation_id, minute)
        return False
    return True
