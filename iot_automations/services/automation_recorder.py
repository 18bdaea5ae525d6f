"""Execution recorder: durable log, per-automation index and rolling stats.

The stats row is updated with compare-and-swap on the entity version, so two
executions of the same automation recorded at the same time both count.
"""

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from iot_automations.schemas.automation import (
    ActionExecutionResult,
    ActionStatus,
    Automation,
    AutomationLog,
    AutomationLogIndex,
    AutomationLogStatus,
    AutomationStats,
    TriggerType,
)
from iot_automations.services.entity_store import ConcurrentUpdateError, Entity, EntityStore, EntityTypes, Keys
from iot_automations.services.workspaces import get_plan_limits

logger = logging.getLogger(__name__)

STATS_UPDATE_ATTEMPTS = 5


def derive_status(action_results: list[ActionExecutionResult]) -> AutomationLogStatus:
    """Overall outcome: failure if every action failed, partial if some did."""
    if not action_results:
        return AutomationLogStatus.success
    failed = sum(1 for result in action_results if result.status == ActionStatus.failure)
    if failed == 0:
        return AutomationLogStatus.success
    if failed == len(action_results):
        return AutomationLogStatus.failure
    return AutomationLogStatus.partial_failure


def compute_expires_at(plan: str | None, now: datetime) -> datetime | None:
    ttl_days = get_plan_limits(plan).ttl_days
    if ttl_days is None:
        return None
    return now + timedelta(days=ttl_days)


def _timestamp_key(moment: datetime) -> str:
    # Fixed-width UTC ISO timestamps sort chronologically as strings.
    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def record_execution(
    store: EntityStore,
    automation: Automation,
    trigger_type: TriggerType,
    trigger_data: dict[str, Any],
    action_results: list[ActionExecutionResult],
    total_duration_ms: int,
    plan: str | None,
    *,
    now: datetime | None = None,
) -> AutomationLog:
    """Persist one automation run and fold it into the automation's stats."""
    now = now or datetime.now(UTC)
    status = derive_status(action_results)
    expires_at = compute_expires_at(plan, now)

    log = AutomationLog(
        log_id=str(uuid.uuid4()),
        workspace_id=automation.workspace_id,
        automation_id=automation.automation_id,
        automation_name=automation.name,
        trigger_type=trigger_type,
        trigger_data=trigger_data,
        conditions_matched=True,
        status=status,
        action_results=action_results,
        total_duration_ms=total_duration_ms,
        created_at=now,
        expires_at=expires_at,
    )
    timestamp = _timestamp_key(now)

    pk, sk = Keys.automation_log(automation.workspace_id, timestamp, log.log_id)
    store.put(
        Entity(
            pk=pk,
            sk=sk,
            entity_type=EntityTypes.AUTOMATION_LOG,
            data=log.model_dump(mode="json"),
            expires_at=expires_at,
        )
    )

    index = AutomationLogIndex(
        log_id=log.log_id,
        workspace_id=automation.workspace_id,
        automation_id=automation.automation_id,
        automation_name=automation.name,
        trigger_type=trigger_type,
        status=status,
        total_duration_ms=total_duration_ms,
        created_at=now,
    )
    pk, sk = Keys.automation_log_index(automation.automation_id, timestamp, log.log_id)
    store.put(
        Entity(
            pk=pk,
            sk=sk,
            entity_type=EntityTypes.AUTOMATION_LOG_INDEX,
            data=index.model_dump(mode="json"),
            expires_at=expires_at,
        )
    )

    try:
        update_stats(store, automation, status, total_duration_ms, now)
    except ConcurrentUpdateError:
        logger.error(
            "Gave up updating stats for automation %s after %d attempts",
            automation.automation_id,
            STATS_UPDATE_ATTEMPTS,
        )

    return log


def _apply_execution(
    stats: AutomationStats,
    status: AutomationLogStatus,
    duration_ms: int,
    now: datetime,
) -> AutomationStats:
    stats.total_executions += 1
    if status == AutomationLogStatus.success:
        stats.success_count += 1
    elif status == AutomationLogStatus.failure:
        stats.failure_count += 1
    else:
        stats.partial_failure_count += 1
    stats.last_execution_at = now
    stats.last_execution_status = status
    stats.total_duration_ms += duration_ms
    return stats


def update_stats(
    store: EntityStore,
    automation: Automation,
    status: AutomationLogStatus,
    duration_ms: int,
    now: datetime,
) -> AutomationStats:
    """Read-modify-write of the stats row, retried on a lost race.

    Raises ConcurrentUpdateError when every attempt lost.
    """
    pk, sk = Keys.automation_stats(automation.workspace_id, automation.automation_id)
    for attempt in range(1, STATS_UPDATE_ATTEMPTS + 1):
        current = store.get(pk, sk)
        if current is None:
            stats = AutomationStats(workspace_id=automation.workspace_id, automation_id=automation.automation_id)
            expected_version = 0
        else:
            stats = AutomationStats.model_validate(current.data)
            expected_version = current.version

        stats = _apply_execution(stats, status, duration_ms, now)
        entity = Entity(pk=pk, sk=sk, entity_type=EntityTypes.AUTOMATION_STATS, data=stats.model_dump(mode="json"))
        try:
            store.put(entity, expected_version=expected_version)
            return stats
        except ConcurrentUpdateError:
            logger.debug(
                "Stats update for automation %s lost a race (attempt %d)",
                automation.automation_id,
                attempt,
            )

    raise ConcurrentUpdateError(pk, sk, expected_version)
