"""Automation rules service.

Provides CRUD for automations plus execution log and stats queries. All
records live in the entity store under the workspace partition.
"""

from __future__ import annotations

import enum
import logging
import uuid
from datetime import UTC, datetime

from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy.orm import Session

from iot_automations.schemas.automation import (
    Automation,
    AutomationCreate,
    AutomationLog,
    AutomationLogIndex,
    AutomationLogStatus,
    AutomationStats,
    AutomationStatsRead,
    AutomationStatus,
    AutomationUpdate,
    TriggerType,
)
from iot_automations.services import automation_triggers
from iot_automations.services.automation_graph import validate_automation_graph
from iot_automations.services.entity_store import (
    ConcurrentUpdateError,
    Entity,
    EntityStore,
    EntityTypes,
    Keys,
    SqlEntityStore,
)

logger = logging.getLogger(__name__)

DEFAULT_LOG_LIMIT = 50
MAX_LOG_LIMIT = 200


def _validate_enum(value: str, enum_cls: type[enum.Enum], label: str) -> enum.Enum:
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in enum_cls)
        raise HTTPException(status_code=400, detail=f"Invalid {label}. Allowed: {allowed}") from exc


def _clamp_limit(limit: int) -> int:
    return max(1, min(int(limit), MAX_LOG_LIMIT))


def _to_automation(entity: Entity) -> Automation | None:
    try:
        return Automation.model_validate(entity.data)
    except ValidationError:
        logger.warning("Skipping unreadable automation record %s/%s", entity.pk, entity.sk, exc_info=True)
        return None


def load_automations(store: EntityStore, workspace_id: str) -> list[Automation]:
    """All automations of a workspace, in id order."""
    entities = store.query_by_partition(Keys.workspace_partition(workspace_id), "AUTO#")
    automations = []
    for entity in entities:
        if entity.entity_type != EntityTypes.AUTOMATION:
            continue
        automation = _to_automation(entity)
        if automation is not None:
            automations.append(automation)
    return automations


def _stats_read(stats: AutomationStats) -> AutomationStatsRead:
    average = 0
    if stats.total_executions:
        average = round(stats.total_duration_ms / stats.total_executions)
    return AutomationStatsRead(**stats.model_dump(), average_duration_ms=average)


class AutomationRulesManager:
    @staticmethod
    def list(
        db: Session,
        workspace_id: str,
        *,
        status: str | None = None,
        trigger_type: str | None = None,
    ) -> list[Automation]:
        automations = load_automations(SqlEntityStore(db), workspace_id)
        if status:
            status_value = _validate_enum(status, AutomationStatus, "status")
            automations = [a for a in automations if a.status == status_value]
        if trigger_type:
            trigger_value = _validate_enum(trigger_type, TriggerType, "trigger_type")
            automations = [a for a in automations if a.trigger_type == trigger_value]
        return automations

    @staticmethod
    def get(db: Session, workspace_id: str, automation_id: str) -> Automation:
        entity = SqlEntityStore(db).get(*Keys.automation(workspace_id, automation_id))
        automation = _to_automation(entity) if entity else None
        if not automation:
            raise HTTPException(status_code=404, detail="Automation not found")
        return automation

    @staticmethod
    def create(db: Session, workspace_id: str, payload: AutomationCreate) -> Automation:
        now = datetime.now(UTC)
        automation = Automation(
            **payload.model_dump(),
            automation_id=str(uuid.uuid4()),
            workspace_id=workspace_id,
            created_at=now,
            updated_at=now,
        )
        pk, sk = Keys.automation(workspace_id, automation.automation_id)
        SqlEntityStore(db).put(
            Entity(pk=pk, sk=sk, entity_type=EntityTypes.AUTOMATION, data=automation.model_dump(mode="json")),
            expected_version=0,
        )
        return automation

    @staticmethod
    def update(db: Session, workspace_id: str, automation_id: str, payload: AutomationUpdate) -> Automation:
        store = SqlEntityStore(db)
        pk, sk = Keys.automation(workspace_id, automation_id)
        entity = store.get(pk, sk)
        if not entity:
            raise HTTPException(status_code=404, detail="Automation not found")
        data = dict(entity.data)
        data.update(payload.model_dump(mode="json", exclude_unset=True))
        data["updated_at"] = datetime.now(UTC).isoformat()
        try:
            automation = Automation.model_validate(data)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        try:
            store.put(
                Entity(pk=pk, sk=sk, entity_type=EntityTypes.AUTOMATION, data=automation.model_dump(mode="json")),
                expected_version=entity.version,
            )
        except ConcurrentUpdateError as exc:
            raise HTTPException(status_code=409, detail="Automation was modified concurrently") from exc
        return automation

    @staticmethod
    def set_status(db: Session, workspace_id: str, automation_id: str, status: AutomationStatus) -> Automation:
        return AutomationRulesManager.update(db, workspace_id, automation_id, AutomationUpdate(status=status))

    @staticmethod
    def delete(db: Session, workspace_id: str, automation_id: str) -> None:
        store = SqlEntityStore(db)
        if not store.delete(*Keys.automation(workspace_id, automation_id)):
            raise HTTPException(status_code=404, detail="Automation not found")
        store.delete(*Keys.schedule_claim(workspace_id, automation_id))

    @staticmethod
    def active_rules(db: Session, workspace_id: str) -> list[Automation]:
        return [
            a for a in load_automations(SqlEntityStore(db), workspace_id) if a.status == AutomationStatus.active
        ]

    @staticmethod
    def scheduled_workspaces(db: Session) -> list[str]:
        """Workspaces with at least one active schedule automation."""
        workspace_ids: set[str] = set()
        for entity in SqlEntityStore(db).query_by_type(EntityTypes.AUTOMATION):
            automation = _to_automation(entity)
            if automation is None:
                continue
            if automation.status == AutomationStatus.active and automation.trigger_type == TriggerType.schedule:
                workspace_ids.add(automation.workspace_id)
        return sorted(workspace_ids)

    @staticmethod
    def next_schedule_fire(db: Session, workspace_id: str, after: datetime | None = None) -> datetime | None:
        return automation_triggers.next_schedule_fire(load_automations(SqlEntityStore(db), workspace_id), after)

    @staticmethod
    def validate_graph(db: Session, workspace_id: str) -> list[str]:
        return validate_automation_graph(load_automations(SqlEntityStore(db), workspace_id))

    @staticmethod
    def recent_logs(
        db: Session,
        workspace_id: str,
        *,
        automation_id: str | None = None,
        status: str | None = None,
        limit: int = DEFAULT_LOG_LIMIT,
    ) -> list[AutomationLog]:
        """Newest-first execution history of a workspace or one automation."""
        store = SqlEntityStore(db)
        status_value = _validate_enum(status, AutomationLogStatus, "status") if status else None
        limit = _clamp_limit(limit)

        # A status filter runs after the read, so only an unfiltered read can be capped in SQL.
        read_limit = None if status_value else limit
        if automation_id:
            logs = _automation_logs(store, workspace_id, automation_id, read_limit)
        else:
            entities = store.query_by_partition(
                Keys.automation_log_partition(workspace_id), limit=read_limit, descending=True
            )
            logs = [AutomationLog.model_validate(entity.data) for entity in entities]

        if status_value:
            logs = [log for log in logs if log.status == status_value]
        return logs[:limit]

    @staticmethod
    def get_stats(db: Session, workspace_id: str, automation_id: str) -> AutomationStatsRead:
        entity = SqlEntityStore(db).get(*Keys.automation_stats(workspace_id, automation_id))
        if entity is None:
            stats = AutomationStats(workspace_id=workspace_id, automation_id=automation_id)
        else:
            stats = AutomationStats.model_validate(entity.data)
        return _stats_read(stats)

    @staticmethod
    def list_stats(db: Session, workspace_id: str) -> list[AutomationStatsRead]:
        entities = SqlEntityStore(db).query_by_partition(Keys.workspace_partition(workspace_id), "AUTO_STATS#")
        return [_stats_read(AutomationStats.model_validate(entity.data)) for entity in entities]


def _automation_logs(
    store: EntityStore,
    workspace_id: str,
    automation_id: str,
    limit: int | None = None,
) -> list[AutomationLog]:
    logs: list[AutomationLog] = []
    index_entities = store.query_by_partition(
        Keys.automation_log_index_partition(automation_id), limit=limit, descending=True
    )
    for index_entity in index_entities:
        index = AutomationLogIndex.model_validate(index_entity.data)
        if index.workspace_id != workspace_id:
            continue
        log_entity = store.get(Keys.automation_log_partition(workspace_id), index_entity.sk)
        if log_entity is not None:
            logs.append(AutomationLog.model_validate(log_entity.data))
            continue
        # Full record gone; answer from the index.
        logs.append(
            AutomationLog(
                log_id=index.log_id,
                workspace_id=index.workspace_id,
                automation_id=index.automation_id,
                automation_name=index.automation_name,
                trigger_type=index.trigger_type,
                status=index.status,
                total_duration_ms=index.total_duration_ms,
                created_at=index.created_at,
            )
        )
    return logs


automation_rules_service = AutomationRulesManager()
