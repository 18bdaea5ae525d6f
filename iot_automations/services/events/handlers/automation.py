"""Automation handler for device and schedule events.

Loads a workspace's automations, matches them against the incoming event,
executes the action pipeline of each match and records the run.
"""

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.orm import Session

from iot_automations.schemas.automation import Automation, DeviceConnectivity, TriggerType
from iot_automations.services.automation_actions import ActionExecutor
from iot_automations.services.automation_cron import CalendarResolver, calendar_parts
from iot_automations.services.automation_graph import validate_automation_graph
from iot_automations.services.automation_observability import (
    AUTOMATION_DURATION,
    AUTOMATION_EXECUTIONS,
    AUTOMATION_LOOP_WARNINGS,
)
from iot_automations.services.automation_recorder import record_execution
from iot_automations.services.automation_rules import load_automations
from iot_automations.services.automation_triggers import (
    claim_schedule_minute,
    match_device_data,
    match_device_status,
    match_schedule,
)
from iot_automations.services.devices import save_device_snapshot
from iot_automations.services.entity_store import EntityStore, SqlEntityStore
from iot_automations.services.events.types import ExecutionOutcome
from iot_automations.services.workspaces import get_workspace_plan
from iot_automations.telemetry import get_tracer

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[EntityStore], ActionExecutor]


class AutomationHandler:
    """Handler that evaluates and executes workspace automations."""

    def __init__(
        self,
        executor_factory: ExecutorFactory | None = None,
        resolver: CalendarResolver = calendar_parts,
    ) -> None:
        self.executor_factory = executor_factory or ActionExecutor
        self.resolver = resolver
        self.tracer = get_tracer(__name__)

    def handle_device_data(
        self,
        db: Session,
        workspace_id: str,
        device_id: str,
        fields: dict[str, Any],
    ) -> list[ExecutionOutcome]:
        store = SqlEntityStore(db)
        save_device_snapshot(store, workspace_id, device_id, fields=fields)
        automations = self._load(store, workspace_id)
        if not automations:
            return []

        matches = match_device_data(store, workspace_id, automations, device_id, fields)
        context = {"device_id": device_id, "fields": fields}
        return self._run_matches(db, store, workspace_id, matches, TriggerType.device_data, lambda _a: context)

    def handle_device_status(
        self,
        db: Session,
        workspace_id: str,
        device_id: str,
        status: DeviceConnectivity,
    ) -> list[ExecutionOutcome]:
        store = SqlEntityStore(db)
        save_device_snapshot(store, workspace_id, device_id, status=status)
        automations = self._load(store, workspace_id)
        if not automations:
            return []

        matches = match_device_status(store, workspace_id, automations, device_id, status)
        context = {"device_id": device_id, "status": status.value}
        return self._run_matches(db, store, workspace_id, matches, TriggerType.device_status, lambda _a: context)

    def handle_schedule_tick(
        self,
        db: Session,
        workspace_id: str,
        now: datetime | None = None,
    ) -> list[ExecutionOutcome]:
        store = SqlEntityStore(db)
        now = now or datetime.now(UTC)
        automations = self._load(store, workspace_id)
        if not automations:
            return []

        matches = [
            automation
            for automation in match_schedule(store, workspace_id, automations, now, self.resolver)
            if claim_schedule_minute(store, workspace_id, automation.automation_id, now)
        ]
        now_iso = now.astimezone(UTC).isoformat()

        def context_for(automation: Automation) -> dict[str, Any]:
            return {"now": now_iso, "trigger": "schedule", "automation_id": automation.automation_id}

        return self._run_matches(db, store, workspace_id, matches, TriggerType.schedule, context_for)

    def _load(self, store: EntityStore, workspace_id: str) -> list[Automation]:
        automations = load_automations(store, workspace_id)
        for warning in validate_automation_graph(automations):
            AUTOMATION_LOOP_WARNINGS.inc()
            logger.warning("Automation loop warning in workspace %s: %s", workspace_id, warning)
        return automations

    def _run_matches(
        self,
        db: Session,
        store: EntityStore,
        workspace_id: str,
        matches: list[Automation],
        trigger_type: TriggerType,
        context_for: Callable[[Automation], dict[str, Any]],
    ) -> list[ExecutionOutcome]:
        if not matches:
            return []

        plan = get_workspace_plan(store, workspace_id)
        executor = self.executor_factory(store)
        outcomes: list[ExecutionOutcome] = []

        for automation in matches:
            context = context_for(automation)
            with self.tracer.start_as_current_span("automation.execute") as span:
                span.set_attribute("automation.id", automation.automation_id)
                span.set_attribute("automation.trigger_type", trigger_type.value)
                span.set_attribute("workspace.id", workspace_id)

                start = time.monotonic()
                action_results = executor.execute(workspace_id, automation.actions, context)
                elapsed = time.monotonic() - start
                duration_ms = int(elapsed * 1000)
                AUTOMATION_DURATION.labels(trigger_type=trigger_type.value).observe(elapsed)

                try:
                    log = record_execution(
                        store,
                        automation,
                        trigger_type,
                        context,
                        action_results,
                        duration_ms,
                        plan,
                    )
                except Exception:
                    logger.exception("Failed to record run of automation %s", automation.automation_id)
                    db.rollback()
                    log = None

            if log is not None:
                AUTOMATION_EXECUTIONS.labels(trigger_type=trigger_type.value, status=log.status.value).inc()
                logger.info(
                    "Automation '%s' executed for %s: %s (%dms)",
                    automation.name,
                    trigger_type.value,
                    log.status.value,
                    duration_ms,
                )
            outcomes.append(ExecutionOutcome(automation=automation, action_results=action_results, log=log))

        return outcomes
