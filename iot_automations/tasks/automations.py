"""Celery tasks that feed events into the automation engine."""

import logging
from datetime import UTC, datetime
from typing import Any

from iot_automations.celery_app import celery_app
from iot_automations.db import open_session
from iot_automations.schemas.automation import DeviceConnectivity
from iot_automations.services.automation_rules import automation_rules_service
from iot_automations.services.entity_store import SqlEntityStore
from iot_automations.services.events.handlers.automation import AutomationHandler

logger = logging.getLogger(__name__)

_handler = AutomationHandler()


def _summary(outcomes) -> dict[str, Any]:
    return {
        "executed": len(outcomes),
        "automation_ids": [outcome.automation.automation_id for outcome in outcomes],
    }


@celery_app.task(name="iot_automations.tasks.automations.process_device_data_event")
def process_device_data_event(workspace_id: str, device_id: str, fields: dict[str, Any]):
    session = open_session()
    try:
        outcomes = _handler.handle_device_data(session, workspace_id, device_id, fields)
        return _summary(outcomes)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@celery_app.task(name="iot_automations.tasks.automations.process_device_status_event")
def process_device_status_event(workspace_id: str, device_id: str, status: str):
    session = open_session()
    try:
        outcomes = _handler.handle_device_status(session, workspace_id, device_id, DeviceConnectivity(status))
        return _summary(outcomes)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@celery_app.task(name="iot_automations.tasks.automations.run_schedule_tick")
def run_schedule_tick(workspace_id: str, now: str | None = None):
    """Evaluate schedule automations of one workspace at ``now`` (ISO 8601)."""
    tick_at = datetime.fromisoformat(now) if now else None
    session = open_session()
    try:
        outcomes = _handler.handle_schedule_tick(session, workspace_id, tick_at)
        return _summary(outcomes)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@celery_app.task(name="iot_automations.tasks.automations.dispatch_schedule_ticks")
def dispatch_schedule_ticks():
    """Fan a schedule tick out to every workspace with active schedule automations."""
    session = open_session()
    try:
        workspace_ids = automation_rules_service.scheduled_workspaces(session)
    finally:
        session.close()

    now = datetime.now(UTC).isoformat()
    for workspace_id in workspace_ids:
        run_schedule_tick.delay(workspace_id, now)
    if workspace_ids:
        logger.debug("Dispatched schedule ticks to %d workspaces", len(workspace_ids))
    return len(workspace_ids)


@celery_app.task(name="iot_automations.tasks.automations.purge_expired_entities")
def purge_expired_entities():
    session = open_session()
    try:
        purged = SqlEntityStore(session).purge_expired()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
    if purged:
        logger.info("Purged %d expired entities", purged)
    return purged
