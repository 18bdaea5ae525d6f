import logging
import os
from datetime import timedelta

from celery.schedules import crontab

from iot_automations.config import settings

logger = logging.getLogger(__name__)

PURGE_INTERVAL_SECONDS = 3600


def _env_value(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = _env_value(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def get_celery_config() -> dict:
    return {
        "broker_url": settings.celery_broker_url,
        "result_backend": settings.celery_result_backend,
        "timezone": "UTC",
        "task_serializer": "json",
        "accept_content": ["json"],
        "result_serializer": "json",
    }


def build_beat_schedule() -> dict:
    schedule: dict[str, dict] = {}

    if _env_bool("AUTOMATION_SCHEDULE_ENABLED", True):
        schedule["automation_schedule_ticks"] = {
            "task": "iot_automations.tasks.automations.dispatch_schedule_ticks",
            # fires at the top of every minute, matching cron resolution
            "schedule": crontab(minute="*"),
        }
    else:
        logger.info("Automation schedule ticks disabled")

    if _env_bool("ENTITY_PURGE_ENABLED", True):
        schedule["entity_retention_purge"] = {
            "task": "iot_automations.tasks.automations.purge_expired_entities",
            "schedule": timedelta(seconds=PURGE_INTERVAL_SECONDS),
        }
    return schedule
