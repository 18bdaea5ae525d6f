"""Tests for the automation Celery tasks and beat schedule."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from celery.schedules import crontab

from iot_automations.services.automation_rules import automation_rules_service
from iot_automations.services.entity_store import Entity, Keys
from iot_automations.services.scheduler_config import build_beat_schedule
from iot_automations.tasks import automations as automation_tasks

HOT = {
    "type": "device_data",
    "device_id": "dev-1",
    "conditions": [{"field": "temp", "operator": "greater_than", "value": 30}],
}


@pytest.fixture()
def task_session(db_session):
    with patch.object(automation_tasks, "open_session", return_value=db_session):
        yield db_session


class TestEventTasks:
    def test_process_device_data_event(self, task_session, seed_automation):
        seed_automation("hot", trigger=HOT, actions=[{"type": "log", "message": "hot"}])

        result = automation_tasks.process_device_data_event("ws-1", "dev-1", {"temp": 33})

        assert result == {"executed": 1, "automation_ids": ["hot"]}
        logs = automation_rules_service.recent_logs(task_session, "ws-1")
        assert logs[0].automation_id == "hot"

    def test_process_device_status_event(self, task_session, seed_automation):
        seed_automation("gone", trigger={"type": "device_status", "device_id": "dev-1", "status": "offline"})

        result = automation_tasks.process_device_status_event("ws-1", "dev-1", "offline")

        assert result["automation_ids"] == ["gone"]

    def test_run_schedule_tick_parses_time(self, task_session, seed_automation):
        seed_automation("nine", trigger={"type": "schedule", "cron": "30 9 * * *"})

        assert automation_tasks.run_schedule_tick("ws-1", "2026-10-16T09:30:00+00:00")["executed"] == 1
        assert automation_tasks.run_schedule_tick("ws-1", "2026-10-16T09:31:00+00:00")["executed"] == 0

    def test_handler_error_rolls_back_and_reraises(self):
        session = MagicMock()
        with (
            patch.object(automation_tasks, "open_session", return_value=session),
            patch.object(automation_tasks._handler, "handle_device_data", side_effect=RuntimeError("boom")),
        ):
            with pytest.raises(RuntimeError):
                automation_tasks.process_device_data_event("ws-1", "dev-1", {})

        session.rollback.assert_called_once()
        session.close.assert_called_once()


class TestMaintenanceTasks:
    def test_dispatch_schedule_ticks_fans_out(self, task_session, seed_automation):
        seed_automation("s1", workspace_id="ws-a", trigger={"type": "schedule", "cron": "* * * * *"})
        seed_automation("s2", workspace_id="ws-b", trigger={"type": "schedule", "cron": "0 * * * *"})
        seed_automation("d1", workspace_id="ws-c", trigger=HOT)

        with patch.object(automation_tasks.run_schedule_tick, "delay") as delay:
            assert automation_tasks.dispatch_schedule_ticks() == 2

        assert [c.args[0] for c in delay.call_args_list] == ["ws-a", "ws-b"]
        tick_times = {c.args[1] for c in delay.call_args_list}
        assert len(tick_times) == 1

    def test_purge_expired_entities(self, task_session, store):
        past = datetime.now(UTC) - timedelta(days=1)
        pk, sk = Keys.device("ws-1", "old")
        store.put(Entity(pk=pk, sk=sk, entity_type="DEVICE", data={}, expires_at=past))

        assert automation_tasks.purge_expired_entities() == 1
        assert automation_tasks.purge_expired_entities() == 0


class TestBeatSchedule:
    def test_default_schedule(self, monkeypatch):
        monkeypatch.delenv("AUTOMATION_SCHEDULE_ENABLED", raising=False)
        monkeypatch.delenv("ENTITY_PURGE_ENABLED", raising=False)

        schedule = build_beat_schedule()

        assert schedule["automation_schedule_ticks"]["task"] == (
            "iot_automations.tasks.automations.dispatch_schedule_ticks"
        )
        assert schedule["automation_schedule_ticks"]["schedule"] == crontab(minute="*")
        assert schedule["entity_retention_purge"]["task"] == "iot_automations.tasks.automations.purge_expired_entities"

    def test_schedule_ticks_can_be_disabled(self, monkeypatch):
        monkeypatch.setenv("AUTOMATION_SCHEDULE_ENABLED", "false")
        assert "automation_schedule_ticks" not in build_beat_schedule()

    def test_task_names_registered(self):
        registered = automation_tasks.celery_app.tasks
        for name in (
            "iot_automations.tasks.automations.process_device_data_event",
            "iot_automations.tasks.automations.process_device_status_event",
            "iot_automations.tasks.automations.run_schedule_tick",
            "iot_automations.tasks.automations.dispatch_schedule_ticks",
            "iot_automations.tasks.automations.purge_expired_entities",
        ):
            assert name in registered
