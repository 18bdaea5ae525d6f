"""Tests for trigger matching and condition groups."""

from datetime import UTC, datetime, timedelta

import pytest

from iot_automations.schemas.automation import AutomationStatus, DeviceConnectivity
from iot_automations.services.automation_triggers import (
    claim_schedule_minute,
    match_device_data,
    match_device_status,
    match_schedule,
    next_schedule_fire,
)

HOT = {
    "type": "device_data",
    "device_id": "dev-1",
    "conditions": [{"field": "temp", "operator": "greater_than", "value": 30}],
}


class TestDeviceDataMatching:
    def test_temperature_above_threshold_matches(self, store, automation_factory):
        rule = automation_factory("r1", trigger=HOT)
        assert match_device_data(store, "ws-1", [rule], "dev-1", {"temp": 32}) == [rule]

    def test_temperature_below_threshold_does_not_match(self, store, automation_factory):
        rule = automation_factory("r1", trigger=HOT)
        assert match_device_data(store, "ws-1", [rule], "dev-1", {"temp": 28}) == []

    def test_other_device_ignored(self, store, automation_factory):
        rule = automation_factory("r1", trigger=HOT)
        assert match_device_data(store, "ws-1", [rule], "dev-2", {"temp": 32}) == []

    @pytest.mark.parametrize("status", [AutomationStatus.paused, AutomationStatus.disabled])
    def test_inactive_automation_ignored(self, store, automation_factory, status):
        rule = automation_factory("r1", trigger=HOT, status=status)
        assert match_device_data(store, "ws-1", [rule], "dev-1", {"temp": 32}) == []

    def test_or_logic_trigger(self, store, automation_factory):
        trigger = {
            "type": "device_data",
            "device_id": "dev-1",
            "logic": "OR",
            "conditions": [
                {"field": "temp", "operator": "greater_than", "value": 30},
                {"field": "door", "operator": "equals", "value": "open"},
            ],
        }
        rule = automation_factory("r1", trigger=trigger)
        assert match_device_data(store, "ws-1", [rule], "dev-1", {"temp": 20, "door": "open"}) == [rule]


class TestConditionGroups:
    def _group(self, device_id: str, field: str, operator: str, value) -> dict:
        return {"device_id": device_id, "conditions": [{"field": field, "operator": operator, "value": value}]}

    def test_group_reads_other_device_snapshot(self, store, automation_factory, seed_device):
        seed_device("ws-1", "dev-2", {"window": "closed"})
        rule = automation_factory(
            "r1",
            trigger=HOT,
            condition_groups=[self._group("dev-2", "window", "equals", "closed")],
        )
        assert match_device_data(store, "ws-1", [rule], "dev-1", {"temp": 32}) == [rule]

    def test_group_without_snapshot_fails(self, store, automation_factory):
        rule = automation_factory(
            "r1",
            trigger=HOT,
            condition_groups=[self._group("dev-9", "window", "equals", "closed")],
        )
        assert match_device_data(store, "ws-1", [rule], "dev-1", {"temp": 32}) == []

    def test_group_on_triggering_device_uses_event_fields(self, store, automation_factory, seed_device):
        seed_device("ws-1", "dev-1", {"humidity": 10})
        rule = automation_factory(
            "r1",
            trigger=HOT,
            condition_groups=[self._group("dev-1", "humidity", "greater_than", 50)],
        )
        assert match_device_data(store, "ws-1", [rule], "dev-1", {"temp": 32, "humidity": 60}) == [rule]

    def test_groups_or_logic(self, store, automation_factory, seed_device):
        seed_device("ws-1", "dev-2", {"window": "open"})
        rule = automation_factory(
            "r1",
            trigger=HOT,
            condition_logic="OR",
            condition_groups=[
                self._group("dev-2", "window", "equals", "closed"),
                self._group("dev-2", "window", "equals", "open"),
            ],
        )
        assert match_device_data(store, "ws-1", [rule], "dev-1", {"temp": 32}) == [rule]


class TestStatusAndScheduleMatching:
    def test_device_status(self, store, automation_factory):
        rule = automation_factory("r1", trigger={"type": "device_status", "device_id": "dev-1", "status": "offline"})
        assert match_device_status(store, "ws-1", [rule], "dev-1", DeviceConnectivity.offline) == [rule]
        assert match_device_status(store, "ws-1", [rule], "dev-1", DeviceConnectivity.online) == []

    def test_schedule(self, store, automation_factory):
        rule = automation_factory("r1", trigger={"type": "schedule", "cron": "0 9 * * 1-5"})
        friday_nine = datetime(2026, 10, 16, 9, 0, tzinfo=UTC)
        assert match_schedule(store, "ws-1", [rule], friday_nine) == [rule]
        assert match_schedule(store, "ws-1", [rule], friday_nine.replace(minute=1)) == []

    def test_next_schedule_fire_picks_earliest(self, automation_factory):
        daily = automation_factory("r1", trigger={"type": "schedule", "cron": "0 9 * * *"})
        hourly = automation_factory("r2", trigger={"type": "schedule", "cron": "30 * * * *"})
        paused = automation_factory(
            "r3",
            trigger={"type": "schedule", "cron": "* * * * *"},
            status=AutomationStatus.paused,
        )
        after = datetime(2026, 10, 16, 7, 0, tzinfo=UTC)
        assert next_schedule_fire([daily, hourly, paused], after) == datetime(2026, 10, 16, 7, 30, tzinfo=UTC)

    def test_next_schedule_fire_without_schedules(self, automation_factory):
        assert next_schedule_fire([automation_factory("r1", trigger=HOT)]) is None

    @pytest.mark.parametrize("tz", ["America", "Etc", "../etc/passwd", "Not/AZone", ""])
    def test_schedule_with_unloadable_timezone_runs_in_utc(self, store, automation_factory, tz):
        broken = automation_factory("broken", trigger={"type": "schedule", "cron": "0 9 * * *", "timezone": tz})
        local = automation_factory(
            "local", trigger={"type": "schedule", "cron": "0 5 * * *", "timezone": "America/New_York"}
        )
        nine_utc = datetime(2026, 7, 1, 9, 0, tzinfo=UTC)

        assert match_schedule(store, "ws-1", [broken, local], nine_utc) == [broken, local]
        assert next_schedule_fire([broken], nine_utc - timedelta(minutes=1)) == nine_utc


class TestScheduleMinuteClaim:
    def test_first_tick_in_minute_wins(self, store):
        now = datetime(2026, 10, 16, 9, 30, 1, tzinfo=UTC)
        assert claim_schedule_minute(store, "ws-1", "r1", now) is True
        assert claim_schedule_minute(store, "ws-1", "r1", now.replace(second=59)) is False

    def test_next_minute_can_be_claimed(self, store):
        now = datetime(2026, 10, 16, 9, 30, tzinfo=UTC)
        assert claim_schedule_minute(store, "ws-1", "r1", now) is True
        assert claim_schedule_minute(store, "ws-1", "r1", now + timedelta(minutes=1)) is True

    def test_late_tick_for_older_minute_skipped(self, store):
        now = datetime(2026, 10, 16, 9, 31, tzinfo=UTC)
        assert claim_schedule_minute(store, "ws-1", "r1", now) is True
        assert claim_schedule_minute(store, "ws-1", "r1", now - timedelta(minutes=1)) is False

    def test_claims_are_per_automation(self, store):
        now = datetime(2026, 10, 16, 9, 30, tzinfo=UTC)
        assert claim_schedule_minute(store, "ws-1", "r1", now) is True
        assert claim_schedule_minute(store, "ws-1", "r2", now) is True
        assert claim_schedule_minute(store, "ws-2", "r1", now) is True

    def test_lost_race_is_skipped(self, store, monkeypatch):
        now = datetime(2026, 10, 16, 9, 30, tzinfo=UTC)
        # Another worker claims between our read and our write.
        monkeypatch.setattr(store, "get", lambda pk, sk: None)
        claim_schedule_minute(store, "ws-1", "r1", now - timedelta(minutes=5))
        assert claim_schedule_minute(store, "ws-1", "r1", now) is False
