"""Tests for the cron field matcher and next-fire search."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from iot_automations.services.automation_cron import (
    CalendarParts,
    calendar_parts,
    cron_field_matches,
    cron_matches,
    load_zone,
    next_cron_match,
)

# ============================================================================
# Field matching
# ============================================================================


class TestCronFieldMatches:
    @pytest.mark.parametrize("value", range(0, 60))
    def test_every_fifteen_minutes(self, value):
        assert cron_field_matches("*/15", value, 0, 59) is (value % 15 == 0)

    @pytest.mark.parametrize("value", range(0, 24))
    def test_range(self, value):
        assert cron_field_matches("1-5", value, 0, 23) is (1 <= value <= 5)

    def test_wildcard(self):
        assert cron_field_matches("*", 42, 0, 59) is True

    def test_list(self):
        assert cron_field_matches("1,15,30", 15, 0, 59) is True
        assert cron_field_matches("1,15,30", 16, 0, 59) is False

    def test_range_with_step(self):
        assert cron_field_matches("10-20/5", 15, 0, 59) is True
        assert cron_field_matches("10-20/5", 12, 0, 59) is False
        assert cron_field_matches("10-20/5", 25, 0, 59) is False

    def test_literal_with_step_runs_to_max(self):
        assert cron_field_matches("5/20", 45, 0, 59) is True
        assert cron_field_matches("5/20", 4, 0, 59) is False

    def test_malformed_tokens_never_match(self):
        assert cron_field_matches("abc", 1, 0, 59) is False
        assert cron_field_matches("*/0", 0, 0, 59) is False
        assert cron_field_matches("*/x", 0, 0, 59) is False
        assert cron_field_matches("1-", 1, 0, 59) is False


# ============================================================================
# Whole expressions
# ============================================================================


class TestCronMatches:
    def test_weekday_morning(self):
        friday_nine = datetime(2026, 10, 16, 9, 0, tzinfo=UTC)
        saturday_nine = datetime(2026, 10, 17, 9, 0, tzinfo=UTC)
        assert cron_matches("0 9 * * 1-5", friday_nine) is True
        assert cron_matches("0 9 * * 1-5", saturday_nine) is False

    @pytest.mark.parametrize("cron", ["", "* * * *", "* * * * * *", "0 9 * *"])
    def test_wrong_field_count_never_matches(self, cron):
        start = datetime(2026, 1, 1, tzinfo=UTC)
        assert not any(cron_matches(cron, start + timedelta(minutes=i)) for i in range(0, 24 * 60, 37))

    def test_month_and_weekday_aliases(self):
        monday_in_january = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)
        assert cron_matches("0 9 * JAN mon", monday_in_january) is True
        assert cron_matches("0 9 * feb mon", monday_in_january) is False

    def test_timezone_localizes_fields(self):
        # 13:00 UTC is 09:00 in New York during daylight saving time
        moment = datetime(2026, 7, 1, 13, 0, tzinfo=UTC)
        assert cron_matches("0 9 * * *", moment, "America/New_York") is True
        assert cron_matches("0 9 * * *", moment) is False

    @pytest.mark.parametrize(
        "tz",
        ["Mars/Olympus_Mons", "America", "Europe", "Etc", "../etc/passwd", "/etc/localtime", "", "   "],
    )
    def test_unloadable_timezone_falls_back_to_utc(self, tz):
        moment = datetime(2026, 7, 1, 9, 0, tzinfo=UTC)
        assert cron_matches("0 9 * * *", moment, tz) is True
        assert cron_matches("0 9 * * *", moment + timedelta(hours=1), tz) is False

    @pytest.mark.parametrize("tz", ["America", "Not/AZone"])
    def test_next_match_with_unloadable_timezone_uses_utc(self, tz):
        after = datetime(2026, 7, 1, 0, 0, tzinfo=UTC)
        assert next_cron_match("0 9 * * *", after, tz) == datetime(2026, 7, 1, 9, 0, tzinfo=UTC)

    def test_naive_datetime_is_utc(self):
        assert cron_matches("30 6 * * *", datetime(2026, 7, 1, 6, 30)) is True

    def test_resolver_hour_24_means_midnight(self):
        def resolver(moment, tz):
            return CalendarParts(minute=0, hour=24, day=1, month=1, dow=4)

        assert cron_matches("0 0 * * *", datetime(2026, 1, 1, tzinfo=UTC), resolver=resolver) is True


class TestCalendarParts:
    def test_sunday_is_zero(self):
        parts = calendar_parts(datetime(2026, 10, 18, 12, 0, tzinfo=UTC))
        assert parts.dow == 0

    def test_offset_datetime_converted(self):
        moment = datetime(2026, 10, 18, 1, 0, tzinfo=timezone(timedelta(hours=2)))
        parts = calendar_parts(moment)
        assert (parts.day, parts.hour) == (17, 23)

    @pytest.mark.parametrize("tz", ["America", "Europe", "Etc"])
    def test_zone_directory_names_resolve_as_utc(self, tz):
        moment = datetime(2026, 10, 18, 12, 5, tzinfo=UTC)
        assert calendar_parts(moment, tz) == calendar_parts(moment)


class TestLoadZone:
    def test_valid_zone(self):
        assert load_zone("Europe/Berlin") is not None

    @pytest.mark.parametrize("tz", [None, "", "America", "Etc", "../etc/passwd", "Not/AZone"])
    def test_unloadable_zone_is_none(self, tz):
        assert load_zone(tz) is None


# ============================================================================
# Next fire time
# ============================================================================


class TestNextCronMatch:
    def test_friday_night_to_monday_morning(self):
        friday_night = datetime(2026, 10, 16, 23, 0, tzinfo=UTC)
        assert next_cron_match("0 9 * * 1-5", friday_night) == datetime(2026, 10, 19, 9, 0, tzinfo=UTC)

    def test_strictly_after(self):
        at_match = datetime(2026, 10, 16, 9, 0, 30, tzinfo=UTC)
        assert next_cron_match("0 9 * * *", at_match) == datetime(2026, 10, 17, 9, 0, tzinfo=UTC)

    def test_next_minute(self):
        after = datetime(2026, 10, 16, 9, 14, 59, tzinfo=UTC)
        assert next_cron_match("*/15 * * * *", after) == datetime(2026, 10, 16, 9, 15, tzinfo=UTC)

    def test_result_is_utc_for_local_schedule(self):
        after = datetime(2026, 7, 1, 0, 0, tzinfo=UTC)
        result = next_cron_match("0 9 * * *", after, "America/New_York")
        assert result == datetime(2026, 7, 1, 13, 0, tzinfo=UTC)
        assert result.tzinfo is UTC

    def test_no_match_inside_horizon(self):
        after = datetime(2026, 3, 1, tzinfo=UTC)
        assert next_cron_match("0 0 29 2 *", after, horizon_days=2) is None

    def test_invalid_cron(self):
        assert next_cron_match("not a cron", datetime(2026, 1, 1, tzinfo=UTC)) is None
