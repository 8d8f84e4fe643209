"""Tests for cron validation and next-run calculation."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from scrapeplan.scheduling import (
    calculate_next_run,
    is_valid_cron_expression,
    is_valid_cron_field,
    matches_cron_field,
)

# Monday
NOW = datetime(2026, 10, 19, 10, 7, 30, tzinfo=timezone.utc)


def _at(day: int, hour: int, minute: int) -> datetime:
    return datetime(2026, 10, day, hour, minute, tzinfo=timezone.utc)


class TestValidation:
    @pytest.mark.parametrize(
        "expression",
        ["*/5 * * * *", "0 6 * * 1-5", "0,30 8-18/2 1 1,6 0", "15 3 * * 7", "0 */5 * * * *"],
    )
    def test_valid(self, expression):
        assert is_valid_cron_expression(expression)

    @pytest.mark.parametrize(
        "expression",
        ["60 * * * *", "* 24 * * *", "* * 0 * *", "* * * 13 *", "* * * * 8", "* * * *", "", "a b c d e"],
    )
    def test_invalid(self, expression):
        assert not is_valid_cron_expression(expression)

    def test_field_rules(self):
        assert is_valid_cron_field("1-59", 0, 59)
        assert not is_valid_cron_field("1-70", 0, 59)
        assert not is_valid_cron_field("5-1", 0, 59)
        assert not is_valid_cron_field("*/0", 0, 59)
        assert not is_valid_cron_field("1,,2", 0, 59)

    def test_matches_field(self):
        assert matches_cron_field("*/15", 45, 0, 59)
        assert not matches_cron_field("*/15", 50, 0, 59)
        assert matches_cron_field("10/20", 50, 0, 59)
        assert not matches_cron_field("bad", 1, 0, 59)


class TestNextRun:
    def test_every_five_minutes(self):
        assert calculate_next_run("*/5 * * * *", NOW) == _at(19, 10, 10)

    def test_strictly_after_now(self):
        assert calculate_next_run("*/5 * * * *", _at(19, 10, 10)) == _at(19, 10, 15)

    def test_daily_rolls_to_next_day(self):
        assert calculate_next_run("0 6 * * *", NOW) == _at(20, 6, 0)

    def test_same_day_weekday(self):
        assert calculate_next_run("30 10 * * 1", NOW) == _at(19, 10, 30)

    @pytest.mark.parametrize("sunday", ["0", "7"])
    def test_sunday_as_zero_or_seven(self, sunday):
        assert calculate_next_run(f"0 9 * * {sunday}", NOW) == _at(25, 9, 0)

    def test_seconds_field_is_ignored(self):
        assert calculate_next_run("0 */5 * * * *", NOW) == _at(19, 10, 10)

    def test_invalid_expression_falls_back_to_next_hour(self):
        assert calculate_next_run("nope", NOW) == _at(19, 11, 0)

    def test_impossible_date_falls_back(self):
        assert calculate_next_run("0 0 30 2 *", NOW) == _at(19, 11, 0)

    def test_defaults_to_current_time(self):
        before = datetime.now(timezone.utc)
        assert calculate_next_run("* * * * *") > before
