"""
Tests for next-run computation.
"""

from datetime import datetime

from rule_engine.models import RuleSchedule
from rule_engine.services.scheduling import calculate_next_run
from rule_engine.utils import utcnow

NOW = datetime(2024, 3, 5, 14, 30, 12)


def test_hourly():
    assert calculate_next_run("HOURLY", now=NOW) == datetime(2024, 3, 5, 15, 30, 12)


def test_daily_is_next_midnight():
    assert calculate_next_run(RuleSchedule.DAILY, now=NOW) == datetime(2024, 3, 6)


def test_weekly_is_midnight_a_week_ahead():
    assert calculate_next_run("WEEKLY", now=NOW) == datetime(2024, 3, 12)


def test_custom_falls_back_to_a_day():
    assert calculate_next_run("CUSTOM", "0 */6 * * *", now=NOW) == datetime(2024, 3, 6, 14, 30, 12)


def test_defaults_to_current_time():
    before = utcnow()
    next_run = calculate_next_run("HOURLY")
    assert next_run > before
