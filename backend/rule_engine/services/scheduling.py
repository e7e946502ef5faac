"""
Next-run computation for rule schedules.
Shared by rule creation/update and the engine after each successful run.
"""

from datetime import datetime, timedelta
from typing import Optional

from rule_engine.utils import utcnow


def _midnight(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def calculate_next_run(schedule: str, custom_cron: Optional[str] = None, now: Optional[datetime] = None) -> datetime:
    """
    HOURLY -> +1h, DAILY -> next midnight, WEEKLY -> midnight 7 days ahead.
    CUSTOM cron expressions are stored but not parsed yet, so CUSTOM and
    anything unrecognized fall back to +24h.
    """
    now = now or utcnow()
    schedule = (getattr(schedule, "value", schedule) or "").upper()

    if schedule == "HOURLY":
        return now + timedelta(hours=1)
    if schedule == "DAILY":
        return _midnight(now + timedelta(days=1))
    if schedule == "WEEKLY":
        return _midnight(now + timedelta(days=7))
    # TODO: parse custom_cron once a cron dialect is chosen for CUSTOM schedules
    return now + timedelta(hours=24)
