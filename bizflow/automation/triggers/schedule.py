"""
Bizflow Schedule Calculations

Validation and next-run computation for ONCE and RECURRING schedules.
Recurring schedules step by a fixed interval (calendar months for MONTHS)
or by a cron expression evaluated in the schedule's timezone.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytz
import structlog
from croniter import croniter
from dateutil.relativedelta import relativedelta

from bizflow.automation.types import IntervalUnit, Schedule, ScheduleType, TriggerType, WorkflowTrigger

logger = structlog.get_logger(__name__)

_FIXED_STEPS = {
    IntervalUnit.MINUTES: timedelta(minutes=1),
    IntervalUnit.HOURS: timedelta(hours=1),
    IntervalUnit.DAYS: timedelta(days=1),
    IntervalUnit.WEEKS: timedelta(weeks=1),
}


def validate_cron(expression: str) -> bool:
    """Validate a cron expression."""
    return bool(expression) and croniter.is_valid(expression)


def validate_timezone(name: str) -> bool:
    try:
        pytz.timezone(name)
        return True
    except pytz.UnknownTimeZoneError:
        return False


def validate_schedule(schedule: Schedule) -> List[str]:
    """Return the list of problems with ``schedule``; empty when valid."""
    errors: List[str] = []

    if not validate_timezone(schedule.timezone):
        errors.append(f"Unknown timezone: {schedule.timezone}")

    if schedule.cron_expression and not validate_cron(schedule.cron_expression):
        errors.append(f"Invalid cron expression: {schedule.cron_expression}")

    if schedule.type == ScheduleType.ONCE:
        if schedule.date is None:
            errors.append("ONCE schedule requires a date")

    elif schedule.type == ScheduleType.RECURRING:
        has_interval = schedule.interval is not None and schedule.interval_value is not None
        if has_interval and schedule.interval_value <= 0:
            errors.append("Schedule interval value must be positive")
        if not has_interval and not schedule.cron_expression:
            errors.append("RECURRING schedule requires an interval and interval value, or a cron expression")

    return errors


def validate_trigger(trigger: WorkflowTrigger) -> List[str]:
    """Check the schedule invariants of a trigger."""
    if trigger.type == TriggerType.SCHEDULED and trigger.schedule is None:
        return ["SCHEDULED trigger requires a schedule"]
    if trigger.schedule is not None:
        return validate_schedule(trigger.schedule)
    return []


def _aware(value: datetime, tz_name: str = "UTC") -> datetime:
    if value.tzinfo is not None:
        return value
    return pytz.timezone(tz_name).localize(value)


def _to_utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc)


def _cron_next(schedule: Schedule, after: datetime) -> datetime:
    tz = pytz.timezone(schedule.timezone)
    cron = croniter(schedule.cron_expression, after.astimezone(tz))
    return _to_utc(cron.get_next(datetime))


def _cron_latest(schedule: Schedule, now: datetime) -> datetime:
    """Latest cron slot at or before ``now``."""
    tz = pytz.timezone(schedule.timezone)
    previous = _to_utc(croniter(schedule.cron_expression, now.astimezone(tz)).get_prev(datetime))
    following = _cron_next(schedule, previous)
    return following if following <= now else previous


def _uses_interval(schedule: Schedule) -> bool:
    return schedule.interval is not None and bool(schedule.interval_value)


def advance(schedule: Schedule, base: datetime) -> datetime:
    """The recurring slot following ``base``."""
    if _uses_interval(schedule):
        if schedule.interval == IntervalUnit.MONTHS:
            return base + relativedelta(months=schedule.interval_value)
        return base + _FIXED_STEPS[schedule.interval] * schedule.interval_value
    return _cron_next(schedule, base)


def compute_next_run(
    schedule: Schedule,
    created_at: datetime,
    last_run_at: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Next run time of a schedule.

    ONCE returns the date until a run at or after it has been recorded.
    RECURRING advances the last run (or the creation time) by one step. The
    result may lie in the past when a slot was missed.
    """
    if schedule.type == ScheduleType.ONCE:
        if schedule.date is None:
            return None
        date = _to_utc(_aware(schedule.date, schedule.timezone))
        if last_run_at is not None and last_run_at >= date:
            return None
        return date

    base = last_run_at or created_at
    try:
        return advance(schedule, _aware(base))
    except (ValueError, KeyError) as e:
        logger.error("next_run_calculation_error", error=str(e))
        return None


def latest_due_slot(schedule: Schedule, slot: datetime, now: datetime) -> datetime:
    """
    Collapse missed recurring slots.

    Returns the latest slot at or before ``now`` starting from the overdue
    ``slot``, so a long outage fires once instead of once per missed slot.
    """
    if schedule.type == ScheduleType.ONCE or slot >= now:
        return slot

    if _uses_interval(schedule) and schedule.interval in _FIXED_STEPS:
        step = _FIXED_STEPS[schedule.interval] * schedule.interval_value
        return slot + step * ((now - slot) // step)

    if _uses_interval(schedule):
        current = slot
        following = advance(schedule, current)
        while following <= now:
            current, following = following, advance(schedule, following)
        return current

    return max(slot, _cron_latest(schedule, now))


def upcoming_runs(
    schedule: Schedule,
    created_at: datetime,
    last_run_at: Optional[datetime] = None,
    count: int = 5,
) -> List[datetime]:
    """The next ``count`` run times, assuming each one fires on time."""
    runs: List[datetime] = []
    last = last_run_at
    for _ in range(count):
        next_run = compute_next_run(schedule, created_at, last)
        if next_run is None:
            break
        runs.append(next_run)
        last = next_run
    return runs
