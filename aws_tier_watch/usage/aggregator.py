"""
Sums free-tier running hours for the current billing month.
"""
import calendar
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Tuple

from .models import InstanceRecord, InstanceState, UsageSnapshot
from ..core.exceptions import InvalidInputError

SECONDS_PER_HOUR = 3600.0


def _as_utc(now: datetime) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def month_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """Return the UTC start and exclusive end of the month containing ``now``."""
    now = _as_utc(now)
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    days = calendar.monthrange(start.year, start.month)[1]
    return start, start + timedelta(days=days)


def days_in_month(now: datetime) -> int:
    now = _as_utc(now)
    return calendar.monthrange(now.year, now.month)[1]


def hours_in_month(start: Optional[datetime], end: datetime, now: datetime) -> float:
    """Hours of the interval [start, end) that fall inside the month of ``now``."""
    if start is None:
        return 0.0
    month_start, month_end = month_bounds(now)
    lower = max(_as_utc(start), month_start)
    upper = min(_as_utc(end), month_end)
    return max(0.0, (upper - lower).total_seconds() / SECONDS_PER_HOUR)


def instance_hours(record: InstanceRecord, now: datetime) -> float:
    """Elapsed free-tier hours for one record in the current month."""
    if not record.free_tier_eligible or not record.state.is_active:
        return 0.0
    return hours_in_month(record.launch_time, now, now)


def aggregate(
    records: Iterable[InstanceRecord],
    now: datetime,
    carried_hours: float = 0.0,
) -> UsageSnapshot:
    """Aggregate a poll's records into a UsageSnapshot.

    Args:
        records: InstanceRecords from a single poll.
        now: Evaluation time; naive values are taken as UTC.
        carried_hours: Hours already closed out this month by the usage
            ledger. Zero keeps the computation purely per-poll.

    Returns:
        UsageSnapshot for the month containing ``now``.

    Raises:
        InvalidInputError: If carried_hours is negative.
    """
    if carried_hours < 0:
        raise InvalidInputError(f"carried_hours must be >= 0, got {carried_hours}")

    now = _as_utc(now)
    hours_used = 0.0
    eligible_running = 0
    non_eligible_running = 0

    for record in records:
        if record.free_tier_eligible:
            if record.state.is_active:
                eligible_running += 1
            hours_used += instance_hours(record, now)
        elif record.state == InstanceState.RUNNING:
            non_eligible_running += 1

    return UsageSnapshot(
        hours_used=hours_used + carried_hours,
        non_eligible_running_count=non_eligible_running,
        as_of=now,
        eligible_running_count=eligible_running,
        carried_hours=carried_hours,
    )
