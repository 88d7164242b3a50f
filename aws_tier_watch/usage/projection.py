"""
Linear month-end projection of free-tier usage.

The projection is a straight-line extrapolation of the month-to-date rate,
the same coarse figure the dashboard shows. It is not a forecast.
"""
import math
from datetime import datetime, timezone
from typing import Optional

from .aggregator import days_in_month as _days_in_month
from .models import DEFAULT_OVERAGE_RATE, FREE_TIER_HOUR_CAP, Projection, UsageSnapshot
from ..core.exceptions import InvalidInputError


def _exhaustion_day(hours_used: float, day_of_month: int, hour_cap: float) -> int:
    daily_rate = hours_used / day_of_month
    return max(1, math.ceil(hour_cap / daily_rate))


def project(
    snapshot: UsageSnapshot,
    day_of_month: int,
    days_in_month: int,
    overage_rate: float = DEFAULT_OVERAGE_RATE,
    hour_cap: float = FREE_TIER_HOUR_CAP,
) -> Projection:
    """Extrapolate month-end hours and overage cost.

    Args:
        snapshot: Month-to-date usage.
        day_of_month: Current day, 1-based.
        days_in_month: Length of the current month.
        overage_rate: USD per hour beyond the cap.
        hour_cap: Free-tier allowance in hours.

    Returns:
        Projection for the month.

    Raises:
        InvalidInputError: On a non-positive day, a day past the end of the
            month, a negative rate, a non-positive cap or negative usage.
    """
    if day_of_month <= 0:
        raise InvalidInputError(f"day_of_month must be >= 1, got {day_of_month}")
    if days_in_month <= 0:
        raise InvalidInputError(f"days_in_month must be >= 1, got {days_in_month}")
    if day_of_month > days_in_month:
        raise InvalidInputError(
            f"day_of_month {day_of_month} is past the end of a {days_in_month}-day month"
        )
    if overage_rate < 0:
        raise InvalidInputError(f"overage_rate must be >= 0, got {overage_rate}")
    if hour_cap <= 0:
        raise InvalidInputError(f"hour_cap must be > 0, got {hour_cap}")
    if snapshot.hours_used < 0:
        raise InvalidInputError(f"hours_used must be >= 0, got {snapshot.hours_used}")

    hours_used = snapshot.hours_used
    projected = hours_used / day_of_month * days_in_month
    overage = max(0.0, projected - hour_cap)

    exhausted_on: Optional[int] = None
    if hours_used > 0 and projected > hour_cap:
        exhausted_on = _exhaustion_day(hours_used, day_of_month, hour_cap)

    return Projection(
        projected_monthly_hours=projected,
        projected_overage_hours=overage,
        estimated_overage_cost=overage * overage_rate,
        days_until_exhausted=exhausted_on,
        day_of_month=day_of_month,
        days_in_month=days_in_month,
    )


def project_at(
    snapshot: UsageSnapshot,
    now: Optional[datetime] = None,
    overage_rate: float = DEFAULT_OVERAGE_RATE,
    hour_cap: float = FREE_TIER_HOUR_CAP,
) -> Projection:
    """Project using the calendar position of ``now`` (defaults to snapshot.as_of)."""
    now = now or snapshot.as_of
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    return project(snapshot, now.day, _days_in_month(now), overage_rate, hour_cap)
