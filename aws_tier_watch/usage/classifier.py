"""
Maps aggregate usage to a ThresholdLevel and advisory messages.
"""
from typing import List, Tuple

from .models import FREE_TIER_HOUR_CAP, ThresholdLevel, UsageSnapshot
from ..core.exceptions import InvalidInputError

WARNING_RATIO = 0.75
CRITICAL_RATIO = 0.90
EXCEEDED_RATIO = 1.00


def usage_ratio(hours_used: float, hour_cap: float = FREE_TIER_HOUR_CAP) -> float:
    if hour_cap <= 0:
        raise InvalidInputError(f"hour_cap must be > 0, got {hour_cap}")
    return max(0.0, hours_used) / hour_cap


def level_for(hours_used: float, hour_cap: float = FREE_TIER_HOUR_CAP) -> ThresholdLevel:
    """Severity for a number of used hours. Lower bounds are inclusive."""
    ratio = usage_ratio(hours_used, hour_cap)
    if ratio >= EXCEEDED_RATIO:
        return ThresholdLevel.EXCEEDED
    if ratio >= CRITICAL_RATIO:
        return ThresholdLevel.CRITICAL
    if ratio >= WARNING_RATIO:
        return ThresholdLevel.WARNING
    return ThresholdLevel.SAFE


def classify(
    snapshot: UsageSnapshot,
    hour_cap: float = FREE_TIER_HOUR_CAP,
) -> Tuple[ThresholdLevel, List[str]]:
    """Classify a snapshot.

    Advisories come out in priority order: exceeded, critical, warning, then
    non-eligible instances running. A safe snapshot with nothing else to
    report yields no advisories.
    """
    level = level_for(snapshot.hours_used, hour_cap)
    percent = usage_ratio(snapshot.hours_used, hour_cap) * 100
    advisories: List[str] = []

    if level == ThresholdLevel.EXCEEDED:
        advisories.append(
            f"Free tier exhausted: {snapshot.hours_used:.1f} of {hour_cap:.0f} hours used this month"
        )
    elif level == ThresholdLevel.CRITICAL:
        advisories.append(
            f"Critical usage: {percent:.1f}% of free-tier hours used ({snapshot.hours_used:.1f}h)"
        )
    elif level == ThresholdLevel.WARNING:
        advisories.append(
            f"Warning: {percent:.1f}% of free-tier hours used ({snapshot.hours_used:.1f}h)"
        )

    count = snapshot.non_eligible_running_count
    if count > 0:
        noun = "instance" if count == 1 else "instances"
        advisories.append(f"{count} non-eligible {noun} running outside the free tier")

    return level, advisories
