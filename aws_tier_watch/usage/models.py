"""
Data models for free-tier usage tracking.

Every model here is an immutable value object. A poll builds a fresh set of
InstanceRecords, and everything downstream is derived from that set.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple

# Free-tier allowance shared by every eligible instance in the account
FREE_TIER_HOUR_CAP = 750.0

# t2.micro on-demand, us-east-1
DEFAULT_OVERAGE_RATE = 0.0116

DEFAULT_POLL_INTERVAL = 30.0

DEFAULT_ELIGIBLE_TYPES: FrozenSet[str] = frozenset({"t2.micro", "t3.micro"})


class InstanceState(str, Enum):
    """Lifecycle states of an EC2 instance."""
    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    TERMINATED = "terminated"

    @property
    def is_active(self) -> bool:
        """True while the instance is accruing hours."""
        return self in (InstanceState.PENDING, InstanceState.RUNNING)


class ThresholdLevel(str, Enum):
    """Severity of free-tier consumption."""
    SAFE = "safe"
    WARNING = "warning"
    CRITICAL = "critical"
    EXCEEDED = "exceeded"


@dataclass(frozen=True)
class InstanceRecord:
    """Snapshot of one EC2 instance at a point in time."""
    id: str                              # Instance ID, e.g. i-0abc...
    instance_type: str                   # e.g. 't2.micro'
    state: InstanceState
    launch_time: Optional[datetime]      # Only set while pending/running
    free_tier_eligible: bool
    name: Optional[str] = None           # Value of the Name tag
    region: Optional[str] = None


@dataclass(frozen=True)
class UsageSnapshot:
    """Aggregate free-tier usage for the current calendar month."""
    hours_used: float
    non_eligible_running_count: int
    as_of: datetime
    eligible_running_count: int = 0
    carried_hours: float = 0.0           # Closed stints taken from the usage ledger


@dataclass(frozen=True)
class Projection:
    """Month-end extrapolation of a UsageSnapshot."""
    projected_monthly_hours: float
    projected_overage_hours: float
    estimated_overage_cost: float
    days_until_exhausted: Optional[int]
    day_of_month: int
    days_in_month: int


@dataclass(frozen=True)
class EngineSettings:
    """Tunables for a refresh cycle."""
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL
    overage_rate_per_hour: float = DEFAULT_OVERAGE_RATE
    free_tier_hour_cap: float = FREE_TIER_HOUR_CAP
    eligible_instance_types: FrozenSet[str] = field(default=DEFAULT_ELIGIBLE_TYPES)


@dataclass(frozen=True)
class StatusReport:
    """Result of one completed refresh cycle."""
    snapshot: UsageSnapshot
    projection: Projection
    level: ThresholdLevel
    advisories: Tuple[str, ...]
    records: Tuple[InstanceRecord, ...] = ()

    def as_tuple(self) -> Tuple[UsageSnapshot, Projection, ThresholdLevel, List[str]]:
        return self.snapshot, self.projection, self.level, list(self.advisories)


@dataclass(frozen=True)
class StatusUpdate:
    """Notification delivered to subscribers once per cycle.

    On failure ``ok`` is False, ``error`` holds the reason and ``report`` is
    the last known good report (or None if no cycle has succeeded yet).
    """
    report: Optional[StatusReport]
    ok: bool
    at: datetime
    error: Optional[str] = None

    @property
    def stale(self) -> bool:
        return not self.ok and self.report is not None
