"""Free-tier usage and cost projection engine."""

from .models import (
    DEFAULT_ELIGIBLE_TYPES,
    DEFAULT_OVERAGE_RATE,
    FREE_TIER_HOUR_CAP,
    EngineSettings,
    InstanceRecord,
    InstanceState,
    Projection,
    StatusReport,
    StatusUpdate,
    ThresholdLevel,
    UsageSnapshot,
)
from .reader import normalize
from .aggregator import aggregate, month_bounds
from .projection import project, project_at
from .classifier import classify, level_for

__all__ = [
    'DEFAULT_ELIGIBLE_TYPES',
    'DEFAULT_OVERAGE_RATE',
    'FREE_TIER_HOUR_CAP',
    'EngineSettings',
    'InstanceRecord',
    'InstanceState',
    'Projection',
    'StatusReport',
    'StatusUpdate',
    'ThresholdLevel',
    'UsageSnapshot',
    'normalize',
    'aggregate',
    'month_bounds',
    'project',
    'project_at',
    'classify',
    'level_for',
]
