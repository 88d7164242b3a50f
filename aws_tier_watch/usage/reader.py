"""
Normalizes raw EC2 instance descriptions into InstanceRecords.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from .models import DEFAULT_ELIGIBLE_TYPES, InstanceRecord, InstanceState

logger = logging.getLogger(__name__)

# EC2 reports 'shutting-down' on the way to terminated
_STATE_ALIASES = {
    "shutting-down": InstanceState.STOPPING,
}


def parse_state(value: Any) -> Optional[InstanceState]:
    """Map an EC2 state name (or State dict) to an InstanceState."""
    if isinstance(value, dict):
        value = value.get("Name")
    if not isinstance(value, str):
        return None

    name = value.strip().lower()
    if name in _STATE_ALIASES:
        return _STATE_ALIASES[name]
    try:
        return InstanceState(name)
    except ValueError:
        return None


def parse_launch_time(value: Any) -> Optional[datetime]:
    """Coerce a launch time into an aware UTC datetime.

    boto3 already hands back datetimes; strings come from cached or
    hand-written records. Naive values are taken to be UTC.
    """
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _name_tag(instance: Dict[str, Any]) -> Optional[str]:
    for tag in instance.get("Tags") or []:
        if tag.get("Key") == "Name":
            return tag.get("Value")
    return None


def normalize_one(
    instance: Dict[str, Any],
    eligible_types: Iterable[str] = DEFAULT_ELIGIBLE_TYPES,
    region: Optional[str] = None,
) -> Optional[InstanceRecord]:
    """Build a single InstanceRecord, or None if a required field is missing."""
    instance_id = instance.get("InstanceId")
    instance_type = instance.get("InstanceType")
    state = parse_state(instance.get("State"))

    if not instance_id or not instance_type or state is None:
        logger.warning(
            f"Dropping malformed instance record "
            f"(id={instance_id!r}, type={instance_type!r}, state={instance.get('State')!r})"
        )
        return None

    launch_time = None
    if state.is_active:
        launch_time = parse_launch_time(instance.get("LaunchTime"))
        if launch_time is None:
            logger.warning(f"Instance {instance_id} is {state.value} but has no usable launch time")

    return InstanceRecord(
        id=instance_id,
        instance_type=instance_type,
        state=state,
        launch_time=launch_time,
        free_tier_eligible=instance_type in frozenset(eligible_types),
        name=_name_tag(instance),
        region=region or instance.get("Region"),
    )


def normalize(
    raw_instances: Iterable[Dict[str, Any]],
    eligible_types: Iterable[str] = DEFAULT_ELIGIBLE_TYPES,
    region: Optional[str] = None,
) -> List[InstanceRecord]:
    """Normalize provider instance descriptions.

    Args:
        raw_instances: Instance dicts as returned inside describe_instances
            reservations.
        eligible_types: Instance types that count against the free tier.
        region: Region to stamp on each record.

    Returns:
        Records in input order, one per instance id. Malformed entries are
        dropped with a warning.
    """
    eligible = frozenset(eligible_types)
    records: Dict[str, InstanceRecord] = {}

    for instance in raw_instances:
        if not isinstance(instance, dict):
            logger.warning(f"Dropping non-mapping instance record: {instance!r}")
            continue
        record = normalize_one(instance, eligible, region)
        if record is None:
            continue
        if record.id in records:
            logger.debug(f"Duplicate instance {record.id} in poll, keeping the latest")
        records[record.id] = record

    return list(records.values())
