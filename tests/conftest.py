"""
Pytest configuration and shared fixtures for AWS Tier Watch tests.
"""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import pytest
from moto import mock_aws

from aws_tier_watch.core.config import ConfigManager


# Day 10 of a 30-day month
FIXED_NOW = datetime(2026, 9, 10, 12, 0, 0, tzinfo=timezone.utc)


def raw_instance(
    instance_id: str = "i-0123456789abcdef0",
    instance_type: str = "t2.micro",
    state: str = "running",
    launch_time: Optional[datetime] = None,
    name: Optional[str] = None,
) -> Dict[str, Any]:
    """Build an instance dict shaped like describe_instances output."""
    instance: Dict[str, Any] = {
        "InstanceId": instance_id,
        "InstanceType": instance_type,
        "State": {"Code": 16, "Name": state},
        "Placement": {"AvailabilityZone": "us-east-1a"},
    }
    if launch_time is not None:
        instance["LaunchTime"] = launch_time
    if name is not None:
        instance["Tags"] = [{"Key": "Name", "Value": name}]
    return instance


class StaticProvider:
    """Instance provider returning a fixed list, or raising a given error."""

    def __init__(self, instances=None, error: Optional[Exception] = None):
        self.instances = list(instances or [])
        self.error = error
        self.calls = 0

    def fetch_instances(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.instances)


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def one_hour_instance():
    """A t2.micro launched one hour before FIXED_NOW."""
    return raw_instance(launch_time=FIXED_NOW - timedelta(hours=1))


@pytest.fixture
def temp_config_dir():
    """Create a temporary directory for config and ledger files."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def config_manager(temp_config_dir):
    return ConfigManager(config_dir=temp_config_dir)


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake credentials so boto3 never touches a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.delenv("AWS_PROFILE", raising=False)


@pytest.fixture
def mock_aws_services(aws_credentials):
    """Mock all AWS services used by the application."""
    with mock_aws():
        yield
