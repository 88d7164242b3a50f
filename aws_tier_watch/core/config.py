"""Configuration management for AWS Tier Watch."""

import json
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from aws_tier_watch.usage.models import (
    DEFAULT_ELIGIBLE_TYPES,
    DEFAULT_OVERAGE_RATE,
    DEFAULT_POLL_INTERVAL,
    FREE_TIER_HOUR_CAP,
    EngineSettings,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Config(BaseModel):
    """Configuration model for AWS Tier Watch."""

    default_region: str = Field(default="us-east-1", description="Default AWS region")
    auth_mode: Literal["profile", "static", "role"] = Field(
        default="profile", description="How AWS credentials are obtained"
    )
    profile_name: Optional[str] = Field(default=None, description="Named AWS CLI profile")
    access_key_id: Optional[str] = Field(default=None, description="Static access key ID")
    secret_access_key: Optional[SecretStr] = Field(default=None, description="Static secret access key")
    iam_role_arn: Optional[str] = Field(default=None, description="IAM role ARN to assume")
    mfa_serial: Optional[str] = Field(default=None, description="MFA device ARN")
    poll_interval_seconds: float = Field(default=DEFAULT_POLL_INTERVAL, ge=1, description="Refresh interval")
    overage_rate_per_hour: float = Field(default=DEFAULT_OVERAGE_RATE, ge=0, description="USD per overage hour")
    free_tier_hour_cap: float = Field(default=FREE_TIER_HOUR_CAP, gt=0, description="Monthly free-tier hours")
    eligible_instance_types: List[str] = Field(
        default_factory=lambda: sorted(DEFAULT_ELIGIBLE_TYPES),
        description="Instance types counted against the free tier",
    )
    created_at: datetime = Field(default_factory=_utcnow, description="Configuration creation timestamp")
    version: str = Field(default="1.0.0", description="Configuration version")

    @field_validator('iam_role_arn')
    @classmethod
    def validate_iam_role_arn(cls, v: Optional[str]) -> Optional[str]:
        """Validate IAM role ARN format."""
        if v is None:
            return v
        arn_pattern = r'^arn:aws:iam::\d{12}:role/[a-zA-Z0-9+=,.@_/-]+$'
        if not re.match(arn_pattern, v):
            raise ValueError(
                f"Invalid IAM role ARN format: {v}. "
                "Expected format: arn:aws:iam::123456789012:role/RoleName"
            )
        return v

    @field_validator('mfa_serial')
    @classmethod
    def validate_mfa_serial(cls, v: Optional[str]) -> Optional[str]:
        """Validate MFA device ARN format."""
        if v is None:
            return v
        mfa_pattern = r'^arn:aws:iam::\d{12}:mfa/[a-zA-Z0-9+=,.@_-]+$'
        if not re.match(mfa_pattern, v):
            raise ValueError(
                f"Invalid MFA serial format: {v}. "
                "Expected format: arn:aws:iam::123456789012:mfa/DeviceName"
            )
        return v

    @field_validator('default_region')
    @classmethod
    def validate_region(cls, v: str) -> str:
        """Validate AWS region format."""
        region_pattern = r'^[a-z]{2}(-gov)?-[a-z]+-\d$'
        if not re.match(region_pattern, v):
            raise ValueError(
                f"Invalid AWS region format: {v}. "
                "Expected format: us-east-1, eu-west-1, ap-southeast-3, etc."
            )
        return v

    @field_validator('eligible_instance_types')
    @classmethod
    def validate_instance_types(cls, v: List[str]) -> List[str]:
        """Normalize instance types and reject empty entries."""
        cleaned = sorted({t.strip().lower() for t in v if t and t.strip()})
        if not cleaned:
            raise ValueError("At least one free-tier eligible instance type is required")
        return cleaned

    @model_validator(mode='after')
    def validate_auth_mode(self) -> 'Config':
        """Make sure the chosen auth mode has what it needs."""
        if self.auth_mode == "role" and not self.iam_role_arn:
            raise ValueError("auth_mode 'role' requires iam_role_arn")
        if self.auth_mode == "static" and not (self.access_key_id and self.secret_access_key):
            raise ValueError("auth_mode 'static' requires access_key_id and secret_access_key")
        return self

    def engine_settings(self) -> EngineSettings:
        """Settings consumed by the refresh scheduler."""
        return EngineSettings(
            poll_interval_seconds=self.poll_interval_seconds,
            overage_rate_per_hour=self.overage_rate_per_hour,
            free_tier_hour_cap=self.free_tier_hour_cap,
            eligible_instance_types=frozenset(self.eligible_instance_types),
        )


class ConfigManager:
    """Manages local configuration file for AWS Tier Watch."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_dir: Optional custom configuration directory path.
                       Defaults to ~/.aws-tier-watch/
        """
        if config_dir is None:
            config_dir = Path.home() / ".aws-tier-watch"

        self.config_dir = config_dir
        self.config_file = config_dir / "config.json"

        self.config_dir.mkdir(parents=True, exist_ok=True)

    def load_config(self) -> Optional[Config]:
        """Load configuration from file.

        Returns:
            Config object if file exists and is valid, None otherwise.

        Raises:
            ValueError: If configuration file is corrupted or invalid.
        """
        if not self.config_file.exists():
            return None

        try:
            with open(self.config_file, 'r') as f:
                config_data = json.load(f)

            if isinstance(config_data.get('created_at'), str):
                # Stored as UTC with a Z suffix; the model keeps it naive
                dt_str = config_data['created_at'].replace('Z', '+00:00')
                dt_with_tz = datetime.fromisoformat(dt_str)
                config_data['created_at'] = dt_with_tz.replace(tzinfo=None)

            return Config(**config_data)

        except (json.JSONDecodeError, ValueError) as e:
            raise ValueError(f"Invalid configuration file: {e}")
        except (OSError, TypeError) as e:
            raise ValueError(f"Failed to load configuration: {e}")

    def load_or_default(self) -> Config:
        """Load the saved configuration, falling back to defaults."""
        return self.load_config() or Config()

    def save_config(self, config: Config) -> None:
        """Save configuration to file.

        The file is written owner-readable only since it may hold a secret key.

        Args:
            config: Configuration object to save.

        Raises:
            OSError: If unable to write configuration file.
        """
        temp_file = self.config_file.with_suffix('.tmp')
        try:
            config_dict = config.model_dump()
            config_dict['created_at'] = config.created_at.isoformat() + 'Z'
            if config.secret_access_key is not None:
                config_dict['secret_access_key'] = config.secret_access_key.get_secret_value()

            with open(temp_file, 'w') as f:
                json.dump(config_dict, f, indent=2)
            os.chmod(temp_file, 0o600)

            temp_file.replace(self.config_file)

        except Exception as e:
            if temp_file.exists():
                temp_file.unlink()
            raise OSError(f"Failed to save configuration: {e}")

    def update_config(self, **changes) -> Config:
        """Apply changes on top of the current configuration and save it.

        Raises:
            ValueError: If the resulting configuration is invalid.
        """
        current = self.load_or_default()
        data = current.model_dump()
        if current.secret_access_key is not None:
            data['secret_access_key'] = current.secret_access_key.get_secret_value()
        data.update({k: v for k, v in changes.items() if v is not None})

        config = Config(**data)
        self.save_config(config)
        return config

    def config_exists(self) -> bool:
        """Check if configuration file exists.

        Returns:
            True if configuration file exists, False otherwise.
        """
        return self.config_file.exists()

    def get_config_path(self) -> Path:
        """Get the configuration file path.

        Returns:
            Path to the configuration file.
        """
        return self.config_file

    def delete_config(self) -> None:
        """Delete the configuration file.

        Raises:
            OSError: If unable to delete configuration file.
        """
        if self.config_file.exists():
            try:
                self.config_file.unlink()
            except Exception as e:
                raise OSError(f"Failed to delete configuration: {e}")
