"""Property-based tests for configuration management."""

import json
import stat
import tempfile
from datetime import datetime
from pathlib import Path

import pytest
from hypothesis import given, strategies as st

from aws_tier_watch.core.config import Config, ConfigManager


# Hypothesis strategies for generating test data
@st.composite
def valid_aws_region(draw):
    """Generate valid AWS region names."""
    region_prefix = draw(st.sampled_from(['us', 'eu', 'ap', 'ca', 'sa']))
    region_middle = draw(st.sampled_from(['east', 'west', 'north', 'south', 'central', 'southeast', 'northeast']))
    region_suffix = draw(st.integers(min_value=1, max_value=9))
    return f"{region_prefix}-{region_middle}-{region_suffix}"


@st.composite
def valid_config(draw):
    """Generate valid Config objects."""
    return Config(
        default_region=draw(valid_aws_region()),
        poll_interval_seconds=draw(st.floats(min_value=1, max_value=3600)),
        overage_rate_per_hour=draw(st.floats(min_value=0, max_value=10)),
        free_tier_hour_cap=draw(st.floats(min_value=1, max_value=10_000)),
        eligible_instance_types=draw(st.lists(
            st.sampled_from(['t2.micro', 't3.micro', 't4g.micro', 't3a.micro']),
            min_size=1,
            max_size=4,
        )),
        created_at=draw(st.datetimes(min_value=datetime(2020, 1, 1), max_value=datetime(2030, 12, 31))),
    )


class TestConfigurationRoundTrip:
    """Property-based tests for configuration round trip operations."""

    @given(config=valid_config())
    def test_config_save_load_round_trip(self, config):
        """Saving then loading a configuration gives back the same values."""
        with tempfile.TemporaryDirectory() as temp_dir:
            config_manager = ConfigManager(config_dir=Path(temp_dir))

            config_manager.save_config(config)
            loaded_config = config_manager.load_config()

            assert loaded_config is not None
            assert loaded_config.default_region == config.default_region
            assert loaded_config.poll_interval_seconds == config.poll_interval_seconds
            assert loaded_config.overage_rate_per_hour == config.overage_rate_per_hour
            assert loaded_config.free_tier_hour_cap == config.free_tier_hour_cap
            assert loaded_config.eligible_instance_types == config.eligible_instance_types

            time_diff = abs((loaded_config.created_at - config.created_at).total_seconds())
            assert time_diff < 1.0

    def test_secret_key_round_trip_and_file_mode(self, config_manager):
        config = Config(auth_mode="static", access_key_id="AKIAEXAMPLE", secret_access_key="s3cret")

        config_manager.save_config(config)
        loaded = config_manager.load_config()

        assert loaded.secret_access_key.get_secret_value() == "s3cret"
        mode = stat.S_IMODE(config_manager.get_config_path().stat().st_mode)
        assert mode == 0o600

    def test_config_delete_removes_file(self, config_manager):
        config_manager.save_config(Config())
        assert config_manager.config_exists()

        config_manager.delete_config()

        assert not config_manager.config_exists()


class TestConfigValidation:
    """Unit tests for configuration validation."""

    def test_defaults(self):
        config = Config()
        assert config.default_region == "us-east-1"
        assert config.auth_mode == "profile"
        assert config.poll_interval_seconds == 30
        assert config.overage_rate_per_hour == pytest.approx(0.0116)
        assert config.free_tier_hour_cap == 750
        assert config.eligible_instance_types == ["t2.micro", "t3.micro"]
        assert isinstance(config.created_at, datetime)

    def test_engine_settings(self):
        settings = Config(poll_interval_seconds=15, eligible_instance_types=["T4G.micro "]).engine_settings()
        assert settings.poll_interval_seconds == 15
        assert settings.eligible_instance_types == frozenset({"t4g.micro"})

    @pytest.mark.parametrize("region", ["invalid-region", "us-east", "usa-east-1", "us_east_1"])
    def test_invalid_region_format(self, region):
        with pytest.raises(ValueError, match="Invalid AWS region format"):
            Config(default_region=region)

    @pytest.mark.parametrize("arn", [
        "invalid-arn",
        "arn:aws:iam::123:role/test",
        "arn:aws:s3:::bucket/key",
        "arn:aws:iam::123456789012:user/test",
    ])
    def test_invalid_iam_role_arn_format(self, arn):
        with pytest.raises(ValueError, match="Invalid IAM role ARN format"):
            Config(auth_mode="role", iam_role_arn=arn)

    def test_invalid_mfa_serial(self):
        with pytest.raises(ValueError, match="Invalid MFA serial format"):
            Config(mfa_serial="123456")

    def test_role_mode_requires_arn(self):
        with pytest.raises(ValueError, match="requires iam_role_arn"):
            Config(auth_mode="role")

    def test_static_mode_requires_keys(self):
        with pytest.raises(ValueError, match="requires access_key_id"):
            Config(auth_mode="static", access_key_id="AKIA")

    @pytest.mark.parametrize("field, value", [
        ("poll_interval_seconds", 0.5),
        ("overage_rate_per_hour", -0.01),
        ("free_tier_hour_cap", 0),
    ])
    def test_out_of_range_numbers(self, field, value):
        with pytest.raises(ValueError):
            Config(**{field: value})

    def test_empty_eligible_types(self):
        with pytest.raises(ValueError, match="At least one"):
            Config(eligible_instance_types=[" "])


class TestConfigManagerEdgeCases:
    """Unit tests for configuration manager edge cases."""

    def test_load_nonexistent_config(self, config_manager):
        assert config_manager.load_config() is None
        assert config_manager.load_or_default().default_region == "us-east-1"
        assert not config_manager.config_exists()

    def test_load_corrupted_config(self, config_manager):
        config_manager.get_config_path().write_text("invalid json content")

        with pytest.raises(ValueError, match="Invalid configuration file"):
            config_manager.load_config()

    def test_load_invalid_values(self, config_manager):
        config_manager.get_config_path().write_text(json.dumps({"free_tier_hour_cap": -5}))

        with pytest.raises(ValueError, match="Invalid configuration file"):
            config_manager.load_config()

    def test_update_config_merges_changes(self, config_manager):
        config_manager.save_config(Config(default_region="eu-west-1"))

        updated = config_manager.update_config(overage_rate_per_hour=0.02, profile_name=None)

        assert updated.default_region == "eu-west-1"
        assert updated.overage_rate_per_hour == 0.02
        assert config_manager.load_config().overage_rate_per_hour == 0.02

    def test_update_config_keeps_secret(self, config_manager):
        config_manager.save_config(Config(auth_mode="static", access_key_id="AKIA", secret_access_key="keep-me"))

        updated = config_manager.update_config(poll_interval_seconds=60)

        assert updated.secret_access_key.get_secret_value() == "keep-me"

    def test_config_directory_creation(self, temp_config_dir):
        config_dir = temp_config_dir / "nested" / "config" / "dir"
        ConfigManager(config_dir=config_dir)
        assert config_dir.is_dir()
