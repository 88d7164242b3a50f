"""Tests for the refresh scheduler."""

import threading
import time
from datetime import timedelta

import pytest

from aws_tier_watch.core.exceptions import AuthenticationError, ConfigurationError, ProviderError
from aws_tier_watch.state.ledger import UsageLedger
from aws_tier_watch.usage.models import EngineSettings, StatusReport, ThresholdLevel
from aws_tier_watch.usage.scheduler import RefreshScheduler

from conftest import FIXED_NOW, StaticProvider, raw_instance


class BlockingProvider:
    """Provider whose fetch blocks until released."""

    def __init__(self, instances=None):
        self.instances = list(instances or [])
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = 0
        self._lock = threading.Lock()

    def fetch_instances(self):
        with self._lock:
            self.calls += 1
        self.started.set()
        self.release.wait(timeout=5)
        return list(self.instances)


class TestRunCycle:
    """Synchronous refresh cycles."""

    def test_no_status_before_first_cycle(self, fixed_clock):
        scheduler = RefreshScheduler(StaticProvider(), clock=fixed_clock)
        assert scheduler.get_current_status() is None
        assert scheduler.is_stale is False

    def test_one_hour_instance_is_safe(self, fixed_clock, one_hour_instance):
        scheduler = RefreshScheduler(StaticProvider([one_hour_instance]), clock=fixed_clock)

        report = scheduler.run_cycle()

        assert isinstance(report, StatusReport)
        assert report.snapshot.hours_used == pytest.approx(1.0)
        assert report.projection.projected_monthly_hours == pytest.approx(3.0)
        assert report.level == ThresholdLevel.SAFE
        assert report.advisories == ()
        assert scheduler.get_current_status() is report

    def test_empty_account_round_trip(self, fixed_clock):
        scheduler = RefreshScheduler(StaticProvider([]), clock=fixed_clock)

        snapshot, projection, level, advisories = scheduler.run_cycle().as_tuple()

        assert snapshot.hours_used == 0.0
        assert projection.days_until_exhausted is None
        assert level == ThresholdLevel.SAFE
        assert advisories == []

    def test_subscribers_notified_once_per_cycle(self, fixed_clock, one_hour_instance):
        scheduler = RefreshScheduler(StaticProvider([one_hour_instance]), clock=fixed_clock)
        updates = []
        scheduler.subscribe(updates.append)

        scheduler.run_cycle()
        scheduler.run_cycle()

        assert len(updates) == 2
        assert all(u.ok for u in updates)
        assert updates[-1].report is scheduler.get_current_status()

    def test_unsubscribe(self, fixed_clock):
        scheduler = RefreshScheduler(StaticProvider(), clock=fixed_clock)
        updates = []
        unsubscribe = scheduler.subscribe(updates.append)

        unsubscribe()
        scheduler.run_cycle()

        assert updates == []

    def test_failing_subscriber_does_not_break_cycle(self, fixed_clock):
        scheduler = RefreshScheduler(StaticProvider(), clock=fixed_clock)
        received = []

        def broken(update):
            raise RuntimeError("boom")

        scheduler.subscribe(broken)
        scheduler.subscribe(received.append)

        assert scheduler.run_cycle() is not None
        assert len(received) == 1

    def test_fetch_failure_keeps_prior_status(self, fixed_clock, one_hour_instance):
        provider = StaticProvider([one_hour_instance])
        scheduler = RefreshScheduler(provider, clock=fixed_clock)
        updates = []
        scheduler.subscribe(updates.append)

        prior = scheduler.run_cycle()
        provider.error = ProviderError("AWS ec2 describe_instances failed: throttled")
        result = scheduler.run_cycle()

        assert result is prior
        assert scheduler.get_current_status() is prior
        assert scheduler.is_stale is True
        failed = updates[-1]
        assert failed.ok is False
        assert failed.stale is True
        assert failed.report is prior
        assert "throttled" in failed.error

    def test_fetch_failure_before_first_success(self, fixed_clock):
        scheduler = RefreshScheduler(StaticProvider(error=ProviderError("no network")), clock=fixed_clock)
        updates = []
        scheduler.subscribe(updates.append)

        assert scheduler.run_cycle() is None
        assert updates[0].ok is False
        assert updates[0].report is None
        assert updates[0].stale is False

    def test_expired_credentials_mark_status_stale(self, fixed_clock, one_hour_instance):
        provider = StaticProvider([one_hour_instance])
        scheduler = RefreshScheduler(provider, clock=fixed_clock)
        prior = scheduler.run_cycle()

        provider.error = AuthenticationError("An MFA code is required for arn:aws:iam::123456789012:mfa/me")

        assert scheduler.run_cycle() is prior
        assert scheduler.is_stale is True
        assert "MFA code is required" in scheduler.last_update.error

    def test_unexpected_provider_exception_is_contained(self, fixed_clock):
        scheduler = RefreshScheduler(StaticProvider(error=ConnectionError("reset")), clock=fixed_clock)
        assert scheduler.run_cycle() is None
        assert "reset" in scheduler.last_update.error

    def test_recovery_clears_staleness(self, fixed_clock, one_hour_instance):
        provider = StaticProvider([one_hour_instance], error=ProviderError("down"))
        scheduler = RefreshScheduler(provider, clock=fixed_clock)

        scheduler.run_cycle()
        provider.error = None
        scheduler.run_cycle()

        assert scheduler.is_stale is False
        assert scheduler.get_current_status() is not None

    def test_settings_flow_into_cycle(self, fixed_clock):
        instances = [
            raw_instance("i-a", launch_time=FIXED_NOW - timedelta(hours=80)),
            raw_instance("i-big", instance_type="m5.large", launch_time=FIXED_NOW),
        ]
        settings = EngineSettings(free_tier_hour_cap=100.0, overage_rate_per_hour=1.0)
        scheduler = RefreshScheduler(StaticProvider(instances), settings=settings, clock=fixed_clock)

        report = scheduler.run_cycle()

        assert report.level == ThresholdLevel.WARNING
        # 80h by day 10 of 30 -> 240h projected, 140h over
        assert report.projection.estimated_overage_cost == pytest.approx(140.0)
        assert report.advisories[1].startswith("1 non-eligible instance")

    def test_ledger_hours_are_carried(self, fixed_clock, temp_config_dir):
        launched = FIXED_NOW - timedelta(hours=5)
        provider = StaticProvider([raw_instance(launch_time=launched)])
        ledger = UsageLedger(temp_config_dir / "ledger")
        scheduler = RefreshScheduler(provider, ledger=ledger, clock=fixed_clock)

        scheduler.run_cycle()
        provider.instances = [raw_instance(state="stopped")]
        report = scheduler.run_cycle()

        assert report.snapshot.hours_used == pytest.approx(5.0)
        assert report.snapshot.carried_hours == pytest.approx(5.0)


class TestConfigure:

    def test_configure_updates_settings(self):
        scheduler = RefreshScheduler(StaticProvider())
        settings = scheduler.configure(poll_interval_seconds=10, overage_rate_per_hour=0.02, free_tier_hour_cap=500)
        assert settings.poll_interval_seconds == 10.0
        assert settings.overage_rate_per_hour == 0.02
        assert settings.free_tier_hour_cap == 500.0
        assert scheduler.settings is settings

    def test_partial_configure_keeps_other_values(self):
        scheduler = RefreshScheduler(StaticProvider())
        scheduler.configure(overage_rate_per_hour=0.05)
        assert scheduler.settings.poll_interval_seconds == 30.0
        assert scheduler.settings.free_tier_hour_cap == 750.0

    @pytest.mark.parametrize("kwargs", [
        {"poll_interval_seconds": 0},
        {"overage_rate_per_hour": -1},
        {"free_tier_hour_cap": 0},
    ])
    def test_invalid_values_rejected(self, kwargs):
        scheduler = RefreshScheduler(StaticProvider())
        with pytest.raises(ConfigurationError):
            scheduler.configure(**kwargs)


class TestBackgroundCycles:
    """Ticks, overlap guard and cancellation."""

    def test_overlapping_tick_is_dropped(self, fixed_clock):
        provider = BlockingProvider()
        scheduler = RefreshScheduler(provider, clock=fixed_clock)
        updates = []
        scheduler.subscribe(updates.append)

        try:
            assert scheduler.tick() is True
            assert provider.started.wait(timeout=2)
            assert scheduler.tick() is False

            provider.release.set()
            assert scheduler.wait(timeout=2)
        finally:
            scheduler.stop()

        assert provider.calls == 1
        assert len(updates) == 1

    def test_tick_allowed_again_after_cycle_finishes(self, fixed_clock):
        provider = StaticProvider()
        scheduler = RefreshScheduler(provider, clock=fixed_clock)
        try:
            assert scheduler.tick() is True
            assert scheduler.wait(timeout=2)
            # The in-flight flag is cleared by a done callback
            deadline = time.monotonic() + 2
            while not scheduler.tick():
                assert time.monotonic() < deadline
                time.sleep(0.01)
            assert scheduler.wait(timeout=2)
        finally:
            scheduler.stop()

        assert provider.calls == 2

    def test_stop_suppresses_in_flight_result(self, fixed_clock, one_hour_instance):
        provider = BlockingProvider([one_hour_instance])
        scheduler = RefreshScheduler(provider, clock=fixed_clock)
        updates = []
        scheduler.subscribe(updates.append)

        scheduler.tick()
        assert provider.started.wait(timeout=2)
        scheduler.stop()
        provider.release.set()
        scheduler.wait(timeout=2)

        assert scheduler.get_current_status() is None
        assert updates == []

    def test_stop_leaves_ledger_untouched(self, fixed_clock, one_hour_instance, temp_config_dir):
        provider = BlockingProvider([one_hour_instance])
        ledger = UsageLedger(temp_config_dir / "ledger")
        scheduler = RefreshScheduler(provider, ledger=ledger, clock=fixed_clock)

        scheduler.tick()
        assert provider.started.wait(timeout=2)
        scheduler.stop()
        provider.release.set()
        scheduler.wait(timeout=2)

        assert not (temp_config_dir / "ledger" / "open.json").exists()
        assert ledger.list_months() == []

    def test_start_runs_first_cycle_immediately(self, fixed_clock, one_hour_instance):
        scheduler = RefreshScheduler(
            StaticProvider([one_hour_instance]),
            settings=EngineSettings(poll_interval_seconds=60),
            clock=fixed_clock,
        )
        done = threading.Event()
        scheduler.subscribe(lambda update: done.set())

        with scheduler:
            assert scheduler.is_running
            assert done.wait(timeout=2)

        assert not scheduler.is_running
        assert scheduler.get_current_status() is not None

    def test_timer_keeps_polling(self, fixed_clock):
        provider = StaticProvider()
        scheduler = RefreshScheduler(
            provider,
            settings=EngineSettings(poll_interval_seconds=0.05),
            clock=fixed_clock,
        )
        seen = threading.Semaphore(0)
        scheduler.subscribe(lambda update: seen.release())

        scheduler.start()
        try:
            for _ in range(3):
                assert seen.acquire(timeout=2)
        finally:
            scheduler.stop()

        assert provider.calls >= 3

    def test_stop_interrupts_long_wait(self, fixed_clock):
        scheduler = RefreshScheduler(
            StaticProvider(),
            settings=EngineSettings(poll_interval_seconds=3600),
            clock=fixed_clock,
        )
        scheduler.start()
        started = time.monotonic()
        scheduler.stop()
        assert time.monotonic() - started < 2
        assert not scheduler.is_running
