"""
Periodic refresh of free-tier status.

A timer thread ticks every ``poll_interval_seconds``. Each tick hands one
refresh cycle to a single worker thread. At most one cycle is in flight, so
ticks that arrive while a cycle is still running are dropped.
"""
import dataclasses
import logging
import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .aggregator import aggregate
from .classifier import classify
from .models import EngineSettings, StatusReport, StatusUpdate
from .projection import project_at
from .reader import normalize
from ..core.exceptions import AuthenticationError, ConfigurationError, ProviderError, StateError
from ..services.base import InstanceProvider
from ..state.ledger import UsageLedger

logger = logging.getLogger(__name__)

StatusCallback = Callable[[StatusUpdate], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshScheduler:
    """Runs fetch, normalize, aggregate, project and classify on a fixed interval."""

    def __init__(
        self,
        provider: InstanceProvider,
        settings: Optional[EngineSettings] = None,
        ledger: Optional[UsageLedger] = None,
        clock: Callable[[], datetime] = _utcnow,
        region: Optional[str] = None,
    ):
        """Initialize the scheduler.

        Args:
            provider: Source of raw instance descriptions
            settings: Poll interval, rate, cap and eligible types
            ledger: Optional usage ledger for stints closed between polls
            clock: Returns the current time; injectable for tests
            region: Region stamped on normalized records
        """
        self.provider = provider
        self.ledger = ledger
        self.region = region
        self._settings = settings or EngineSettings()
        self._clock = clock

        # Replaced wholesale, never mutated
        self._status: Optional[StatusReport] = None
        self._last_update: Optional[StatusUpdate] = None

        self._subscribers: List[StatusCallback] = []
        self._subscribers_lock = threading.Lock()

        self._in_flight = False
        self._in_flight_lock = threading.Lock()

        # Bumped by stop(); cycles started under an older generation are discarded
        self._generation = 0
        self._publish_lock = threading.Lock()

        self._stop_event = threading.Event()
        self._timer_thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._future: Optional[Future] = None

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def last_update(self) -> Optional[StatusUpdate]:
        return self._last_update

    @property
    def is_stale(self) -> bool:
        """True when the most recent cycle failed."""
        return self._last_update is not None and not self._last_update.ok

    @property
    def is_running(self) -> bool:
        return self._timer_thread is not None and self._timer_thread.is_alive()

    def get_current_status(self) -> Optional[StatusReport]:
        """Latest successful report, or None before the first successful cycle."""
        return self._status

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        """Register a callback invoked once per completed cycle.

        Returns:
            A function that removes the subscription
        """
        with self._subscribers_lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._subscribers_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def configure(
        self,
        poll_interval_seconds: Optional[float] = None,
        overage_rate_per_hour: Optional[float] = None,
        free_tier_hour_cap: Optional[float] = None,
    ) -> EngineSettings:
        """Change settings; the next cycle (and next wait) picks them up.

        Raises:
            ConfigurationError: If a value is out of range
        """
        changes = {}
        if poll_interval_seconds is not None:
            if poll_interval_seconds <= 0:
                raise ConfigurationError(f"poll_interval_seconds must be > 0, got {poll_interval_seconds}")
            changes['poll_interval_seconds'] = float(poll_interval_seconds)
        if overage_rate_per_hour is not None:
            if overage_rate_per_hour < 0:
                raise ConfigurationError(f"overage_rate_per_hour must be >= 0, got {overage_rate_per_hour}")
            changes['overage_rate_per_hour'] = float(overage_rate_per_hour)
        if free_tier_hour_cap is not None:
            if free_tier_hour_cap <= 0:
                raise ConfigurationError(f"free_tier_hour_cap must be > 0, got {free_tier_hour_cap}")
            changes['free_tier_hour_cap'] = float(free_tier_hour_cap)

        self._settings = dataclasses.replace(self._settings, **changes)
        logger.info(f"Scheduler settings updated: {changes}")
        return self._settings

    def run_cycle(self) -> Optional[StatusReport]:
        """Run one refresh cycle synchronously.

        A failed fetch aborts the cycle: the previous report stays published
        and subscribers receive a failed update instead of a new report.

        Returns:
            The new report, or the previous one if the cycle failed or was
            discarded by stop()

        Raises:
            InvalidInputError: If the calculator is handed impossible input
        """
        generation = self._generation
        settings = self._settings

        try:
            raw_instances = self.provider.fetch_instances()
        except (ProviderError, AuthenticationError) as e:
            return self._fail(str(e), generation)
        except Exception as e:
            logger.exception("Instance provider raised an unexpected error")
            return self._fail(f"Unexpected provider error: {e}", generation)

        now = self._clock()
        records = normalize(raw_instances, settings.eligible_instance_types, self.region)

        carried_hours = 0.0
        if self.ledger is not None:
            ledger_error = None
            with self._publish_lock:
                if generation != self._generation:
                    logger.debug("Cycle cancelled by stop(), leaving the ledger untouched")
                    return self._status
                try:
                    self.ledger.observe(records, now)
                    carried_hours = self.ledger.carried_hours(now)
                except StateError as e:
                    ledger_error = e
            if ledger_error is not None:
                return self._fail(f"Usage ledger unavailable: {ledger_error}", generation)

        snapshot = aggregate(records, now, carried_hours)
        projection = project_at(
            snapshot, now, settings.overage_rate_per_hour, settings.free_tier_hour_cap
        )
        level, advisories = classify(snapshot, settings.free_tier_hour_cap)

        report = StatusReport(
            snapshot=snapshot,
            projection=projection,
            level=level,
            advisories=tuple(advisories),
            records=tuple(records),
        )

        with self._publish_lock:
            if generation != self._generation:
                logger.debug("Discarding result of a cycle cancelled by stop()")
                return self._status
            self._status = report

        logger.info(
            f"Refresh complete: {snapshot.hours_used:.2f}h used, level={level.value}, "
            f"{len(records)} instances"
        )
        self._notify(StatusUpdate(report=report, ok=True, at=now))
        return report

    def tick(self) -> bool:
        """Start a cycle in the background unless one is already in flight.

        Returns:
            True if a cycle was started, False if the tick was dropped
        """
        with self._in_flight_lock:
            if self._in_flight:
                logger.debug("Refresh still in flight, dropping tick")
                return False
            self._in_flight = True

        try:
            future = self._get_executor().submit(self._background_cycle)
        except RuntimeError:
            # Executor shut down by a concurrent stop()
            self._clear_in_flight()
            return False

        self._future = future
        future.add_done_callback(lambda _: self._clear_in_flight())
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the current background cycle finishes.

        Returns:
            True if no cycle is left in flight
        """
        future = self._future
        if future is None:
            return True
        try:
            future.result(timeout=timeout)
        except (CancelledError, FutureTimeoutError):
            pass
        return future.done()

    def start(self) -> None:
        """Start ticking every poll_interval_seconds, beginning immediately."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._timer_thread = threading.Thread(
            target=self._timer_loop,
            name="aws-tier-watch-refresh",
            daemon=True,
        )
        self._timer_thread.start()
        logger.info(f"Refresh scheduler started ({self._settings.poll_interval_seconds:g}s interval)")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop ticking and suppress the result of any in-flight cycle."""
        self._stop_event.set()

        with self._publish_lock:
            self._generation += 1

        future = self._future
        if future is not None:
            future.cancel()

        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

        thread = self._timer_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._timer_thread = None
        logger.info("Refresh scheduler stopped")

    def __enter__(self) -> 'RefreshScheduler':
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _timer_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            # Event.wait doubles as a sleep that stop() can interrupt
            if self._stop_event.wait(self._settings.poll_interval_seconds):
                break

    def _background_cycle(self) -> None:
        generation = self._generation
        try:
            self.run_cycle()
        except Exception as e:
            logger.exception("Refresh cycle failed")
            self._fail(str(e), generation)

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="aws-tier-watch-cycle")
        return self._executor

    def _clear_in_flight(self) -> None:
        with self._in_flight_lock:
            self._in_flight = False

    def _fail(self, error: str, generation: int) -> Optional[StatusReport]:
        if generation != self._generation:
            return self._status

        logger.warning(f"Refresh cycle failed, keeping last known status: {error}")
        self._notify(StatusUpdate(report=self._status, ok=False, at=self._clock(), error=error))
        return self._status

    def _notify(self, update: StatusUpdate) -> None:
        self._last_update = update
        with self._subscribers_lock:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(update)
            except Exception:
                logger.exception("Status subscriber raised an error")
