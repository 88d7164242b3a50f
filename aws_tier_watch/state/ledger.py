"""
Append-only ledger of free-tier running time, one file per billing month.

Launch time only tells us about the current stint of a running instance. When
an instance stops (or restarts between polls) its finished stint is closed out
here so the hours are not lost on the next poll.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from ..core.exceptions import StateError
from ..usage.aggregator import SECONDS_PER_HOUR, hours_in_month
from ..usage.models import InstanceRecord

logger = logging.getLogger(__name__)

OPEN_STINTS_FILE = "open.json"


def month_key(moment: datetime) -> str:
    """Billing month key, e.g. '2026-10'."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m")


@dataclass(frozen=True)
class LedgerEntry:
    """One closed running stint of an eligible instance."""
    instance_id: str
    month: str
    seconds: float
    closed_at: datetime


@dataclass(frozen=True)
class OpenStint:
    """A running stint as last seen by a poll."""
    launch_time: datetime
    last_seen: datetime


class UsageLedger:
    """Persists closed running stints for accurate month-to-date usage."""

    def __init__(self, ledger_dir: Optional[Path] = None):
        """Initialize the ledger.

        Args:
            ledger_dir: Directory to store ledger files. Defaults to
                ~/.aws-tier-watch/ledger/
        """
        if ledger_dir is None:
            ledger_dir = Path.home() / ".aws-tier-watch" / "ledger"

        self.ledger_dir = ledger_dir
        self.ledger_dir.mkdir(parents=True, exist_ok=True)

        self._open: Dict[str, OpenStint] = self._load_open_stints()

    def observe(self, records: Iterable[InstanceRecord], now: datetime) -> List[LedgerEntry]:
        """Record stint transitions seen between the previous poll and this one.

        A stint is closed only when its instance is seen again stopped, no
        longer eligible, or with a new launch time. It is closed at the last
        poll that saw it running. Instances missing from a poll (another
        region, a record dropped by the reader) keep their stint open.

        Args:
            records: The full record set of the current poll
            now: Poll time

        Returns:
            Entries appended by this observation
        """
        running: Dict[str, datetime] = {}
        ended: Set[str] = set()
        for record in records:
            if record.free_tier_eligible and record.state.is_active:
                if record.launch_time is not None:
                    running[record.id] = record.launch_time
            else:
                ended.add(record.id)

        current_month = month_key(now)
        still_open: Dict[str, OpenStint] = {}
        closed: List[LedgerEntry] = []
        for instance_id, stint in self._open.items():
            launched = running.get(instance_id)
            if launched == stint.launch_time:
                continue

            if launched is None and instance_id not in ended:
                # Not in this poll; drop it only once its month is over
                if month_key(stint.last_seen) == current_month:
                    still_open[instance_id] = stint
                continue

            seconds = hours_in_month(stint.launch_time, stint.last_seen, now) * SECONDS_PER_HOUR
            if seconds <= 0:
                continue

            closed.append(LedgerEntry(
                instance_id=instance_id,
                month=current_month,
                seconds=seconds,
                closed_at=now,
            ))

        for instance_id, launched in running.items():
            still_open[instance_id] = OpenStint(launch_time=launched, last_seen=now)

        if closed:
            self._append(closed)
            logger.info(f"Closed {len(closed)} running stint(s) into ledger {current_month}")

        self._open = still_open
        self._save_open_stints()

        return closed

    def carried_hours(self, now: datetime) -> float:
        """Total closed hours for the billing month containing ``now``."""
        return sum(e.seconds for e in self.entries(month_key(now))) / SECONDS_PER_HOUR

    def entries(self, month: str) -> List[LedgerEntry]:
        """Load all entries for a billing month.

        Raises:
            StateError: If the ledger file is corrupted
        """
        filepath = self._month_path(month)
        if not filepath.exists():
            return []

        try:
            with open(filepath, 'r') as f:
                data = json.load(f)
            return [self._deserialize_entry(e) for e in data.get('entries', [])]
        except json.JSONDecodeError as e:
            raise StateError(f"Ledger file corrupted: {e}")
        except (KeyError, TypeError, ValueError) as e:
            raise StateError(f"Failed to load ledger {month}: {e}")

    def list_months(self) -> List[str]:
        """Billing months with a ledger file, oldest first."""
        return sorted(
            p.stem for p in self.ledger_dir.glob("*.json")
            if p.name != OPEN_STINTS_FILE
        )

    def cleanup_old_months(self, keep_count: int = 3) -> int:
        """Remove old month files, keeping only the most recent ones.

        Returns:
            Number of month files deleted
        """
        months = self.list_months()
        if len(months) <= keep_count:
            return 0

        deleted = 0
        for month in months[:len(months) - keep_count]:
            self._month_path(month).unlink()
            logger.info(f"Deleted ledger month {month}")
            deleted += 1
        return deleted

    def _append(self, new_entries: List[LedgerEntry]) -> None:
        by_month: Dict[str, List[LedgerEntry]] = {}
        for entry in new_entries:
            by_month.setdefault(entry.month, []).append(entry)

        for month, items in by_month.items():
            existing = self.entries(month)
            payload = {
                'month': month,
                'entries': [self._serialize_entry(e) for e in existing + items],
            }
            self._write_atomic(self._month_path(month), payload)

    def _write_atomic(self, filepath: Path, payload: Dict[str, Any]) -> None:
        temp_file = filepath.with_suffix('.tmp')
        try:
            with open(temp_file, 'w') as f:
                json.dump(payload, f, indent=2)
            temp_file.replace(filepath)
        except OSError as e:
            if temp_file.exists():
                temp_file.unlink()
            raise StateError(f"Failed to write ledger file {filepath.name}: {e}")

    def _month_path(self, month: str) -> Path:
        return self.ledger_dir / f"{month}.json"

    def _load_open_stints(self) -> Dict[str, OpenStint]:
        filepath = self.ledger_dir / OPEN_STINTS_FILE
        if not filepath.exists():
            return {}
        try:
            with open(filepath, 'r') as f:
                data = json.load(f)
            return {
                instance_id: OpenStint(
                    launch_time=datetime.fromisoformat(stint['launch_time']),
                    last_seen=datetime.fromisoformat(stint['last_seen']),
                )
                for instance_id, stint in data.items()
            }
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable open stint file: {e}")
            return {}

    def _save_open_stints(self) -> None:
        self._write_atomic(
            self.ledger_dir / OPEN_STINTS_FILE,
            {
                instance_id: {
                    'launch_time': stint.launch_time.isoformat(),
                    'last_seen': stint.last_seen.isoformat(),
                }
                for instance_id, stint in self._open.items()
            },
        )

    def _serialize_entry(self, entry: LedgerEntry) -> Dict[str, Any]:
        """Serialize a LedgerEntry to a dictionary."""
        return {
            'instance_id': entry.instance_id,
            'month': entry.month,
            'seconds': entry.seconds,
            'closed_at': entry.closed_at.isoformat(),
        }

    def _deserialize_entry(self, data: Dict[str, Any]) -> LedgerEntry:
        """Deserialize a dictionary to a LedgerEntry."""
        return LedgerEntry(
            instance_id=data['instance_id'],
            month=data['month'],
            seconds=float(data['seconds']),
            closed_at=datetime.fromisoformat(data['closed_at']),
        )
