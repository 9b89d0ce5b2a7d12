"""
Decide which retention tiers of a database are due for a new backup.

A tier is due when no backup of that tier exists yet, or when its newest
backup is at least one tier interval old. Tagged backups count for the tier
in their name; untagged and legacy backups count for the tier their age
places them in. Errors while inspecting existing backups make every tier
due, so a broken listing never silently stops backups.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..rotation.filename import FilenameParseError, backup_pattern, is_backup_for_database, parse_backup_filename
from ..rotation.tiers import DEFAULT_TIER, TIER_INTERVALS, YEARLY, RetentionTier, categorize_tier, ordered_tiers
from ..storage.base import Backend, as_utc


logger = logging.getLogger(__name__)


@dataclass
class TierSchedule:
    """Tiers due now and when each configured tier is next due."""
    due_tiers: List[str] = field(default_factory=list)
    next_due: Dict[str, datetime] = field(default_factory=dict)
    latest: Dict[str, datetime] = field(default_factory=dict)
    # tier -> timestamp of an older backup that stands in for it
    satisfied_by: Dict[str, datetime] = field(default_factory=dict)

    @property
    def is_due(self) -> bool:
        return bool(self.due_tiers)

    def to_dict(self) -> dict:
        return {
            'due_tiers': list(self.due_tiers),
            'next_due': {tier: ts.isoformat() for tier, ts in self.next_due.items()},
            'latest': {tier: ts.isoformat() for tier, ts in self.latest.items()},
            'satisfied_by': {tier: ts.isoformat() for tier, ts in self.satisfied_by.items()},
        }


def default_schedule(now: datetime) -> TierSchedule:
    return TierSchedule(due_tiers=[DEFAULT_TIER], next_due={DEFAULT_TIER: now})


def all_due_schedule(retention_tiers: List[RetentionTier], now: datetime) -> TierSchedule:
    if not retention_tiers:
        return default_schedule(now)
    tiers = [rt.tier for rt in ordered_tiers(retention_tiers)]
    return TierSchedule(due_tiers=tiers, next_due={tier: now for tier in tiers})


def compute_tier_schedule(db_name: str, retention_tiers: List[RetentionTier], filenames: Iterable[str],
                          now: datetime) -> TierSchedule:
    """
    Work out which tiers are due from the names of existing backups.

    Args:
        db_name: Database to schedule
        retention_tiers: Configured tiers (empty means one always-due 'default' tier)
        filenames: Names of existing backups, possibly for other databases too
        now: Reference time

    Returns:
        TierSchedule
    """
    now = as_utc(now)
    if not retention_tiers:
        logger.debug(f"No retention tiers configured for {db_name}, backup is due")
        return default_schedule(now)

    latest: Dict[str, datetime] = {}
    oldest: Optional[datetime] = None

    for filename in filenames:
        if not is_backup_for_database(filename, db_name):
            continue
        try:
            components = parse_backup_filename(filename)
        except FilenameParseError as e:
            logger.debug(f"Ignoring {filename} while scheduling {db_name}: {e}")
            continue

        timestamp = components.timestamp
        tier = components.tier if components.has_tier else categorize_tier(timestamp, now)

        if tier not in latest or timestamp > latest[tier]:
            latest[tier] = timestamp
        if oldest is None or timestamp < oldest:
            oldest = timestamp

    schedule = TierSchedule(latest=latest)

    for rt in ordered_tiers(retention_tiers):
        interval = TIER_INTERVALS[rt.tier]
        last = latest.get(rt.tier)

        if last is None:
            schedule.due_tiers.append(rt.tier)
            schedule.next_due[rt.tier] = now
            continue

        due = now - last >= interval
        schedule.next_due[rt.tier] = last + interval

        if rt.tier == YEARLY and not due and oldest is not None and now - oldest >= TIER_INTERVALS[YEARLY]:
            schedule.satisfied_by[YEARLY] = oldest
            logger.debug(f"Yearly tier of {db_name} covered by backup from {oldest.isoformat()}")

        if due:
            schedule.due_tiers.append(rt.tier)

    return schedule


def is_backup_due(db_name: str, retention_tiers: List[RetentionTier], list_backups: Callable[[], Iterable[str]],
                  now: datetime) -> Tuple[bool, TierSchedule]:
    """
    Check whether a database needs a backup now.

    Args:
        db_name: Database to check
        retention_tiers: Configured tiers
        list_backups: Callable returning existing backup filenames
        now: Reference time

    Returns:
        (due, schedule); any error from list_backups makes every tier due
    """
    now = as_utc(now)
    if not retention_tiers:
        schedule = default_schedule(now)
        return True, schedule

    try:
        filenames = list(list_backups())
    except Exception as e:
        logger.warning(f"Error listing existing backups of {db_name}, assuming backup is due: {e}")
        schedule = all_due_schedule(retention_tiers, now)
        return True, schedule

    schedule = compute_tier_schedule(db_name, retention_tiers, filenames, now)
    return schedule.is_due, schedule


def collect_backup_names(backends: Iterable[Backend], db_name: str) -> List[str]:
    """
    Names of every backup of a database across all backends.

    Raises:
        StorageError: If any backend listing fails
    """
    names = set()
    pattern = backup_pattern(db_name)
    for backend in backends:
        for entry in backend.list_files(pattern):
            if is_backup_for_database(entry.path, db_name):
                names.add(entry.path)
    return sorted(names)


def next_run_after(schedule: TierSchedule) -> Optional[datetime]:
    """Earliest time any tier becomes due, or None if nothing is scheduled."""
    if not schedule.next_due:
        return None
    return min(schedule.next_due.values())


def database_schedule(config, db, registry=None, now: Optional[datetime] = None) -> Tuple[bool, TierSchedule]:
    """
    Check a configured database against the backups on its destinations.

    Backends are opened for the check and closed afterwards. Failing to open
    or list them makes every tier due, the same as during a backup run.

    Args:
        config: BackupConfig the database belongs to
        db: DatabaseConfig to check
        registry: Backend registry (default: built-in backends)
        now: Reference time (default: now, UTC)

    Returns:
        (due, schedule)
    """
    from ..storage.registry import close_backends, default_registry

    registry = registry or default_registry()
    now = as_utc(now) if now else datetime.now(timezone.utc)
    backends: List[Backend] = []

    def list_backups():
        backends.extend(registry.create_all(config.destinations_for(db)))
        return collect_backup_names(backends, db.name)

    try:
        return is_backup_due(db.name, db.effective_retention_tiers(config.global_defaults), list_backups, now)
    finally:
        close_backends(backends)
