"""
Retention policy enforcement.

Two modes are supported:
- Tag-based: tagged backups are grouped by the tier in their filename and
  only the newest N of each tier are kept.
- Age-based: untagged and legacy backups are assigned a tier from their
  age and the same keep-newest-N rule is applied per computed tier.

Tiers missing from the configuration, or configured with retention 0, are
never pruned. Deletion is best effort: failures are logged and recorded
but never raised.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from ..storage.base import Backend, FileEntry
from ..storage.errors import StorageError
from .filename import (
    FORMAT_TAGGED,
    FilenameParseError,
    backup_pattern,
    is_backup_for_database,
    parse_backup_filename,
    tier_pattern,
)
from .tiers import TIER_ORDER, RetentionTier, categorize_tier, ordered_tiers, retention_map


logger = logging.getLogger(__name__)


@dataclass
class BackupFile:
    """A backup considered by the age-based engine."""
    path: str
    timestamp: datetime
    tier: Optional[str] = None
    creation_tier: Optional[str] = None


@dataclass
class RotationResult:
    """Paths removed and paths that could not be removed during one rotation."""
    deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    list_errors: List[str] = field(default_factory=list)

    def merge(self, other: 'RotationResult'):
        self.deleted.extend(other.deleted)
        self.failed.extend(other.failed)
        self.list_errors.extend(other.list_errors)

    def to_dict(self) -> dict:
        return {
            'deleted': list(self.deleted),
            'failed': list(self.failed),
            'list_errors': list(self.list_errors),
        }


def apply_retention(backups: List[BackupFile], retention_tiers: List[RetentionTier],
                    now: Optional[datetime] = None) -> List[str]:
    """
    Decide which backups to delete using age-based tiers.

    Each backup is assigned a tier from its age relative to now, then for
    every tier with a positive retention the oldest backups beyond the
    retention count are selected.

    Args:
        backups: Candidate backups
        retention_tiers: Configured retention counts
        now: Reference time (default: current UTC time)

    Returns:
        Paths of backups to delete, oldest first within each tier
    """
    if not backups:
        return []

    now = now or datetime.now(timezone.utc)
    retention = retention_map(retention_tiers)

    by_tier: Dict[str, List[BackupFile]] = {}
    for backup in backups:
        backup.tier = categorize_tier(backup.timestamp, now)
        by_tier.setdefault(backup.tier, []).append(backup)

    to_delete = []

    for tier in TIER_ORDER:
        tier_backups = by_tier.get(tier)
        if not tier_backups:
            continue

        keep = retention.get(tier)
        if keep is None:
            logger.debug(f"No retention policy for tier {tier}, keeping all {len(tier_backups)} backups")
            continue
        if keep == 0:
            logger.debug(f"Unlimited retention for tier {tier}, keeping all {len(tier_backups)} backups")
            continue

        tier_backups.sort(key=lambda b: b.timestamp)
        if len(tier_backups) > keep:
            for backup in tier_backups[:len(tier_backups) - keep]:
                logger.info(f"Marking {backup.path} ({tier}, {backup.timestamp.isoformat()}) for deletion")
                to_delete.append(backup.path)

    return to_delete


def delete_files(paths: List[str]) -> RotationResult:
    """
    Delete local files, continuing past failures.

    Returns:
        RotationResult listing deleted and failed paths
    """
    result = RotationResult()

    for path in paths:
        try:
            os.remove(path)
            result.deleted.append(path)
            logger.info(f"Deleted backup file: {path}")
        except OSError as e:
            result.failed.append(path)
            logger.error(f"Failed to delete backup file {path}: {e}")

    return result


def rotate_backups(backup_dir: str, db_name: str, retention_tiers: List[RetentionTier],
                   now: Optional[datetime] = None) -> RotationResult:
    """
    Apply age-based retention to the backups of one database in a directory.

    Files whose names cannot be decoded are skipped with a warning.

    Args:
        backup_dir: Directory holding the backups
        db_name: Database whose backups to rotate
        retention_tiers: Configured retention counts
        now: Reference time (default: current UTC time)

    Returns:
        RotationResult
    """
    directory = Path(backup_dir)
    if not directory.is_dir():
        logger.debug(f"Backup directory {backup_dir} does not exist, nothing to rotate")
        return RotationResult()

    backups = []
    for path in sorted(directory.glob(backup_pattern(db_name))):
        if not path.is_file() or not is_backup_for_database(path.name, db_name):
            continue
        try:
            components = parse_backup_filename(path.name)
        except FilenameParseError as e:
            logger.warning(f"Skipping file with invalid name {path}: {e}")
            continue
        backups.append(BackupFile(path=str(path), timestamp=components.timestamp,
                                  creation_tier=components.tier))

    if not backups:
        logger.debug(f"No backups found for {db_name} in {backup_dir}")
        return RotationResult()

    to_delete = apply_retention(backups, retention_tiers, now=now)
    if not to_delete:
        logger.info(f"No backups to delete for {db_name}, within retention limits")
        return RotationResult()

    return delete_files(to_delete)


def _entry_timestamp(entry: FileEntry) -> datetime:
    try:
        return parse_backup_filename(entry.path).timestamp
    except FilenameParseError:
        return entry.mod_time


def _delete_entries(backend: Backend, paths: List[str], result: RotationResult):
    for path in paths:
        try:
            backend.delete(path)
            result.deleted.append(path)
            logger.info(f"Deleted old backup {path} from {backend.name}")
        except StorageError as e:
            result.failed.append(path)
            logger.error(f"Failed to delete old backup {path} from {backend.name}: {e}")


def apply_retention_with_backend(backend: Backend, db_name: str, retention_tiers: List[RetentionTier],
                                 now: Optional[datetime] = None) -> RotationResult:
    """
    Rotate one database's backups on a storage backend.

    Tagged backups are pruned per tier from the tier's listing. Untagged
    and legacy backups of the same database are then pruned with the
    age-based engine. A listing failure skips only the affected step.

    Args:
        backend: Backend to rotate
        db_name: Database whose backups to rotate
        retention_tiers: Configured retention counts
        now: Reference time for age-based rotation

    Returns:
        RotationResult
    """
    result = RotationResult()

    for rt in ordered_tiers(retention_tiers):
        if rt.retention == 0:
            logger.debug(f"Unlimited retention for {db_name}/{rt.tier} on {backend.name}")
            continue

        try:
            entries = backend.list_files(tier_pattern(db_name, rt.tier))
        except StorageError as e:
            logger.error(f"Failed to list {rt.tier} backups of {db_name} on {backend.name}: {e}")
            result.list_errors.append(rt.tier)
            continue

        if len(entries) <= rt.retention:
            logger.debug(f"{db_name}/{rt.tier} on {backend.name}: {len(entries)} backups, retention {rt.retention}")
            continue

        entries = sorted(entries, key=_entry_timestamp, reverse=True)
        stale = entries[rt.retention:]
        logger.info(
            f"Applying retention to {db_name}/{rt.tier} on {backend.name}: "
            f"{len(entries)} backups, keeping {rt.retention}, deleting {len(stale)}"
        )
        _delete_entries(backend, [entry.path for entry in stale], result)

    _rotate_untagged(backend, db_name, retention_tiers, now, result)
    return result


def _rotate_untagged(backend: Backend, db_name: str, retention_tiers: List[RetentionTier],
                     now: Optional[datetime], result: RotationResult):
    try:
        entries = backend.list_files(backup_pattern(db_name))
    except StorageError as e:
        logger.error(f"Failed to list untagged backups of {db_name} on {backend.name}: {e}")
        result.list_errors.append('untagged')
        return

    backups = []
    for entry in entries:
        if not is_backup_for_database(entry.path, db_name):
            continue
        try:
            components = parse_backup_filename(entry.path)
        except FilenameParseError as e:
            logger.warning(f"Skipping {entry.path} on {backend.name}: {e}")
            continue
        if components.format == FORMAT_TAGGED:
            continue
        backups.append(BackupFile(path=entry.path, timestamp=components.timestamp))

    if backups:
        _delete_entries(backend, apply_retention(backups, retention_tiers, now=now), result)
