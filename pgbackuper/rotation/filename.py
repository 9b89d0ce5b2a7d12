"""
Backup filename encoding and decoding.

Three on-disk formats are recognised:
- tagged:   {db}--{tier}--YYYY-MM-DDTHH-MM-SS.backup
- untagged: {db}--YYYY-MM-DDTHH-MM-SS.backup
- legacy:   {db}_YYYY-MM-DD_HH-MM-SS.backup (db may itself contain '_')

Only the first two are ever generated. Timestamps are always UTC.
"""

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ..storage.base import as_utc


SEPARATOR = '--'
LEGACY_SEPARATOR = '_'
DATE_FORMAT = '%Y-%m-%dT%H-%M-%S'
LEGACY_DATE_FORMAT = '%Y-%m-%d_%H-%M-%S'
EXTENSION = '.backup'

FORMAT_TAGGED = 'tagged'
FORMAT_UNTAGGED = 'untagged'
FORMAT_LEGACY = 'legacy'


class FilenameParseError(ValueError):
    """Raised when a filename does not follow any known backup format."""
    pass


@dataclass(frozen=True)
class BackupFilenameComponents:
    """Decoded backup filename. The format field says which layout it used."""
    database_name: str
    timestamp: datetime
    tier: Optional[str] = None
    format: str = FORMAT_UNTAGGED

    @property
    def has_tier(self) -> bool:
        return self.format == FORMAT_TAGGED


def _parse_timestamp(value: str, fmt: str, filename: str) -> datetime:
    try:
        return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
    except ValueError as e:
        raise FilenameParseError(f"Invalid timestamp '{value}' in backup filename '{filename}': {e}") from e


def parse_backup_filename(filename: str) -> BackupFilenameComponents:
    """
    Decode a backup filename.

    Any leading directory is ignored. Names containing '--' are decoded as
    the current format, anything else as the legacy format.

    Args:
        filename: File name or path

    Returns:
        BackupFilenameComponents

    Raises:
        FilenameParseError: If the name is malformed or the timestamp is invalid
    """
    base = os.path.basename(filename)

    if SEPARATOR in base:
        return _parse_current(base)
    return _parse_legacy(base)


def _parse_current(base: str) -> BackupFilenameComponents:
    stem = os.path.splitext(base)[0]
    parts = stem.split(SEPARATOR)

    if len(parts) == 3:
        database_name, tier, timestamp_str = parts
        if not tier:
            raise FilenameParseError(f"Empty tier in backup filename '{base}'")
        backup_format = FORMAT_TAGGED
    elif len(parts) == 2:
        database_name, timestamp_str = parts
        tier = None
        backup_format = FORMAT_UNTAGGED
    else:
        raise FilenameParseError(
            f"Invalid backup filename '{base}': expected 2 or 3 parts separated by '{SEPARATOR}', got {len(parts)}"
        )

    if not database_name:
        raise FilenameParseError(f"Empty database name in backup filename '{base}'")

    return BackupFilenameComponents(
        database_name=database_name,
        timestamp=_parse_timestamp(timestamp_str, DATE_FORMAT, base),
        tier=tier,
        format=backup_format,
    )


def _parse_legacy(base: str) -> BackupFilenameComponents:
    stem = os.path.splitext(base)[0]
    parts = stem.split(LEGACY_SEPARATOR)

    if len(parts) < 3:
        raise FilenameParseError(
            f"Invalid legacy backup filename '{base}': expected at least 3 parts separated by "
            f"'{LEGACY_SEPARATOR}', got {len(parts)}"
        )

    # The database name may contain underscores; date and time are always the last two parts
    database_name = LEGACY_SEPARATOR.join(parts[:-2])
    if not database_name:
        raise FilenameParseError(f"Empty database name in backup filename '{base}'")

    timestamp_str = LEGACY_SEPARATOR.join(parts[-2:])
    return BackupFilenameComponents(
        database_name=database_name,
        timestamp=_parse_timestamp(timestamp_str, LEGACY_DATE_FORMAT, base),
        tier=None,
        format=FORMAT_LEGACY,
    )


def extract_date_from_filename(filename: str) -> datetime:
    """
    Return the UTC timestamp encoded in a backup filename.

    Raises:
        FilenameParseError: If the filename cannot be decoded
    """
    return parse_backup_filename(filename).timestamp


def validate_name_component(value: str, label: str):
    """
    Reject names that would make a generated filename ambiguous.

    Raises:
        ValueError: If value is empty, contains '--' or a path separator
    """
    if not value:
        raise ValueError(f"{label} must not be empty")
    if SEPARATOR in value:
        raise ValueError(f"{label} must not contain '{SEPARATOR}': {value!r}")
    if '/' in value or os.sep in value:
        raise ValueError(f"{label} must not contain a path separator: {value!r}")


def generate_backup_filename(db_name: str, timestamp: datetime, tier: Optional[str] = None,
                             backup_dir: str = '') -> str:
    """
    Build a backup filename in the current format.

    Args:
        db_name: Database name
        timestamp: Backup time (naive values are taken as UTC)
        tier: Retention tier; omitted for the untagged form
        backup_dir: Optional directory to prepend

    Returns:
        {db}--{tier}--{timestamp}.backup or {db}--{timestamp}.backup

    Raises:
        ValueError: If db_name or tier cannot be encoded unambiguously
    """
    validate_name_component(db_name, 'Database name')
    date_str = as_utc(timestamp).strftime(DATE_FORMAT)

    if tier:
        validate_name_component(tier, 'Tier')
        filename = f"{db_name}{SEPARATOR}{tier}{SEPARATOR}{date_str}{EXTENSION}"
    else:
        filename = f"{db_name}{SEPARATOR}{date_str}{EXTENSION}"

    if backup_dir:
        return os.path.join(backup_dir, filename)
    return filename


def backup_pattern(db_name: str) -> str:
    """Glob matching every backup that might belong to db_name."""
    return f"{db_name}*{EXTENSION}"


def tier_pattern(db_name: str, tier: str) -> str:
    """Glob matching tagged backups of one tier."""
    return f"{db_name}{SEPARATOR}{tier}{SEPARATOR}*{EXTENSION}"


def is_backup_for_database(filename: str, db_name: str) -> bool:
    """
    Check whether a backup filename belongs to exactly this database.

    backup_pattern('db') also matches 'db_test--...' and 'db2_...', so
    listings must be filtered with this before use.
    """
    base = os.path.basename(filename)
    if base.endswith(EXTENSION):
        base = base[:-len(EXTENSION)]

    if SEPARATOR in base:
        return base.split(SEPARATOR, 1)[0] == db_name

    parts = base.split(LEGACY_SEPARATOR)
    if len(parts) >= 3:
        return LEGACY_SEPARATOR.join(parts[:-2]) == db_name
    return False
