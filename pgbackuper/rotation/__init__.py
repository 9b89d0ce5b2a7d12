"""
Backup naming and rotation.

This module handles:
- Backup filename generation and parsing
- Retention tiers and age classification
- Tag-based and age-based retention enforcement
"""

from .tiers import (
    HOURLY,
    DAILY,
    WEEKLY,
    MONTHLY,
    QUARTERLY,
    YEARLY,
    DEFAULT_TIER,
    TIER_ORDER,
    TIER_INTERVALS,
    RetentionTier,
    categorize_tier,
)
from .filename import (
    BackupFilenameComponents,
    FilenameParseError,
    parse_backup_filename,
    extract_date_from_filename,
    generate_backup_filename,
    backup_pattern,
    tier_pattern,
    is_backup_for_database,
)
from .retention import (
    BackupFile,
    RotationResult,
    apply_retention,
    apply_retention_with_backend,
    delete_files,
    rotate_backups,
)

__all__ = [
    'HOURLY',
    'DAILY',
    'WEEKLY',
    'MONTHLY',
    'QUARTERLY',
    'YEARLY',
    'DEFAULT_TIER',
    'TIER_ORDER',
    'TIER_INTERVALS',
    'RetentionTier',
    'categorize_tier',
    'BackupFilenameComponents',
    'FilenameParseError',
    'parse_backup_filename',
    'extract_date_from_filename',
    'generate_backup_filename',
    'backup_pattern',
    'tier_pattern',
    'is_backup_for_database',
    'BackupFile',
    'RotationResult',
    'apply_retention',
    'apply_retention_with_backend',
    'delete_files',
    'rotate_backups',
]
