"""
Backup module for pg-backuper.

This module handles the database-facing side of a backup run:
- Configuration loading and validation
- .pgpass checks
- pg_dump invocation
- Tier scheduling
- Per-database execution and the parallel runner
"""

from .config import BackupConfig, DatabaseConfig, ConfigError, load_config, parse_config
from .dump import PgDumpRunner, DumpError
from .executor import BackupExecutor, DatabaseResult, backup_database
from .parallel import backup_all_databases, any_failed
from .schedule import TierSchedule, compute_tier_schedule, database_schedule, is_backup_due

__all__ = [
    'BackupConfig',
    'DatabaseConfig',
    'ConfigError',
    'load_config',
    'parse_config',
    'PgDumpRunner',
    'DumpError',
    'BackupExecutor',
    'DatabaseResult',
    'backup_database',
    'backup_all_databases',
    'any_failed',
    'TierSchedule',
    'compute_tier_schedule',
    'database_schedule',
    'is_backup_due',
]
