"""
Backup executor - runs one database's backup cycle.

Workflow:
1. Connect to the configured storage destinations
2. Work out which retention tiers are due
3. Check the .pgpass file
4. For each due tier: pg_dump to a temp file, upload to every destination
5. Rotate old backups on each destination (only if a tier succeeded)
6. Close destinations and remove temp files
"""

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ..rotation.filename import generate_backup_filename
from ..rotation.retention import apply_retention_with_backend
from ..rotation.tiers import DEFAULT_TIER
from ..storage.base import Backend, OperationResult, as_utc
from ..storage.errors import StorageError
from ..storage.multi import MultiUploader
from ..storage.registry import BackendRegistry, close_backends, default_registry
from .config import BackupConfig, DatabaseConfig
from .dump import DumpError, PgDumpRunner
from .pgpass import PgpassError, get_pgpass_path, validate_pgpass_permissions
from .schedule import TierSchedule, collect_backup_names, is_backup_due


logger = logging.getLogger(__name__)


@dataclass
class DatabaseResult:
    """Outcome of one database's backup cycle."""
    database: str
    success: bool = False
    skipped: bool = False
    cancelled: bool = False
    tiers_completed: List[str] = field(default_factory=list)
    tiers_failed: List[str] = field(default_factory=list)
    backend_results: Dict[str, List[OperationResult]] = field(default_factory=dict)
    error: Optional[str] = None
    duration: float = 0.0
    logs: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'database': self.database,
            'success': self.success,
            'skipped': self.skipped,
            'cancelled': self.cancelled,
            'tiers_completed': list(self.tiers_completed),
            'tiers_failed': list(self.tiers_failed),
            'backend_results': {
                tier: [r.to_dict() for r in results] for tier, results in self.backend_results.items()
            },
            'error': self.error,
            'duration': round(self.duration, 3),
        }


class BackupExecutor:
    """
    Orchestrates the complete backup workflow for one database.
    """

    def __init__(self, config: BackupConfig, database: DatabaseConfig,
                 registry: Optional[BackendRegistry] = None,
                 dumper: Optional[PgDumpRunner] = None,
                 cancel_event: Optional[threading.Event] = None):
        """
        Initialize backup executor.

        Args:
            config: Full backup configuration
            database: Database to back up
            registry: Backend registry (default_registry() if None)
            dumper: Dump producer (PgDumpRunner() if None)
            cancel_event: Shared cancellation flag for upload retries
        """
        self.config = config
        self.database = database
        self.registry = registry or default_registry()
        self.dumper = dumper or PgDumpRunner()
        self.cancel_event = cancel_event or threading.Event()
        self.backends: List[Backend] = []
        self.logs: List[str] = []
        self.schedule: Optional[TierSchedule] = None

    def execute(self, timestamp: Optional[datetime] = None, tiers: Optional[List[str]] = None) -> DatabaseResult:
        """
        Execute the backup cycle.

        Args:
            timestamp: Time recorded in backup names (default: now, UTC)
            tiers: Force these tiers instead of asking the scheduler

        Returns:
            DatabaseResult; errors are recorded in it rather than raised
        """
        started = time.monotonic()
        timestamp = as_utc(timestamp or datetime.now(timezone.utc)).replace(microsecond=0)
        result = DatabaseResult(database=self.database.name)

        self._log(f"Starting backup cycle for {self.database.name}")

        try:
            self._execute_workflow(timestamp, tiers, result)
        except (StorageError, PgpassError, OSError, ValueError) as e:
            result.success = False
            result.error = str(e)
            self._log(f"Backup failed: {e}", level=logging.ERROR)
        finally:
            close_backends(self.backends)
            self.backends = []
            result.duration = time.monotonic() - started
            result.logs = list(self.logs)

        return result

    def _execute_workflow(self, timestamp: datetime, tiers: Optional[List[str]], result: DatabaseResult):
        db = self.database
        retention_tiers = db.effective_retention_tiers(self.config.global_defaults)

        destinations = self.config.destinations_for(db)
        if not destinations:
            raise StorageError(f"No enabled storage destinations configured for database {db.name}")

        self.backends = self.registry.create_all(destinations)
        self._log(f"Initialized {len(self.backends)} storage backend(s): "
                  f"{', '.join(b.name for b in self.backends)}")

        due_tiers = tiers or self._due_tiers(retention_tiers, timestamp)
        if not due_tiers:
            result.skipped = True
            result.success = True
            self._log("No tiers due, skipping backup")
            return

        self._log(f"Due tiers: {', '.join(due_tiers)}")

        pgpass_path = get_pgpass_path(self.config.global_defaults.pgpass_file)
        validate_pgpass_permissions(pgpass_path)
        self._log(f"Using pgpass file {pgpass_path}", level=logging.DEBUG)

        temp_dir = self.config.temp_dir()
        os.makedirs(temp_dir, exist_ok=True)

        uploader = MultiUploader(self.backends)
        for tier in due_tiers:
            if self._backup_tier(tier, timestamp, temp_dir, pgpass_path, uploader, result):
                result.tiers_completed.append(tier)
            else:
                result.tiers_failed.append(tier)

        if result.tiers_failed:
            result.error = f"{len(result.tiers_failed)} of {len(due_tiers)} tier backups failed"
            self._log(f"Backup completed with failures (completed: {result.tiers_completed}, "
                      f"failed: {result.tiers_failed})", level=logging.ERROR)
        else:
            result.success = True
            self._log(f"All tier backups completed: {', '.join(result.tiers_completed)}")

        if not result.tiers_completed:
            self._log("Skipping rotation - no successful backups created", level=logging.WARNING)
            return
        if not retention_tiers:
            self._log("No retention tiers configured, skipping rotation", level=logging.WARNING)
            return

        self._rotate(retention_tiers, timestamp)

    def _due_tiers(self, retention_tiers, timestamp: datetime) -> List[str]:
        _, self.schedule = is_backup_due(
            self.database.name,
            retention_tiers,
            lambda: collect_backup_names(self.backends, self.database.name),
            timestamp,
        )
        return list(self.schedule.due_tiers)

    def _backup_tier(self, tier: str, timestamp: datetime, temp_dir: str, pgpass_path: str,
                     uploader: MultiUploader, result: DatabaseResult) -> bool:
        """
        Dump and upload one tier.

        Returns:
            True if at least one destination accepted the backup
        """
        db = self.database
        filename = generate_backup_filename(db.name, timestamp, None if tier == DEFAULT_TIER else tier)
        temp_file = os.path.join(temp_dir, filename + '.tmp')
        log_path = os.path.join(temp_dir, 'logs', filename[:-len('.backup')] + '.log')

        self._log(f"[{tier}] Creating backup {filename}")

        try:
            self.dumper.dump(
                database=db.name,
                user=db.user,
                host=db.host,
                port=db.effective_port(self.config.global_defaults),
                output_path=temp_file,
                pgpass_path=pgpass_path,
                log_path=log_path,
            )
        except DumpError as e:
            self._log(f"[{tier}] Dump failed: {e}", level=logging.ERROR)
            self._remove(temp_file)
            return False

        try:
            size = os.path.getsize(temp_file)
        except OSError:
            self._log(f"[{tier}] Backup file not found after pg_dump: {temp_file}", level=logging.ERROR)
            return False

        if size == 0:
            self._log(f"[{tier}] Backup file is empty (0 bytes)", level=logging.ERROR)
            self._remove(temp_file)
            return False

        self._log(f"[{tier}] Backup created ({size / 1024 / 1024:.2f} MB), uploading to "
                  f"{len(self.backends)} destination(s)")

        try:
            upload_results = uploader.upload(temp_file, filename, self.cancel_event)
        finally:
            self._remove(temp_file)

        result.backend_results[tier] = upload_results
        for upload in upload_results:
            status = 'ok' if upload.success else f"failed: {upload.error}"
            self._log(f"[{tier}] {upload.backend_name} ({upload.backend_type}): {status} "
                      f"in {upload.duration:.2f}s")

        if not any(upload.success for upload in upload_results):
            self._log(f"[{tier}] All destinations failed to store the backup", level=logging.ERROR)
            return False

        return True

    def _rotate(self, retention_tiers, timestamp: datetime):
        self._log(f"Applying retention policy on {len(self.backends)} backend(s)")
        for backend in self.backends:
            try:
                rotation = apply_retention_with_backend(backend, self.database.name, retention_tiers, now=timestamp)
            except Exception as e:
                self._log(f"Rotation failed on {backend.name}: {e}", level=logging.ERROR)
                continue
            if rotation.deleted or rotation.failed:
                self._log(f"Rotation on {backend.name}: deleted {len(rotation.deleted)}, "
                          f"failed {len(rotation.failed)}")

    def _remove(self, path: str):
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            self._log(f"Warning: failed to remove temp file {path}: {e}", level=logging.WARNING)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        stamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{stamp}] {message}")
        logger.log(level, f"{self.database.name}: {message}")


def backup_database(config: BackupConfig, database: DatabaseConfig, timestamp: Optional[datetime] = None,
                    registry: Optional[BackendRegistry] = None, dumper: Optional[PgDumpRunner] = None,
                    cancel_event: Optional[threading.Event] = None,
                    tiers: Optional[List[str]] = None) -> DatabaseResult:
    """
    Run one database's backup cycle.

    Returns:
        DatabaseResult
    """
    executor = BackupExecutor(config, database, registry=registry, dumper=dumper, cancel_event=cancel_event)
    return executor.execute(timestamp=timestamp, tiers=tiers)
