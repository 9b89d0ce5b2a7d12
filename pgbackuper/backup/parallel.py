"""
Run backups for every configured database with bounded concurrency.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from ..storage.registry import BackendRegistry, default_registry
from .config import BackupConfig, DatabaseConfig
from .dump import PgDumpRunner
from .executor import DatabaseResult, backup_database


logger = logging.getLogger(__name__)


def _cancelled_result(db: DatabaseConfig) -> DatabaseResult:
    return DatabaseResult(database=db.name, success=False, cancelled=True, error='cancelled before start')


def backup_all_databases(config: BackupConfig, timestamp: Optional[datetime] = None,
                         registry: Optional[BackendRegistry] = None,
                         dumper: Optional[PgDumpRunner] = None,
                         cancel_event: Optional[threading.Event] = None,
                         only: Optional[Iterable[str]] = None) -> List[DatabaseResult]:
    """
    Back up every enabled database.

    At most config.max_concurrent_backups databases run at once. When a
    database run fails, databases still waiting for a worker are reported
    as cancelled; runs already in progress finish normally. cancel_event is
    the caller's shutdown signal: it stops databases that have not started
    and is passed to running backups so their retry waits end early.

    Args:
        config: Backup configuration
        timestamp: Time recorded in backup names (default: now, UTC)
        registry: Backend registry shared by all runs
        dumper: Dump producer shared by all runs
        cancel_event: Shutdown flag set by the caller (e.g. on SIGTERM)
        only: Restrict the run to these database names

    Returns:
        One DatabaseResult per enabled database, in configuration order
    """
    timestamp = timestamp or datetime.now(timezone.utc)
    registry = registry or default_registry()
    dumper = dumper or PgDumpRunner()
    cancel_event = cancel_event or threading.Event()

    wanted = set(only) if only else None
    databases = []
    for db in config.databases:
        if wanted is not None and db.name not in wanted:
            continue
        if not db.enabled:
            logger.info(f"Skipping disabled database: {db.name}")
            continue
        databases.append(db)

    if not databases:
        logger.warning("No enabled databases to back up")
        return []

    max_workers = config.max_concurrent_backups
    logger.info(f"Starting backup of {len(databases)} database(s), max {max_workers} concurrent")
    started = time.monotonic()

    # Set by the first failed database; only checked before a database starts
    run_failed = threading.Event()

    def run(db: DatabaseConfig) -> DatabaseResult:
        if cancel_event.is_set() or run_failed.is_set():
            logger.info(f"Backup of {db.name} cancelled before start")
            return _cancelled_result(db)

        result = backup_database(config, db, timestamp=timestamp, registry=registry,
                                 dumper=dumper, cancel_event=cancel_event)
        if not result.success:
            logger.error(f"Backup failed for database {db.name}: {result.error}")
            run_failed.set()
        return result

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='backup') as pool:
        futures = [pool.submit(run, db) for db in databases]
    results = [future.result() for future in futures]

    succeeded = sum(1 for r in results if r.success and not r.skipped)
    skipped = sum(1 for r in results if r.skipped)
    failed = sum(1 for r in results if not r.success)
    logger.info(
        f"Backup run finished in {time.monotonic() - started:.1f}s: "
        f"{succeeded} succeeded, {skipped} skipped, {failed} failed"
    )

    return results


def any_failed(results: List[DatabaseResult]) -> bool:
    return any(not r.success for r in results)
