"""
APScheduler integration for pg-backuper.

Manages:
- The recurring backup run (cron expression from BACKUP_SCHEDULE_CRON)
- Manual "run now" triggers
- Scheduler diagnostics for the status API

Each run checks every database's tiers, so the cron expression only sets
how often the check happens; a run where nothing is due just skips.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.pool import ThreadPoolExecutor

from .backup.config import ConfigError, load_config
from .backup.parallel import backup_all_databases
from .history import RunRecord, run_history
from .storage.registry import default_registry


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'backup_run'

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None

# Set on shutdown; also forwarded to the run in progress
cancel_event = threading.Event()

_run_lock = threading.Lock()
_active_run_event = None


def init_scheduler(app):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance

    Returns:
        BackgroundScheduler instance
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    flask_app = app

    jobstores = {
        'default': MemoryJobStore()
    }

    executors = {
        'default': ThreadPoolExecutor(max_workers=2)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone=app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    )

    cron = app.config.get('BACKUP_SCHEDULE_CRON', '0 * * * *')
    try:
        trigger = CronTrigger.from_crontab(cron, timezone='UTC')
    except ValueError as e:
        scheduler = None
        flask_app = None
        raise ValueError(f"Invalid BACKUP_SCHEDULE_CRON '{cron}': {e}") from e

    scheduler.add_job(
        func=_run_backups_wrapper,
        args=['scheduled'],
        trigger=trigger,
        id=BACKUP_JOB_ID,
        name='Scheduled backup run',
        replace_existing=True
    )

    logger.info(f"Backup run scheduled with cron '{cron}'")
    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after init_scheduler().
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if scheduler.running:
        logger.info(f"Scheduler already running (state={scheduler.state})")
        return

    cancel_event.clear()
    scheduler.start()
    logger.info(f"APScheduler started (state={scheduler.state})")

    for job in scheduler.get_jobs():
        next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
        logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")


def stop_scheduler():
    """Stop the APScheduler and ask in-flight runs to wind down."""
    global scheduler

    cancel_event.set()
    run_event = _active_run_event
    if run_event is not None:
        run_event.set()
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("APScheduler stopped")


def run_backups(trigger: str = 'manual', config_file: Optional[str] = None) -> Optional[RunRecord]:
    """
    Run one backup cycle over all databases and record it in the run history.

    Only one cycle runs at a time; a call made while another is in
    progress returns None.

    Args:
        trigger: Label stored with the run ('scheduled', 'manual', ...)
        config_file: Configuration path (default: the Flask app's BACKUP_CONFIG_FILE)

    Returns:
        RunRecord, or None if a run was already in progress
    """
    global _active_run_event

    if not _run_lock.acquire(blocking=False):
        logger.warning(f"Backup run ({trigger}) skipped: another run is in progress")
        return None

    # Per-run shutdown flag; stop_scheduler() sets it while this run is active
    run_event = threading.Event()
    if cancel_event.is_set():
        run_event.set()
    _active_run_event = run_event

    try:
        if config_file is None and flask_app is not None:
            config_file = flask_app.config.get('BACKUP_CONFIG_FILE')

        record = run_history.start(trigger)
        logger.info(f"Starting {trigger} backup run #{record.id}")

        try:
            config = load_config(config_file)
        except ConfigError as e:
            logger.error(f"Backup run #{record.id} aborted: {e}")
            run_history.finish(record, [], error=str(e))
            return record

        results = backup_all_databases(
            config,
            timestamp=datetime.now(timezone.utc),
            registry=default_registry(),
            cancel_event=run_event,
        )
        run_history.finish(record, results)
        logger.info(f"Backup run #{record.id} finished with status {record.status}")
        return record
    finally:
        _active_run_event = None
        _run_lock.release()


def _run_backups_wrapper(trigger: str):
    """Entry point used by APScheduler jobs."""
    try:
        run_backups(trigger)
    except Exception as e:
        logger.exception(f"Backup run ({trigger}) crashed: {e}")


def is_run_in_progress() -> bool:
    return _run_lock.locked()


def trigger_backup_now() -> str:
    """
    Queue a backup run to start immediately.

    Returns:
        ID of the one-off scheduler job

    Raises:
        RuntimeError: If the scheduler is not initialized
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    now = datetime.now(timezone.utc)
    job_id = f"manual_{int(now.timestamp())}"

    # Small delay avoids racing the scheduler's own wakeup
    scheduler.add_job(
        func=_run_backups_wrapper,
        args=['manual'],
        trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
        id=job_id,
        name='Manual backup run',
        replace_existing=True
    )

    logger.info(f"Manual backup run queued: {job_id}")
    return job_id


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    global scheduler

    if scheduler is None:
        return []

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
            'trigger': str(job.trigger)
        })

    return jobs


def is_scheduler_running() -> bool:
    return scheduler is not None and bool(scheduler.running)


def get_scheduler_diagnostics() -> dict:
    """
    Get scheduler state for troubleshooting.

    Returns:
        Dict with scheduler state, jobs and whether a run is in progress
    """
    global scheduler

    if scheduler is None:
        return {
            'initialized': False,
            'running': False,
            'state': 'NOT_INITIALIZED',
            'run_in_progress': is_run_in_progress(),
        }

    jobs = get_scheduled_jobs()
    return {
        'initialized': True,
        'running': bool(scheduler.running),
        'state': str(scheduler.state),
        'job_count': len(jobs),
        'jobs': jobs,
        'run_in_progress': is_run_in_progress(),
    }
