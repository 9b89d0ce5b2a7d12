"""
Status routes - Run history, manual triggers and per-database schedules.
"""

from flask import Blueprint, jsonify, request, current_app

from pgbackuper.backup.config import ConfigError, load_config
from pgbackuper.backup.schedule import database_schedule, next_run_after
from pgbackuper.history import run_history
from pgbackuper.scheduler import (
    get_scheduler_diagnostics, is_run_in_progress, is_scheduler_running, trigger_backup_now,
)


bp = Blueprint('status', __name__, url_prefix='/api')


def _load_backup_config():
    return load_config(current_app.config.get('BACKUP_CONFIG_FILE'))


@bp.route('/status', methods=['GET'])
def get_status():
    """
    Get service overview.

    Returns:
        JSON with:
        - scheduler: scheduler diagnostics
        - config_valid / config_error: whether the backup configuration loads
        - databases: configured database names
        - last_run: most recent run summary (without logs)
    """
    config_error = None
    databases = []
    try:
        backup_config = _load_backup_config()
        databases = [{'name': db.name, 'enabled': db.enabled} for db in backup_config.databases]
    except ConfigError as e:
        config_error = str(e)

    last_run = run_history.latest()

    return jsonify({
        'scheduler': get_scheduler_diagnostics(),
        'config_valid': config_error is None,
        'config_error': config_error,
        'databases': databases,
        'last_run': last_run.to_dict() if last_run else None,
    })


@bp.route('/runs', methods=['GET'])
def list_runs():
    """
    Get recent backup runs, newest first.

    Query params:
        - limit: Max number of runs (default: 10, max: 100)
    """
    limit = request.args.get('limit', 10, type=int)

    # Enforce limits
    if limit > 100:
        limit = 100
    if limit < 1:
        limit = 1

    runs = [record.to_dict() for record in run_history.recent(limit)]
    return jsonify({'runs': runs, 'count': len(runs)})


@bp.route('/runs', methods=['POST'])
def start_run():
    """
    Queue a backup run now.

    Returns:
        202 with the scheduler job ID, 409 if a run is in progress,
        503 if the scheduler is not running
    """
    if not is_scheduler_running():
        return jsonify({'error': 'Scheduler is not running'}), 503

    if is_run_in_progress():
        return jsonify({'error': 'A backup run is already in progress'}), 409

    job_id = trigger_backup_now()
    return jsonify({'message': 'Backup run queued', 'job_id': job_id}), 202


@bp.route('/runs/<int:run_id>', methods=['GET'])
def get_run(run_id):
    """Get one run including per-database logs."""
    record = run_history.get(run_id)
    if record is None:
        return jsonify({'error': 'Run not found'}), 404

    return jsonify(record.to_dict(include_logs=True))


@bp.route('/databases/<name>/schedule', methods=['GET'])
def get_database_schedule(name):
    """
    Get which tiers of a database are due and when each is next due.

    Lists existing backups on the database's destinations, so this can be
    slow for remote storage.
    """
    try:
        backup_config = _load_backup_config()
    except ConfigError as e:
        return jsonify({'error': str(e)}), 500

    db = backup_config.get_database(name)
    if db is None:
        return jsonify({'error': f'Unknown database: {name}'}), 404

    due, schedule = database_schedule(backup_config, db)
    next_run = next_run_after(schedule)

    return jsonify({
        'database': db.name,
        'enabled': db.enabled,
        'due': due,
        'next_run': next_run.isoformat() if next_run else None,
        **schedule.to_dict(),
    })
