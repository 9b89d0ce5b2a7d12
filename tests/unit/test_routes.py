"""
Unit tests for the HTTP API (pgbackuper/routes/status_routes.py).
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from pgbackuper import scheduler as scheduler_module
from pgbackuper.backup.executor import DatabaseResult
from pgbackuper.backup.schedule import TierSchedule
from pgbackuper.history import run_history


class TestHealth:
    """Test the health endpoint."""

    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json() == {'status': 'healthy'}


class TestStatus:
    """Test GET /api/status."""

    def test_status(self, client):
        """Test the overview lists databases and scheduler state."""
        response = client.get('/api/status')

        assert response.status_code == 200
        data = response.get_json()
        assert data['config_valid'] is True
        assert data['config_error'] is None
        assert data['databases'] == [
            {'name': 'app_db', 'enabled': True},
            {'name': 'analytics', 'enabled': True},
        ]
        assert data['scheduler']['initialized'] is False
        assert data['last_run'] is None

    def test_status_with_invalid_config(self, app, client, tmp_path):
        path = tmp_path / 'broken.json'
        path.write_text('{"databases": []}')
        app.config['BACKUP_CONFIG_FILE'] = str(path)

        data = client.get('/api/status').get_json()

        assert data['config_valid'] is False
        assert 'backup_dir' in data['config_error']
        assert data['databases'] == []

    def test_status_includes_last_run(self, client):
        record = run_history.start('manual')
        run_history.finish(record, [DatabaseResult(database='app_db', success=True)])

        data = client.get('/api/status').get_json()

        assert data['last_run']['id'] == record.id
        assert data['last_run']['status'] == 'success'


class TestRuns:
    """Test the run history endpoints."""

    def _record(self, database='app_db', success=True):
        record = run_history.start('scheduled')
        result = DatabaseResult(database=database, success=success, logs=['[ts] Starting backup cycle'])
        run_history.finish(record, [result])
        return record

    def test_list_runs(self, client):
        """Test runs are listed newest first."""
        first = self._record()
        second = self._record(success=False)

        data = client.get('/api/runs').get_json()

        assert data['count'] == 2
        assert [run['id'] for run in data['runs']] == [second.id, first.id]
        assert data['runs'][0]['status'] == 'failed'
        assert 'logs' not in data['runs'][0]['databases'][0]

    def test_list_runs_limit(self, client):
        for _ in range(3):
            self._record()

        assert client.get('/api/runs?limit=2').get_json()['count'] == 2
        assert client.get('/api/runs?limit=0').get_json()['count'] == 1

    def test_get_run(self, client):
        """Test a single run includes per-database logs."""
        record = self._record()

        response = client.get(f'/api/runs/{record.id}')

        assert response.status_code == 200
        data = response.get_json()
        assert data['trigger'] == 'scheduled'
        assert data['databases'][0]['logs'] == ['[ts] Starting backup cycle']

    def test_get_run_not_found(self, client):
        response = client.get('/api/runs/9999')

        assert response.status_code == 404

    def test_start_run_scheduler_not_running(self, client):
        response = client.post('/api/runs')

        assert response.status_code == 503
        assert response.get_json()['error'] == 'Scheduler is not running'

    def test_start_run(self, client, mock_scheduler):
        """Test a manual run is queued when the scheduler is running."""
        mock_scheduler.running = True
        scheduler_module.scheduler = mock_scheduler

        response = client.post('/api/runs')

        assert response.status_code == 202
        assert response.get_json()['job_id'].startswith('manual_')
        mock_scheduler.add_job.assert_called_once()

    def test_start_run_in_progress(self, client, mock_scheduler):
        mock_scheduler.running = True
        scheduler_module.scheduler = mock_scheduler

        scheduler_module._run_lock.acquire()
        try:
            response = client.post('/api/runs')
        finally:
            scheduler_module._run_lock.release()

        assert response.status_code == 409
        mock_scheduler.add_job.assert_not_called()


class TestDatabaseSchedule:
    """Test GET /api/databases/<name>/schedule."""

    def test_unknown_database(self, client):
        response = client.get('/api/databases/missing/schedule')

        assert response.status_code == 404

    @patch('pgbackuper.routes.status_routes.database_schedule')
    def test_schedule(self, mock_schedule, client):
        """Test the schedule reports due tiers and the next due time."""
        latest = datetime(2024, 6, 1, 11, 30, tzinfo=timezone.utc)
        mock_schedule.return_value = (False, TierSchedule(
            due_tiers=[],
            next_due={
                'hourly': datetime(2024, 6, 1, 12, 30, tzinfo=timezone.utc),
                'daily': datetime(2024, 6, 2, 11, 30, tzinfo=timezone.utc),
            },
            latest={'hourly': latest, 'daily': latest},
        ))

        response = client.get('/api/databases/app_db/schedule')

        assert response.status_code == 200
        data = response.get_json()
        assert data['database'] == 'app_db'
        assert data['due'] is False
        assert data['due_tiers'] == []
        assert data['next_run'] == '2024-06-01T12:30:00+00:00'
        assert data['latest']['hourly'] == '2024-06-01T11:30:00+00:00'

    def test_schedule_with_empty_storage(self, client):
        """Test a database without backups has every tier due."""
        response = client.get('/api/databases/analytics/schedule')

        assert response.status_code == 200
        data = response.get_json()
        assert data['due'] is True
        assert data['due_tiers'] == ['hourly', 'daily']

    def test_schedule_invalid_config(self, app, client, tmp_path):
        path = tmp_path / 'broken.json'
        path.write_text('not json')
        app.config['BACKUP_CONFIG_FILE'] = str(path)

        response = client.get('/api/databases/app_db/schedule')

        assert response.status_code == 500
        assert 'not valid JSON' in response.get_json()['error']
