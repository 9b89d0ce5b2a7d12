"""
Unit tests for pg_dump invocation (pgbackuper/backup/dump.py).
"""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from pgbackuper.backup.dump import DumpError, PgDumpRunner


class TestPgDumpRunner:
    """Test command construction and error mapping."""

    def test_build_command(self):
        """Test custom format with blobs and verbose output."""
        command = PgDumpRunner().build_command('app', 'backup', 'db.local', 5433, '/tmp/out.backup.tmp')

        assert command == [
            'pg_dump', '-U', 'backup', '-h', 'db.local', '-p', '5433',
            '-F', 'c', '-b', '-v', '-f', '/tmp/out.backup.tmp', 'app',
        ]

    @patch('pgbackuper.backup.dump.subprocess.run')
    def test_dump_sets_pgpassfile(self, mock_run, tmp_path):
        """Test the password file is exported and output goes to the log file."""
        mock_run.return_value = MagicMock(returncode=0)
        log_path = tmp_path / 'logs' / 'app.log'

        PgDumpRunner().dump('app', 'backup', 'db', 5432, str(tmp_path / 'out'),
                            pgpass_path='/config/.pgpass', log_path=str(log_path))

        kwargs = mock_run.call_args[1]
        assert kwargs['env']['PGPASSFILE'] == '/config/.pgpass'
        assert kwargs['stderr'] == subprocess.STDOUT
        assert log_path.exists()

    @patch('pgbackuper.backup.dump.subprocess.run')
    def test_non_zero_exit(self, mock_run, tmp_path):
        mock_run.return_value = MagicMock(returncode=1)

        with pytest.raises(DumpError, match='exited with status 1'):
            PgDumpRunner().dump('app', 'backup', 'db', 5432, str(tmp_path / 'out'))

    @patch('pgbackuper.backup.dump.subprocess.run', side_effect=FileNotFoundError('pg_dump'))
    def test_missing_binary(self, mock_run, tmp_path):
        with pytest.raises(DumpError, match='not found'):
            PgDumpRunner(binary='/opt/pg/bin/pg_dump').dump('app', 'backup', 'db', 5432, str(tmp_path / 'out'))

    @patch('pgbackuper.backup.dump.subprocess.run', side_effect=subprocess.TimeoutExpired('pg_dump', 5))
    def test_timeout(self, mock_run, tmp_path):
        with pytest.raises(DumpError, match='timed out'):
            PgDumpRunner(timeout=5).dump('app', 'backup', 'db', 5432, str(tmp_path / 'out'))
