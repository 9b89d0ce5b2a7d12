"""
Shared pytest fixtures for pg-backuper tests.

This module provides fixtures for:
- Flask app and test client
- Backup configuration files and .pgpass files
- An in-memory storage backend and a fake pg_dump
- Mock fixtures for external services (S3, SSH, APScheduler)
"""

import json
import os
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional
from unittest.mock import MagicMock, patch

import pytest
import boto3
from moto import mock_aws

from pgbackuper import create_app
from pgbackuper.history import run_history
from pgbackuper.storage.base import Backend, FileEntry, match_glob, sort_newest_first
from pgbackuper.storage.errors import NotFoundError
from pgbackuper.storage.registry import BackendRegistry


class MemoryBackend(Backend):
    """
    Backend keeping files in a dict, for tests.

    Attributes:
        files: path -> (size, mod_time)
        fail_write / fail_list / fail_delete: exception to raise from that operation
        write_delay: seconds each write sleeps (for parallelism tests)
    """

    backend_type = 'memory'

    def __init__(self, name: str = 'memory', files: Optional[Dict[str, tuple]] = None):
        super().__init__(name)
        self.files = dict(files or {})
        self.fail_write: Optional[Exception] = None
        self.fail_list: Optional[Exception] = None
        self.fail_delete: Dict[str, Exception] = {}
        self.write_delay = 0.0
        self.deleted: List[str] = []
        self.list_calls: List[str] = []
        self.closed = False
        self._lock = threading.Lock()

    def add(self, path: str, mod_time: Optional[datetime] = None, size: int = 100):
        self.files[path] = (size, mod_time or datetime.now(timezone.utc))

    def write(self, source_path, dest_path, cancel_event=None):
        if self.write_delay:
            threading.Event().wait(self.write_delay)
        if self.fail_write is not None:
            raise self.fail_write
        size = os.path.getsize(source_path)
        with self._lock:
            self.files[dest_path] = (size, datetime.now(timezone.utc))

    def delete(self, path):
        if path in self.fail_delete:
            raise self.fail_delete[path]
        with self._lock:
            if path not in self.files:
                raise NotFoundError(f"delete ({self.name}): {path} not found")
            del self.files[path]
            self.deleted.append(path)

    def list_files(self, pattern):
        self.list_calls.append(pattern)
        if self.fail_list is not None:
            raise self.fail_list
        with self._lock:
            entries = [
                FileEntry(path=path, size=size, mod_time=mod_time)
                for path, (size, mod_time) in self.files.items()
                if size > 0 and match_glob(path, pattern)
            ]
        return sort_newest_first(entries)

    def stat(self, path):
        with self._lock:
            if path not in self.files:
                raise NotFoundError(f"stat ({self.name}): {path} not found")
            size, mod_time = self.files[path]
        return FileEntry(path=path, size=size, mod_time=mod_time)

    def close(self):
        self.closed = True


class FakeDumper:
    """Stands in for PgDumpRunner; writes `content` to the output path."""

    def __init__(self, content: bytes = b'PGDMP fake dump data', error: Optional[Exception] = None):
        self.content = content
        self.error = error
        self.calls = []

    def dump(self, database, user, host, port, output_path, pgpass_path=None, log_path=None):
        self.calls.append({
            'database': database,
            'user': user,
            'host': host,
            'port': port,
            'output_path': output_path,
            'pgpass_path': pgpass_path,
        })
        if self.error is not None:
            raise self.error
        with open(output_path, 'wb') as f:
            f.write(self.content)


@pytest.fixture
def memory_backend():
    """An empty MemoryBackend named 'memory'."""
    return MemoryBackend('memory')


@pytest.fixture
def memory_registry():
    """
    Registry whose backends are MemoryBackends, shared by name.

    Yields (registry, backends) where backends maps destination name to the
    MemoryBackend instance handed out for it.
    """
    backends: Dict[str, MemoryBackend] = {}

    def create(config):
        if config.name not in backends:
            backends[config.name] = MemoryBackend(config.name)
        return backends[config.name]

    registry = BackendRegistry()
    for kind in ('local', 's3', 'backblaze', 'ssh'):
        registry.register(kind, create)

    return registry, backends


@pytest.fixture
def fake_dumper():
    return FakeDumper()


@pytest.fixture
def pgpass_file(tmp_path):
    """A .pgpass file with mode 0600."""
    path = tmp_path / '.pgpass'
    path.write_text('db.example.com:5432:*:backup:secret\n')
    os.chmod(path, 0o600)
    return str(path)


@pytest.fixture
def config_data(tmp_path, pgpass_file):
    """Minimal valid configuration using a local backup directory."""
    return {
        'backup_dir': str(tmp_path / 'backups'),
        'global_defaults': {
            'port': 5432,
            'pgpass_file': pgpass_file,
            'retention_tiers': [
                {'tier': 'hourly', 'retention': 24},
                {'tier': 'daily', 'retention': 7},
            ],
        },
        'storage': {
            'temp_dir': str(tmp_path / 'tmp'),
        },
        'databases': [
            {'name': 'app_db', 'user': 'backup', 'host': 'db.example.com'},
            {'name': 'analytics', 'user': 'backup', 'host': 'db.example.com', 'port': 5433},
        ],
    }


@pytest.fixture
def config_file(tmp_path, config_data):
    """config_data written to a JSON file."""
    path = tmp_path / 'config.json'
    path.write_text(json.dumps(config_data))
    return str(path)


@pytest.fixture(scope='function')
def app(config_file):
    """
    Create Flask app with test configuration.

    The scheduler is disabled; the backup configuration points at config_file.
    """
    app = create_app('testing', config_file=config_file)

    yield app

    run_history.clear()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.client('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')

        yield s3


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient for SSH/SFTP testing.

    Yields the mocked SFTP client.
    """
    with patch('pgbackuper.storage.ssh.SSHClient') as mock_ssh:
        mock_sftp = MagicMock()
        mock_ssh.return_value.open_sftp.return_value = mock_sftp
        mock_ssh.return_value.connect.return_value = None

        yield mock_sftp


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    from pgbackuper import scheduler as scheduler_module

    with patch('pgbackuper.scheduler.BackgroundScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        scheduler_instance.running = False
        scheduler_instance.state = 0
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance

    scheduler_module.scheduler = None
    scheduler_module.flask_app = None
    scheduler_module.cancel_event.clear()


@pytest.fixture
def make_backend():
    """Factory for MemoryBackends: make_backend(name, files=None)."""
    return MemoryBackend


@pytest.fixture
def make_dumper():
    """Factory for FakeDumpers: make_dumper(content=..., error=None)."""
    return FakeDumper
