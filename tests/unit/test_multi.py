"""
Unit tests for concurrent multi-backend operations (pgbackuper/storage/multi.py).
"""

import time

import pytest

from pgbackuper.storage.errors import ConnectionFailedError, NotFoundError
from pgbackuper.storage.multi import MultiUploader, failed, successful


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / 'dump.tmp'
    path.write_bytes(b'PGDMP data')
    return str(path)


class TestMultiUploader:
    """Test fan-out uploads and deletes."""

    def test_partial_failure_aggregation(self, make_backend, source_file):
        """Test one failing backend does not affect the others."""
        backends = [make_backend('first'), make_backend('second'), make_backend('third')]
        backends[1].fail_write = ConnectionFailedError('upload (second): refused')

        results = MultiUploader(backends).upload(source_file, 'app--2024-01-01T00-00-00.backup')

        assert [r.backend_name for r in results] == ['first', 'second', 'third']
        assert [r.success for r in results] == [True, False, True]
        assert isinstance(results[1].error, ConnectionFailedError)
        assert 'app--2024-01-01T00-00-00.backup' in backends[0].files
        assert 'app--2024-01-01T00-00-00.backup' in backends[2].files
        assert [r.backend_name for r in successful(results)] == ['first', 'third']
        assert [r.backend_name for r in failed(results)] == ['second']

    def test_uploads_run_in_parallel(self, make_backend, source_file):
        """Test slow backends are written concurrently, not one after another."""
        backends = [make_backend(f'slow{i}') for i in range(3)]
        for backend in backends:
            backend.write_delay = 0.3

        started = time.monotonic()
        results = MultiUploader(backends).upload(source_file, 'a.backup')
        elapsed = time.monotonic() - started

        assert all(r.success for r in results)
        assert elapsed < 0.6
        assert all(r.duration >= 0.25 for r in results)

    def test_delete_fan_out(self, make_backend):
        first = make_backend('first')
        second = make_backend('second')
        first.add('a.backup')

        results = MultiUploader([first, second]).delete('a.backup')

        assert results[0].success is True
        assert results[1].success is False
        assert isinstance(results[1].error, NotFoundError)

    def test_no_backends(self, source_file):
        assert MultiUploader([]).upload(source_file, 'a.backup') == []

    def test_result_to_dict(self, make_backend, source_file):
        backend = make_backend('only')
        backend.fail_write = ConnectionFailedError('refused')

        data = MultiUploader([backend]).upload(source_file, 'a.backup')[0].to_dict()

        assert data['backend_name'] == 'only'
        assert data['backend_type'] == 'memory'
        assert data['success'] is False
        assert data['error'] == 'refused'
