"""
Unit tests for the local filesystem backend (pgbackuper/storage/local.py).
"""

import os
from datetime import datetime, timezone

import pytest

from pgbackuper.storage.base import BackendConfig
from pgbackuper.storage.errors import InvalidConfigError, NotFoundError, PermissionDeniedError
from pgbackuper.storage.local import LocalBackend


@pytest.fixture
def backend(tmp_path):
    return LocalBackend('local', str(tmp_path / 'store'))


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / 'dump.tmp'
    path.write_bytes(b'PGDMP' + b'x' * 1000)
    return str(path)


class TestLocalBackend:
    """Test LocalBackend operations."""

    def test_creates_base_directory(self, tmp_path):
        """Test the storage root is created on construction."""
        LocalBackend('local', str(tmp_path / 'a' / 'b'))
        assert (tmp_path / 'a' / 'b').is_dir()

    def test_empty_path_rejected(self):
        """Test an empty path is a configuration error."""
        with pytest.raises(InvalidConfigError):
            LocalBackend('local', '')

    def test_from_config_uses_path_option(self, tmp_path):
        config = BackendConfig(name='nas', type='local', options={'path': str(tmp_path / 'nas')})
        backend = LocalBackend.from_config(config)
        assert backend.name == 'nas'
        assert backend.type == 'local'
        assert backend.base_path == (tmp_path / 'nas').resolve()

    def test_from_config_falls_back_to_base_dir(self, tmp_path):
        config = BackendConfig(name='nas', type='local', base_dir=str(tmp_path / 'base'))
        assert LocalBackend.from_config(config).base_path == (tmp_path / 'base').resolve()

    def test_write_and_stat(self, backend, source_file):
        """Test a written file can be stat'ed with its size."""
        backend.write(source_file, 'app--2024-01-01T00-00-00.backup')

        entry = backend.stat('app--2024-01-01T00-00-00.backup')

        assert entry.size == 1005
        assert entry.mod_time.tzinfo == timezone.utc

    def test_write_into_subdirectory(self, backend, source_file):
        backend.write(source_file, 'nested/app--2024-01-01T00-00-00.backup')
        assert os.path.isfile(backend.get_full_path('nested/app--2024-01-01T00-00-00.backup'))

    def test_write_leaves_no_temp_files(self, backend, source_file):
        """Test the temporary file is renamed into place."""
        backend.write(source_file, 'app--2024-01-01T00-00-00.backup')
        assert os.listdir(backend.base_path) == ['app--2024-01-01T00-00-00.backup']

    def test_write_missing_source(self, backend, tmp_path):
        with pytest.raises(NotFoundError):
            backend.write(str(tmp_path / 'missing'), 'x.backup')

    def test_write_outside_root_rejected(self, backend, source_file):
        """Test paths escaping the storage root are refused."""
        with pytest.raises(PermissionDeniedError):
            backend.write(source_file, '../escape.backup')

    def test_delete(self, backend, source_file):
        backend.write(source_file, 'a.backup')
        backend.delete('a.backup')
        assert not backend.exists('a.backup')

    def test_delete_missing(self, backend):
        """Test deleting a missing file raises NotFoundError."""
        with pytest.raises(NotFoundError):
            backend.delete('missing.backup')

    def test_stat_missing(self, backend):
        with pytest.raises(NotFoundError):
            backend.stat('missing.backup')

    def test_exists(self, backend, source_file):
        """Test exists returns False rather than raising for missing files."""
        assert backend.exists('a.backup') is False
        backend.write(source_file, 'a.backup')
        assert backend.exists('a.backup') is True

    def test_list_excludes_zero_byte_files(self, backend, source_file):
        """Test empty files are never listed."""
        backend.write(source_file, 'app--2024-01-01T00-00-00.backup')
        (backend.base_path / 'app--2024-01-02T00-00-00.backup').write_bytes(b'')

        entries = backend.list_files('app*.backup')

        assert [e.path for e in entries] == ['app--2024-01-01T00-00-00.backup']

    def test_list_glob_and_order(self, backend, source_file):
        """Test listing filters by glob and returns newest first."""
        for index, name in enumerate(['app--a.backup', 'app--b.backup', 'other--c.backup', 'app--d.log']):
            backend.write(source_file, name)
            os.utime(backend.get_full_path(name), (1700000000 + index * 60, 1700000000 + index * 60))

        entries = backend.list_files('app--*.backup')

        assert [e.path for e in entries] == ['app--b.backup', 'app--a.backup']
        assert entries[0].mod_time == datetime.fromtimestamp(1700000060, tz=timezone.utc)

    def test_list_skips_directories(self, backend, source_file):
        (backend.base_path / 'app--dir.backup').mkdir()
        backend.write(source_file, 'app--file.backup')

        assert [e.path for e in backend.list_files('app*')] == ['app--file.backup']

    def test_list_subdirectory_pattern(self, backend, source_file):
        """Test a directory component in the pattern lists that directory."""
        backend.write(source_file, 'nested/app--a.backup')

        entries = backend.list_files('nested/app*.backup')

        assert [e.path for e in entries] == [os.path.join('nested', 'app--a.backup')]

    def test_list_missing_directory(self, backend):
        assert backend.list_files('nope/*.backup') == []

    def test_context_manager(self, tmp_path):
        with LocalBackend('local', str(tmp_path / 's')) as backend:
            assert backend.exists('x') is False
