"""
Unit tests for the backend registry (pgbackuper/storage/registry.py).
"""

from unittest.mock import MagicMock

import pytest

from pgbackuper.storage.base import BackendConfig
from pgbackuper.storage.errors import (
    BackendCreationError,
    BackendDisabledError,
    ConnectionFailedError,
    StorageError,
    UnknownBackendTypeError,
)
from pgbackuper.storage.local import LocalBackend
from pgbackuper.storage.registry import BackendRegistry, close_backends, default_registry


def _cfg(name, backend_type='memory', enabled=True):
    return BackendConfig(name=name, type=backend_type, enabled=enabled)


class TestBackendRegistry:
    """Test registration and construction."""

    def test_register_and_create(self, make_backend):
        registry = BackendRegistry()
        registry.register('memory', lambda config: make_backend(config.name))

        backend = registry.create(_cfg('one'))

        assert backend.name == 'one'
        assert 'memory' in registry
        assert registry.kinds() == ['memory']

    def test_register_empty_type(self):
        with pytest.raises(ValueError):
            BackendRegistry().register('', lambda config: None)

    def test_disabled_backend(self, make_backend):
        """Test disabled configs raise BackendDisabledError."""
        registry = BackendRegistry()
        registry.register('memory', lambda config: make_backend(config.name))

        with pytest.raises(BackendDisabledError):
            registry.create(_cfg('off', enabled=False))

    def test_unknown_type(self):
        """Test unknown types raise a distinct error naming what is available."""
        registry = BackendRegistry()
        registry.register('local', MagicMock())

        with pytest.raises(UnknownBackendTypeError, match='available: local'):
            registry.create(_cfg('x', 'ftp'))

    def test_errors_are_distinguishable(self):
        assert issubclass(BackendDisabledError, BackendCreationError)
        assert issubclass(UnknownBackendTypeError, BackendCreationError)
        assert not issubclass(BackendDisabledError, UnknownBackendTypeError)

    def test_create_all_skips_disabled(self, make_backend):
        registry = BackendRegistry()
        registry.register('memory', lambda config: make_backend(config.name))

        backends = registry.create_all([_cfg('a'), _cfg('b', enabled=False), _cfg('c')])

        assert [b.name for b in backends] == ['a', 'c']

    def test_create_all_closes_on_partial_failure(self, make_backend):
        """Test already-built backends are closed when a later one fails."""
        built = []

        def create(config):
            if config.name == 'broken':
                raise ConnectionFailedError('connect (broken): refused')
            backend = make_backend(config.name)
            built.append(backend)
            return backend

        registry = BackendRegistry()
        registry.register('memory', create)

        with pytest.raises(BackendCreationError, match='broken') as exc_info:
            registry.create_all([_cfg('a'), _cfg('b'), _cfg('broken'), _cfg('never')])

        assert isinstance(exc_info.value.__cause__, ConnectionFailedError)
        assert [b.name for b in built] == ['a', 'b']
        assert all(b.closed for b in built)

    def test_create_all_unknown_type_not_wrapped(self, make_backend):
        registry = BackendRegistry()
        registry.register('memory', lambda config: make_backend(config.name))

        with pytest.raises(UnknownBackendTypeError):
            registry.create_all([_cfg('a'), _cfg('b', 'ftp')])

    def test_close_backends_logs_errors(self, make_backend):
        """Test a failing close does not stop the others being closed."""
        failing = MagicMock()
        failing.name = 'failing'
        failing.close.side_effect = StorageError('close failed')
        other = make_backend('other')

        close_backends([failing, other])

        assert other.closed


class TestDefaultRegistry:
    def test_builtin_types(self):
        assert default_registry().kinds() == ['backblaze', 'local', 's3', 'ssh']

    def test_creates_local_backend(self, tmp_path):
        config = BackendConfig(name='disk', type='local', options={'path': str(tmp_path)})

        backend = default_registry().create(config)

        assert isinstance(backend, LocalBackend)
