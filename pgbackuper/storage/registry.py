"""
Backend registry: maps a backend type name to its constructor.
"""

import logging
from typing import Callable, Dict, Iterable, List

from .base import Backend, BackendConfig
from .errors import BackendCreationError, BackendDisabledError, StorageError, UnknownBackendTypeError


logger = logging.getLogger(__name__)

BackendConstructor = Callable[[BackendConfig], Backend]


class BackendRegistry:
    """
    Holds the constructors for every known backend type.

    Registries are plain objects; build one with default_registry() at
    startup and pass it to whatever needs to create backends.
    """

    def __init__(self):
        self._constructors: Dict[str, BackendConstructor] = {}

    def register(self, backend_type: str, constructor: BackendConstructor):
        """
        Register a constructor for a backend type.

        Args:
            backend_type: Type name used in configuration (e.g. 's3')
            constructor: Callable taking a BackendConfig and returning a Backend
        """
        if not backend_type:
            raise ValueError("Backend type must not be empty")
        self._constructors[backend_type] = constructor

    def kinds(self) -> List[str]:
        return sorted(self._constructors)

    def __contains__(self, backend_type: str) -> bool:
        return backend_type in self._constructors

    def create(self, config: BackendConfig) -> Backend:
        """
        Construct a single backend.

        Args:
            config: Backend configuration

        Returns:
            Connected backend instance

        Raises:
            BackendDisabledError: If the config is disabled
            UnknownBackendTypeError: If no constructor is registered for config.type
            StorageError: If the constructor fails
        """
        if not config.enabled:
            raise BackendDisabledError(f"Backend is disabled: {config.name}")

        constructor = self._constructors.get(config.type)
        if constructor is None:
            raise UnknownBackendTypeError(
                f"Unknown backend type '{config.type}' for {config.name} "
                f"(available: {', '.join(self.kinds()) or 'none'})"
            )

        return constructor(config)

    def create_all(self, configs: Iterable[BackendConfig]) -> List[Backend]:
        """
        Construct backends for every enabled config.

        If any construction fails, the backends already built are closed
        before the error is raised.

        Args:
            configs: Backend configurations; disabled ones are skipped

        Returns:
            Backends in configuration order

        Raises:
            BackendCreationError: If any backend cannot be constructed
        """
        backends = []

        for config in configs:
            if not config.enabled:
                logger.info(f"Skipping disabled backend: {config.name}")
                continue

            try:
                backends.append(self.create(config))
            except Exception as e:
                close_backends(backends)
                if isinstance(e, BackendCreationError):
                    raise
                raise BackendCreationError(f"Failed to create backend {config.name} ({config.type}): {e}") from e

        return backends


def close_backends(backends: Iterable[Backend]):
    """Close every backend, logging rather than raising close errors."""
    for backend in backends:
        try:
            backend.close()
        except (StorageError, OSError) as e:
            logger.warning(f"Failed to close backend {backend.name}: {e}")


def default_registry() -> BackendRegistry:
    """
    Build a registry with the built-in backend types.

    Returns:
        Registry with local, s3, backblaze and ssh registered
    """
    from .local import LocalBackend
    from .s3 import S3Backend
    from .backblaze import BackblazeBackend
    from .ssh import SSHBackend

    registry = BackendRegistry()
    registry.register('local', LocalBackend.from_config)
    registry.register('s3', S3Backend.from_config)
    registry.register('backblaze', BackblazeBackend.from_config)
    registry.register('ssh', SSHBackend.from_config)
    return registry
