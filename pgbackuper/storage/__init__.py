"""
Storage backends for backup artifacts.

Supported backend types:
- local: directory on the local filesystem
- s3: AWS S3 or any S3-compatible service
- backblaze: Backblaze B2 (via its S3-compatible API)
- ssh: remote directory over SFTP
"""

from .base import Backend, BackendConfig, FileEntry, OperationResult, match_glob
from .errors import (
    StorageError,
    ConnectionFailedError,
    StorageTimeoutError,
    AuthenticationError,
    InvalidConfigError,
    NotFoundError,
    PermissionDeniedError,
    OperationCancelledError,
    BackendCreationError,
    BackendDisabledError,
    UnknownBackendTypeError,
    is_retryable,
    is_critical,
)
from .retry import RetryPolicy, with_retry
from .registry import BackendRegistry, default_registry, close_backends
from .multi import MultiUploader

__all__ = [
    'Backend',
    'BackendConfig',
    'FileEntry',
    'OperationResult',
    'match_glob',
    'StorageError',
    'ConnectionFailedError',
    'StorageTimeoutError',
    'AuthenticationError',
    'InvalidConfigError',
    'NotFoundError',
    'PermissionDeniedError',
    'OperationCancelledError',
    'BackendCreationError',
    'BackendDisabledError',
    'UnknownBackendTypeError',
    'is_retryable',
    'is_critical',
    'RetryPolicy',
    'with_retry',
    'BackendRegistry',
    'default_registry',
    'close_backends',
    'MultiUploader',
]
