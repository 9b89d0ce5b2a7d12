"""
Storage error hierarchy and classification helpers.

Every backend raises a StorageError subclass, chained to the underlying
provider exception. The retry policy and the executor use the
classification helpers below to decide whether an error is worth retrying
or must abort the run immediately.
"""

from typing import Optional


class StorageError(Exception):
    """Raised when a storage operation fails."""
    pass


class ConnectionFailedError(StorageError):
    """Raised when a backend cannot be reached."""
    pass


class StorageTimeoutError(StorageError):
    """Raised when a storage operation times out."""
    pass


class AuthenticationError(StorageError):
    """Raised when a backend rejects the supplied credentials."""
    pass


class InvalidConfigError(StorageError):
    """Raised when backend options are missing or malformed."""
    pass


class NotFoundError(StorageError):
    """Raised when a path does not exist on the backend."""
    pass


class PermissionDeniedError(StorageError):
    """Raised when the backend refuses access to a path."""
    pass


class OperationCancelledError(StorageError):
    """Raised when an operation is abandoned because the run was cancelled."""
    pass


class BackendCreationError(StorageError):
    """Raised when a backend cannot be constructed from its configuration."""
    pass


class BackendDisabledError(BackendCreationError):
    """Raised when asked to construct a backend whose config is disabled."""
    pass


class UnknownBackendTypeError(BackendCreationError):
    """Raised when no constructor is registered for a backend type."""
    pass


RETRYABLE_ERRORS = (ConnectionFailedError, StorageTimeoutError, ConnectionError, TimeoutError)
CRITICAL_ERRORS = (AuthenticationError, InvalidConfigError)


def _error_chain(error: Optional[BaseException]):
    seen = set()
    while error is not None and id(error) not in seen:
        seen.add(id(error))
        yield error
        error = error.__cause__


def is_retryable(error: Optional[BaseException]) -> bool:
    """
    Check whether an error is transient and worth retrying.

    Walks the exception's ``__cause__`` chain, so a wrapped connection
    failure is still recognised.

    Args:
        error: Exception to classify

    Returns:
        True for connection failures and timeouts
    """
    return any(isinstance(e, RETRYABLE_ERRORS) for e in _error_chain(error))


def is_critical(error: Optional[BaseException]) -> bool:
    """
    Check whether an error must abort immediately without retry.

    Args:
        error: Exception to classify

    Returns:
        True for authentication and configuration failures
    """
    return any(isinstance(e, CRITICAL_ERRORS) for e in _error_chain(error))


def is_not_found(error: Optional[BaseException]) -> bool:
    """Check whether an error means the requested path does not exist."""
    return any(isinstance(e, NotFoundError) for e in _error_chain(error))
