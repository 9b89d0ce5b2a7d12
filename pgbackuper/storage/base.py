"""
Backend contract shared by every storage destination.

Supports:
- Backend: abstract base class for local, S3, Backblaze and SSH storage
- FileEntry / OperationResult / BackendConfig value types
- Glob matching used by List implementations
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, List, Mapping, Optional

from .errors import NotFoundError, InvalidConfigError


@dataclass(frozen=True)
class FileEntry:
    """A single stored backup as reported by a backend listing."""
    path: str
    size: int
    mod_time: datetime


@dataclass(frozen=True)
class OperationResult:
    """Outcome of one orchestrated operation against one backend."""
    backend_name: str
    backend_type: str
    success: bool
    error: Optional[BaseException] = None
    duration: float = 0.0

    def to_dict(self) -> dict:
        return {
            'backend_name': self.backend_name,
            'backend_type': self.backend_type,
            'success': self.success,
            'error': str(self.error) if self.error else None,
            'duration': round(self.duration, 3),
        }


@dataclass(frozen=True)
class BackendConfig:
    """
    Construction input for a storage backend.

    The options mapping is kept weakly typed here; each backend converts it
    into its own settings object when it is constructed.
    """
    name: str
    type: str
    enabled: bool = True
    base_dir: str = ''
    options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'options', MappingProxyType(dict(self.options or {})))

    @classmethod
    def from_dict(cls, data: dict) -> 'BackendConfig':
        return cls(
            name=data.get('name', ''),
            type=data.get('type', ''),
            enabled=bool(data.get('enabled', True)),
            base_dir=data.get('base_dir', '') or '',
            options=data.get('options') or {},
        )


def utc_from_timestamp(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def extract_prefix(pattern: str) -> str:
    """
    Return the literal portion of a pattern before its first wildcard.

    Object stores use this as the server-side listing prefix.
    """
    index = pattern.find('*')
    if index == -1:
        return pattern
    return pattern[:index]


def match_glob(name: str, pattern: str) -> bool:
    """
    Match a name against a ``*``-only glob pattern.

    Supported shapes are ``*`` on its own, a leading wildcard (``*.backup``),
    a trailing wildcard (``db*``) and one interior wildcard (``db--*.backup``).
    Any other pattern is compared literally.

    Args:
        name: Candidate file name or key
        pattern: Glob pattern

    Returns:
        True if the name matches
    """
    count = pattern.count('*')
    if count == 0:
        return name == pattern
    if pattern == '*':
        return True
    if count > 1:
        return name == pattern

    head, tail = pattern.split('*')
    if len(name) < len(head) + len(tail):
        return False
    return name.startswith(head) and name.endswith(tail)


def sort_newest_first(entries: List[FileEntry]) -> List[FileEntry]:
    return sorted(entries, key=lambda entry: entry.mod_time, reverse=True)


def require_option(options: Mapping[str, Any], key: str, backend: str) -> str:
    """
    Fetch a mandatory string option.

    Raises:
        InvalidConfigError: If the option is missing or empty
    """
    value = options.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidConfigError(f"{backend}: missing required option '{key}'")
    if not isinstance(value, str):
        raise InvalidConfigError(f"{backend}: option '{key}' must be a string")
    return value


def bool_option(options: Mapping[str, Any], key: str, default: bool) -> bool:
    value = options.get(key, default)
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def int_option(options: Mapping[str, Any], key: str, default: int, backend: str) -> int:
    value = options.get(key, default)
    if isinstance(value, bool):
        raise InvalidConfigError(f"{backend}: option '{key}' must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidConfigError(f"{backend}: option '{key}' must be an integer, got {value!r}")


class Backend(ABC):
    """
    Base class for storage destinations.

    A backend instance is owned by a single backup run and closed at its
    end. Paths passed to the operations are relative to the backend's
    configured root (directory, key prefix or remote path).
    """

    backend_type = ''

    def __init__(self, name: str):
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def type(self) -> str:
        return self.backend_type

    @abstractmethod
    def write(self, source_path: str, dest_path: str,
              cancel_event: Optional[threading.Event] = None) -> None:
        """
        Store a local file at dest_path.

        A failed write must not leave a non-empty object at dest_path.

        Raises:
            StorageError: If the write fails
        """

    @abstractmethod
    def delete(self, path: str) -> None:
        """Remove a stored file."""

    @abstractmethod
    def list_files(self, pattern: str) -> List[FileEntry]:
        """
        List stored files matching a glob pattern.

        Returns:
            Non-empty entries sorted newest first
        """

    @abstractmethod
    def stat(self, path: str) -> FileEntry:
        """
        Describe a stored file.

        Raises:
            NotFoundError: If the path does not exist
        """

    def exists(self, path: str) -> bool:
        try:
            self.stat(path)
        except NotFoundError:
            return False
        return True

    def close(self) -> None:
        """Release connections held by the backend."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def __repr__(self):
        return f"<{self.__class__.__name__} name={self._name!r}>"
