"""
Local filesystem storage backend.
"""

import os
import shutil
import threading
import uuid
from pathlib import Path
from typing import List, Optional

from .base import Backend, BackendConfig, FileEntry, match_glob, sort_newest_first, utc_from_timestamp
from .errors import InvalidConfigError, NotFoundError, PermissionDeniedError, StorageError


class LocalBackend(Backend):
    """
    Stores backups in a directory on the local filesystem.

    Writes go to a hidden temporary file in the destination directory and
    are renamed into place once the copy completes, so an interrupted copy
    never shows up in listings.
    """

    backend_type = 'local'

    def __init__(self, name: str, base_path: str):
        """
        Initialize local storage backend.

        Args:
            name: Backend name from configuration
            base_path: Directory that holds the backups (created if missing)

        Raises:
            InvalidConfigError: If base_path is empty
            StorageError: If the directory cannot be created
        """
        super().__init__(name)

        if not base_path:
            raise InvalidConfigError(f"local ({name}): missing required option 'path'")

        self.base_path = Path(base_path).expanduser().resolve()

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except PermissionError as e:
            raise PermissionDeniedError(f"create directory ({name}): {e}") from e
        except OSError as e:
            raise StorageError(f"create directory ({name}): {e}") from e

    @classmethod
    def from_config(cls, config: BackendConfig) -> 'LocalBackend':
        path = config.options.get('path') or config.base_dir
        if path and not isinstance(path, str):
            raise InvalidConfigError(f"local ({config.name}): option 'path' must be a string")
        return cls(config.name, path)

    def _full_path(self, relative_path: str) -> Path:
        full_path = (self.base_path / relative_path).resolve()
        if full_path != self.base_path and self.base_path not in full_path.parents:
            raise PermissionDeniedError(f"path escapes storage root ({self.name}): {relative_path}")
        return full_path

    def write(self, source_path: str, dest_path: str,
              cancel_event: Optional[threading.Event] = None) -> None:
        if not os.path.exists(source_path):
            raise NotFoundError(f"write ({self.name}): source file not found: {source_path}")

        full_path = self._full_path(dest_path)
        temp_path = full_path.with_name(f".{full_path.name}.{uuid.uuid4().hex}.tmp")

        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source_path, temp_path)
            os.replace(temp_path, full_path)
        except PermissionError as e:
            self._discard(temp_path)
            raise PermissionDeniedError(f"write ({self.name}): {e}") from e
        except OSError as e:
            self._discard(temp_path)
            raise StorageError(f"write ({self.name}): {e}") from e

    @staticmethod
    def _discard(path: Path):
        try:
            path.unlink()
        except OSError:
            pass

    def delete(self, path: str) -> None:
        full_path = self._full_path(path)

        try:
            full_path.unlink()
        except FileNotFoundError as e:
            raise NotFoundError(f"delete ({self.name}): {path}") from e
        except PermissionError as e:
            raise PermissionDeniedError(f"delete ({self.name}): {e}") from e
        except OSError as e:
            raise StorageError(f"delete ({self.name}): {e}") from e

    def list_files(self, pattern: str) -> List[FileEntry]:
        # A pattern may carry a directory component relative to the root
        directory, name_pattern = os.path.split(pattern)
        search_dir = self._full_path(directory) if directory else self.base_path

        if not search_dir.is_dir():
            return []

        entries = []
        try:
            for item in search_dir.iterdir():
                if not match_glob(item.name, name_pattern):
                    continue
                try:
                    stat = item.stat()
                except OSError:
                    continue
                if not item.is_file() or stat.st_size == 0:
                    continue

                entries.append(FileEntry(
                    path=str(item.relative_to(self.base_path)),
                    size=stat.st_size,
                    mod_time=utc_from_timestamp(stat.st_mtime),
                ))
        except PermissionError as e:
            raise PermissionDeniedError(f"list ({self.name}): {e}") from e
        except OSError as e:
            raise StorageError(f"list ({self.name}): {e}") from e

        return sort_newest_first(entries)

    def stat(self, path: str) -> FileEntry:
        full_path = self._full_path(path)

        try:
            stat = full_path.stat()
        except FileNotFoundError as e:
            raise NotFoundError(f"stat ({self.name}): {path}") from e
        except PermissionError as e:
            raise PermissionDeniedError(f"stat ({self.name}): {e}") from e
        except OSError as e:
            raise StorageError(f"stat ({self.name}): {e}") from e

        return FileEntry(path=path, size=stat.st_size, mod_time=utc_from_timestamp(stat.st_mtime))

    def get_full_path(self, relative_path: str) -> str:
        """Absolute filesystem path for a stored file."""
        return str(self._full_path(relative_path))
