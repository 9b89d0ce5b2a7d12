"""
SFTP storage backend.

Backups are stored in a single remote directory. Uploads go to a temporary
name and are renamed into place, so an interrupted transfer is never
listed as a backup.
"""

import logging
import os
import posixpath
import socket
import stat as stat_module
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import paramiko
from paramiko import SSHClient, AutoAddPolicy

from .base import (
    Backend,
    BackendConfig,
    FileEntry,
    bool_option,
    int_option,
    match_glob,
    require_option,
    sort_newest_first,
    utc_from_timestamp,
)
from .errors import (
    AuthenticationError,
    ConnectionFailedError,
    InvalidConfigError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    StorageTimeoutError,
)
from .retry import RetryPolicy, with_retry


logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 30


@dataclass(frozen=True)
class SSHSettings:
    host: str
    user: str
    remote_path: str
    port: int = 22
    password: Optional[str] = None
    key_path: Optional[str] = None
    key_passphrase: Optional[str] = None
    use_compression: bool = True

    @classmethod
    def from_config(cls, config: BackendConfig) -> 'SSHSettings':
        options = config.options
        label = f"ssh ({config.name})"

        remote_path = options.get('remote_path') or config.base_dir
        if not remote_path:
            raise InvalidConfigError(f"{label}: missing required option 'remote_path'")

        port = int_option(options, 'port', 22, label)
        if not 0 < port < 65536:
            raise InvalidConfigError(f"{label}: port must be between 1 and 65535, got {port}")

        return cls(
            host=require_option(options, 'host', label),
            user=require_option(options, 'user', label),
            remote_path=str(remote_path).rstrip('/') or '/',
            port=port,
            password=options.get('password') or None,
            key_path=options.get('key_path') or None,
            key_passphrase=options.get('key_passphrase') or None,
            use_compression=bool_option(options, 'use_compression', True),
        )


def translate_error(error: Exception, operation: str, backend_name: str) -> StorageError:
    """Map paramiko/socket/SFTP exceptions onto the storage error hierarchy."""
    message = f"{operation} ({backend_name}): {error}"

    if isinstance(error, StorageError):
        return error
    if isinstance(error, paramiko.AuthenticationException):
        return AuthenticationError(message)
    if isinstance(error, socket.timeout):
        return StorageTimeoutError(message)
    if isinstance(error, FileNotFoundError):
        return NotFoundError(message)
    if isinstance(error, PermissionError):
        return PermissionDeniedError(message)
    if isinstance(error, (paramiko.SSHException, paramiko.ssh_exception.NoValidConnectionsError,
                          ConnectionError, socket.gaierror, EOFError)):
        return ConnectionFailedError(message)
    return StorageError(message)


class SSHBackend(Backend):
    """
    Handler for storing backups on a remote host over SFTP.

    The connection is opened when the backend is constructed and held until
    close() is called.
    """

    backend_type = 'ssh'

    def __init__(self, name: str, settings: SSHSettings, retry_policy: Optional[RetryPolicy] = None):
        """
        Initialize SSH storage backend.

        Args:
            name: Backend name from configuration
            settings: Validated connection settings
            retry_policy: Backoff used for writes (default policy if None)

        Raises:
            AuthenticationError: If the server rejects the credentials
            ConnectionFailedError: If the host cannot be reached
            InvalidConfigError: If the private key file is missing
        """
        super().__init__(name)
        self.settings = settings
        self.remote_path = settings.remote_path
        self.retry_policy = retry_policy
        self.ssh_client = None
        self.sftp_client = None

        self._connect()
        try:
            self._mkdir_p(self.remote_path)
        except (OSError, paramiko.SSHException) as e:
            self.close()
            raise translate_error(e, 'mkdir', self.name) from e

    @classmethod
    def from_config(cls, config: BackendConfig) -> 'SSHBackend':
        return cls(config.name, SSHSettings.from_config(config))

    def _connect(self):
        connect_kwargs = {
            'hostname': self.settings.host,
            'port': self.settings.port,
            'username': self.settings.user,
            'timeout': CONNECT_TIMEOUT,
            'compress': self.settings.use_compression,
        }

        if self.settings.password:
            connect_kwargs['password'] = self.settings.password
        if self.settings.key_path:
            key_path = Path(self.settings.key_path).expanduser()
            if not key_path.exists():
                raise InvalidConfigError(f"connect ({self.name}): private key not found: {self.settings.key_path}")
            connect_kwargs['key_filename'] = str(key_path)
            if self.settings.key_passphrase:
                connect_kwargs['passphrase'] = self.settings.key_passphrase

        try:
            self.ssh_client = SSHClient()
            self.ssh_client.set_missing_host_key_policy(AutoAddPolicy())
            self.ssh_client.connect(**connect_kwargs)
            self.sftp_client = self.ssh_client.open_sftp()
        except paramiko.AuthenticationException as e:
            self.close()
            raise AuthenticationError(f"connect ({self.name}): SSH authentication failed: {e}") from e
        except (paramiko.SSHException, OSError, EOFError) as e:
            self.close()
            raise ConnectionFailedError(
                f"connect ({self.name}): failed to connect to {self.settings.host}:{self.settings.port}: {e}"
            ) from e

    def _mkdir_p(self, remote_dir: str):
        """Create a remote directory and any missing parents."""
        if remote_dir in ('', '/'):
            return
        try:
            self.sftp_client.stat(remote_dir)
            return
        except FileNotFoundError:
            pass

        self._mkdir_p(posixpath.dirname(remote_dir))
        try:
            self.sftp_client.mkdir(remote_dir)
        except OSError:
            # Another writer may have created it in the meantime
            self.sftp_client.stat(remote_dir)

    def _remote(self, relative_path: str) -> str:
        return posixpath.join(self.remote_path, relative_path.lstrip('/'))

    def write(self, source_path: str, dest_path: str,
              cancel_event: Optional[threading.Event] = None) -> None:
        if not os.path.exists(source_path):
            raise NotFoundError(f"upload ({self.name}): source file not found: {source_path}")

        with_retry(
            lambda: self._upload(source_path, self._remote(dest_path)),
            policy=self.retry_policy,
            cancel_event=cancel_event,
            description=f"upload to {self.name}",
        )

    def _upload(self, source_path: str, remote_path: str):
        remote_dir = posixpath.dirname(remote_path)
        temp_path = posixpath.join(remote_dir, f".{posixpath.basename(remote_path)}.{uuid.uuid4().hex}.tmp")

        try:
            self._mkdir_p(remote_dir)
            self.sftp_client.put(source_path, temp_path)
            self.sftp_client.posix_rename(temp_path, remote_path)
        except (OSError, EOFError, paramiko.SSHException) as e:
            self._discard(temp_path)
            raise translate_error(e, 'upload', self.name) from e

    def _discard(self, remote_path: str):
        try:
            self.sftp_client.remove(remote_path)
        except (OSError, EOFError, paramiko.SSHException):
            pass

    def delete(self, path: str) -> None:
        try:
            self.sftp_client.remove(self._remote(path))
        except (OSError, EOFError, paramiko.SSHException) as e:
            raise translate_error(e, 'delete', self.name) from e

    def list_files(self, pattern: str) -> List[FileEntry]:
        try:
            items = self.sftp_client.listdir_attr(self.remote_path)
        except (OSError, EOFError, paramiko.SSHException) as e:
            raise translate_error(e, 'list', self.name) from e

        entries = []
        for item in items:
            if item.st_mode is not None and stat_module.S_ISDIR(item.st_mode):
                continue
            if not item.st_size or not match_glob(item.filename, pattern):
                continue
            entries.append(FileEntry(
                path=item.filename,
                size=item.st_size,
                mod_time=utc_from_timestamp(item.st_mtime or 0),
            ))

        return sort_newest_first(entries)

    def stat(self, path: str) -> FileEntry:
        try:
            attrs = self.sftp_client.stat(self._remote(path))
        except (OSError, EOFError, paramiko.SSHException) as e:
            raise translate_error(e, 'stat', self.name) from e

        return FileEntry(path=path, size=attrs.st_size or 0, mod_time=utc_from_timestamp(attrs.st_mtime or 0))

    def close(self) -> None:
        if self.sftp_client:
            try:
                self.sftp_client.close()
            except (OSError, EOFError, paramiko.SSHException) as e:
                logger.debug(f"Error closing SFTP session for {self.name}: {e}")
            self.sftp_client = None

        if self.ssh_client:
            try:
                self.ssh_client.close()
            except (OSError, EOFError, paramiko.SSHException) as e:
                logger.debug(f"Error closing SSH connection for {self.name}: {e}")
            self.ssh_client = None
