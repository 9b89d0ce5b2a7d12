"""
Helpers for PostgreSQL password files (.pgpass).
"""

import os
import stat
from pathlib import Path
from typing import List, Optional


DOCKER_PGPASS_PATH = '/config/.pgpass'
REQUIRED_MODE = 0o600


class PgpassError(Exception):
    """Raised when the password file is missing, unreadable or insecure."""
    pass


def get_pgpass_path(configured_path: Optional[str] = None, search_paths: Optional[List[str]] = None) -> str:
    """
    Locate the password file to use.

    A configured path must exist. Without one, /config/.pgpass and then
    ~/.pgpass are tried.

    Args:
        configured_path: Path from the configuration file, if any
        search_paths: Override for the fallback locations

    Returns:
        Path of the password file

    Raises:
        PgpassError: If no password file can be found
    """
    if configured_path:
        if os.path.isfile(configured_path):
            return configured_path
        raise PgpassError(f"Configured pgpass file not found: {configured_path}")

    if search_paths is None:
        search_paths = [DOCKER_PGPASS_PATH, str(Path.home() / '.pgpass')]

    for path in search_paths:
        if os.path.isfile(path):
            return path

    raise PgpassError(f"No .pgpass file found (tried: {', '.join(search_paths)})")


def validate_pgpass_permissions(path: str):
    """
    Require the password file to be readable and writable by its owner only.

    Raises:
        PgpassError: If the file cannot be inspected or its mode is not 0600
    """
    try:
        mode = stat.S_IMODE(os.stat(path).st_mode)
    except OSError as e:
        raise PgpassError(f"Failed to stat pgpass file {path}: {e}") from e

    if mode != REQUIRED_MODE:
        raise PgpassError(
            f"pgpass file {path} has permissions {mode:04o}, must be 0600 (read/write by owner only)"
        )


def _split_line(line: str) -> List[str]:
    # Fields are ':'-separated; '\:' and '\\' are escapes
    fields = []
    current = []
    escaped = False
    for char in line:
        if escaped:
            current.append(char)
            escaped = False
        elif char == '\\':
            escaped = True
        elif char == ':':
            fields.append(''.join(current))
            current = []
        else:
            current.append(char)
    fields.append(''.join(current))
    return fields


def _field_matches(pattern: str, value: str) -> bool:
    return pattern == '*' or pattern == value


def verify_pgpass_entry(path: str, host: str, port, database: str, user: str) -> bool:
    """
    Check whether the password file has an entry for a connection.

    Args:
        path: Password file path
        host: Database host
        port: Database port
        database: Database name
        user: Database user

    Returns:
        True if a matching host:port:database:user line exists

    Raises:
        PgpassError: If the file cannot be read
    """
    try:
        with open(path, 'r') as f:
            lines = f.readlines()
    except OSError as e:
        raise PgpassError(f"Failed to read pgpass file {path}: {e}") from e

    wanted = [host, str(port), database, user]
    for line in lines:
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        fields = _split_line(line)
        if len(fields) != 5:
            continue
        if all(_field_matches(pattern, value) for pattern, value in zip(fields[:4], wanted)):
            return True

    return False
