"""
Backup configuration file loading and validation.

The configuration is a JSON document describing the databases to back up,
their retention tiers and the storage destinations. Validation collects
every problem before failing so the operator can fix them in one pass.
"""

import json
import os
import re
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..rotation.tiers import TIER_ORDER, RetentionTier
from ..storage.base import BackendConfig


DEFAULT_PORT = 5432
DEFAULT_MAX_CONCURRENT = 3
DEFAULT_LOG_LEVEL = 'info'
DEFAULT_LOG_FORMAT = 'console'
DEFAULT_LOCAL_BACKEND = 'default_local'

LOG_LEVELS = ('debug', 'info', 'warn', 'error')
LOG_FORMATS = ('json', 'console')
BACKEND_TYPES = ('local', 's3', 'backblaze', 'ssh')

DATABASE_NAME_RE = re.compile(r'^[a-zA-Z0-9_-]+$')


class ConfigError(Exception):
    """Raised when the configuration file cannot be loaded or is invalid."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = problems or []
        if self.problems:
            message = message + ':\n' + '\n'.join(f"  - {p}" for p in self.problems)
        super().__init__(message)


@dataclass
class GlobalDefaults:
    port: Optional[int] = None
    retention_tiers: List[RetentionTier] = field(default_factory=list)
    pgpass_file: Optional[str] = None


@dataclass
class DatabaseConfig:
    name: str
    user: str
    host: str
    port: Optional[int] = None
    retention_tiers: Optional[List[RetentionTier]] = None
    enabled: bool = True
    destinations: Optional[List[str]] = None

    def effective_port(self, defaults: GlobalDefaults) -> int:
        return self.port or defaults.port or DEFAULT_PORT

    def effective_retention_tiers(self, defaults: GlobalDefaults) -> List[RetentionTier]:
        """Database tiers if configured, otherwise the global defaults."""
        if self.retention_tiers:
            return list(self.retention_tiers)
        return list(defaults.retention_tiers)


@dataclass
class StorageConfig:
    temp_dir: Optional[str] = None
    destinations: List[BackendConfig] = field(default_factory=list)


@dataclass
class BackupConfig:
    """Top-level backup configuration."""
    databases: List[DatabaseConfig]
    backup_dir: str = ''
    global_defaults: GlobalDefaults = field(default_factory=GlobalDefaults)
    storage: StorageConfig = field(default_factory=StorageConfig)
    max_concurrent_backups: int = DEFAULT_MAX_CONCURRENT
    log_level: str = DEFAULT_LOG_LEVEL
    log_format: str = DEFAULT_LOG_FORMAT

    def enabled_databases(self) -> List[DatabaseConfig]:
        return [db for db in self.databases if db.enabled]

    def get_database(self, name: str) -> Optional[DatabaseConfig]:
        for db in self.databases:
            if db.name == name:
                return db
        return None

    def temp_dir(self) -> str:
        """Scratch directory for dumps before they are uploaded."""
        if self.storage.temp_dir:
            return self.storage.temp_dir
        if self.backup_dir:
            return os.path.join(self.backup_dir, '.tmp')
        return os.path.join(tempfile.gettempdir(), 'pg_backuper')

    def destinations_for(self, db: DatabaseConfig) -> List[BackendConfig]:
        """
        Resolve the storage destinations for a database.

        Uses the database's own destination list when given, otherwise every
        enabled destination. With no destinations configured at all, a local
        destination at backup_dir is used.
        """
        enabled = [dest for dest in self.storage.destinations if dest.enabled]

        if db.destinations:
            wanted = set(db.destinations)
            return [dest for dest in enabled if dest.name in wanted]

        if enabled:
            return enabled

        if not self.storage.destinations and self.backup_dir:
            return [BackendConfig(
                name=DEFAULT_LOCAL_BACKEND,
                type='local',
                enabled=True,
                base_dir=self.backup_dir,
                options={'path': self.backup_dir},
            )]

        return []


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_tiers(raw: Any, where: str, problems: List[str]) -> List[RetentionTier]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        problems.append(f"{where}: retention_tiers must be a list")
        return []

    tiers = []
    seen = set()
    for index, item in enumerate(raw):
        label = f"{where}.retention_tiers[{index}]"
        if not isinstance(item, dict):
            problems.append(f"{label}: must be an object")
            continue
        tier = item.get('tier')
        retention = item.get('retention')
        if tier not in TIER_ORDER:
            problems.append(f"{label}: tier must be one of {', '.join(TIER_ORDER)}, got {tier!r}")
            continue
        if not _is_int(retention) or retention < 0:
            problems.append(f"{label}: retention must be an integer >= 0, got {retention!r}")
            continue
        if tier in seen:
            problems.append(f"{label}: duplicate tier {tier!r}")
            continue
        seen.add(tier)
        tiers.append(RetentionTier(tier=tier, retention=retention))
    return tiers


def _parse_port(raw: Any, where: str, problems: List[str]) -> Optional[int]:
    if raw is None:
        return None
    if not _is_int(raw) or not 1 <= raw <= 65535:
        problems.append(f"{where}: port must be an integer between 1 and 65535, got {raw!r}")
        return None
    return raw


def _parse_destinations(raw: Any, problems: List[str]) -> List[BackendConfig]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        problems.append("storage.destinations must be a list")
        return []

    destinations = []
    names = set()
    for index, item in enumerate(raw):
        label = f"storage.destinations[{index}]"
        if not isinstance(item, dict):
            problems.append(f"{label}: must be an object")
            continue
        name = item.get('name')
        backend_type = item.get('type')
        if not isinstance(name, str) or not name:
            problems.append(f"{label}: name is required")
            continue
        if name in names:
            problems.append(f"{label}: duplicate destination name {name!r}")
            continue
        if backend_type not in BACKEND_TYPES:
            problems.append(f"{label}: type must be one of {', '.join(BACKEND_TYPES)}, got {backend_type!r}")
            continue
        if 'options' in item and not isinstance(item['options'], dict):
            problems.append(f"{label}: options must be an object")
            continue
        names.add(name)
        destinations.append(BackendConfig.from_dict(item))
    return destinations


def _parse_database(raw: Any, index: int, destination_names: set, problems: List[str]) -> Optional[DatabaseConfig]:
    label = f"databases[{index}]"
    if not isinstance(raw, dict):
        problems.append(f"{label}: must be an object")
        return None

    before = len(problems)
    name = raw.get('name')
    if not isinstance(name, str) or not DATABASE_NAME_RE.match(name):
        problems.append(f"{label}: name must match {DATABASE_NAME_RE.pattern}, got {name!r}")
    elif '--' in name:
        problems.append(f"{label}: name must not contain '--', got {name!r}")
    else:
        label = f"databases[{index}] ({name})"

    for key in ('user', 'host'):
        if not isinstance(raw.get(key), str) or not raw.get(key):
            problems.append(f"{label}: {key} is required")

    port = _parse_port(raw.get('port'), label, problems)
    tiers = _parse_tiers(raw.get('retention_tiers'), label, problems)

    enabled = raw.get('enabled', True)
    if not isinstance(enabled, bool):
        problems.append(f"{label}: enabled must be a boolean")

    destinations = raw.get('destinations')
    if destinations is not None:
        if not isinstance(destinations, list) or not all(isinstance(d, str) for d in destinations):
            problems.append(f"{label}: destinations must be a list of names")
        else:
            for dest in destinations:
                if dest not in destination_names:
                    problems.append(f"{label}: unknown destination {dest!r}")

    if len(problems) > before:
        return None

    return DatabaseConfig(
        name=name,
        user=raw['user'],
        host=raw['host'],
        port=port,
        retention_tiers=tiers or None,
        enabled=enabled,
        destinations=destinations or None,
    )


def parse_config(data: Dict[str, Any]) -> BackupConfig:
    """
    Build a BackupConfig from a decoded JSON document.

    Args:
        data: Parsed configuration document

    Returns:
        Validated BackupConfig

    Raises:
        ConfigError: Listing every validation problem found
    """
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a JSON object")

    problems: List[str] = []

    backup_dir = data.get('backup_dir', '')
    if not isinstance(backup_dir, str):
        problems.append("backup_dir must be a string")
        backup_dir = ''

    raw_defaults = data.get('global_defaults') or {}
    if not isinstance(raw_defaults, dict):
        problems.append("global_defaults must be an object")
        raw_defaults = {}
    pgpass_file = raw_defaults.get('pgpass_file')
    if pgpass_file is not None and not isinstance(pgpass_file, str):
        problems.append("global_defaults.pgpass_file must be a string")
        pgpass_file = None
    defaults = GlobalDefaults(
        port=_parse_port(raw_defaults.get('port'), 'global_defaults', problems),
        retention_tiers=_parse_tiers(raw_defaults.get('retention_tiers'), 'global_defaults', problems),
        pgpass_file=pgpass_file or None,
    )

    raw_storage = data.get('storage') or {}
    if not isinstance(raw_storage, dict):
        problems.append("storage must be an object")
        raw_storage = {}
    temp_dir = raw_storage.get('temp_dir')
    if temp_dir is not None and not isinstance(temp_dir, str):
        problems.append("storage.temp_dir must be a string")
        temp_dir = None
    storage = StorageConfig(
        temp_dir=temp_dir or None,
        destinations=_parse_destinations(raw_storage.get('destinations'), problems),
    )

    max_concurrent = data.get('max_concurrent_backups', DEFAULT_MAX_CONCURRENT)
    if not _is_int(max_concurrent) or max_concurrent < 1:
        problems.append(f"max_concurrent_backups must be an integer >= 1, got {max_concurrent!r}")
        max_concurrent = DEFAULT_MAX_CONCURRENT

    log_level = data.get('log_level', DEFAULT_LOG_LEVEL)
    if log_level not in LOG_LEVELS:
        problems.append(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")
        log_level = DEFAULT_LOG_LEVEL

    log_format = data.get('log_format', DEFAULT_LOG_FORMAT)
    if log_format not in LOG_FORMATS:
        problems.append(f"log_format must be one of {', '.join(LOG_FORMATS)}, got {log_format!r}")
        log_format = DEFAULT_LOG_FORMAT

    raw_databases = data.get('databases')
    databases = []
    if not isinstance(raw_databases, list):
        problems.append("databases is required and must be a list")
    else:
        destination_names = {dest.name for dest in storage.destinations}
        seen = set()
        for index, raw_db in enumerate(raw_databases):
            db = _parse_database(raw_db, index, destination_names, problems)
            if db is None:
                continue
            if db.name in seen:
                problems.append(f"databases[{index}]: duplicate database name {db.name!r}")
                continue
            seen.add(db.name)
            databases.append(db)

    if not backup_dir and not storage.destinations:
        problems.append("either backup_dir or storage.destinations must be configured")

    if problems:
        raise ConfigError("Invalid configuration", problems)

    return BackupConfig(
        databases=databases,
        backup_dir=backup_dir,
        global_defaults=defaults,
        storage=storage,
        max_concurrent_backups=max_concurrent,
        log_level=log_level,
        log_format=log_format,
    )


def load_config(path: str) -> BackupConfig:
    """
    Load and validate a JSON configuration file.

    Raises:
        ConfigError: If the file is missing, not valid JSON, or invalid
    """
    if not path:
        raise ConfigError("No configuration file given")

    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Configuration file {path} is not valid JSON: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file {path}: {e}") from e

    return parse_config(data)
