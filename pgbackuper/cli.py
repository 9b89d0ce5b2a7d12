"""
Command line entry point: one-off runs, config checks and the HTTP service.
"""

import argparse
import logging
import os
import signal
import sys
import threading
from datetime import datetime, timezone
from typing import Iterable, Optional

from . import configure_logging
from .backup.config import BackupConfig, ConfigError, load_config
from .backup.parallel import any_failed, backup_all_databases
from .backup.pgpass import PgpassError, get_pgpass_path, validate_pgpass_permissions, verify_pgpass_entry
from .backup.schedule import database_schedule, next_run_after


logger = logging.getLogger(__name__)

DEFAULT_CONFIG = os.environ.get('BACKUP_CONFIG_FILE') or 'config.json'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='pg-backuper',
        description='PostgreSQL backups with tiered retention across multiple storage backends.',
    )
    parser.add_argument('--config', default=DEFAULT_CONFIG, help='Path to the JSON configuration file.')
    parser.add_argument('-v', '--verbose', action='count', default=0,
                        help='Log more (-v for info, -vv for debug); overrides log_level from the config.')

    subparsers = parser.add_subparsers(dest='command')

    parser_run = subparsers.add_parser('run', help='Run one backup cycle and exit.')
    parser_run.add_argument(
        '-d',
        '--database',
        action='append',
        dest='databases',
        help='Only back up this database (can be given several times).',
    )

    subparsers.add_parser('validate', help='Check the configuration file and exit.')
    subparsers.add_parser('schedule', help='Show which tiers of each database are due.')

    parser_serve = subparsers.add_parser('serve', help='Start the HTTP status service with the scheduler.')
    parser_serve.add_argument('--host', default='0.0.0.0', help='Address to listen on.')
    parser_serve.add_argument('--port', type=int, default=int(os.environ.get('PORT', 5000)), help='Port to listen on.')

    return parser


def _log_level(verbose: int, config: Optional[BackupConfig]) -> str:
    if verbose >= 2:
        return 'debug'
    if verbose == 1:
        return 'info'
    return config.log_level if config else 'info'


def _load(path: str) -> Optional[BackupConfig]:
    try:
        return load_config(path)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return None


def handle_validate(config: BackupConfig) -> int:
    enabled = config.enabled_databases()
    print(f"Configuration OK: {len(config.databases)} database(s), {len(enabled)} enabled")
    for db in config.databases:
        destinations = ', '.join(dest.name for dest in config.destinations_for(db)) or '(none)'
        state = 'enabled' if db.enabled else 'disabled'
        print(f"  {db.name} [{state}] -> {destinations}")

    try:
        pgpass_path = get_pgpass_path(config.global_defaults.pgpass_file)
        validate_pgpass_permissions(pgpass_path)
    except PgpassError as exc:
        print(f"pgpass: {exc}", file=sys.stderr)
        return 1

    print(f"pgpass: {pgpass_path}")
    for db in enabled:
        port = db.effective_port(config.global_defaults)
        try:
            found = verify_pgpass_entry(pgpass_path, db.host, port, db.name, db.user)
        except PgpassError as exc:
            print(f"pgpass: {exc}", file=sys.stderr)
            return 1
        if not found:
            print(f"  warning: no pgpass entry for {db.user}@{db.host}:{port}/{db.name}")
    return 0


def handle_schedule(config: BackupConfig) -> int:
    now = datetime.now(timezone.utc)
    for db in config.enabled_databases():
        due, schedule = database_schedule(config, db, now=now)
        next_run = next_run_after(schedule)
        if due:
            print(f"{db.name}: due now ({', '.join(schedule.due_tiers)})")
        else:
            print(f"{db.name}: next due {next_run.isoformat() if next_run else 'never'}")
        for tier, when in schedule.next_due.items():
            latest = schedule.latest.get(tier)
            print(f"  {tier:<8} latest={latest.isoformat() if latest else '-'} next={when.isoformat()}")
    return 0


def handle_run(config: BackupConfig, databases: Optional[Iterable[str]]) -> int:
    if databases:
        unknown = [name for name in databases if config.get_database(name) is None]
        if unknown:
            print(f"Unknown database(s): {', '.join(unknown)}", file=sys.stderr)
            return 1

    cancel_event = threading.Event()

    def on_signal(signum, frame):
        logger.warning(f"Received signal {signum}, cancelling backup run")
        cancel_event.set()

    previous = {sig: signal.signal(sig, on_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        results = backup_all_databases(config, cancel_event=cancel_event, only=databases)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    for result in results:
        if result.skipped:
            status = 'skipped (nothing due)'
        elif result.cancelled:
            status = 'cancelled'
        elif result.success:
            status = f"ok ({', '.join(result.tiers_completed)})"
        else:
            status = f"FAILED: {result.error}"
        print(f"{result.database}: {status}")

    return 1 if any_failed(results) else 0


def handle_serve(config_path: str, host: str, port: int) -> int:
    from . import create_app

    app = create_app(config_file=config_path)
    app.run(host=host, port=port)
    return 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    if args.command == 'serve':
        return handle_serve(args.config, args.host, args.port)

    config = _load(args.config)
    configure_logging(_log_level(args.verbose, config), config.log_format if config else 'console')
    if config is None:
        return 1

    if args.command == 'validate':
        return handle_validate(config)
    if args.command == 'schedule':
        return handle_schedule(config)
    if args.command == 'run':
        return handle_run(config, args.databases)

    parser.print_help()
    return 1


if __name__ == '__main__':
    sys.exit(main())
