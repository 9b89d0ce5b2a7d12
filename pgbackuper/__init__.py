import os
import atexit
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

import structlog
from flask import Flask


LOG_FILE_NAME = 'pg-backuper.log'

_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warn': logging.WARNING,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}

_CONSOLE_FORMAT = '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
_FILE_FORMAT = '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'


def _json_formatter():
    return structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt='iso', utc=True),
        ],
    )


def configure_logging(level: str = 'info', log_format: str = 'console',
                      log_dir: Optional[str] = None, app: Optional[Flask] = None) -> int:
    """
    Configure application logging.

    Args:
        level: debug, info, warn/warning or error
        log_format: 'console' for human readable lines, 'json' for one JSON object per line
        log_dir: Directory for the rotating log file (no file logging if None)
        app: Flask app whose logger should share the handlers

    Returns:
        The numeric log level in effect
    """
    log_level = _LEVELS.get((level or 'info').lower(), logging.INFO)

    handlers = []

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    if log_format == 'json':
        console_handler.setFormatter(_json_formatter())
    else:
        console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    handlers.append(console_handler)

    # File handler
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, LOG_FILE_NAME),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        if log_format == 'json':
            file_handler.setFormatter(_json_formatter())
        else:
            file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        handlers.append(file_handler)

    # Configure root logger (force replaces handlers from an earlier call)
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # boto and paramiko are chatty at debug level
    for noisy in ('botocore', 'boto3', 's3transfer', 'urllib3', 'paramiko'):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))

    if app is not None:
        app.logger.setLevel(log_level)

    logging.getLogger(__name__).info(f"Logging configured (level: {logging.getLevelName(log_level)})")
    return log_level


def create_app(config_name=None, config_file=None):
    """Flask application factory"""

    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from pgbackuper.config import config
    app.config.from_object(config[config_name])
    if config_file:
        app.config['BACKUP_CONFIG_FILE'] = config_file

    # Log level: environment first, then the backup configuration file
    log_level = app.config.get('LOG_LEVEL')
    log_format = 'console'
    config_file = app.config.get('BACKUP_CONFIG_FILE')
    if config_file and os.path.exists(config_file):
        from pgbackuper.backup.config import ConfigError, load_config
        try:
            backup_config = load_config(config_file)
            log_level = log_level or backup_config.log_level
            log_format = backup_config.log_format
        except ConfigError as e:
            # Still start so /health and /api/status can report the problem
            app.logger.error(f"Invalid backup configuration {config_file}: {e}")

    configure_logging(log_level or 'info', log_format, app.config.get('LOG_DIR'), app=app)

    from pgbackuper.history import run_history
    run_history.resize(app.config.get('RUN_HISTORY_SIZE', 50))

    # Register blueprints
    from pgbackuper.routes import status_routes
    app.register_blueprint(status_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    # Initialize and start scheduler
    if app.config.get('SCHEDULER_ENABLED', False):
        from pgbackuper.scheduler import init_scheduler, start_scheduler, stop_scheduler

        app.logger.info("Initializing scheduler in this process...")
        init_scheduler(app)
        start_scheduler()

        # Register cleanup function to stop scheduler on app shutdown
        atexit.register(stop_scheduler)
        app.logger.info("Scheduler initialized and started successfully")
    else:
        app.logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")

    return app
