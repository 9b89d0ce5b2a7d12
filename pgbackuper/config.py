import os


def _env_bool(name, default):
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Base configuration"""

    # Backup configuration file (JSON)
    BACKUP_CONFIG_FILE = os.environ.get('BACKUP_CONFIG_FILE') or '/config/config.json'

    # Scheduler
    SCHEDULER_ENABLED = _env_bool('SCHEDULER_ENABLED', 'true')
    BACKUP_SCHEDULE_CRON = os.environ.get('BACKUP_SCHEDULE_CRON') or '0 * * * *'
    SCHEDULER_TIMEZONE = 'UTC'

    # Logging (LOG_LEVEL overrides the level from the backup configuration)
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'
    LOG_LEVEL = os.environ.get('LOG_LEVEL')

    # Number of past runs kept in memory for the status API
    RUN_HISTORY_SIZE = int(os.environ.get('RUN_HISTORY_SIZE') or 50)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    BACKUP_CONFIG_FILE = os.environ.get('BACKUP_CONFIG_FILE') or os.path.join(DATA_DIR, 'config.json')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = False
    SCHEDULER_ENABLED = False
    LOG_DIR = None
    BACKUP_CONFIG_FILE = None


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
