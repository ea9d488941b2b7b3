# ==============================================================================
# CONFIGURATION - Defaults and environment lookup
# ==============================================================================
# Every setting can come from the environment or be overridden with keyword
# arguments (tests build Config(data_dir=..., storage_backend='memory')).
# ==============================================================================

import logging
import os
from datetime import timedelta
from typing import Any, Dict, Optional


# ==============================================================================
# PERSISTED KEYS
# ==============================================================================

# Recognized tables and the namespaced key each one is stored under.
TABLES: Dict[str, str] = {
    'users': 'stockwise_users',
    'products': 'stockwise_products',
    'suppliers': 'stockwise_suppliers',
    'stock_logs': 'stockwise_stock_logs',
    'activity_logs': 'stockwise_activity_logs',
    'categories': 'stockwise_categories',
}

AUTH_KEY = 'stockwise_auth_state'
AUTH_LOG_KEY = 'stockwise_auth_logs'
REDIRECT_KEY = 'stockwise_redirect_after_login'

# Keys written by older releases, migrated on startup.
LEGACY_AUTH_KEYS = ('stockwise_user', 'stockwise_current_user', 'stockwise_session')

DEFAULT_SESSION_DURATION = timedelta(hours=1)
DEFAULT_SESSION_CHECK_INTERVAL = 60.0
ACTIVITY_LOG_LIMIT = 1000
AUTH_LOG_LIMIT = 100

LOG_FORMAT = '[%(levelname)s] %(name)s: %(message)s'


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value.strip() == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """
    Application settings.

    Resolution order: keyword argument, then environment variable, then the
    module default.

    Usage:
        config = Config()
        config = Config(storage_backend='memory', seed_sample_data=False)
    """

    def __init__(self, **overrides: Any):
        self.data_dir: str = os.environ.get(
            'STOCKWISE_DATA_DIR', os.path.join(os.getcwd(), 'data'))
        self.storage_backend: str = os.environ.get('STOCKWISE_STORAGE', 'json').lower()
        self.session_duration: timedelta = timedelta(
            minutes=float(os.environ.get('STOCKWISE_SESSION_MINUTES',
                                         DEFAULT_SESSION_DURATION.total_seconds() / 60)))
        self.session_check_interval: float = float(os.environ.get(
            'STOCKWISE_SESSION_CHECK_SECONDS', DEFAULT_SESSION_CHECK_INTERVAL))
        self.activity_log_limit: int = ACTIVITY_LOG_LIMIT
        self.auth_log_limit: int = AUTH_LOG_LIMIT
        self.seed_sample_data: bool = _env_bool('STOCKWISE_SEED', True)
        self.start_session_monitor: bool = _env_bool('STOCKWISE_SESSION_MONITOR', True)
        self.log_level: str = os.environ.get('STOCKWISE_LOG_LEVEL', 'INFO').upper()
        self.storage_quota_bytes: Optional[int] = None

        for name, value in overrides.items():
            if not hasattr(self, name):
                raise TypeError(f"Unknown setting: {name}")
            setattr(self, name, value)

        if self.storage_backend not in ('json', 'memory'):
            raise ValueError(f"Unsupported storage backend: {self.storage_backend}")

    def __repr__(self) -> str:
        return (f"Config(storage_backend={self.storage_backend!r}, "
                f"data_dir={self.data_dir!r})")


def configure_logging(level: str = 'INFO') -> None:
    """
    Install a console handler on the package logger.

    Calling it more than once only updates the level.
    """
    package_logger = logging.getLogger('stockwise')
    package_logger.setLevel(level)
    if not any(getattr(h, '_stockwise', False) for h in package_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._stockwise = True
        package_logger.addHandler(handler)
