"""Runtime settings for the realtime layer.

Every field can be overridden through an ``OPSBOARD_*`` environment variable.
``Settings.from_env()`` reads the environment at call time so tests can
monkeypatch variables between app instances.
"""
import logging
import os
from dataclasses import dataclass, field, fields
from typing import List, Optional

logger = logging.getLogger('opsboard.config')

DEFAULT_DB_PATH = os.path.expanduser('~/.openclaw/opsboard.db')

# field name -> environment variable
_ENV_NAMES = {
    'db_path': 'OPSBOARD_DB',
    'poll_interval': 'OPSBOARD_POLL_SEC',
    'poll_backoff_cap': 'OPSBOARD_POLL_BACKOFF_CAP_SEC',
    'ws_page_size': 'OPSBOARD_WS_PAGE_SIZE',
    'realtime_page_size': 'OPSBOARD_REALTIME_PAGE_SIZE',
    'batch_size': 'OPSBOARD_BATCH_SIZE',
    'heartbeat_interval': 'OPSBOARD_HEARTBEAT_SEC',
    'liveness_interval': 'OPSBOARD_LIVENESS_SEC',
    'admin_key': 'OPSBOARD_ADMIN_KEY',
    'log_level': 'OPSBOARD_LOG_LEVEL',
    'cors_origins': 'OPSBOARD_CORS_ORIGINS',
}


@dataclass
class Settings:
    db_path: str = DEFAULT_DB_PATH
    poll_interval: float = 2.0
    poll_backoff_cap: float = 30.0
    ws_page_size: int = 10
    realtime_page_size: int = 20
    batch_size: int = 5
    heartbeat_interval: float = 15.0
    liveness_interval: float = 30.0
    admin_key: Optional[str] = None
    log_level: str = 'INFO'
    cors_origins: List[str] = field(default_factory=lambda: ['*'])

    @classmethod
    def from_env(cls, **overrides) -> 'Settings':
        """Build settings from defaults, then environment, then explicit overrides."""
        values = {}
        for f in fields(cls):
            raw = os.environ.get(_ENV_NAMES[f.name])
            if raw is None or raw == '':
                continue
            values[f.name] = _coerce(f.name, raw, getattr(cls(), f.name))
        values.update(overrides)
        return cls(**values)

    def validate(self):
        if self.poll_interval <= 0 or self.heartbeat_interval <= 0 or self.liveness_interval <= 0:
            raise ValueError('invalid Settings: intervals must be positive')
        if self.batch_size < 1 or self.ws_page_size < 1 or self.realtime_page_size < 1:
            raise ValueError('invalid Settings: page and batch sizes must be >= 1')


def _coerce(name: str, raw: str, default):
    if isinstance(default, list):
        return [part.strip() for part in raw.split(',') if part.strip()]
    if isinstance(default, bool):
        return raw.strip().lower() in ('1', 'true', 'yes', 'on')
    if isinstance(default, (int, float)):
        try:
            return type(default)(raw)
        except ValueError:
            logger.warning('ignoring invalid %s=%r, using %r', _ENV_NAMES[name], raw, default)
            return default
    if name == 'db_path':
        return os.path.expanduser(raw)
    return raw
