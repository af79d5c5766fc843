"""Structured logging for opsboard.

All modules log through children of the ``opsboard`` logger. When no handler
is configured, ``configure_logging`` attaches one that writes a JSON object
per line; ``emit_event`` produces machine-friendly lifecycle events through
the same handler.
"""
import json
import logging
import os
import time
from typing import Any

SERVICE = 'opsboard'

logger = logging.getLogger(SERVICE)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        try:
            payload = getattr(record, 'payload', None)
            if payload is None:
                payload = {
                    'ts': time.time(),
                    'level': record.levelname,
                    'name': record.name,
                    'message': record.getMessage(),
                    'pid': os.getpid(),
                }
                if record.exc_info:
                    payload['exc_info'] = self.formatException(record.exc_info)
            return json.dumps(payload, default=str)
        except Exception:
            return super().format(record)


def configure_logging(level: str = 'INFO') -> logging.Logger:
    """Attach the JSON handler to the root opsboard logger once."""
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    return logger


def get_logger(name: str) -> logging.Logger:
    if name == SERVICE or name.startswith(SERVICE + '.'):
        return logging.getLogger(name)
    return logging.getLogger(f'{SERVICE}.{name}')


def emit_event(event: str, level: str = 'info', **fields: Any) -> None:
    """Emit a structured JSON log event.

    Fields are merged into the payload; values that json cannot encode are
    stringified so one bad field never drops the whole event.
    """
    try:
        payload = {
            'ts': time.time(),
            'event': event,
            'level': level,
            'service': SERVICE,
            'pid': os.getpid(),
        }
        for k, v in fields.items():
            try:
                json.dumps({k: v})
                payload[k] = v
            except (TypeError, ValueError):
                payload[k] = str(v)

        log = getattr(logger, level, logger.info)
        log(event, extra={'payload': payload})
    except Exception:
        logger.exception('Failed to emit structured event: %s', event)
