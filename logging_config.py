"""
Logging configuration for structured JSON logging.

JSON output is the default; a readable format is used for development.
Session-scoped loggers carry the session id and scene id on every record.
"""

import logging
import os
import sys
from typing import Any, Optional

from pythonjsonlogger import jsonlogger

from constants import LOG_FORMAT_JSON, LOG_LEVEL_DEVELOPMENT, LOG_LEVEL_PRODUCTION

READABLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
JSON_FORMAT = '%(timestamp)s %(level)s %(logger)s %(message)s'


class ContextualJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter that always emits timestamp, level and logger fields.

    Fields can be renamed for log shippers that expect other keys
    (e.g. ``{'level': 'severity'}``).
    """

    def __init__(self, *args, rename_fields: Optional[dict] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.rename_fields = rename_fields or {}

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get('timestamp'):
            log_record['timestamp'] = self.formatTime(record, self.datefmt)
        if not log_record.get('level'):
            log_record['level'] = record.levelname
        if not log_record.get('logger'):
            log_record['logger'] = record.name

        for old_name, new_name in self.rename_fields.items():
            if old_name in log_record:
                log_record[new_name] = log_record.pop(old_name)


def _env_wants_json() -> bool:
    return os.getenv("LOG_FORMAT_JSON", str(LOG_FORMAT_JSON)).lower() in ("true", "1", "yes")


def _env_log_level() -> str:
    env = os.getenv("ENV", "production").lower()
    return LOG_LEVEL_DEVELOPMENT if env in ("dev", "development") else LOG_LEVEL_PRODUCTION


def setup_logging(use_json: Optional[bool] = None, log_level: Optional[str] = None) -> None:
    """
    Configure root logging with JSON or readable output on stdout.

    Args:
        use_json: Force JSON (True) or readable (False) output. None reads
                  LOG_FORMAT_JSON from the environment.
        log_level: Level name such as "INFO". None picks DEBUG when
                   ENV=development and INFO otherwise.
    """
    if use_json is None:
        use_json = _env_wants_json()
    if log_level is None:
        log_level = _env_log_level()

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if use_json:
        formatter: logging.Formatter = ContextualJsonFormatter(
            JSON_FORMAT,
            rename_fields={'timestamp': '@timestamp', 'level': 'severity'},
        )
    else:
        formatter = logging.Formatter(READABLE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper()))


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that merges fixed context into every record.

    Usage:
        logger = get_session_logger(__name__, session_id, scene_id)
        logger.info_event("node_entered", "Entered node", node_id="n002")
    """

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        extra = dict(kwargs.get('extra') or {})
        extra.update(self.extra)
        kwargs['extra'] = extra
        return msg, kwargs

    def log_event(self, level: int, event_type: str, message: str, **context: Any) -> None:
        """Log a typed event; ``event_type`` lands in the record as a field."""
        context['event_type'] = event_type
        self.log(level, message, extra=context)

    def info_event(self, event_type: str, message: str, **context: Any) -> None:
        self.log_event(logging.INFO, event_type, message, **context)

    def warning_event(self, event_type: str, message: str, **context: Any) -> None:
        self.log_event(logging.WARNING, event_type, message, **context)

    def error_event(self, event_type: str, message: str, **context: Any) -> None:
        self.log_event(logging.ERROR, event_type, message, **context)

    def debug_event(self, event_type: str, message: str, **context: Any) -> None:
        self.log_event(logging.DEBUG, event_type, message, **context)


def get_session_logger(name: str, session_id: str, scene_id: str) -> StructuredLoggerAdapter:
    """Return an adapter that tags records with session and scene ids."""
    return StructuredLoggerAdapter(
        logging.getLogger(name),
        {'session_id': session_id, 'scene': scene_id},
    )
