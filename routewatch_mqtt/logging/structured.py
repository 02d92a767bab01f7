"""
Structured JSON Logger
=====================

Bounded Context: Observability

One JSON object per line, for the MQTT side of the tracker (publishers and
the location subscriber). The rest of the service logs plain text through
the standard logging module.

A line looks like:

    {"timestamp": "2025-10-24T15:30:45.123456+00:00", "level": "INFO",
     "component": "status_publisher", "event": "deviation.status.published",
     "category": "deviation", "message": "Published off-route",
     "metadata": {"person_id": "grandma"}}

The record is built by JSONFormatter from fields attached to the LogRecord,
so any handler the caller adds (file, syslog) gets the same JSON.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .events import LogEvent

_FIELD = "routewatch"


class JSONFormatter(logging.Formatter):
    """Render records emitted by StructuredLogger as one JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        fields = getattr(record, _FIELD, None)
        if fields is None:
            # Foreign record that reached our handler; keep it parseable.
            fields = {'component': record.name, 'event': None}

        entry: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            **fields,
            'message': record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            error = record.exc_info[1]
            entry['exception'] = {'type': type(error).__name__, 'message': str(error)}

        return json.dumps(entry, default=str)


class StructuredLogger:
    """
    Thin wrapper over a stdlib logger that requires a LogEvent per call.

    Args:
        component: Name shown in every line (e.g. "location_subscriber")
        level: Initial level
        logger_name: Underlying logger (default: routewatch_mqtt.<component>)
    """

    def __init__(
        self,
        component: str,
        level: int = logging.INFO,
        logger_name: Optional[str] = None
    ):
        self.component = component
        self.logger = logging.getLogger(logger_name or f"routewatch_mqtt.{component}")
        self.logger.setLevel(level)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(JSONFormatter())
            self.logger.addHandler(handler)
            self.logger.propagate = False

    def _emit(
        self,
        level: int,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]],
        exc_info: Optional[BaseException] = None
    ) -> None:
        if not self.logger.isEnabledFor(level):
            return

        fields: Dict[str, Any] = {
            'component': self.component,
            'event': event.value,
            'category': event.category,
        }
        if metadata:
            fields['metadata'] = metadata

        self.logger.log(level, message, exc_info=exc_info, extra={_FIELD: fields})

    def debug(self, event: LogEvent, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._emit(logging.DEBUG, event, message, metadata)

    def info(self, event: LogEvent, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._emit(logging.INFO, event, message, metadata)

    def warning(self, event: LogEvent, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._emit(logging.WARNING, event, message, metadata)

    def error(
        self,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        exc_info: Optional[BaseException] = None
    ) -> None:
        """
        Log at ERROR. Pass the caught exception as exc_info to embed its
        type and message in the line (no traceback).

        Example:
            >>> try:
            ...     msg = LocationMessage.from_dict(data)
            ... except ValueError as e:
            ...     logger.error(
            ...         event=LogEvent.SCHEMA_VALIDATION_ERROR,
            ...         message="Invalid location sample",
            ...         exc_info=e,
            ...     )
        """
        self._emit(logging.ERROR, event, message, metadata, exc_info)

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)


def create_logger(component: str, level: int = logging.INFO) -> StructuredLogger:
    """Factory used by publishers and the subscriber."""
    return StructuredLogger(component=component, level=level)
