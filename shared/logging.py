"""
Structured logging with JSON formatting and trace correlation.

Provides:
- JSON-formatted logs for easy parsing
- Trace IDs correlating every log line of one engine call
- Performance-aware logging (latency tracking)

Library modules log through ``logging.getLogger(__name__)`` and attach
structured fields as ``extra={"extra_fields": {...}}``. The service logger
created by ``init_structured_logger("quantcore")`` is the parent of every
``quantcore.*`` module logger, so those records are formatted here too.
"""

import logging
import json
import time
import uuid
from typing import Optional, Dict, Any, List, Tuple, Union
from contextvars import ContextVar, Token
from datetime import datetime, timezone
import traceback
import sys


# Context variables for trace ID propagation
_trace_id: ContextVar[Optional[str]] = ContextVar('trace_id', default=None)
_span_id: ContextVar[Optional[str]] = ContextVar('span_id', default=None)
_parent_span_id: ContextVar[Optional[str]] = ContextVar('parent_span_id', default=None)


def _coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level}")
        return resolved
    return level


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, service_name: str, environment: str = "development"):
        """Initialize JSON formatter.

        Args:
            service_name: Name of the service (e.g. quantcore)
            environment: Environment name (development, staging, production)
        """
        super().__init__()
        self.service_name = service_name
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "environment": self.environment,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "thread_name": record.threadName,
        }

        trace_id = _trace_id.get()
        if trace_id:
            log_data["trace_id"] = trace_id

        span_id = _span_id.get()
        if span_id:
            log_data["span_id"] = span_id

        parent_span_id = _parent_span_id.get()
        if parent_span_id:
            log_data["parent_span_id"] = parent_span_id

        # Structured fields attached by the caller
        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info)
            }

        return json.dumps(log_data, default=str)


class StructuredLogger:
    """Structured logger with context management and tracing support."""

    def __init__(
        self,
        name: str,
        service_name: str,
        environment: str = "development",
        level: Union[int, str] = logging.INFO,
        json_output: bool = True,
        propagate: bool = False,
    ):
        """Initialize structured logger.

        Args:
            name: Logger name (``quantcore`` covers every engine module)
            service_name: Service name written into each JSON record
            environment: Environment (development, staging, production)
            level: Log level, as int or name (default: INFO)
            json_output: Whether to use JSON formatting (default: True)
            propagate: Whether records also reach the root logger
        """
        level = _coerce_level(level)
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.service_name = service_name
        self.environment = environment

        # Remove existing handlers to avoid duplicates
        self.logger.handlers.clear()

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)

        if json_output:
            formatter = JSONFormatter(service_name, environment)
        else:
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )

        handler.setFormatter(formatter)
        self.logger.addHandler(handler)
        self.logger.propagate = propagate

    def _extra(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        fields = dict(fields)
        fields.pop('exc_info', None)
        return {'extra_fields': fields}

    def debug(self, msg: str, **kwargs):
        self.logger.debug(msg, extra=self._extra(kwargs))

    def info(self, msg: str, **kwargs):
        self.logger.info(msg, extra=self._extra(kwargs))

    def warning(self, msg: str, **kwargs):
        self.logger.warning(msg, extra=self._extra(kwargs))

    def error(self, msg: str, **kwargs):
        """Log error message.

        Args:
            msg: Log message
            **kwargs: Additional fields; ``exc_info=True`` attaches the traceback
        """
        self.logger.error(msg, extra=self._extra(kwargs), exc_info=kwargs.get('exc_info', False))

    def critical(self, msg: str, **kwargs):
        self.logger.critical(msg, extra=self._extra(kwargs), exc_info=kwargs.get('exc_info', False))

    def exception(self, msg: str, **kwargs):
        """Log exception with traceback."""
        self.logger.exception(msg, extra=self._extra(kwargs))


class TraceContext:
    """Context manager for trace ID propagation."""

    def __init__(
        self,
        trace_id: Optional[str] = None,
        span_id: Optional[str] = None,
        parent_span_id: Optional[str] = None
    ):
        """Initialize trace context.

        Args:
            trace_id: Optional trace ID (generated if not provided)
            span_id: Optional span ID (generated if not provided)
            parent_span_id: Optional parent span ID
        """
        self.trace_id = trace_id or str(uuid.uuid4())
        self.span_id = span_id or str(uuid.uuid4())
        self.parent_span_id = parent_span_id
        self._tokens: List[Tuple[ContextVar, Token]] = []

    def child(self) -> "TraceContext":
        """New span in the same trace."""
        return TraceContext(trace_id=self.trace_id, parent_span_id=self.span_id)

    def __enter__(self):
        self._tokens.append((_trace_id, _trace_id.set(self.trace_id)))
        self._tokens.append((_span_id, _span_id.set(self.span_id)))
        if self.parent_span_id:
            self._tokens.append((_parent_span_id, _parent_span_id.set(self.parent_span_id)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


class PerformanceLogger:
    """Logger for performance metrics with automatic latency tracking."""

    def __init__(self, logger: StructuredLogger, operation: str):
        """Initialize performance logger.

        Args:
            logger: Structured logger instance
            operation: Operation name being tracked
        """
        self.logger = logger
        self.operation = operation
        self.start_time = None
        self.duration_ms: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.debug(f"{self.operation} started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type:
            self.logger.error(
                f"{self.operation} failed",
                duration_ms=self.duration_ms,
                error_type=exc_type.__name__,
                error_message=str(exc_val),
            )
        else:
            self.logger.info(
                f"{self.operation} completed",
                duration_ms=self.duration_ms
            )


def get_trace_id() -> Optional[str]:
    """Current trace ID, or None outside a TraceContext."""
    return _trace_id.get()


def get_span_id() -> Optional[str]:
    """Current span ID, or None outside a TraceContext."""
    return _span_id.get()


# Logger instances by service:environment
_loggers: Dict[str, StructuredLogger] = {}


def init_structured_logger(
    service_name: str,
    environment: str = "development",
    level: Union[int, str] = logging.INFO,
    json_output: bool = True,
    propagate: bool = False,
) -> StructuredLogger:
    """Initialize (once per service and environment) and return a structured logger.

    Args:
        service_name: Service name; also the logger name
        environment: Environment (development, staging, production)
        level: Log level (default: INFO)
        json_output: Whether to use JSON formatting (default: True)
        propagate: Whether records also reach the root logger

    Returns:
        StructuredLogger instance
    """
    logger_key = f"{service_name}:{environment}"

    if logger_key not in _loggers:
        _loggers[logger_key] = StructuredLogger(
            name=service_name,
            service_name=service_name,
            environment=environment,
            level=level,
            json_output=json_output,
            propagate=propagate,
        )
        _loggers[logger_key].debug(f"Structured logger initialized for {service_name} ({environment})")

    return _loggers[logger_key]
