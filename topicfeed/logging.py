"""Structured logging for topicfeed.

All modules log through structlog on top of the stdlib root logger. Batch and
source context (``tenant_id``, ``source_id``) is bound with
``structlog.contextvars`` by the pipeline and the health monitor, and merged
into every event emitted while it is bound.
"""

import json
import logging
import sys
import time
from typing import Any

import structlog
from structlog import contextvars, processors, stdlib

from .config import get_settings


def _shared_processors() -> list[Any]:
    return [
        contextvars.merge_contextvars,
        stdlib.filter_by_level,
        stdlib.add_logger_name,
        stdlib.add_log_level,
        stdlib.PositionalArgumentsFormatter(),
        processors.TimeStamper(fmt="iso", utc=True),
        processors.StackInfoRenderer(),
        processors.format_exc_info,
    ]


def setup_logging(log_level: str | None = None, json_logging: bool | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Arguments left as None fall back to ``LOG_LEVEL`` / ``JSON_LOGGING``.
    Safe to call repeatedly; the CLIs call it again with their own level.
    """
    settings = get_settings()
    level_name = (log_level or settings.log_level).upper()
    level = getattr(logging, level_name, logging.INFO)
    use_json = settings.json_logging if json_logging is None else json_logging

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    # basicConfig is a no-op once handlers exist
    logging.getLogger().setLevel(level)

    renderer: list[Any]
    if use_json:
        renderer = [processors.JSONRenderer(serializer=json.dumps, default=str)]
    else:
        renderer = [
            processors.CallsiteParameterAdder(
                parameters=[processors.CallsiteParameter.FILENAME,
                            processors.CallsiteParameter.LINENO]
            ),
            structlog.dev.ConsoleRenderer(colors=False),
        ]

    structlog.configure(
        processors=_shared_processors() + renderer,
        wrapper_class=stdlib.BoundLogger,
        logger_factory=stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class LoggingMixin:
    """Gives a class a ``logger`` named after its module and class."""

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        return get_logger(f"{self.__class__.__module__}.{self.__class__.__name__}")


def log_processing_stage(
    stage: str,
    input_count: int,
    output_count: int,
    duration: float | None = None,
    **kwargs: Any
) -> dict[str, Any]:
    """Event fields for the end of a processing stage.

    Usage: ``logger.info(**log_processing_stage("ingest", 10, 8, admitted=8))``
    """
    event = {
        "event": "processing_stage",
        "stage": stage,
        "input_count": input_count,
        "output_count": output_count,
        **kwargs
    }
    if duration is not None:
        event["duration"] = round(duration, 3)
    return event


def log_error(error: BaseException, context: str | None = None, **kwargs: Any) -> dict[str, Any]:
    """Event fields for a caught exception."""
    event = {
        "event": "error",
        "error_type": type(error).__name__,
        "error_message": str(error),
        **kwargs
    }
    if context:
        event["context"] = context
    return event


class PerformanceLogger:
    """Logs start, completion (with duration) or failure of an operation.

    The measured duration stays available on ``duration`` after the block.
    """

    def __init__(self, operation: str, logger: structlog.stdlib.BoundLogger):
        self.operation = operation
        self.logger = logger
        self.duration: float | None = None
        self._started: float | None = None

    def __enter__(self) -> "PerformanceLogger":
        self._started = time.perf_counter()
        self.logger.debug("operation_started", operation=self.operation)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._started is None:
            return
        self.duration = round(time.perf_counter() - self._started, 3)
        if exc_type is None:
            self.logger.info("operation_completed", operation=self.operation, duration=self.duration)
        else:
            self.logger.error(
                "operation_failed",
                operation=self.operation,
                duration=self.duration,
                error_type=exc_type.__name__,
                error_message=str(exc_val),
            )


setup_logging()
