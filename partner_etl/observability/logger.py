"""
Structured JSON logging for the partner-file pipeline

Every stage of a file run logs through these helpers so that a single file
can be followed across validation, staging, rule processing and import by
filtering on file_name / batch_id / job_id. The coordinator binds those
fields once per run with file_context(); records from the stores and the
rule engine pick them up without passing them around.
"""
import logging
import os
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger import jsonlogger

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

DEFAULT_LOGGER_NAME = "partner_etl"

_file_context: ContextVar[dict] = ContextVar("partner_etl_file_context", default={})


@contextmanager
def file_context(**fields):
    """
    Bind file_name / batch_id / job_id (or any other field) to every record
    logged in this thread until the block exits. Nested blocks add to the
    outer fields; None values are dropped.
    """
    merged = {**_file_context.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _file_context.set(merged)
    try:
        yield merged
    finally:
        _file_context.reset(token)


def bind_context(**fields) -> None:
    """Add fields to the current context until the enclosing file_context() exits."""
    _file_context.set({**_file_context.get(), **{k: v for k, v in fields.items() if v is not None}})


def current_context() -> dict:
    return dict(_file_context.get())


class PipelineJsonFormatter(jsonlogger.JsonFormatter):
    """Stamps level, logger, thread and the bound file context on every record"""

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["module"] = record.module
        log_record["function"] = record.funcName
        # Files of one batch run on worker threads
        log_record["thread"] = record.threadName

        for key, value in _file_context.get().items():
            log_record.setdefault(key, value)


class _TextContextFilter(logging.Filter):
    """Renders the bound file context as a suffix for the text format"""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _file_context.get()
        record.file_context = (
            " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]" if context else ""
        )
        return True


def setup_logger(
    name: str = DEFAULT_LOGGER_NAME,
    level: str | None = None,
    format_type: str | None = None,
) -> logging.Logger:
    """
    Configure a logger to write to stdout.

    Args:
        name: Logger name; configure the package root ("partner_etl") so
              every module logger propagates to it
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL (env LOG_LEVEL, default INFO)
        format_type: "json" or "text" (env LOG_FORMAT, default json)
    """
    log_level = LOG_LEVELS.get((level or os.getenv("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    format_type = format_type or os.getenv("LOG_FORMAT", "json")

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if format_type == "json":
        handler.setFormatter(PipelineJsonFormatter(
            fmt="%(timestamp)s %(level)s %(logger)s %(module)s %(function)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        ))
    else:
        handler.addFilter(_TextContextFilter())
        handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(threadName)s - %(message)s%(file_context)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))

    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """
    Module logger ("partner_etl.batch.pipeline"); the package root logger is
    configured with defaults on first use.
    """
    root_name = name.split(".")[0]
    if not logging.getLogger(root_name).handlers:
        setup_logger(root_name)
    return logging.getLogger(name)


class log_operation:
    """
    Context manager for logging a pipeline stage with its duration

    Usage:
        with log_operation("stage:Staging", logger=logger, file_name="a.xlsx") as op:
            ...
        op.elapsed
    """

    def __init__(self, operation_name: str, logger: logging.Logger | None = None, **extra_fields):
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.extra_fields = {k: v for k, v in extra_fields.items() if v is not None}
        self.start_time: float | None = None

    def __enter__(self):
        self.start_time = time.monotonic()
        self.logger.debug(
            f"Starting: {self.operation_name}",
            extra={"operation": self.operation_name, **self.extra_fields},
        )
        return self

    @property
    def elapsed(self) -> float:
        if self.start_time is None:
            return 0.0
        return time.monotonic() - self.start_time

    def __exit__(self, exc_type, exc_val, exc_tb):
        fields = {
            "operation": self.operation_name,
            "duration_seconds": round(self.elapsed, 3),
            **self.extra_fields,
        }
        if exc_type is None:
            self.logger.info(f"Completed: {self.operation_name}", extra={**fields, "status": "success"})
        else:
            # Stage failures are classified by the coordinator; no traceback here
            self.logger.warning(
                f"Failed: {self.operation_name}",
                extra={**fields, "status": "error", "error_type": exc_type.__name__, "error_message": str(exc_val)},
            )
        return False
