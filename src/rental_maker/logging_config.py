"""Structured logging with per-pass and per-asset context.

Every log record emitted while a pass is running is stamped with the pass id
and, while an asset is being handled, its token id and loan id, so the
decision trail for one asset can be reconstructed from the log alone.
"""
from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

pass_id_var: ContextVar[Optional[str]] = ContextVar("pass_id", default=None)
token_id_var: ContextVar[Optional[int]] = ContextVar("token_id", default=None)
loan_id_var: ContextVar[Optional[int]] = ContextVar("loan_id", default=None)

_CONTEXT_FIELDS = ("pass_id", "token_id", "loan_id")

_RESERVED_ATTRS = frozenset((
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "taskName",
    "exc_info",
    "exc_text",
    "stack_info",
) + _CONTEXT_FIELDS)


class AssetContextFilter(logging.Filter):
    """Logging filter that adds pass and asset context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.pass_id = pass_id_var.get()
        record.token_id = token_id_var.get()
        record.loan_id = loan_id_var.get()
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key in _CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Fields passed through ``extra=``
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ContextTextFormatter(logging.Formatter):
    """Plain-text formatter that appends the asset context when present."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        parts = [
            f"{key}={getattr(record, key)}"
            for key in _CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        ]
        if parts:
            return f"{text} [{' '.join(parts)}]"
        return text


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure logging for the process.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON structured logging (True) or plain text (False)
        log_file: Optional file path for logging output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = ContextTextFormatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(AssetContextFilter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(AssetContextFilter())
        root_logger.addHandler(file_handler)

    # web3 and httpx are chatty at INFO
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def generate_pass_id() -> str:
    """Generate a new pass ID."""
    return f"pass_{uuid.uuid4().hex[:12]}"


class LogContext:
    """Context manager for temporary logging context."""

    def __init__(
        self,
        pass_id: Optional[str] = None,
        token_id: Optional[int] = None,
        loan_id: Optional[int] = None,
    ):
        self.pass_id = pass_id
        self.token_id = token_id
        self.loan_id = loan_id
        self.previous_context = {}

    def __enter__(self) -> "LogContext":
        self.previous_context = {
            "pass_id": pass_id_var.get(),
            "token_id": token_id_var.get(),
            "loan_id": loan_id_var.get(),
        }

        if self.pass_id is not None:
            pass_id_var.set(self.pass_id)
        if self.token_id is not None:
            token_id_var.set(self.token_id)
        loan_id_var.set(self.loan_id)

        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        pass_id_var.set(self.previous_context["pass_id"])
        token_id_var.set(self.previous_context["token_id"])
        loan_id_var.set(self.previous_context["loan_id"])


def asset_context(token_id: int, loan_id: Optional[int] = None) -> LogContext:
    """Bind one asset's identifiers to every log line inside the block."""
    return LogContext(token_id=token_id, loan_id=loan_id)
