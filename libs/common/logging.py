import json
import logging
import sys
from contextvars import ContextVar
from typing import Optional

from libs.common.config import get_settings

# Reconciliation context, attached to every structured log line
_purpose_ctx: ContextVar[Optional[str]] = ContextVar("purpose", default=None)
_intent_id_ctx: ContextVar[Optional[str]] = ContextVar("intent_id", default=None)


class JsonFormatter(logging.Formatter):
    """
    JSON-lines formatter for structured logging in non-local environments.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
            "timestamp": self.formatTime(record, self.datefmt),
        }

        purpose = _purpose_ctx.get()
        if purpose:
            log_record["purpose"] = purpose
        intent_id = _intent_id_ctx.get()
        if intent_id:
            log_record["intent_id"] = intent_id

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_record.update(extra_fields)

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_record, default=str)


def set_log_context(
    *, purpose: Optional[str] = None, intent_id: Optional[str] = None
) -> None:
    """Attach purpose/intent to log lines emitted from the current task."""
    _purpose_ctx.set(purpose)
    _intent_id_ctx.set(intent_id)


def clear_log_context() -> None:
    _purpose_ctx.set(None)
    _intent_id_ctx.set(None)


def configure_logging() -> None:
    """
    Configure global logging settings.
    """
    settings = get_settings()

    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if settings.ENVIRONMENT == "local":
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
    else:
        formatter = JsonFormatter()

    handler.setFormatter(formatter)

    # Remove existing handlers to avoid duplication
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    root_logger.addHandler(handler)

    # Set third-party loggers to warning to reduce noise
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger for a specific module.
    """
    return logging.getLogger(name)
