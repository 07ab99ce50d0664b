"""Logging configuration for the service."""

from __future__ import annotations

import contextvars
import logging

from wardsync.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s request_id=%(request_id)s"

request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id",
    default=None,
)

_base_record_factory = logging.getLogRecordFactory()


def _record_factory(*args, **kwargs) -> logging.LogRecord:
    record = _base_record_factory(*args, **kwargs)
    record.request_id = request_id_var.get() or "-"
    return record


def configure_logging(level: str | None = None) -> None:
    """Stamp every record with the current request id and set the root level.

    Safe to call more than once; the API module configures on import and
    the preseed CLI reconfigures with its own level.
    """
    logging.setLogRecordFactory(_record_factory)
    resolved = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    logging.getLogger().setLevel(resolved)
    logging.getLogger("urllib3").setLevel(max(resolved, logging.WARNING))
