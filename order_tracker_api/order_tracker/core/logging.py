from __future__ import annotations

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional


# Context variables for enriched logging
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
actor_id_var: ContextVar[Optional[str]] = ContextVar("actor_id", default=None)

LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | %(name)s | cid=%(correlation_id)s | actor=%(actor_id)s | %(message)s"
)

# Libraries that log every statement or request at INFO.
QUIET_LOGGERS = ("sqlalchemy.engine", "uvicorn.access", "alembic.runtime.migration")


class LoggingContextFilter(logging.Filter):
    """
    Inject correlation_id and actor_id from contextvars into each record.

    "-" stands in when no request is active (startup, migrations).
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        record.correlation_id = correlation_id_var.get() or "-"
        record.actor_id = actor_id_var.get() or "-"
        return True


class UTCFormatter(logging.Formatter):
    """Formatter with ISO-like UTC timestamps."""

    converter = time.gmtime

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:  # noqa: N802
        stamp = time.strftime("%Y-%m-%dT%H:%M:%S", self.converter(record.created))
        return f"{stamp}.{int(record.msecs):03d}Z"


# PUBLIC_INTERFACE
def configure_logging(level: int | str = logging.INFO) -> None:
    """
    Configure root logging with the context filter and UTC timestamps.

    Safe to call more than once; earlier handlers are replaced.
    """
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(UTCFormatter(fmt=LOG_FORMAT))
    handler.addFilter(LoggingContextFilter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


# PUBLIC_INTERFACE
@contextmanager
def log_context(correlation_id: Optional[str], actor_id: Optional[str] = None) -> Iterator[None]:
    """Bind correlation and actor ids for the duration of a request or socket."""
    corr_token = correlation_id_var.set(correlation_id)
    actor_token = actor_id_var.set(actor_id)
    try:
        yield
    finally:
        correlation_id_var.reset(corr_token)
        actor_id_var.reset(actor_token)
