"""Logging setup for loan-import, with the route and batch being imported on every record."""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator

# Route and batch of the import in progress; row tasks inherit them
_route: ContextVar[str | None] = ContextVar("loan_import_route", default=None)
_batch: ContextVar[int | None] = ContextVar("loan_import_batch", default=None)

STANDARD_FORMAT = "%(asctime)s | %(levelname)-8s | %(where)s | %(name)s | %(message)s"

NOISY_LOGGERS = ("confluent_kafka", "psycopg", "openpyxl", "faker")


@contextmanager
def route_context(route_name: str) -> Iterator[None]:
    """Tag records logged inside the block with ``route_name``."""
    token = _route.set(route_name)
    try:
        yield
    finally:
        _route.reset(token)


@contextmanager
def batch_context(index: int) -> Iterator[None]:
    """Tag records logged inside the block with the batch ``index``."""
    token = _batch.set(index)
    try:
        yield
    finally:
        _batch.reset(token)


class RouteFilter(logging.Filter):
    """Set ``route``, ``batch`` and ``where`` (``route#batch``, or ``-``) on records."""

    def filter(self, record: logging.LogRecord) -> bool:
        route = getattr(record, "route", None) or _route.get()
        batch = getattr(record, "batch", None)
        if batch is None:
            batch = _batch.get()
        record.route = route
        record.batch = batch
        if route is None:
            record.where = "-"
        else:
            record.where = route if batch is None else f"{route}#{batch}"
        return True


def setup_logging(
    level: str = "INFO",
    format_type: str = "standard",
) -> None:
    """Configure logging for loan-import.

    Parameters
    ----------
    level : str
        Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    format_type : str
        "standard" prints ``route#batch`` as a column; "json" adds
        ``route`` and ``batch`` keys.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if format_type == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(fmt=STANDARD_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(RouteFilter())
    root_logger.addHandler(console_handler)

    logging.getLogger("loan_import").setLevel(log_level)
    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with the route and batch when known."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        route = getattr(record, "route", None) or _route.get()
        if route is not None:
            log_data["route"] = route
        batch = getattr(record, "batch", None)
        if batch is None:
            batch = _batch.get()
        if batch is not None:
            log_data["batch"] = batch

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name.

    Parameters
    ----------
    name : str
        Logger name (usually __name__).

    Returns
    -------
    logging.Logger
        Configured logger.
    """
    return logging.getLogger(name)
