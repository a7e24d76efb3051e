"""Request-scoped logging utilities.

Every payment and HTTP request runs under a request id so that the rail call,
the ledger append and any failure log lines can be tied together.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Optional

# Request id for the current payment or HTTP request
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class RequestIdFilter(logging.Filter):
    """Stamp log records with the current request id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure root logging for the service.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper()))

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)

    if log_format == "json":
        formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
            '"request_id": "%(request_id)s", "name": "%(name)s", '
            '"message": "%(message)s"}'
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] [%(request_id)s] %(name)s: %(message)s"
        )

    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def generate_request_id(prefix: str = "req") -> str:
    """Generate a short request id such as ``pay-3f9c2a1b7d04``."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class RequestIdContext:
    """Context manager scoping a request id to a block of code.

    An id that is already set is kept, so a payment started from an HTTP
    handler logs under the handler's id.
    """

    def __init__(self, request_id: Optional[str] = None, prefix: str = "req"):
        self.request_id = request_id or get_request_id() or generate_request_id(prefix)
        self._token = None

    def __enter__(self) -> str:
        self._token = request_id_var.set(self.request_id)
        return self.request_id

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        request_id_var.reset(self._token)
