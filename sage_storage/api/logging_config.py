"""
Structured JSON logging configuration for the storage gateway.

- Uses python's logging + python-json-logger for structured logs.
- Provides request_id context via ContextVar and a middleware helper.
- The service calls configure_logging() at startup.
"""
import logging
import os
from contextvars import ContextVar
from typing import Optional

from pythonjsonlogger import jsonlogger

# Context var to carry request id across async contexts
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="unknown")


class RequestIdFilter(logging.Filter):
    def filter(self, record):
        record.request_id = request_id_ctx.get()
        return True


def configure_logging(level: Optional[str] = None) -> None:
    root = logging.getLogger()
    if any(getattr(h, "_sage_storage", False) for h in root.handlers):
        # already configured
        return

    root.setLevel((level or os.environ.get("LOG_LEVEL", "INFO")).upper())
    handler = logging.StreamHandler()
    formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s %(module)s %(funcName)s %(lineno)d"
    )
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())
    handler._sage_storage = True
    root.addHandler(handler)


def set_request_id(request_id: str) -> None:
    request_id_ctx.set(request_id)
