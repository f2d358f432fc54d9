"""
Request-scoped log context.

Every log line carries the request's trace id and, while a provider mutation
runs, the application it targets. Both live in context variables so they
follow the request into FastAPI's worker threads.
"""
import logging
import os
import re
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional


TRACE_HEADER = "X-Request-Id"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s trace_id=%(trace_id)s app=%(app)s %(message)s"

# Caller-supplied ids are echoed into headers and log lines.
_ACCEPTABLE_TRACE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

_trace_id_var: ContextVar[str] = ContextVar("trace_id", default="-")
_app_var: ContextVar[str] = ContextVar("app", default="-")


def get_trace_id() -> str:
    return _trace_id_var.get()


def get_log_app() -> str:
    return _app_var.get()


def accept_trace_id(raw: Optional[str]) -> str:
    """Return ``raw`` when it is a usable trace id, else a fresh one."""
    if raw and _ACCEPTABLE_TRACE_ID.match(raw):
        return raw
    return uuid.uuid4().hex


@contextmanager
def trace_context(trace_id: str) -> Iterator[str]:
    token = _trace_id_var.set(trace_id)
    try:
        yield trace_id
    finally:
        _trace_id_var.reset(token)


@contextmanager
def app_context(app: str) -> Iterator[None]:
    token = _app_var.set(app)
    try:
        yield
    finally:
        _app_var.reset(token)


class LogContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = get_trace_id()
        record.app = get_log_app()
        return True


def setup_logging(level_name: Optional[str] = None) -> None:
    """
    Install the context filter on the root logger's stream handlers.

    When no stream handler exists one is added with ``LOG_FORMAT``. Repeated
    calls only change the level.
    """
    level_name = (level_name or os.getenv("LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    handlers = [h for h in root.handlers if isinstance(h, logging.StreamHandler)]
    if not handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT))
        root.addHandler(handler)
        handlers = [handler]

    for handler in handlers:
        if not any(isinstance(f, LogContextFilter) for f in handler.filters):
            handler.addFilter(LogContextFilter())
