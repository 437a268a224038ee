"""
Structured logging.

Every line is a JSON object on stderr (stdout belongs to CLI output) carrying
the HTTP request_id and, inside an indexing run, its run_id.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional
from uuid import uuid4

import structlog

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="no-request")

# Chatty at INFO; their warnings still come through.
_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "backoff", "sqlalchemy.engine")


def get_request_id() -> str:
    return request_id_ctx.get()


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set request ID in context. Generates one if not provided."""
    rid = request_id or uuid4().hex[:8]
    request_id_ctx.set(rid)
    return rid


def new_run_id() -> str:
    return uuid4().hex[:8]


@contextmanager
def indexing_run(run_id: Optional[str] = None) -> Iterator[str]:
    """Bind run_id to every log line emitted inside the block."""
    rid = run_id or new_run_id()
    with structlog.contextvars.bound_contextvars(run_id=rid):
        yield rid


def add_request_id(logger, method_name, event_dict):
    """Processor to add request_id to all log entries."""
    event_dict["request_id"] = get_request_id()
    return event_dict


def _renderer(debug: bool):
    # Pretty output only for a human at a terminal.
    if debug and sys.stderr.isatty():
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def setup_logging(debug: bool = False) -> None:
    """Configure structlog and the stdlib root logger for the process."""
    if hasattr(sys.stderr, "reconfigure"):
        # Source paths and identifiers may be any unicode.
        sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    log_level = logging.DEBUG if debug else logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_request_id,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            _renderer(debug),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    return structlog.get_logger(name)
