"""Structured JSON logging for the try-on service.

Call ``configure_logging()`` once at startup.  After that every
``logging.getLogger(__name__)`` record is written to stdout as one JSON line.

Two context variables are attached to records when set:

* ``request_id``: bound per HTTP request by ``RequestIdMiddleware``
* ``job_id``: bound by the orchestrator for a job's background task, so
  every record from one polling loop can be grepped together

Background tasks created inside a request copy its context, so a polling
loop also carries the ``request_id`` of the request that created the job.
"""

import json
import logging
import time
import uuid
from contextvars import ContextVar
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

# ── Context variables ─────────────────────────────────────────────────────────
_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_job_id_var: ContextVar[str] = ContextVar("job_id", default="")


def get_request_id() -> str:
    """Return the request ID for the current async context (empty string if none)."""
    return _request_id_var.get()


def get_job_id() -> str:
    return _job_id_var.get()


def bind_job_id(job_id: str) -> None:
    """Tag all further records in the current task with ``job_id``.

    Only call this at the top of a dedicated task: the binding lives as long
    as the task's context.
    """
    _job_id_var.set(job_id)


# ── JSON log formatter ────────────────────────────────────────────────────────


class _JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON objects.

    Standard fields, the bound context ids, and any ``extra=`` key-value pairs.
    """

    # Standard LogRecord attributes that must not leak into the payload
    _SKIP_ATTRS = frozenset(
        vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
        | {"message", "asctime", "taskName"}
    )

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        payload: dict = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        rid = get_request_id()
        if rid:
            payload["request_id"] = rid
        jid = get_job_id()
        if jid:
            payload["job_id"] = jid

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in self._SKIP_ATTRS and not key.startswith("_"):
                payload[key] = value

        return json.dumps(payload, default=str)


# ── Public configuration entry-point ─────────────────────────────────────────


def configure_logging(level: str = "INFO") -> None:
    """Replace the root logger's handlers with a single JSON-to-stdout handler.

    Args:
        level: Logging level string, e.g. ``"INFO"``, ``"DEBUG"``, ``"WARNING"``.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(_JsonFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    # Every poll is an HTTP call; per-request client logs drown the job logs
    for noisy in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Structured JSON logging initialised",
        extra={"log_level": level.upper()},
    )


# ── Request ID middleware ─────────────────────────────────────────────────────


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Inject a unique ``X-Request-ID`` into every request and response.

    An incoming header is honoured so upstream proxies can propagate a trace
    ID; otherwise a fresh UUID is generated.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self._header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self._header_name) or uuid.uuid4().hex

        token = _request_id_var.set(request_id)
        start = time.monotonic()

        try:
            response = await call_next(request)
        finally:
            duration_ms = round((time.monotonic() - start) * 1000, 1)
            _request_id_var.reset(token)

        response.headers[self._header_name] = request_id

        logging.getLogger("app.access").info(
            "%s %s %s",
            request.method,
            request.url.path,
            response.status_code,
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        return response
