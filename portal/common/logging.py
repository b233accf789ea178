"""
JSON line logging for the portal service and scripts.

Every line carries: timestamp, severity, service, env, version, sha,
request_id, correlation_id, event_type, message, logger, plus any `extra`
fields. Request ids come from X-Request-ID (or X-Correlation-Id) and are
echoed back on the response.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

_REQUEST_ID: ContextVar[Optional[str]] = ContextVar("portal_request_id", default=None)

# LogRecord attributes plus the fields the formatter sets itself.
_SKIP_EXTRA: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime", "service", "severity", "event_type", "request_id", "correlation_id"}

_SEVERITY_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}
_KNOWN_SEVERITIES = frozenset({"DEBUG", "INFO", "NOTICE", "WARNING", "ERROR", "CRITICAL"})


def _one_line(v: Any, limit: int) -> str:
    s = "" if v is None else " ".join(str(v).splitlines()).strip()
    return s if len(s) <= limit else s[: limit - 1] + "…"


def _first_env(*names: str, default: str) -> str:
    for name in names:
        v = (os.getenv(name) or "").strip()
        if v:
            return _one_line(v, 128)
    return default


def default_service_name() -> str:
    return _first_env("SERVICE_NAME", "K_SERVICE", default="portal")


@dataclass(frozen=True)
class _Deployment:
    service: str
    env: str
    version: str
    sha: str

    @classmethod
    def from_env(cls, service: Optional[str] = None) -> "_Deployment":
        return cls(
            service=service or default_service_name(),
            env=_first_env("ENVIRONMENT", "ENV", default="unknown"),
            version=_first_env("APP_VERSION", "K_REVISION", default="unknown"),
            sha=_first_env("GIT_SHA", "COMMIT_SHA", default="unknown"),
        )


def _severity(value: Any) -> str:
    if isinstance(value, int):
        value = logging.getLevelName(value)
    s = str(value or "INFO").strip().upper()
    s = _SEVERITY_ALIASES.get(s, s)
    return s if s in _KNOWN_SEVERITIES else "INFO"


def current_request_id() -> Optional[str]:
    return _REQUEST_ID.get()


@contextmanager
def request_id_scope(request_id: Optional[str] = None) -> Iterator[str]:
    rid = _one_line(request_id, 128) or uuid.uuid4().hex
    token = _REQUEST_ID.set(rid)
    try:
        yield rid
    finally:
        _REQUEST_ID.reset(token)


class JsonLineFormatter(logging.Formatter):
    def __init__(self, deployment: _Deployment) -> None:
        super().__init__()
        self._deployment = deployment

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        rid = getattr(record, "request_id", None) or current_request_id()
        line: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": _severity(getattr(record, "severity", None) or record.levelno),
            "service": getattr(record, "service", None) or self._deployment.service,
            "env": self._deployment.env,
            "version": self._deployment.version,
            "sha": self._deployment.sha,
            "request_id": rid,
            "correlation_id": getattr(record, "correlation_id", None) or rid,
            "event_type": getattr(record, "event_type", None) or "log",
            "message": _one_line(record.getMessage(), 4000),
            "logger": record.name,
        }
        if record.exc_info:
            line["exception"] = "".join(traceback.format_exception(*record.exc_info))[-8000:]

        for key, value in record.__dict__.items():
            if key not in _SKIP_EXTRA and not key.startswith("_"):
                line[key] = value

        return json.dumps(line, separators=(",", ":"), ensure_ascii=False, default=str)


def init_structured_logging(*, service: Optional[str] = None, level: Optional[str] = None) -> None:
    """
    Route the root logger (and uvicorn's loggers) to one JSON line per record
    on stdout. Calling it again replaces the previous handler.
    """
    lvl = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLineFormatter(_Deployment.from_env(service)))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(lvl)

    logging.captureWarnings(True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.handlers = []
        lg.propagate = True


def log_event(
    logger: logging.Logger,
    event_type: str,
    *,
    severity: str = "INFO",
    message: Optional[str] = None,
    **fields: Any,
) -> None:
    """Log a semantic event; `event_type` is the stable key dashboards filter on."""
    level = logging.getLevelName(_severity(severity))
    if not isinstance(level, int):
        level = logging.INFO
    logger.log(level, message or event_type, extra={"event_type": event_type, **fields})


def install_fastapi_request_id_middleware(app: Any, *, service: Optional[str] = None) -> None:
    from starlette.requests import Request

    http_logger = logging.getLogger("portal.http")
    svc = service or default_service_name()

    @app.middleware("http")
    async def _request_id(request: Request, call_next):
        incoming = request.headers.get("x-request-id") or request.headers.get("x-correlation-id")
        started = time.perf_counter()
        status_code = 500
        with request_id_scope(incoming) as rid:
            try:
                response = await call_next(request)
                status_code = response.status_code
            finally:
                log_event(
                    http_logger,
                    "http.request",
                    service=svc,
                    method=request.method,
                    path=request.url.path,
                    status_code=status_code,
                    duration_ms=int((time.perf_counter() - started) * 1000),
                )
        response.headers["X-Request-ID"] = rid
        return response
