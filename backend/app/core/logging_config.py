"""
Structured logging configuration.

Production emits one JSON object per line; every other environment gets a
coloured single-line format.  Both carry the request id set by
``RequestLoggingMiddleware`` and the provider / assessment telemetry that
callers attach through ``extra``:

    logger.info("Provider answered", extra={"provider": "weather", "duration_ms": 412})

Only keys listed in ``EXTRA_FIELDS`` are copied into log entries.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.app.core.config import settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "request_context", default={}
)

EXTRA_FIELDS = (
    "lat", "lon", "province", "provider", "risk_score", "confidence",
    "attempt", "duration_ms", "status_code", "endpoint",
)

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def set_request_context(**kwargs: Any) -> None:
    """Bind request-scoped fields; call with no arguments to clear."""
    _request_context.set(kwargs)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def _extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {key: getattr(record, key) for key in EXTRA_FIELDS if hasattr(record, key)}


def _exception_summary(record: logging.LogRecord) -> Optional[Dict[str, str]]:
    if record.exc_info and record.exc_info[1]:
        exc = record.exc_info[1]
        return {"type": type(exc).__name__, "message": str(exc)}
    return None


# ── JSON Formatter (Production) ──

class JSONFormatter(logging.Formatter):
    """Machine-parseable entries tagged with the service name and version."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        ctx = get_request_context()
        if ctx:
            entry["request"] = ctx
        entry.update(_extras(record))

        exc = _exception_summary(record)
        if exc:
            entry["exception"] = exc
        return json.dumps(entry, default=str)


# ── Pretty Formatter (Development) ──

class PrettyFormatter(logging.Formatter):
    """Coloured human-readable format for local development."""

    LEVEL_COLOURS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelno, self.RESET)
        request_id = get_request_context().get("request_id", "")
        extras = _extras(record)
        provider = extras.pop("provider", None)

        parts = [
            f"{colour}{self.formatTime(record, '%H:%M:%S')} {record.levelname:8s}{self.RESET}",
            f"[{request_id[:8]}]" if request_id else "",
            f"{record.name}{f' <{provider}>' if provider else ''}:",
            record.getMessage(),
        ]
        line = " ".join(p for p in parts if p)
        if extras:
            line += "  " + " ".join(f"{k}={v}" for k, v in extras.items())

        exc = _exception_summary(record)
        if exc:
            line += f"\n  {exc['type']}: {exc['message']}"
        return line


# ── Setup ──

def setup_logging(level: Optional[str] = None) -> None:
    """Install a single stdout handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if settings.is_production else PrettyFormatter())
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
