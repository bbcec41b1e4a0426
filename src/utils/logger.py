from __future__ import annotations

"""Logging setup shared by the API, the services and the session client.

Records carry the request trace id and an optional ``context`` mapping passed
as ``extra={"context": {...}}``. Context values under sensitive keys are
masked before formatting: credentials never reach the logs, and neither does
dictated or generated clinical text.
"""

import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from src.utils.config import get_settings


REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset(
    {
        "access_token",
        "refresh_token",
        "api_key",
        "authorization",
        "cookie",
        "csrf_token",
        "password",
        "signature",
        "findings",
        "transcript",
        "report",
    }
)

_trace_id: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
_configured = False


def redact(context: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``context`` with sensitive values masked, recursively."""

    cleaned: Dict[str, Any] = {}
    for key, value in context.items():
        if str(key).lower() in SENSITIVE_KEYS:
            cleaned[key] = REDACTED
        elif isinstance(value, Mapping):
            cleaned[key] = redact(value)
        else:
            cleaned[key] = value
    return cleaned


def _record_context(record: logging.LogRecord) -> Optional[Dict[str, Any]]:
    context = getattr(record, "context", None)
    if context is None:
        return None
    if isinstance(context, Mapping):
        return redact(context)
    return {"value": context}


class TraceIdFilter(logging.Filter):
    """Stamp each record with the trace id of the request being served."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401 - required signature
        record.correlation_id = _trace_id.get() or "-"
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shipping in production."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - required signature
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "trace_id": getattr(record, "correlation_id", "-"),
        }
        context = _record_context(record)
        if context is not None:
            payload["context"] = context
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class DevFormatter(logging.Formatter):
    """Coloured single-line output for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[41m",
    }
    RESET = "\033[0m"

    def __init__(self) -> None:
        super().__init__(
            "[%(asctime)s] %(levelname)s %(name)s (%(correlation_id)s) - %(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - required signature
        line = super().format(record)
        color = self.COLORS.get(record.levelname)
        if color:
            line = f"{color}{line}{self.RESET}"
        context = _record_context(record)
        if context is not None:
            line = f"{line}\n    context: {context}"
        return line


def set_correlation_id(trace_id: Optional[str]) -> None:
    """Bind the request trace id to the current context."""

    _trace_id.set(trace_id or None)


def clear_correlation_id() -> None:
    _trace_id.set(None)


def configure_logging() -> None:
    """Install the root handler once; later calls are no-ops."""

    global _configured  # noqa: PLW0603 - intended module-level state
    if _configured:
        return

    settings = get_settings()
    root_logger = logging.getLogger()
    root_logger.setLevel(settings.LOG_LEVEL)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.addFilter(TraceIdFilter())
    handler.setFormatter(DevFormatter() if settings.ENVIRONMENT == "dev" else JsonFormatter())
    root_logger.addHandler(handler)

    # httpx logs every request line at INFO, including query strings.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


def log_ai_call(
    service: str,
    operation: str,
    latency_ms: float,
    prompt_tokens: int = 0,
    completion_tokens: int = 0,
) -> None:
    """Record latency and token usage for one call to the AI provider."""

    get_logger("airad.ai").debug(
        "AI call '%s.%s' completed.",
        service,
        operation,
        extra={
            "context": {
                "service": service,
                "operation": operation,
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "latency_ms": round(latency_ms, 2),
            }
        },
    )


def log_error(error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
    """Log ``error`` with its traceback under the shared error logger."""

    merged = dict(context or {})
    merged["error"] = str(error)
    merged["error_type"] = type(error).__name__
    get_logger("airad.error").error(
        "An error occurred.",
        extra={"context": merged},
        exc_info=(type(error), error, error.__traceback__),
    )
