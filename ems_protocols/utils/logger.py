from __future__ import annotations

"""Structured logging for the EMS protocol service.

Records carry a correlation id (the request trace id when one is bound) and an
optional ``context`` mapping passed through ``extra={"context": {...}}``. The
``dev`` environment renders colourised single lines; every other environment
emits one JSON object per record.
"""

import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from ems_protocols.utils.config import get_settings

# contextvars follow a request into FastAPI's threadpool; thread locals do not.
_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
_configured = False

_LEVEL_COLOURS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[41m",
}
_RESET = "\033[0m"


class CorrelationIdFilter(logging.Filter):
    """Stamp records with the correlation id bound to the current context."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401 - required signature
        record.correlation_id = _correlation_id.get() or "-"
        return True


class JsonFormatter(logging.Formatter):
    """One JSON document per record, for log shipping outside development."""

    def __init__(self, service: str, environment: str) -> None:
        super().__init__()
        self._service = service
        self._environment = environment

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - required signature
        document: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": self._service,
            "env": self._environment,
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "-"),
        }
        context = getattr(record, "context", None)
        if context:
            document["context"] = context
        if record.exc_info:
            document["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(document, default=str)


class DevFormatter(logging.Formatter):
    """Colourised ``key=value`` lines for a local terminal."""

    def __init__(self) -> None:
        super().__init__(
            "%(asctime)s %(levelname)-7s %(name)s [%(correlation_id)s] %(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - required signature
        line = super().format(record)
        context = getattr(record, "context", None)
        if context:
            line = f"{line} | {_render_pairs(context)}"
        colour = _LEVEL_COLOURS.get(record.levelno)
        return f"{colour}{line}{_RESET}" if colour else line


def _render_pairs(context: Mapping[str, Any]) -> str:
    return " ".join(f"{key}={value}" for key, value in context.items())


def set_correlation_id(correlation_id: Optional[str]) -> None:
    """Bind ``correlation_id`` to the current context; a falsy value unbinds it."""

    _correlation_id.set(correlation_id or None)


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def clear_correlation_id() -> None:
    _correlation_id.set(None)


def configure_logging(
    level: Optional[str] = None,
    environment: Optional[str] = None,
    *,
    force: bool = False,
) -> None:
    """Install the service handler on the root logger.

    Settings supply the level and environment unless overridden. Repeated calls
    are no-ops unless ``force`` is set.
    """

    global _configured  # noqa: PLW0603 - module-level state
    if _configured and not force:
        return

    settings = get_settings()
    environment = environment or settings.ENVIRONMENT

    handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    if environment == "dev":
        handler.setFormatter(DevFormatter())
    else:
        handler.setFormatter(JsonFormatter(settings.APP_NAME, environment))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel((level or settings.LOG_LEVEL).upper())
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


def log_request(
    method: str,
    path: str,
    status_code: Optional[int],
    duration_ms: float,
    *,
    failed: bool = False,
) -> None:
    """Access log entry for one HTTP request."""

    logger = get_logger("ems_protocols.access")
    context = {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
    }
    if failed:
        logger.exception("Request failed.", extra={"context": context})
    else:
        logger.info("Request complete.", extra={"context": context})


def log_llm_call(
    model: str,
    operation: str,
    prompt_tokens: int,
    completion_tokens: int,
    latency_ms: float,
) -> None:
    """Token usage and latency of one language model call."""

    get_logger("ems_protocols.llm").debug(
        "LLM %s call completed.",
        operation,
        extra={
            "context": {
                "model": model,
                "operation": operation,
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "latency_ms": round(latency_ms, 2),
            }
        },
    )


def log_error(error: Exception, context: Optional[Mapping[str, Any]] = None) -> None:
    """Log ``error`` with its traceback and any extra context."""

    detail = dict(context or {})
    detail["error"] = str(error)
    detail["error_type"] = type(error).__name__
    get_logger("ems_protocols.error").error(
        "%s raised.",
        type(error).__name__,
        exc_info=(type(error), error, error.__traceback__),
        extra={"context": detail},
    )
