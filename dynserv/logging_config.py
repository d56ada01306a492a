"""
Copyright (C) 2026 Garudex Labs.  All Rights Reserved.
Dynserv, a product of Garudex Labs

Logging configuration for Dynserv.

structlog renders every event through stdlib handlers, as JSON lines in
production or as colored console lines during development. uvicorn's own
loggers propagate into the same handlers. Each inbound request is tagged
with a correlation ID (from X-Request-ID or generated) so the admission,
classification and upstream events of one request can be joined.

The API key is never passed to any logger.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from structlog.types import EventDict


LOGGER_PREFIX = "dynserv"

# Client libraries that log every outbound request at INFO.
CHATTY_LOGGERS = ("httpx", "httpcore")

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def add_correlation_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """structlog processor attaching the request's correlation ID, if any."""
    correlation_id = correlation_id_var.get()
    if correlation_id:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """
    Bind a correlation ID to the current request context.

    Args:
        correlation_id: Caller-supplied request ID. A UUID4 is generated when
            None.

    Returns:
        The correlation ID now in effect
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    correlation_id_var.set(correlation_id)
    return correlation_id


def clear_correlation_id() -> None:
    correlation_id_var.set(None)


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def _build_handler(log_file: Optional[Path], numeric_level: int) -> logging.Handler:
    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file)
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    json_format: bool = True,
) -> None:
    """
    Configure structured logging for the gateway process.

    Replaces any handlers on the root logger with a single file or stderr
    handler. httpx/httpcore are held at WARNING unless DEBUG is requested,
    so target URLs are not logged twice per request.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL); unknown
            names fall back to INFO.
        log_file: Optional path to a log file; stderr when None.
        json_format: JSON lines when True, console rendering when False.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    root_logger.addHandler(_build_handler(log_file, numeric_level))

    chatty_level = numeric_level if numeric_level <= logging.DEBUG else max(numeric_level, logging.WARNING)
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(chatty_level)

    processors: list = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_correlation_id,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=log_file is None and sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger under the ``dynserv`` namespace.

    Args:
        name: Module ``__name__`` (already namespaced) or a short name that
            gets the ``dynserv.`` prefix.
    """
    if name != LOGGER_PREFIX and not name.startswith(f"{LOGGER_PREFIX}."):
        name = f"{LOGGER_PREFIX}.{name}"
    return structlog.get_logger(name)


# Gateway event helpers

def log_admission_denied(
    logger: structlog.stdlib.BoundLogger,
    kind: str,
    status_code: int,
    reason: str,
    **kwargs: Any,
) -> None:
    """
    Log a request rejected before any outbound connection was attempted.

    Args:
        logger: Logger instance
        kind: Error kind ("Unauthorized", "MissingParameter", ...)
        status_code: HTTP status returned to the caller
        reason: Human-readable reason
        **kwargs: Additional context to log
    """
    log_data: Dict[str, Any] = {
        "event_type": "admission_denied",
        "kind": kind,
        "status_code": status_code,
        "reason": reason,
    }

    log_data.update(kwargs)

    logger.warning("admission_denied", **log_data)


def log_ssrf_block(
    logger: structlog.stdlib.BoundLogger,
    hostname: str,
    rule: Optional[str] = None,
    **kwargs: Any,
) -> None:
    """
    Log a target rejected because it resolves to a private or internal host.

    Args:
        logger: Logger instance
        hostname: Hostname taken from the target URL
        rule: Name of the classifier rule that matched
        **kwargs: Additional context to log
    """
    log_data: Dict[str, Any] = {
        "event_type": "ssrf_block",
        "hostname": hostname,
    }

    if rule is not None:
        log_data["rule"] = rule

    log_data.update(kwargs)

    logger.warning("ssrf_block", **log_data)


def log_upstream_failure(
    logger: structlog.stdlib.BoundLogger,
    target: str,
    error: str,
    backend: Optional[str] = None,
    stage: Optional[str] = None,
    **kwargs: Any,
) -> None:
    """
    Log a failure to connect to, or transfer from, an upstream.

    Args:
        logger: Logger instance
        target: Caller-supplied target URL
        error: Underlying error detail
        backend: Dynamic backend name, if one was derived
        stage: Pipeline stage that failed
        **kwargs: Additional context to log
    """
    log_data: Dict[str, Any] = {
        "event_type": "upstream_failure",
        "target": target,
        "error": error,
    }

    if backend is not None:
        log_data["backend"] = backend
    if stage is not None:
        log_data["stage"] = stage

    log_data.update(kwargs)

    logger.error("upstream_failure", **log_data)


def log_request_relayed(
    logger: structlog.stdlib.BoundLogger,
    backend: str,
    status_code: int,
    duration_ms: float,
    **kwargs: Any,
) -> None:
    """
    Log an upstream response whose status line has been relayed.

    Args:
        logger: Logger instance
        backend: Dynamic backend name
        status_code: Upstream status code
        duration_ms: Time until upstream headers arrived, in milliseconds
        **kwargs: Additional context to log
    """
    log_data: Dict[str, Any] = {
        "event_type": "request_relayed",
        "backend": backend,
        "status_code": status_code,
        "duration_ms": duration_ms,
    }

    log_data.update(kwargs)

    logger.info("request_relayed", **log_data)
