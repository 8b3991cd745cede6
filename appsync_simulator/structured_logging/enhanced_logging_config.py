"""
Enhanced structlog-based logging configuration for the AppSync simulator.

This module provides the structured logging system used by every simulator
component: MDC (Mapped Diagnostic Context) via contextvars, correlation IDs,
and sanitization of credentials such as API keys and authorization headers.

CRITICAL LOGGING REQUIREMENT:
All modules MUST use get_logger() from this module instead of
logging.getLogger(). Standard Python loggers do not accept keyword event
data, so calls such as logger.info("Message", connection_id=cid) fail with
a TypeError on a plain stdlib logger.

CORRECT USAGE:
    from ..structured_logging.enhanced_logging_config import get_logger
    logger = get_logger(__name__)
    logger.info("Subscription registered", connection_id=cid, subscription_id=sid)
"""

import json
import logging
import os
import re
import sys
import uuid
from typing import Any, cast

import structlog
from structlog.contextvars import (
    bind_contextvars,
    clear_contextvars,
    merge_contextvars,
)
from structlog.stdlib import BoundLogger, LoggerFactory

# Module-level logger for internal use
logger = structlog.get_logger(__name__)

VALID_ENVIRONMENTS = ["local", "unit_test", "e2e_test", "production"]

_SENSITIVE_KEYS = [
    "password",
    "token",
    "secret",
    "credential",
    "api_key",
    "apikey",
    "x-api-key",
    "private_key",
    "access_token",
    "refresh_token",
    "bearer",
    "authorization",
]

_ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")


class _LoggingState:  # pylint: disable=too-few-public-methods
    """State container for logging initialization to avoid global statements."""

    initialized: bool = False
    signature: str | None = None


_logging_state = _LoggingState()


def detect_environment() -> str:
    """
    Detect the current environment based on various indicators.

    Returns:
        Environment name: "e2e_test", "unit_test", "local", or "production"
    """
    # Check if running under pytest (unit tests)
    if "pytest" in sys.modules or "pytest" in sys.argv[0]:
        return "unit_test"

    env = os.getenv("SIMULATOR_ENV")
    if env and env in VALID_ENVIRONMENTS:
        return env

    logging_env = os.getenv("LOGGING_ENVIRONMENT", "")
    if logging_env in VALID_ENVIRONMENTS:
        return logging_env

    return "local"


def sanitize_sensitive_data(_logger: Any, _name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Remove sensitive data from log entries.

    Realtime handshakes and HTTP requests carry API keys and authorization
    headers; this processor redacts them before any renderer sees them.

    Args:
        _logger: Logger instance (unused)
        _name: Logger name (unused)
        event_dict: Event dictionary to sanitize

    Returns:
        Sanitized event dictionary
    """

    def sanitize_dict(d: dict[str, Any]) -> dict[str, Any]:
        """Recursively sanitize dictionary values."""
        sanitized: dict[str, Any] = {}
        for key, value in d.items():
            if isinstance(key, str) and any(sensitive in key.lower() for sensitive in _SENSITIVE_KEYS):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = sanitize_dict(value)
            else:
                sanitized[key] = value
        return sanitized

    return sanitize_dict(event_dict)


def _strip_ansi_renderer(bound_logger: Any, name: str, event_dict: dict[str, Any]) -> str:
    """Key/value renderer that strips ANSI escape sequences."""
    formatted = structlog.processors.KeyValueRenderer(sort_keys=False)(bound_logger, name, event_dict)
    return _ANSI_ESCAPE.sub("", formatted)


def configure_enhanced_structlog(
    environment: str | None = None,
    log_level: str = "INFO",
    log_format: str = "human",
) -> None:
    """
    Configure structlog with MDC and security sanitization.

    Args:
        environment: Environment name (auto-detected if None)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "json" for JSON lines, "human" for key/value, "colored" for the console renderer
    """
    if environment is None:
        environment = detect_environment()

    base_processors: list[Any] = [
        # Security first - sanitize sensitive data
        sanitize_sensitive_data,
        # Merge context variables (MDC)
        merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: Any
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer(default=str)
    elif log_format == "colored":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = _strip_ansi_renderer

    root_logger = logging.getLogger()
    if not any(getattr(h, "_simulator_handler", False) for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(message)s"))
        cast(Any, handler)._simulator_handler = True
        root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    structlog.configure(
        processors=base_processors + [renderer],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=False,
    )

    configured_logger = structlog.get_logger(__name__)
    configured_logger.debug("Structlog configured", environment=environment, log_level=log_level, log_format=log_format)


def setup_enhanced_logging(config: dict[str, Any], *, force_reconfigure: bool = False) -> None:
    """
    Set up the logging system from the simulator configuration.

    Args:
        config: Configuration dictionary (see SimulatorConfig.to_legacy_dict)
        force_reconfigure: When True, reconfigure even if logging was already initialized
    """
    config_signature = json.dumps(config, sort_keys=True, default=str)

    if _logging_state.initialized and not force_reconfigure:
        get_logger("appsync_simulator.logging.setup").debug(
            "setup_enhanced_logging skipped; logging system already initialized",
            config_signature=_logging_state.signature,
        )
        return

    logging_config = config.get("logging", {})
    environment = logging_config.get("environment", detect_environment())
    log_level = logging_config.get("level", "INFO")
    log_format = logging_config.get("format", "human")

    if logging_config.get("disable_logging", False):
        logging.disable(logging.CRITICAL)
        configure_enhanced_structlog(environment, log_level, log_format)
        _logging_state.initialized = True
        _logging_state.signature = config_signature
        return

    logging.disable(logging.NOTSET)
    configure_enhanced_structlog(environment, log_level, log_format)
    _configure_enhanced_uvicorn_logging()

    get_logger("appsync_simulator.logging.enhanced").info(
        "Enhanced logging system initialized",
        environment=environment,
        log_level=log_level,
        log_format=log_format,
        mdc_enabled=True,
        security_sanitization=True,
    )

    _logging_state.initialized = True
    _logging_state.signature = config_signature


def _configure_enhanced_uvicorn_logging() -> None:
    """Route uvicorn's loggers through the root handler so they share our output."""
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = []
        uvicorn_logger.propagate = True

    get_logger("uvicorn.enhanced").debug("Enhanced uvicorn logging configured")


def bind_request_context(
    correlation_id: str | None = None,
    request_id: str | None = None,
    connection_id: str | None = None,
    **kwargs: Any,
) -> None:
    """
    Bind request context to the current logging context.

    Args:
        correlation_id: Unique correlation ID for the request
        request_id: Request ID if available
        connection_id: Realtime connection ID if available
        **kwargs: Additional context variables
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())

    context_vars = {
        "correlation_id": correlation_id,
        "request_id": request_id,
        "connection_id": connection_id,
        **kwargs,
    }
    bind_contextvars(**{k: v for k, v in context_vars.items() if v is not None})


def clear_request_context() -> None:
    """Clear the current request context from logging."""
    clear_contextvars()


def get_current_context() -> dict[str, Any]:
    """Get the current logging context."""
    return structlog.contextvars.get_contextvars()


def get_logger(name: str) -> Any:  # Returns BoundLogger but typed as Any for flexibility
    """
    Get a structlog logger with the specified name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger instance
    """
    return structlog.get_logger(name)


def log_exception_once(
    bound_logger: BoundLogger,
    level: str,
    message: str,
    *,
    exc: Exception | None = None,
    mark_logged: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log an exception once, respecting exceptions that have already been logged.

    SimulatorError instances log themselves on construction; this helper keeps
    handlers further up the stack from logging them a second time.

    Args:
        bound_logger: Structlog bound logger instance.
        level: Logging level to use (for example, "error" or "warning").
        message: Log message to emit.
        exc: Optional exception to include in the log entry.
        mark_logged: When True, mark the exception as logged to prevent duplicates.
        **kwargs: Additional key-value pairs for structured logging.
    """
    if exc is not None:
        if getattr(exc, "already_logged", False):
            return
        kwargs.setdefault("error_type", type(exc).__name__)
        kwargs.setdefault("error", str(exc))

    log_method = getattr(bound_logger, level.lower(), bound_logger.error)
    log_method(message, **kwargs)

    if exc is not None and mark_logged:
        cast(Any, exc).already_logged = True
