"""
Exception hierarchy for the AppSync simulator.

Every failure the simulator can surface is a SimulatorError subclass carrying
structured context. Only PortUnavailableError (and unrecoverable bind
failures) stop the whole simulator; every other error is scoped to a single
request, message or connection.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .error_types import ErrorMessages, ErrorType
from .structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class ErrorContext:
    """
    Contextual information for error handling.

    Provides structured context for error reporting and debugging.
    """

    connection_id: str | None = None
    subscription_id: str | None = None
    operation_name: str | None = None
    request_id: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert context to dictionary for logging."""
        return {
            "connection_id": self.connection_id,
            "subscription_id": self.subscription_id,
            "operation_name": self.operation_name,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class SimulatorError(Exception):
    """
    Base exception for all simulator errors.

    Provides structured error handling with context and metadata
    for proper error categorization and debugging.
    """

    error_type: ErrorType = ErrorType.INTERNAL_ERROR
    log_level: str = "error"

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        details: dict[str, Any] | None = None,
        user_friendly: str | None = None,
    ):
        """
        Initialize simulator error.

        Args:
            message: Technical error message
            context: Error context information
            details: Additional error details
            user_friendly: User-friendly error message
        """
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.details = details or {}
        self.user_friendly = user_friendly or message
        self.timestamp = datetime.now()
        self.already_logged = False

        self._log_error()

    def _log_error(self) -> None:
        """Log the error with structured context."""
        log_method = getattr(logger, self.log_level, logger.error)
        log_method(
            "Simulator error occurred",
            error_type=self.__class__.__name__,
            message=self.message,
            context=self.context.to_dict(),
            details=self.details,
        )
        self.already_logged = True

    def to_error_entry(self) -> dict[str, Any]:
        """Render as one entry of an AppSync "errors" list."""
        return {"errorType": self.error_type.value, "message": self.user_friendly}

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "user_friendly": self.user_friendly,
            "context": self.context.to_dict(),
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class PortUnavailableError(SimulatorError):
    """The requested port (or the whole default range) cannot be bound."""

    error_type = ErrorType.PORT_UNAVAILABLE

    def __init__(self, port: int, context: ErrorContext | None = None, range_end: int | None = None, **kwargs):
        self.port = port
        self.range_end = range_end
        if range_end is None:
            message = (
                f"Port {port} is already in use. Please free the port or choose a different one "
                "and restart the simulator."
            )
        else:
            message = (
                f"No free port found between {port} and {range_end}. Please free a port in that range "
                "or choose a specific port and restart the simulator."
            )
        super().__init__(message, context, **kwargs)
        self.details["port"] = port
        if range_end is not None:
            self.details["range_end"] = range_end


class AuthRejectedError(SimulatorError):
    """Realtime handshake or HTTP request carried invalid or missing credentials."""

    error_type = ErrorType.UNAUTHORIZED
    log_level = "warning"

    def __init__(self, message: str = ErrorMessages.UNAUTHORIZED, context: ErrorContext | None = None, **kwargs):
        super().__init__(message, context, **kwargs)


class InitTimeoutError(SimulatorError):
    """A connection did not complete connection_init within the timeout window."""

    error_type = ErrorType.INIT_TIMEOUT
    log_level = "warning"

    def __init__(self, timeout: float, context: ErrorContext | None = None, **kwargs):
        self.timeout = timeout
        super().__init__(ErrorMessages.INIT_TIMEOUT, context, **kwargs)
        self.details["timeout"] = timeout


class KeepAliveTimeoutError(SimulatorError):
    """No inbound activity was seen within the keepalive grace window."""

    error_type = ErrorType.KEEPALIVE_TIMEOUT
    log_level = "warning"

    def __init__(self, idle_seconds: float, context: ErrorContext | None = None, **kwargs):
        self.idle_seconds = idle_seconds
        super().__init__(ErrorMessages.KEEPALIVE_TIMEOUT, context, **kwargs)
        self.details["idle_seconds"] = round(idle_seconds, 3)


class SubscriptionIdConflictError(SimulatorError):
    """A start/subscribe message reused an id already active on the same connection."""

    error_type = ErrorType.SUBSCRIPTION_ID_CONFLICT
    log_level = "warning"

    def __init__(self, subscription_id: str, context: ErrorContext | None = None, **kwargs):
        self.subscription_id = subscription_id
        super().__init__(f"Subscription with id '{subscription_id}' already exists", context, **kwargs)
        self.details["subscription_id"] = subscription_id


class ProtocolError(SimulatorError):
    """An inbound realtime frame was malformed or not allowed in the current state."""

    error_type = ErrorType.PROTOCOL_ERROR
    log_level = "warning"

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        error_type: ErrorType | None = None,
        **kwargs,
    ):
        if error_type is not None:
            self.error_type = error_type
        super().__init__(message, context, **kwargs)


class ExecutionError(SimulatorError):
    """GraphQL execution failed; reported inside the response errors array."""

    error_type = ErrorType.EXECUTION_ERROR
    log_level = "info"

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        errors: list[dict[str, Any]] | None = None,
        **kwargs,
    ):
        self.errors = errors or [{"errorType": self.error_type.value, "message": message}]
        super().__init__(message, context, **kwargs)
        self.details["error_count"] = len(self.errors)


class BadRequestError(SimulatorError):
    """The HTTP request body could not be interpreted as a GraphQL request."""

    error_type = ErrorType.BAD_REQUEST
    log_level = "warning"


class DeliveryFailureError(SimulatorError):
    """Sending a frame to one connection failed during fanout."""

    error_type = ErrorType.DELIVERY_FAILURE
    log_level = "warning"

    def __init__(self, message: str, context: ErrorContext | None = None, topic: str | None = None, **kwargs):
        self.topic = topic
        super().__init__(message, context, **kwargs)
        if topic:
            self.details["topic"] = topic


def create_error_context(**kwargs) -> ErrorContext:
    """
    Create an error context with the given parameters.

    Args:
        **kwargs: Context parameters

    Returns:
        ErrorContext object
    """
    return ErrorContext(**kwargs)
