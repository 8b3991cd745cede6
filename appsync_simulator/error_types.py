"""
Centralized error types and constants for the AppSync simulator.

Error payloads follow the AppSync wire shape, an "errors" list whose
entries carry "errorType" and "message", so that clients written against
the managed service parse simulator errors unchanged.
"""

from enum import Enum
from typing import Any


class ErrorType(Enum):
    """Standardized error types, using AppSync's errorType strings where one exists."""

    # Authentication and Authorization
    UNAUTHORIZED = "UnauthorizedException"

    # Port allocation
    PORT_UNAVAILABLE = "PortUnavailable"

    # Realtime protocol
    INIT_TIMEOUT = "InitTimeout"
    KEEPALIVE_TIMEOUT = "KeepAliveTimeout"
    SUBSCRIPTION_ID_CONFLICT = "SubscriptionIdConflict"
    PROTOCOL_ERROR = "ProtocolError"
    UNSUPPORTED_OPERATION = "UnsupportedOperation"
    DELIVERY_FAILURE = "DeliveryFailure"

    # GraphQL execution
    EXECUTION_ERROR = "ExecutionError"
    VALIDATION_ERROR = "ValidationError"
    BAD_REQUEST = "BadRequestException"

    # System
    INTERNAL_ERROR = "InternalFailure"


def create_error_entry(error_type: ErrorType, message: str, **extra: Any) -> dict[str, Any]:
    """
    Create one entry of an AppSync "errors" list.

    Args:
        error_type: The type of error
        message: Human readable message
        **extra: Additional keys to include (for example "path" or "locations")

    Returns:
        Error entry dictionary
    """
    return {"errorType": error_type.value, "message": message, **extra}


def create_error_payload(error_type: ErrorType, message: str, **extra: Any) -> dict[str, Any]:
    """
    Create an AppSync error payload holding a single error.

    Returns:
        {"errors": [{"errorType": ..., "message": ...}]}
    """
    return {"errors": [create_error_entry(error_type, message, **extra)]}


class ErrorMessages:
    """Common error messages for consistent user experience."""

    # Authentication
    UNAUTHORIZED = "You are not authorized to make this call."
    CONNECTION_UNAUTHORIZED = "Valid authorization header not provided."

    # Realtime
    INIT_TIMEOUT = "Connection initialisation timeout"
    KEEPALIVE_TIMEOUT = "Connection timed out waiting for client activity"
    NOT_INITIALIZED = "Connection has not been initialised; send connection_init first"
    ALREADY_INITIALIZED = "Connection already initialised"
    MISSING_ID = "Message is missing an id"
    INVALID_MESSAGE = "Message is not a valid JSON object with a type"
    UNKNOWN_MESSAGE_TYPE = "Unsupported message type"
    NOT_A_SUBSCRIPTION = "Only subscription operations can be started over the realtime endpoint"

    # HTTP
    SUBSCRIPTION_OVER_HTTP = "Subscriptions must use the realtime WebSocket endpoint"
    MISSING_QUERY = "Request body must include a 'query' string"
    INVALID_BODY = "Request body must be a JSON object"

    # System
    INTERNAL_ERROR = "An internal error occurred"
