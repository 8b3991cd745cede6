"""
Realtime protocol message types and frame builders.

Frames are JSON objects with a "type" and, for subscription-scoped frames, an
"id". The server speaks the graphql-ws dialect AppSync uses; start/stop frames
are also accepted under the names subscribe/complete.
"""

import json
from typing import Any

from ..error_types import ErrorType, create_error_payload

# Client -> server
CONNECTION_INIT = "connection_init"
CONNECTION_TERMINATE = "connection_terminate"
START = "start"
SUBSCRIBE = "subscribe"
STOP = "stop"
COMPLETE = "complete"
PING = "ping"
PONG = "pong"

# Server -> client
CONNECTION_ACK = "connection_ack"
CONNECTION_ERROR = "connection_error"
START_ACK = "start_ack"
DATA = "data"
ERROR = "error"
KEEP_ALIVE = "ka"

START_TYPES = frozenset({START, SUBSCRIBE})
STOP_TYPES = frozenset({STOP, COMPLETE})

GRAPHQL_WS_PROTOCOL = "graphql-ws"
SUPPORTED_SUBPROTOCOLS = (GRAPHQL_WS_PROTOCOL,)

# WebSocket close codes
CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_INTERNAL_ERROR = 1011
CLOSE_UNAUTHORIZED = 4401
CLOSE_TIMEOUT = 4408


def connection_ack(connection_timeout_ms: int) -> dict[str, Any]:
    return {"type": CONNECTION_ACK, "payload": {"connectionTimeoutMs": connection_timeout_ms}}


def connection_error(error_type: ErrorType, message: str) -> dict[str, Any]:
    return {"type": CONNECTION_ERROR, "payload": create_error_payload(error_type, message)}


def start_ack(subscription_id: str) -> dict[str, Any]:
    return {"type": START_ACK, "id": subscription_id}


def complete(subscription_id: str) -> dict[str, Any]:
    return {"type": COMPLETE, "id": subscription_id}


def data(subscription_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {"type": DATA, "id": subscription_id, "payload": payload}


def keep_alive() -> dict[str, Any]:
    return {"type": KEEP_ALIVE}


def pong(payload: Any = None) -> dict[str, Any]:
    frame: dict[str, Any] = {"type": PONG}
    if payload is not None:
        frame["payload"] = payload
    return frame


def error(
    error_type: ErrorType | None,
    message: str,
    subscription_id: str | None = None,
    errors: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """
    Build an "error" frame.

    Args:
        error_type: Type for a single-error payload (ignored when errors is given)
        message: Message for a single-error payload
        subscription_id: Id of the subscription the error concerns, if any
        errors: Pre-formatted AppSync error entries
    """
    payload = {"errors": errors} if errors else create_error_payload(error_type or ErrorType.PROTOCOL_ERROR, message)
    frame: dict[str, Any] = {"type": ERROR, "payload": payload}
    if subscription_id is not None:
        frame["id"] = subscription_id
    return frame


def decode_frame(raw: str | bytes | dict[str, Any]) -> dict[str, Any] | None:
    """
    Decode an inbound frame.

    Returns:
        dict: The frame if it is a JSON object with a string "type", else None
    """
    if isinstance(raw, dict):
        frame = raw
    else:
        try:
            frame = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
            return None
    if not isinstance(frame, dict) or not isinstance(frame.get("type"), str):
        return None
    return frame


def extract_start_payload(frame: dict[str, Any]) -> tuple[str | None, dict[str, Any], str | None, dict[str, Any]]:
    """
    Pull the GraphQL request out of a start/subscribe frame.

    Accepts both ``payload: {query, variables, operationName}`` and the AppSync
    form ``payload: {data: "<JSON string>", extensions: {authorization: {...}}}``.

    Returns:
        (query, variables, operation_name, authorization)
    """
    payload = frame.get("payload")
    if not isinstance(payload, dict):
        return None, {}, None, {}

    request: Any = payload
    if "data" in payload and "query" not in payload:
        request = payload["data"]
        if isinstance(request, str):
            try:
                request = json.loads(request)
            except json.JSONDecodeError:
                return None, {}, None, {}
    if not isinstance(request, dict):
        return None, {}, None, {}

    query = request.get("query")
    variables = request.get("variables") or {}
    operation_name = request.get("operationName")
    extensions = payload.get("extensions") or {}
    authorization = extensions.get("authorization") if isinstance(extensions, dict) else None

    return (
        query if isinstance(query, str) else None,
        variables if isinstance(variables, dict) else {},
        operation_name if isinstance(operation_name, str) else None,
        authorization if isinstance(authorization, dict) else {},
    )
