"""
Realtime WebSocket endpoint.

Accepts the upgrade, gathers handshake auth (request headers plus the
base64-encoded JSON "header" query parameter AppSync clients send), and feeds
every inbound frame to the SubscriptionServer's dispatch().
"""

import asyncio

from fastapi import APIRouter, WebSocket

from ..auth.validators import decode_header_param, normalize_auth
from ..realtime import protocol
from ..realtime.subscription_server import SubscriptionServer
from ..realtime.websocket_transport import WebSocketTransport
from ..structured_logging.enhanced_logging_config import bind_request_context, clear_request_context, get_logger

logger = get_logger(__name__)

# Close code sent when the simulator is not running ("try again later")
CLOSE_TRY_AGAIN_LATER = 1013

SENDER_FLUSH_TIMEOUT = 5.0


def select_subprotocol(websocket: WebSocket) -> str | None:
    """Pick the first offered subprotocol the server speaks."""
    offered = websocket.headers.get("sec-websocket-protocol") or ""
    for candidate in (part.strip() for part in offered.split(",")):
        if candidate in protocol.SUPPORTED_SUBPROTOCOLS:
            return candidate
    return None


async def realtime_endpoint(websocket: WebSocket) -> None:
    """
    WebSocket endpoint for realtime subscriptions.

    The connection's lifecycle (handshake, timers, subscriptions, close) is
    driven entirely by the SubscriptionServer; this loop only moves inbound
    frames into dispatch() and reports the client going away.
    """
    subscription_server: SubscriptionServer | None = getattr(websocket.app.state, "subscription_server", None)
    subprotocol = select_subprotocol(websocket)

    if subscription_server is None or not subscription_server.running:
        await websocket.accept(subprotocol=subprotocol)
        await websocket.close(code=CLOSE_TRY_AGAIN_LATER)
        return

    handshake_auth = normalize_auth(
        dict(websocket.headers),
        decode_header_param(websocket.query_params.get("header")),
    )
    await websocket.accept(subprotocol=subprotocol)
    connection = subscription_server.open_connection(WebSocketTransport(websocket), handshake_auth)
    bind_request_context(
        correlation_id=websocket.headers.get("x-correlation-id") or connection.id,
        connection_id=connection.id,
        connection_type="websocket",
        subprotocol=subprotocol,
    )

    try:
        while not connection.is_closed:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info("Realtime client disconnected", code=message.get("code"))
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue
            subscription_server.dispatch(connection.id, raw)
    finally:
        subscription_server.close_connection(
            connection.id, protocol.CLOSE_NORMAL, "client_disconnect", close_transport=False
        )
        sender = connection.sender_task
        if sender is not None and not sender.done():
            # Let queued frames and the server-side close frame go out before the handler returns
            await asyncio.wait({sender}, timeout=SENDER_FLUSH_TIMEOUT)
        clear_request_context()


def create_realtime_router(realtime_path: str = "/graphql/realtime") -> APIRouter:
    """
    Build the router serving the realtime endpoint at realtime_path.

    Args:
        realtime_path: Path of the WebSocket endpoint

    Returns:
        APIRouter: Router with the WebSocket route
    """
    router = APIRouter(tags=["realtime"])
    router.add_api_websocket_route(realtime_path, realtime_endpoint)
    return router
