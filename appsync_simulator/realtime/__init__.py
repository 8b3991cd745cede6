"""
Realtime subscription layer.

WebSocket clients connect, complete the connection_init handshake, and start
subscriptions that receive mutation payloads published through the broker.
"""

from .connection_models import Connection, RealtimeTransport, Subscription, SubscriptionStatus
from .connection_state_machine import ConnectionState, ConnectionStateMachine
from .subscription_filter import ArgumentEqualityFilter, SubscriptionFilter
from .subscription_server import SubscriptionServer
from .websocket_transport import WebSocketTransport

__all__ = [
    "ArgumentEqualityFilter",
    "Connection",
    "ConnectionState",
    "ConnectionStateMachine",
    "RealtimeTransport",
    "Subscription",
    "SubscriptionFilter",
    "SubscriptionServer",
    "SubscriptionStatus",
    "WebSocketTransport",
]
