"""
Connection state machine for realtime subscription clients.

Each WebSocket connection runs one of these machines. The machine only
tracks which protocol phase the connection is in and rejects illegal
transitions; timers, subscriptions and transport I/O live on the
SubscriptionServer, which drives the machine.
"""

import time
from enum import Enum
from typing import Any

from statemachine import State, StateMachine

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class ConnectionState(Enum):
    """Protocol phases of a realtime connection."""

    AWAITING_INIT = "awaiting_init"
    CONNECTED = "connected"
    CLOSED = "closed"


class ConnectionStateMachine(StateMachine):
    """
    State machine for the realtime connection lifecycle.

    States:
    - awaiting_init: Upgraded, waiting for a valid connection_init
    - connected: Handshake accepted; subscriptions may be started and stopped
    - closed: Terminal; every timer and subscription has been released

    Transitions:
    - awaiting_init → connected: acknowledge (auth accepted)
    - awaiting_init → closed: terminate (auth rejected, init timeout, disconnect)
    - connected → closed: terminate (keepalive timeout, client terminate, disconnect, server stop)
    """

    awaiting_init = State("Awaiting Init", initial=True)
    connected = State("Connected")
    closed = State("Closed", final=True)

    acknowledge = awaiting_init.to(connected)
    terminate = awaiting_init.to(closed) | connected.to(closed)

    def __init__(self, connection_id: str):
        """
        Initialize connection state machine.

        Args:
            connection_id: Unique identifier for this connection
        """
        # Set attributes BEFORE super().__init__() because on_enter_state is called during init
        self.connection_id = connection_id
        self.opened_at = time.monotonic()
        self.acknowledged_at: float | None = None
        self.closed_at: float | None = None
        self.close_reason: str | None = None

        super().__init__()

    def on_enter_state(self, state: State, event: Any = None, **kwargs: Any) -> None:
        logger.debug(
            "Realtime connection state transition",
            connection_id=self.connection_id,
            trigger_event=str(event) if event else "initial",
            to_state=state.id,
        )

    def on_acknowledge(self) -> None:
        self.acknowledged_at = time.monotonic()

    def on_terminate(self, reason: str | None = None) -> None:
        self.closed_at = time.monotonic()
        self.close_reason = reason or "unspecified"
        logger.info(
            "Realtime connection closed",
            connection_id=self.connection_id,
            reason=self.close_reason,
            lifetime_seconds=round(self.closed_at - self.opened_at, 3),
        )

    @property
    def connection_state(self) -> ConnectionState:
        return ConnectionState(self.current_state.id)

    @property
    def is_awaiting_init(self) -> bool:
        return self.awaiting_init.is_active

    @property
    def is_connected(self) -> bool:
        return self.connected.is_active

    @property
    def is_closed(self) -> bool:
        return self.closed.is_active

    def get_stats(self) -> dict[str, Any]:
        """
        Get connection lifecycle statistics.

        Returns:
            Dictionary with state and timing data
        """
        return {
            "connection_id": self.connection_id,
            "current_state": self.current_state.id,
            "acknowledged": self.acknowledged_at is not None,
            "close_reason": self.close_reason,
        }
