"""
Data models for realtime connections and their subscriptions.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from graphql import DocumentNode

from ..infrastructure.message_broker import BrokerEvent, SubscriberRef
from .connection_state_machine import ConnectionState, ConnectionStateMachine


class SubscriptionStatus(Enum):
    ACTIVE = "active"
    STOPPED = "stopped"


class RealtimeTransport(Protocol):
    """The socket side of a connection, as seen by the subscription server."""

    async def send_json(self, frame: dict[str, Any]) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


@dataclass
class Subscription:
    """
    One started subscription operation.

    The id is chosen by the client and is unique only within its connection.
    """

    id: str
    connection_id: str
    query: str
    document: DocumentNode
    field_name: str
    response_key: str
    topics: list[str]
    arguments: dict[str, Any] = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)
    operation_name: str | None = None
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    created_at: float = field(default_factory=time.monotonic)
    delivered_count: int = 0

    @property
    def ref(self) -> SubscriberRef:
        return SubscriberRef(connection_id=self.connection_id, subscription_id=self.id)

    @property
    def is_active(self) -> bool:
        return self.status is SubscriptionStatus.ACTIVE


@dataclass
class PendingDelivery:
    """A matched broker event waiting in a connection's outbox to be rendered and sent."""

    subscription: Subscription
    event: BrokerEvent


@dataclass
class CloseRequest:
    """Outbox sentinel: everything queued before it is flushed, then the socket is closed."""

    code: int
    reason: str
    close_transport: bool = True


OutboxItem = dict[str, Any] | PendingDelivery | CloseRequest


@dataclass
class Connection:
    """
    A realtime client link and everything it owns.

    Owned exclusively by the SubscriptionServer. Outbound frames go through
    the outbox queue and are written by a single sender task, so frames reach
    the client in the order they were enqueued.
    """

    id: str
    transport: RealtimeTransport
    machine: ConnectionStateMachine
    handshake_auth: dict[str, Any] = field(default_factory=dict)
    subscriptions: dict[str, Subscription] = field(default_factory=dict)
    last_activity: float = field(default_factory=time.monotonic)
    outbox: asyncio.Queue = field(default_factory=asyncio.Queue)
    init_timer: asyncio.TimerHandle | None = None
    keepalive_task: asyncio.Task | None = None
    sender_task: asyncio.Task | None = None
    frames_sent: int = 0

    @property
    def state(self) -> ConnectionState:
        return self.machine.connection_state

    @property
    def is_connected(self) -> bool:
        return self.machine.is_connected

    @property
    def is_closed(self) -> bool:
        return self.machine.is_closed

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def idle_seconds(self) -> float:
        return time.monotonic() - self.last_activity

    async def drain(self) -> None:
        """Wait until every queued outbound item has been processed."""
        await self.outbox.join()

    def get_stats(self) -> dict[str, Any]:
        return {
            **self.machine.get_stats(),
            "subscriptions": len(self.subscriptions),
            "queued": self.outbox.qsize(),
            "frames_sent": self.frames_sent,
            "idle_seconds": round(self.idle_seconds(), 3),
        }
