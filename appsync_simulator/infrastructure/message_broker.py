"""
Message broker abstraction for the AppSync simulator.

This module defines the PubSubBroker protocol that the operation server and
the realtime subscription server depend on, plus the value types that travel
through it. The simulator ships a single in-process implementation
(InMemoryPubSubBroker); the protocol keeps the servers independent of it.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class SubscriberRef:
    """Identifies one subscription within one realtime connection."""

    connection_id: str
    subscription_id: str


@dataclass(frozen=True)
class BrokerEvent:
    """
    Ephemeral event produced by a successful mutation.

    Exists only for the duration of one publish cycle; never stored.
    """

    topic: str
    payload: Any


# Called synchronously by publish() for every registered subscriber
SubscriberHandler = Callable[[SubscriberRef, BrokerEvent], Any]


class PubSubBroker(Protocol):
    """
    Protocol defining the topic-keyed publish/subscribe interface.

    Implementations must:
    - keep subscribers per topic in registration order
    - deliver a published event to the subscribers registered at publish time
    - never replay events to subscribers registered after the publish
    """

    def subscribe(self, topic: str, ref: SubscriberRef, handler: SubscriberHandler) -> None:
        """
        Register a subscriber for a topic.

        Raises:
            SubscribeError: If the ref is already registered for the topic
        """
        ...

    def unsubscribe(self, topic: str, ref: SubscriberRef) -> bool:
        """
        Remove a subscriber from a topic.

        Returns:
            bool: True if the ref was registered, False otherwise
        """
        ...

    def publish(self, topic: str, payload: Any) -> int:
        """
        Deliver an event to every subscriber currently registered for the topic.

        Returns:
            int: Number of subscribers the event was handed to
        """
        ...

    def subscriber_count(self, topic: str | None = None) -> int:
        """Number of subscribers for one topic, or across all topics."""
        ...


class MessageBrokerError(Exception):
    """Base exception for message broker errors."""


class PublishError(MessageBrokerError):
    """Exception raised when publishing a message fails."""


class SubscribeError(MessageBrokerError):
    """Exception raised when subscribing to a topic fails."""
