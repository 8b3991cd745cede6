"""
In-process implementation of the PubSubBroker protocol.

Single-process only. All mutations complete synchronously, so on the asyncio
event loop each subscribe/unsubscribe/publish call runs within one
scheduling turn and can never observe a half-updated topic map.
"""

from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger
from .message_broker import BrokerEvent, PublishError, SubscribeError, SubscriberHandler, SubscriberRef

logger = get_logger(__name__)


class InMemoryPubSubBroker:
    """
    Topic-keyed registry mapping a topic to its live subscribers.

    Each topic holds an insertion-ordered dict of SubscriberRef -> handler.
    Handlers are called synchronously; a handler that raises is logged and
    skipped without affecting delivery to the remaining subscribers.
    """

    def __init__(self) -> None:
        self._topics: dict[str, dict[SubscriberRef, SubscriberHandler]] = {}
        self.published_count = 0
        self.delivery_failures = 0

    def subscribe(self, topic: str, ref: SubscriberRef, handler: SubscriberHandler) -> None:
        """
        Register a subscriber for a topic.

        Args:
            topic: Topic key (mutation root field name)
            ref: Subscriber reference
            handler: Callable invoked with (ref, event) on publish

        Raises:
            SubscribeError: If the ref is already registered for this topic
        """
        if not topic:
            raise SubscribeError("Topic must be a non-empty string")
        subscribers = self._topics.setdefault(topic, {})
        if ref in subscribers:
            raise SubscribeError(
                f"Subscriber {ref.connection_id}/{ref.subscription_id} already registered for topic '{topic}'"
            )
        subscribers[ref] = handler
        logger.debug(
            "Subscriber registered",
            topic=topic,
            connection_id=ref.connection_id,
            subscription_id=ref.subscription_id,
            topic_subscribers=len(subscribers),
        )

    def unsubscribe(self, topic: str, ref: SubscriberRef) -> bool:
        """
        Remove a subscriber from a topic.

        Returns:
            bool: True if the ref was registered, False otherwise
        """
        subscribers = self._topics.get(topic)
        if not subscribers or ref not in subscribers:
            return False
        del subscribers[ref]
        if not subscribers:
            del self._topics[topic]
        logger.debug(
            "Subscriber removed",
            topic=topic,
            connection_id=ref.connection_id,
            subscription_id=ref.subscription_id,
        )
        return True

    def publish(self, topic: str, payload: Any) -> int:
        """
        Deliver an event to every subscriber registered for the topic at call time.

        Iterates over a snapshot of the subscriber set. A subscriber removed
        while the snapshot is being walked (for example because a handler
        closed its connection) is skipped rather than handed a stale event.

        Args:
            topic: Topic key
            payload: Resolved mutation payload

        Returns:
            int: Number of subscribers the event was handed to

        Raises:
            PublishError: If topic is empty
        """
        if not topic:
            raise PublishError("Cannot publish to an empty topic")

        self.published_count += 1
        snapshot = list(self._topics.get(topic, {}).items())
        if not snapshot:
            logger.debug("Event published with no subscribers", topic=topic)
            return 0

        event = BrokerEvent(topic=topic, payload=payload)
        delivered = 0
        for ref, handler in snapshot:
            if ref not in self._topics.get(topic, {}):
                continue
            try:
                handler(ref, event)
                delivered += 1
            except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: one failing subscriber must not abort fanout
                self.delivery_failures += 1
                logger.warning(
                    "Subscriber handler failed during publish",
                    topic=topic,
                    connection_id=ref.connection_id,
                    subscription_id=ref.subscription_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        logger.debug("Event published", topic=topic, subscribers=len(snapshot), delivered=delivered)
        return delivered

    def is_subscribed(self, topic: str, ref: SubscriberRef) -> bool:
        """Check whether a ref is registered for a topic."""
        return ref in self._topics.get(topic, {})

    def subscribers(self, topic: str) -> list[SubscriberRef]:
        """Registered refs for a topic, in registration order."""
        return list(self._topics.get(topic, {}))

    def topics(self) -> list[str]:
        """Topics with at least one subscriber."""
        return list(self._topics)

    def subscriber_count(self, topic: str | None = None) -> int:
        """Number of subscribers for one topic, or across all topics."""
        if topic is not None:
            return len(self._topics.get(topic, {}))
        return sum(len(subscribers) for subscribers in self._topics.values())

    def clear(self) -> None:
        """Drop every registration."""
        self._topics.clear()

    def get_stats(self) -> dict[str, Any]:
        """Broker statistics for the health endpoint and debugging."""
        return {
            "topics": len(self._topics),
            "subscribers": self.subscriber_count(),
            "published_count": self.published_count,
            "delivery_failures": self.delivery_failures,
        }
