"""
Infrastructure layer for the AppSync simulator.

Contains the publish/subscribe broker and the port allocator. The servers
depend on the PubSubBroker protocol, not on the in-memory implementation.
"""

from .message_broker import BrokerEvent, PubSubBroker, SubscriberHandler, SubscriberRef
from .pubsub_broker import InMemoryPubSubBroker

__all__ = ["BrokerEvent", "InMemoryPubSubBroker", "PubSubBroker", "SubscriberHandler", "SubscriberRef"]
