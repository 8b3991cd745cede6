"""
Matching of published mutation payloads against subscription arguments.

Topics route an event coarsely (by mutation name); the filter decides,
per subscription, whether the mutated record is one the subscriber asked for.
The server takes any SubscriptionFilter, so richer filter languages can be
plugged in without touching delivery.
"""

from collections.abc import Mapping
from typing import Any, Protocol

from .connection_models import Subscription


class SubscriptionFilter(Protocol):
    def matches(self, subscription: Subscription, payload: Any) -> bool:
        """Return True if the payload should be delivered to the subscription."""
        ...


class ArgumentEqualityFilter:
    """
    Field-equality matcher over the subscription's declared arguments.

    Every root-field argument with a non-null value must equal the payload
    field of the same name. A subscription without arguments matches every
    event on its topics.
    """

    def matches(self, subscription: Subscription, payload: Any) -> bool:
        expected = {name: value for name, value in subscription.arguments.items() if value is not None}
        if not expected:
            return True
        if not isinstance(payload, Mapping):
            return False
        for name, value in expected.items():
            if name not in payload or not _values_equal(payload[name], value):
                return False
        return True


def _values_equal(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    if actual == expected:
        return True
    # ID arguments arrive as strings while records may hold integer keys
    if isinstance(actual, int | str) and isinstance(expected, int | str):
        return str(actual) == str(expected)
    return False
