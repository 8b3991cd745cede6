"""
Tests for argument-equality subscription matching.
"""

from graphql import parse

from appsync_simulator.realtime.connection_models import Subscription
from appsync_simulator.realtime.subscription_filter import ArgumentEqualityFilter


def make_subscription(**arguments) -> Subscription:
    query = "subscription { onCreatePost { id } }"
    return Subscription(
        id="sub-1",
        connection_id="conn-1",
        query=query,
        document=parse(query),
        field_name="onCreatePost",
        response_key="onCreatePost",
        topics=["createPost"],
        arguments=arguments,
    )


class TestArgumentEqualityFilter:
    """Test the default subscription predicate."""

    def setup_method(self):
        self.filter = ArgumentEqualityFilter()

    def test_no_arguments_matches_everything(self):
        assert self.filter.matches(make_subscription(), {"id": "1"})
        assert self.filter.matches(make_subscription(), None)

    def test_matching_argument(self):
        assert self.filter.matches(make_subscription(id="1"), {"id": "1", "title": "t"})

    def test_mismatched_argument(self):
        assert not self.filter.matches(make_subscription(id="1"), {"id": "2"})

    def test_all_arguments_must_match(self):
        subscription = make_subscription(id="1", author="ann")

        assert self.filter.matches(subscription, {"id": "1", "author": "ann"})
        assert not self.filter.matches(subscription, {"id": "1", "author": "bob"})

    def test_null_argument_is_ignored(self):
        """Test that an argument passed as null does not constrain delivery."""
        assert self.filter.matches(make_subscription(id=None, author="ann"), {"id": "9", "author": "ann"})

    def test_missing_payload_field_does_not_match(self):
        assert not self.filter.matches(make_subscription(author="ann"), {"id": "1"})

    def test_non_mapping_payload_does_not_match(self):
        assert not self.filter.matches(make_subscription(id="1"), ["1"])

    def test_id_compares_across_int_and_str(self):
        """Test that ID arguments (strings) match integer record keys."""
        assert self.filter.matches(make_subscription(id="7"), {"id": 7})

    def test_bool_is_not_coerced(self):
        assert not self.filter.matches(make_subscription(flag=True), {"flag": 1})
