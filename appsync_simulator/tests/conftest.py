"""
Test configuration and fixtures for the AppSync simulator test suite.

Provides the sample schema bound to an in-memory store, a broker, and a
running SubscriptionServer with short timers.
"""

import os
from collections.abc import AsyncGenerator, Generator

import pytest

os.environ.setdefault("LOGGING_ENVIRONMENT", "unit_test")
os.environ.setdefault("SIMULATOR_HOST", "127.0.0.1")

from appsync_simulator.auth.validators import AllowAllAuthValidator, ApiKeyAuthValidator  # noqa: E402
from appsync_simulator.config import RealtimeConfig, reset_config  # noqa: E402
from appsync_simulator.infrastructure.pubsub_broker import InMemoryPubSubBroker  # noqa: E402
from appsync_simulator.realtime.subscription_server import SubscriptionServer  # noqa: E402
from appsync_simulator.schema import SimulatorSchema  # noqa: E402
from appsync_simulator.tests.helpers import SAMPLE_SDL, TEST_API_KEY, PostStore  # noqa: E402


@pytest.fixture(autouse=True)
def reset_simulator_config() -> Generator[None, None, None]:
    """Ensure each test starts from a freshly loaded configuration."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def post_store() -> PostStore:
    return PostStore()


@pytest.fixture
def simulator_schema(post_store: PostStore) -> SimulatorSchema:
    """Sample schema with resolvers bound to a fresh PostStore."""
    return SimulatorSchema.from_sdl(
        SAMPLE_SDL,
        {
            "Query": {"getPost": post_store.get, "listPosts": post_store.list},
            "Mutation": {
                "createPost": post_store.create,
                "updatePost": post_store.update,
                "deletePost": post_store.delete,
            },
        },
    )


@pytest.fixture
def broker() -> InMemoryPubSubBroker:
    return InMemoryPubSubBroker()


@pytest.fixture
def realtime_config() -> RealtimeConfig:
    """Short timers so timeout paths run quickly."""
    return RealtimeConfig(
        init_timeout=0.2,
        keepalive_interval=0.1,
        keepalive_grace=0.5,
        connection_timeout_ms=300000,
        max_outbox_size=50,
    )


@pytest.fixture
def api_key_validator() -> ApiKeyAuthValidator:
    return ApiKeyAuthValidator(TEST_API_KEY)


@pytest.fixture
async def subscription_server(
    simulator_schema: SimulatorSchema,
    broker: InMemoryPubSubBroker,
    realtime_config: RealtimeConfig,
) -> AsyncGenerator[SubscriptionServer, None]:
    """A running SubscriptionServer accepting any credentials."""
    server = SubscriptionServer(simulator_schema, broker, AllowAllAuthValidator(), realtime_config)
    await server.start()
    yield server
    await server.stop(timeout=1.0)
