"""
Fixtures for the HTTP and WebSocket surface, served through FastAPI's TestClient.
"""

import asyncio
from collections.abc import Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from appsync_simulator.app.factory import create_app
from appsync_simulator.auth.validators import ApiKeyAuthValidator
from appsync_simulator.config import RealtimeConfig
from appsync_simulator.infrastructure.pubsub_broker import InMemoryPubSubBroker
from appsync_simulator.operations.operation_server import OperationServer
from appsync_simulator.realtime.subscription_server import SubscriptionServer
from appsync_simulator.schema import SimulatorSchema
from appsync_simulator.tests.helpers import TEST_API_KEY


@pytest.fixture
def api_config() -> RealtimeConfig:
    """Long keepalive so 'ka' frames do not interleave with assertions."""
    return RealtimeConfig(init_timeout=5.0, keepalive_interval=30.0, keepalive_grace=60.0)


@pytest.fixture
def app(simulator_schema: SimulatorSchema, broker: InMemoryPubSubBroker, api_config: RealtimeConfig) -> FastAPI:
    """Application wired the way SimulatorServer wires it, guarded by an API key."""
    validator = ApiKeyAuthValidator(TEST_API_KEY)
    application = create_app(OperationServer(simulator_schema, validator, broker))
    subscription_server = SubscriptionServer(simulator_schema, broker, validator, api_config)
    asyncio.run(subscription_server.start())
    application.state.subscription_server = subscription_server
    application.state.broker = broker
    return application


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    with TestClient(app) as test_client:
        yield test_client
