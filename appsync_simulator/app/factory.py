"""
FastAPI application factory for the AppSync simulator.

This module handles FastAPI app creation, middleware configuration,
and router registration. The realtime route is part of the app from the
moment it is created, so it is in place before the listener starts accepting
upgrades; the SubscriptionServer behind it is attached by the coordinator.
"""

from fastapi import FastAPI

from ..api.graphql import create_graphql_router
from ..api.real_time import create_realtime_router
from ..config.models import ServerConfig
from ..middleware.correlation_middleware import CorrelationMiddleware
from ..middleware.error_handling import register_error_handlers
from ..operations.operation_server import OperationServer
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


def create_app(operation_server: OperationServer, server_config: ServerConfig | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        operation_server: Executes operations posted to the GraphQL endpoint
        server_config: Paths for the GraphQL and realtime endpoints

    Returns:
        FastAPI: The configured FastAPI application instance
    """
    server_config = server_config or ServerConfig()
    app = FastAPI(
        title="AppSync Simulator",
        description="Local GraphQL operation and realtime subscription simulator",
        version="0.1.0",
        docs_url=None,
        redoc_url=None,
    )

    app.state.operation_server = operation_server
    app.state.subscription_server = None
    app.state.broker = None

    app.add_middleware(CorrelationMiddleware)
    register_error_handlers(app)

    app.include_router(create_graphql_router(server_config.graphql_path))
    app.include_router(create_realtime_router(server_config.realtime_path))

    logger.debug(
        "Application created",
        graphql_path=server_config.graphql_path,
        realtime_path=server_config.realtime_path,
    )
    return app
