"""
API module for the AppSync simulator.

Provides the HTTP GraphQL endpoint, the health check and the realtime
WebSocket endpoint.
"""

from .graphql import create_graphql_router
from .real_time import create_realtime_router

__all__ = ["create_graphql_router", "create_realtime_router"]
