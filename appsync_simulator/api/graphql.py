"""
HTTP endpoints: the GraphQL operation endpoint and a health check.
"""

import json
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..auth.validators import normalize_auth
from ..error_types import ErrorMessages
from ..exceptions import BadRequestError, create_error_context
from ..operations.operation_server import GraphQLRequest, OperationServer
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


async def _read_graphql_request(request: Request) -> GraphQLRequest:
    correlation_id = getattr(request.state, "correlation_id", None)
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise BadRequestError(
            ErrorMessages.INVALID_BODY, create_error_context(request_id=correlation_id), details={"error": str(e)}
        ) from e
    if not isinstance(body, dict):
        raise BadRequestError(ErrorMessages.INVALID_BODY, create_error_context(request_id=correlation_id))
    try:
        return GraphQLRequest.model_validate(body)
    except ValidationError as e:
        raise BadRequestError(
            ErrorMessages.MISSING_QUERY,
            create_error_context(request_id=correlation_id),
            details={"validation_errors": e.error_count()},
        ) from e


async def graphql_endpoint(request: Request) -> JSONResponse:
    """Execute a query or mutation; GraphQL errors come back with status 200."""
    operation_server: OperationServer = request.app.state.operation_server
    graphql_request = await _read_graphql_request(request)
    response = await operation_server.execute(
        graphql_request,
        normalize_auth(dict(request.headers)),
        request_id=getattr(request.state, "correlation_id", None),
    )
    return JSONResponse(response.to_payload())


async def health_endpoint(request: Request) -> dict[str, Any]:
    state = request.app.state
    subscription_server = getattr(state, "subscription_server", None)
    broker = getattr(state, "broker", None)
    return {
        "status": "ok" if subscription_server is not None and subscription_server.running else "stopped",
        "connections": len(subscription_server.connections) if subscription_server is not None else 0,
        "subscriptions": subscription_server.subscription_count() if subscription_server is not None else 0,
        "topics": len(broker.topics()) if broker is not None else 0,
        "operations": state.operation_server.get_stats(),
    }


def create_graphql_router(graphql_path: str = "/graphql") -> APIRouter:
    """
    Build the router serving the GraphQL endpoint at graphql_path.

    Args:
        graphql_path: Path of the POST endpoint

    Returns:
        APIRouter: Router with the GraphQL and health routes
    """
    router = APIRouter(tags=["graphql"])
    router.add_api_route(graphql_path, graphql_endpoint, methods=["POST"])
    router.add_api_route("/health", health_endpoint, methods=["GET"])
    return router
