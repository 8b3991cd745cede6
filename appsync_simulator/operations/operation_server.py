"""
HTTP GraphQL operation execution.

Executes queries and mutations against the loaded schema and, for mutations,
publishes each resolved root field to the broker so realtime subscribers see
the change. Publishing happens after the response is computed and can never
change it.
"""

import inspect
from collections.abc import Mapping
from typing import Any

from graphql import OperationType, execute
from pydantic import BaseModel, ConfigDict, Field

from ..auth.validators import AuthValidator
from ..error_types import ErrorMessages, ErrorType, create_error_entry
from ..exceptions import AuthRejectedError, ExecutionError, create_error_context
from ..infrastructure.message_broker import PubSubBroker
from ..schema import PreparedOperation, SimulatorSchema, format_graphql_error
from ..structured_logging.enhanced_logging_config import get_logger, log_exception_once

logger = get_logger(__name__)


class GraphQLRequest(BaseModel):
    """Body of a POST to the GraphQL endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    query: str = Field(..., min_length=1)
    variables: dict[str, Any] | None = None
    operation_name: str | None = Field(default=None, alias="operationName")


class GraphQLResponse(BaseModel):
    """GraphQL response; errors is omitted from the wire form when empty."""

    data: Any = None
    errors: list[dict[str, Any]] | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"data": self.data}
        if self.errors:
            payload["errors"] = self.errors
        return payload


class OperationServer:
    """
    Executes GraphQL operations received over HTTP.

    The broker is attached by the coordinator while the simulator runs; with
    no broker attached, mutations execute normally and nothing is published.
    """

    def __init__(
        self,
        schema: SimulatorSchema,
        auth_validator: AuthValidator,
        broker: PubSubBroker | None = None,
    ):
        self.schema = schema
        self.auth_validator = auth_validator
        self.broker = broker
        self.executed_count = 0
        self.published_count = 0

    def authorize(self, auth: Mapping[str, Any]) -> None:
        """
        Check request auth material with the configured validator.

        Raises:
            AuthRejectedError: If the validator rejects (or fails on) the request
        """
        try:
            accepted = bool(self.auth_validator.validate(auth))
        except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: a faulty validator rejects rather than crashes
            logger.error("Auth validator raised; rejecting", error=str(e), error_type=type(e).__name__)
            accepted = False
        if not accepted:
            raise AuthRejectedError(ErrorMessages.UNAUTHORIZED)

    async def execute(
        self,
        request: GraphQLRequest,
        auth: Mapping[str, Any] | None = None,
        request_id: str | None = None,
    ) -> GraphQLResponse:
        """
        Execute one operation.

        Args:
            request: The parsed request body
            auth: Normalized auth material (lower-cased header names)
            request_id: Correlation id used for error context

        Returns:
            GraphQLResponse: data and errors; GraphQL-level failures never raise

        Raises:
            AuthRejectedError: If the request is not authorized
        """
        auth = dict(auth or {})
        self.authorize(auth)

        try:
            prepared = self.schema.prepare(request.query, request.variables, request.operation_name)
        except ExecutionError as e:
            return GraphQLResponse(data=None, errors=e.errors)

        if prepared.operation_type is OperationType.SUBSCRIPTION:
            error = ExecutionError(
                ErrorMessages.SUBSCRIPTION_OVER_HTTP,
                create_error_context(operation_name=request.operation_name, request_id=request_id),
                errors=[create_error_entry(ErrorType.UNSUPPORTED_OPERATION, ErrorMessages.SUBSCRIPTION_OVER_HTTP)],
            )
            return GraphQLResponse(data=None, errors=error.errors)

        result = execute(
            self.schema.schema,
            prepared.document,
            variable_values=prepared.variables,
            operation_name=prepared.operation_name,
            context_value={"auth": auth, "request_id": request_id},
        )
        if inspect.isawaitable(result):
            result = await result
        self.executed_count += 1

        errors = [format_graphql_error(e) for e in result.errors] if result.errors else None
        response = GraphQLResponse(data=result.data, errors=errors)
        logger.debug(
            "Operation executed",
            operation_type=prepared.operation_type.value,
            operation_name=prepared.operation_name,
            error_count=len(errors or []),
        )

        if prepared.operation_type is OperationType.MUTATION and result.data:
            self._publish_mutation_events(prepared, result.data)
        return response

    def _publish_mutation_events(self, prepared: PreparedOperation, data: Mapping[str, Any]) -> None:
        """Publish each non-null mutation root field under its field name."""
        broker = self.broker
        if broker is None:
            return

        for root_field in prepared.root_fields:
            value = data.get(root_field.response_key)
            if value is None:
                continue
            try:
                delivered = broker.publish(root_field.name, value)
            except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: fanout must never affect the mutation response
                log_exception_once(
                    logger,
                    "error",
                    "Failed to publish mutation event",
                    exc=e,
                    topic=root_field.name,
                    exc_info=True,
                )
                continue
            self.published_count += 1
            logger.debug("Mutation event published", topic=root_field.name, delivered=delivered)

    def get_stats(self) -> dict[str, Any]:
        return {
            "executed": self.executed_count,
            "published": self.published_count,
            "broker_attached": self.broker is not None,
        }
