"""GraphQL operation execution over HTTP."""

from .operation_server import GraphQLRequest, GraphQLResponse, OperationServer

__all__ = ["GraphQLRequest", "GraphQLResponse", "OperationServer"]
