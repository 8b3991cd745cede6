"""
Schema and resolver bindings executed by the simulator.

The schema is supplied by an external collaborator as SDL plus a mapping of
resolvers; this module turns that into a graphql-core GraphQLSchema, declares
the AppSync directives and scalars the SDL may reference, and prepares
incoming documents (parse, validate, operation selection, root fields) for
both the HTTP operation server and the realtime subscription server.
"""

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from graphql import (
    DocumentNode,
    FieldNode,
    FragmentDefinitionNode,
    FragmentSpreadNode,
    GraphQLError,
    GraphQLField,
    GraphQLObjectType,
    GraphQLSchema,
    GraphQLSyntaxError,
    InlineFragmentNode,
    OperationDefinitionNode,
    OperationType,
    SelectionSetNode,
    build_schema,
    get_operation_ast,
    parse,
    validate,
)
from graphql.execution.values import get_argument_values, get_variable_values
from graphql.utilities import value_from_ast_untyped

from .error_types import ErrorType
from .exceptions import ExecutionError
from .structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

Resolver = Callable[..., Any]

SUBSCRIBE_DIRECTIVE = "aws_subscribe"

_APPSYNC_DIRECTIVES = {
    "aws_subscribe": "directive @aws_subscribe(mutations: [String]) on FIELD_DEFINITION",
    "aws_api_key": "directive @aws_api_key on FIELD_DEFINITION | OBJECT",
    "aws_iam": "directive @aws_iam on FIELD_DEFINITION | OBJECT",
    "aws_oidc": "directive @aws_oidc on FIELD_DEFINITION | OBJECT",
    "aws_lambda": "directive @aws_lambda on FIELD_DEFINITION | OBJECT",
    "aws_cognito_user_pools": (
        "directive @aws_cognito_user_pools(cognito_groups: [String]) on FIELD_DEFINITION | OBJECT"
    ),
    "aws_auth": "directive @aws_auth(cognito_groups: [String]) on FIELD_DEFINITION",
}

_APPSYNC_SCALARS = [
    "AWSDate",
    "AWSTime",
    "AWSDateTime",
    "AWSTimestamp",
    "AWSEmail",
    "AWSJSON",
    "AWSURL",
    "AWSPhone",
    "AWSIPAddress",
]


def _appsync_prelude(sdl: str) -> str:
    """Definitions for AppSync directives and scalars the SDL uses but does not declare."""
    lines = []
    for name, definition in _APPSYNC_DIRECTIVES.items():
        if not re.search(rf"directive\s+@{name}\b", sdl):
            lines.append(definition)
    for name in _APPSYNC_SCALARS:
        if not re.search(rf"scalar\s+{name}\b", sdl):
            lines.append(f"scalar {name}")
    return "\n".join(lines)


def format_graphql_error(error: GraphQLError, default_type: ErrorType = ErrorType.EXECUTION_ERROR) -> dict[str, Any]:
    """
    Format a graphql-core error as an AppSync error entry.

    The errorType comes from the original exception's error_type attribute when
    a resolver raised one, otherwise from default_type.
    """
    formatted = dict(error.formatted)
    error_type = getattr(error.original_error, "error_type", None) or default_type
    formatted["errorType"] = error_type.value if isinstance(error_type, ErrorType) else str(error_type)
    return formatted


@dataclass
class RootField:
    """One top-level field selected by an operation."""

    name: str
    response_key: str
    node: FieldNode


@dataclass
class PreparedOperation:
    """A parsed and validated document with its selected operation."""

    document: DocumentNode
    operation: OperationDefinitionNode
    root_fields: list[RootField] = field(default_factory=list)
    variables: dict[str, Any] = field(default_factory=dict)
    operation_name: str | None = None

    @property
    def operation_type(self) -> OperationType:
        return self.operation.operation


class SimulatorSchema:
    """
    A GraphQL schema with its resolver bindings.

    Resolvers follow graphql-core's signature ``resolver(obj, info, **args)`` and
    may be sync or async. Subscription fields are not bound: their value is the
    published mutation payload.
    """

    def __init__(self, schema: GraphQLSchema):
        self.schema = schema

    @classmethod
    def from_sdl(
        cls, sdl: str, resolvers: Mapping[str, Mapping[str, Resolver]] | None = None
    ) -> "SimulatorSchema":
        """
        Build a schema from SDL, declaring missing AppSync directives and scalars.

        Args:
            sdl: Schema definition language source
            resolvers: {"TypeName": {"fieldName": resolver}}

        Raises:
            GraphQLError: If the SDL cannot be parsed
            TypeError: If the SDL fails schema validation
            ValueError: If a resolver names an unknown type or field
        """
        prelude = _appsync_prelude(sdl)
        schema = build_schema(f"{prelude}\n{sdl}" if prelude else sdl)
        instance = cls(schema)
        if resolvers:
            instance.bind_resolvers(resolvers)
        logger.info(
            "Schema loaded",
            types=len(schema.type_map),
            has_mutation=schema.mutation_type is not None,
            has_subscription=schema.subscription_type is not None,
        )
        return instance

    def bind_resolvers(self, resolvers: Mapping[str, Mapping[str, Resolver]]) -> None:
        """Attach resolvers to object type fields."""
        subscription_type = self.schema.subscription_type
        for type_name, field_resolvers in resolvers.items():
            gql_type = self.schema.get_type(type_name)
            if not isinstance(gql_type, GraphQLObjectType):
                raise ValueError(f"Cannot bind resolvers to unknown object type '{type_name}'")
            if subscription_type is not None and gql_type is subscription_type:
                logger.warning("Ignoring resolvers bound to the subscription type", type_name=type_name)
                continue
            for field_name, resolver in field_resolvers.items():
                gql_field = gql_type.fields.get(field_name)
                if gql_field is None:
                    raise ValueError(f"Type '{type_name}' has no field '{field_name}'")
                gql_field.resolve = resolver
                logger.debug("Resolver bound", type_name=type_name, field_name=field_name)

    def subscription_field(self, field_name: str) -> GraphQLField | None:
        subscription_type = self.schema.subscription_type
        if subscription_type is None:
            return None
        return subscription_type.fields.get(field_name)

    def subscription_topics(self, field_name: str) -> list[str]:
        """
        Topics a subscription root field listens on.

        These are the mutation names listed in ``@aws_subscribe(mutations: [...])``,
        or the field's own name when the directive is absent.
        """
        gql_field = self.subscription_field(field_name)
        node = gql_field.ast_node if gql_field is not None else None
        if node is not None:
            for directive in node.directives or ():
                if directive.name.value != SUBSCRIBE_DIRECTIVE:
                    continue
                for argument in directive.arguments:
                    if argument.name.value == "mutations":
                        mutations = value_from_ast_untyped(argument.value) or []
                        return list(dict.fromkeys(str(m) for m in mutations if m))
        return [field_name]

    def prepare(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
        operation_name: str | None = None,
    ) -> PreparedOperation:
        """
        Parse and validate a document and select the operation to run.

        Raises:
            ExecutionError: Carrying AppSync-formatted errors when the document
                cannot be parsed, fails validation, or names no runnable operation
        """
        try:
            document = parse(query)
        except GraphQLSyntaxError as e:
            raise ExecutionError(e.message, errors=[format_graphql_error(e, ErrorType.VALIDATION_ERROR)]) from e

        validation_errors = validate(self.schema, document)
        if validation_errors:
            raise ExecutionError(
                "Document failed validation",
                errors=[format_graphql_error(e, ErrorType.VALIDATION_ERROR) for e in validation_errors],
            )

        operation = get_operation_ast(document, operation_name)
        if operation is None:
            message = (
                f"Unknown operation named '{operation_name}'."
                if operation_name
                else "Must provide operation name if query contains multiple operations."
            )
            raise ExecutionError(message, errors=[{"errorType": ErrorType.VALIDATION_ERROR.value, "message": message}])

        fragments = {
            definition.name.value: definition
            for definition in document.definitions
            if isinstance(definition, FragmentDefinitionNode)
        }
        return PreparedOperation(
            document=document,
            operation=operation,
            root_fields=list(_collect_root_fields(operation.selection_set, fragments)),
            variables=dict(variables or {}),
            operation_name=operation_name,
        )

    def resolve_arguments(self, prepared: PreparedOperation, root_field: RootField) -> dict[str, Any]:
        """
        Coerce a subscription root field's arguments using the request variables.

        Raises:
            ExecutionError: If variables or arguments fail coercion
        """
        gql_field = self.subscription_field(root_field.name)
        if gql_field is None:
            message = f"Subscription field '{root_field.name}' is not defined"
            raise ExecutionError(message, errors=[{"errorType": ErrorType.VALIDATION_ERROR.value, "message": message}])

        coerced = get_variable_values(self.schema, prepared.operation.variable_definitions or (), prepared.variables)
        if isinstance(coerced, list):
            raise ExecutionError(
                "Variables failed coercion",
                errors=[format_graphql_error(e, ErrorType.VALIDATION_ERROR) for e in coerced],
            )
        try:
            return get_argument_values(gql_field, root_field.node, coerced)
        except GraphQLError as e:
            raise ExecutionError(e.message, errors=[format_graphql_error(e, ErrorType.VALIDATION_ERROR)]) from e


def _collect_root_fields(
    selection_set: SelectionSetNode, fragments: dict[str, FragmentDefinitionNode]
) -> list[RootField]:
    """Flatten the top-level selection, expanding inline fragments and spreads."""
    collected: list[RootField] = []
    for selection in selection_set.selections:
        if isinstance(selection, FieldNode):
            name = selection.name.value
            if name.startswith("__"):
                continue
            response_key = selection.alias.value if selection.alias else name
            collected.append(RootField(name=name, response_key=response_key, node=selection))
        elif isinstance(selection, InlineFragmentNode):
            collected.extend(_collect_root_fields(selection.selection_set, fragments))
        elif isinstance(selection, FragmentSpreadNode):
            fragment = fragments.get(selection.name.value)
            if fragment is not None:
                collected.extend(_collect_root_fields(fragment.selection_set, fragments))
    return collected
