from typing import Optional

from mcp_server.core.schemas import MCPSchema, QueryRequest
from mcp_server.core.query.errors import (
    InvalidAggregateFunctionError,
    InvalidJoinTypeError,
    InvalidOperatorError,
    InvalidOrderDirectionError,
    QueryValidationError,
    UnknownEntityError,
    UnknownFieldError,
)


FILTER_OPERATORS = (
    "eq",
    "ne",
    "gt",
    "gte",
    "lt",
    "lte",
    "in",
    "like",
    "ilike",
    "is_null",
    "is_not_null",
)
JOIN_TYPES = ("inner", "left", "right", "full")
ORDER_DIRECTIONS = ("", "asc", "desc")
AGGREGATE_FUNCTIONS = ("count", "sum", "avg", "min", "max")


def validate_query(request: QueryRequest, schema: MCPSchema) -> None:
    """
    Check a request against the schema registry.

    Checks run in a fixed order and the first failure is raised:
    entity, selected fields, filters, joins, ordering, aggregates.
    group_by is not checked.

    Raises:
        QueryValidationError subclass describing the first problem.
    """
    entity = schema.get_entity(request.entity)
    if entity is None:
        raise UnknownEntityError(f"entity '{request.entity}' not found")

    for field in request.fields:
        if not entity.has_field(field):
            raise UnknownFieldError(
                f"field '{field}' not found in entity '{request.entity}'"
            )

    for query_filter in request.filters:
        if not entity.has_field(query_filter.field):
            raise UnknownFieldError(
                f"filter field '{query_filter.field}' not found in entity '{request.entity}'"
            )
        if query_filter.operator not in FILTER_OPERATORS:
            raise InvalidOperatorError(
                f"invalid filter operator: {query_filter.operator}"
            )

    for join in request.joins:
        if schema.get_entity(join.entity) is None:
            raise UnknownEntityError(f"join entity '{join.entity}' not found")
        if join.type.lower() not in JOIN_TYPES:
            raise InvalidJoinTypeError(f"invalid join type: {join.type}")

    for order in request.order_by:
        if not entity.has_field(order.field):
            raise UnknownFieldError(
                f"order by field '{order.field}' not found in entity '{request.entity}'"
            )
        # Exact lowercase match, "ASC" is rejected here
        if order.direction not in ORDER_DIRECTIONS:
            raise InvalidOrderDirectionError(
                f"invalid order direction: {order.direction}"
            )

    for aggregate in request.aggregates:
        if aggregate.function.lower() not in AGGREGATE_FUNCTIONS:
            raise InvalidAggregateFunctionError(
                f"invalid aggregate function: {aggregate.function}"
            )
        if aggregate.field != "*" and not entity.has_field(aggregate.field):
            raise UnknownFieldError(
                f"aggregate field '{aggregate.field}' not found in entity '{request.entity}'"
            )


def check_query(
    request: QueryRequest, schema: MCPSchema
) -> Optional[QueryValidationError]:
    """Pre-flight form of validate_query: return the error instead of raising."""
    try:
        validate_query(request, schema)
    except QueryValidationError as error:
        return error
    return None
