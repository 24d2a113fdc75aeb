import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from mcp_server.core.schemas import (
    Aggregate,
    Entity,
    EntityField,
    FieldType,
    Filter,
    QueryRequest,
)
from mcp_server.core.query.errors import (
    InvalidAggregateFunctionError,
    InvalidFilterLogicError,
    InvalidJoinTypeError,
    InvalidOperatorError,
    MalformedFilterValueError,
    UnknownFieldError,
)
from mcp_server.core.query.validator import AGGREGATE_FUNCTIONS, JOIN_TYPES
from mcp_server.core.query.values import (
    ValueKind,
    classify,
    format_literal,
    parse_timestamp,
)


# -----------------------------------------------------------------------------
# COMPILER MODULE
# Purpose: turn a validated QueryRequest into SQL.
# Why: callers describe what they want; only this module writes query text.
#
# The query is built twice from the same clause logic: once with named
# placeholders (executed, values bound by the driver) and once with inlined
# literals (echoed back in metadata.sql and logs).
# -----------------------------------------------------------------------------

COMPARISON_OPERATORS = {
    "eq": "=",
    "ne": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "like": "LIKE",
    "ilike": "ILIKE",
}
FILTER_LOGIC = ("AND", "OR")
ORDER_DIRECTIONS = ("ASC", "DESC")

# Same shape sqlalchemy.text() reads as a bind parameter; "::" casts are left alone
BIND_PARAM_PATTERN = re.compile(r"(?<![:\w$\\]):([\w$]+)(?![:\w$])")

# render(value, field definition) -> SQL text standing for the value
# passthrough(text) -> request text that is copied into the query as is
ValueRenderer = Callable[[Any, Optional[EntityField]], str]
Passthrough = Callable[[str], str]


@dataclass
class CompiledQuery:
    """
    Attributes:
        statement: SQL with :p0, :p1 ... placeholders, ready for sqlalchemy.text()
        params: placeholder name -> value, in placeholder order
        sql: the same query with values inlined, for display only
    """

    statement: str
    params: Dict[str, Any] = field(default_factory=dict)
    sql: str = ""


def _coerce_string(value: str, field_type: FieldType) -> Any:
    if field_type == FieldType.DATETIME:
        return parse_timestamp(value)
    if field_type == FieldType.INTEGER:
        return int(value)
    if field_type == FieldType.FLOAT:
        return float(value)
    if field_type == FieldType.BOOLEAN:
        lowered = value.strip().lower()
        if lowered in ("true", "false"):
            return lowered == "true"
    return value


def bind_value(value: Any, field_def: Optional[EntityField] = None) -> Any:
    """
    Prepare a filter value for parameter binding.
    Strings compared against datetime, integer, float or boolean fields are
    converted to that type so strict drivers (asyncpg) accept them; a string
    that does not convert is bound unchanged.
    """
    kind = classify(value)

    if kind is ValueKind.STRING and field_def is not None:
        try:
            return _coerce_string(value, field_def.type)
        except ValueError:
            return value
    if kind is ValueKind.BYTES:
        return bytes(value).decode("utf-8", errors="replace")
    if kind in (ValueKind.SEQUENCE, ValueKind.MAPPING, ValueKind.OTHER):
        return str(value)
    return value


def escape_colons(text: str) -> str:
    """Keep free text from being read as :name bind parameters by text()."""
    return BIND_PARAM_PATTERN.sub(r"\\:\1", text)


def _verbatim(text: str) -> str:
    return text


class ParamBinder:
    """ValueRenderer that records each value and hands back its placeholder."""

    def __init__(self):
        self.params: Dict[str, Any] = {}

    def __call__(self, value: Any, field_def: Optional[EntityField] = None) -> str:
        name = f"p{len(self.params)}"
        self.params[name] = bind_value(value, field_def)
        return f":{name}"


def render_literal(value: Any, field_def: Optional[EntityField] = None) -> str:
    return format_literal(value)


def _require_field(entity: Entity, name: str, role: str = "field") -> EntityField:
    field_def = entity.fields.get(name)
    if field_def is None:
        raise UnknownFieldError(f"{role} '{name}' not found in entity '{entity.name}'")
    return field_def


def compile_filter(
    query_filter: Filter, entity: Entity, render: ValueRenderer
) -> str:
    """
    Build a single WHERE condition.

    Raises:
        MalformedFilterValueError: `in` without a non-empty list value.
        InvalidOperatorError: unknown operator.
    """
    field_def = _require_field(entity, query_filter.field, "filter field")
    column = f"{entity.name}.{query_filter.field}"
    operator = query_filter.operator

    if operator in COMPARISON_OPERATORS:
        symbol = COMPARISON_OPERATORS[operator]
        return f"{column} {symbol} {render(query_filter.value, field_def)}"

    if operator == "in":
        if not isinstance(query_filter.value, (list, tuple)):
            raise MalformedFilterValueError("invalid value for IN operator")
        if not query_filter.value:
            raise MalformedFilterValueError("IN operator requires at least one value")
        values = ", ".join(render(value, field_def) for value in query_filter.value)
        return f"{column} IN ({values})"

    if operator == "is_null":
        return f"{column} IS NULL"
    if operator == "is_not_null":
        return f"{column} IS NOT NULL"

    raise InvalidOperatorError(f"unsupported operator: {operator}")


def _compile_where(
    filters: List[Filter], entity: Entity, render: ValueRenderer
) -> str:
    # Strictly left to right, no parentheses: a OR b AND c stays as written
    parts = []
    for position, query_filter in enumerate(filters):
        condition = compile_filter(query_filter, entity, render)
        if position == 0:
            parts.append(condition)
            continue

        logic = (query_filter.logic or "and").upper()
        if logic not in FILTER_LOGIC:
            raise InvalidFilterLogicError(f"invalid filter logic: {query_filter.logic}")
        parts.append(f"{logic} {condition}")

    return " ".join(parts)


def compile_aggregate(aggregate: Aggregate, entity: Entity) -> str:
    function = aggregate.function.lower()
    if function not in AGGREGATE_FUNCTIONS:
        raise InvalidAggregateFunctionError(
            f"invalid aggregate function: {aggregate.function}"
        )

    if aggregate.field == "*":
        target = "*"
        alias = aggregate.alias or f"{aggregate.function}_all"
    else:
        _require_field(entity, aggregate.field, "aggregate field")
        target = f"{entity.name}.{aggregate.field}"
        alias = aggregate.alias or f"{aggregate.function}_{aggregate.field}"

    return f"{function.upper()}({target}) AS {alias}"


def _compile_select(request: QueryRequest, entity: Entity) -> str:
    if request.fields:
        names = [_require_field(entity, name).name for name in request.fields]
    else:
        names = list(entity.fields)

    columns = [f"{entity.name}.{name}" for name in names]
    columns.extend(compile_aggregate(aggregate, entity) for aggregate in request.aggregates)
    return ", ".join(columns)


def build_sql(
    request: QueryRequest,
    entity: Entity,
    render: ValueRenderer,
    passthrough: Passthrough = _verbatim,
) -> str:
    clauses = [
        f"SELECT {_compile_select(request, entity)}",
        f"FROM {entity.name}",
    ]

    for join in request.joins:
        if join.type.lower() not in JOIN_TYPES:
            raise InvalidJoinTypeError(f"invalid join type: {join.type}")
        # The join condition is passed through as given
        clauses.append(
            f"{join.type.upper()} JOIN {join.entity} ON {passthrough(join.condition)}"
        )

    if request.filters:
        clauses.append(f"WHERE {_compile_where(request.filters, entity, render)}")

    if request.group_by:
        # TODO: group_by names are neither validated nor qualified; decide with
        # API consumers before tightening this to entity fields.
        clauses.append(f"GROUP BY {passthrough(', '.join(request.group_by))}")

    if request.order_by:
        items = []
        for order in request.order_by:
            _require_field(entity, order.field, "order by field")
            direction = order.direction.upper()
            if direction not in ORDER_DIRECTIONS:
                direction = "ASC"
            items.append(f"{entity.name}.{order.field} {direction}")
        clauses.append(f"ORDER BY {', '.join(items)}")

    if request.limit is not None:
        clauses.append(f"LIMIT {int(request.limit)}")
    if request.offset is not None:
        clauses.append(f"OFFSET {int(request.offset)}")

    return " ".join(clauses)


def compile_query(request: QueryRequest, entity: Entity) -> CompiledQuery:
    """
    Compile a request against its entity definition.

    Args:
        request: The structured query (already validated).
        entity: Registry entry for request.entity.

    Returns:
        CompiledQuery with the parameterized statement, its parameters and
        the literal SQL echo.

    Example:
        compiled = compile_query(request, schema.entities["devices"])
        compiled.sql  # "SELECT devices.id FROM devices WHERE devices.os = 'Linux'"
    """
    binder = ParamBinder()
    statement = build_sql(request, entity, binder, escape_colons)
    sql = build_sql(request, entity, render_literal)
    return CompiledQuery(statement=statement, params=binder.params, sql=sql)
