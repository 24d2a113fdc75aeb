"""
Error classes for the structured query engine.

Every failure a query can hit is a QueryError. The orchestrator catches
them at its boundary and records them on the QueryResponse:
- QueryValidationError: the request does not fit the schema (no storage access)
- StorageError: the storage round trip could not produce rows
- QueryNotFoundError: a result id is unknown to the result store

Each class carries a stable `code` that is stored in
QueryResponse.error_type and used by the HTTP layer to pick a status code.
"""


class QueryError(Exception):
    """Base exception for the query engine."""

    code = "query_error"


# =========================
# Validation / compilation
# =========================
class QueryValidationError(QueryError):
    """The request was rejected before any storage access."""

    code = "invalid_query"


class UnknownEntityError(QueryValidationError):
    code = "unknown_entity"


class UnknownFieldError(QueryValidationError):
    code = "unknown_field"


class InvalidOperatorError(QueryValidationError):
    code = "invalid_operator"


class InvalidFilterLogicError(InvalidOperatorError):
    """A filter combinator other than and/or."""

    code = "invalid_filter_logic"


class InvalidJoinTypeError(QueryValidationError):
    code = "invalid_join_type"


class InvalidOrderDirectionError(QueryValidationError):
    code = "invalid_order_direction"


class InvalidAggregateFunctionError(QueryValidationError):
    code = "invalid_aggregate_function"


class MalformedFilterValueError(QueryValidationError):
    """E.g. a scalar given to the `in` operator."""

    code = "malformed_filter_value"


# =========================
# Storage
# =========================
class StorageError(QueryError):
    code = "storage_error"


class StorageUnavailableError(StorageError):
    """No storage connection is provisioned (schema-only mode)."""

    code = "storage_unavailable"


class StorageExecutionError(StorageError):
    """The backend rejected or failed the query. Message is the driver's."""

    code = "storage_execution_failed"


class QueryTimeoutError(StorageError):
    code = "query_timeout"


# =========================
# Result store
# =========================
class QueryNotFoundError(QueryError):
    code = "not_found"

    def __init__(self, query_id: str):
        super().__init__(f"query not found: {query_id}")
        self.query_id = query_id
