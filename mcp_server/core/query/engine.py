import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from mcp_server.core.schemas import (
    MCPSchema,
    QueryMetadata,
    QueryRequest,
    QueryResponse,
    QueryStatus,
)
from mcp_server.core.query.compiler import compile_query
from mcp_server.core.query.errors import (
    QueryError,
    QueryValidationError,
)
from mcp_server.core.query.executor import QueryExecutor
from mcp_server.core.query.registry import build_schema
from mcp_server.core.query.store import ResultStore
from mcp_server.core.query.validator import check_query, validate_query

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# ENGINE MODULE - Orchestration
# Purpose: run one structured query through validate -> compile -> execute and
# keep its outcome addressable by id.
# Why: callers always get a fully formed QueryResponse, even on failure.
# -----------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_query_id() -> str:
    return str(uuid.uuid4())


class QueryEngine:
    """Public entry point of the structured query interface."""

    def __init__(
        self,
        storage: Optional[AsyncEngine] = None,
        schema: Optional[MCPSchema] = None,
        timeout: Optional[float] = None,
        result_ttl: int = 3600,
        now: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = new_query_id,
    ):
        """
        Args:
            storage: Pooled async engine, or None for schema-only mode.
            schema: Registry to validate against, built fresh when omitted.
            timeout: Seconds allowed for one storage round trip (None = no limit).
            result_ttl: Seconds a result stays retrievable before clear_expired drops it.
            now: Wall clock, injectable for tests.
            id_factory: Generates ids for requests that arrive without one.
        """
        self.schema = schema or build_schema()
        self.executor = QueryExecutor(storage, timeout=timeout)
        self.results = ResultStore()
        self.result_ttl = result_ttl
        self.now = now
        self.id_factory = id_factory

    @property
    def storage_available(self) -> bool:
        return self.executor.available

    def get_schema(self) -> MCPSchema:
        """Independent copy of the registry with a refreshed timestamp."""
        return self.schema.model_copy(update={"timestamp": self.now()}, deep=True)

    def validate_query(self, request: QueryRequest) -> Optional[QueryValidationError]:
        return check_query(request, self.schema)

    async def execute_query(self, request: QueryRequest) -> QueryResponse:
        """
        Run a structured query and record its outcome in the result store.

        The response is stored as `running` first and replaced exactly once by
        its terminal state. The first failing stage stops the pipeline.

        Returns:
            The terminal QueryResponse (completed or failed).

        Example:
            response = await engine.execute_query(QueryRequest(entity="devices"))
        """
        if not request.id:
            request.id = self.id_factory()
        request.created_at = self.now()

        response = QueryResponse(
            id=request.id,
            status=QueryStatus.RUNNING,
            created_at=request.created_at,
        )
        self.results.put(response)
        logger.debug(f"[Query {request.id}] started on entity '{request.entity}'")

        sql = None
        try:
            validate_query(request, self.schema)
            compiled = compile_query(request, self.schema.entities[request.entity])
            sql = compiled.sql
            result = await self.executor.execute(compiled)

        except QueryValidationError as error:
            logger.warning(f"[Query {request.id}] rejected: {error}")
            return self._fail(response, str(error), error.code, sql)

        except QueryError as error:
            logger.error(f"[Query {request.id}] failed: {error}")
            return self._fail(response, str(error), error.code, sql)

        except asyncio.CancelledError:
            self._fail(response, "query cancelled", "cancelled", sql)
            raise

        except Exception as error:
            logger.exception(f"[Query {request.id}] unexpected error")
            return self._fail(response, str(error), "internal_error", sql)

        completed = response.model_copy(
            update={
                "status": QueryStatus.COMPLETED,
                "data": result.records,
                "metadata": QueryMetadata(
                    row_count=result.row_count,
                    execution_time=result.elapsed,
                    sql=sql,
                ),
                "completed_at": self.now(),
            }
        )
        self.results.put(completed)
        logger.info(
            f"[Query {request.id}] completed: {result.row_count} rows in {result.elapsed:.3f}s"
        )
        return completed

    def _fail(
        self,
        response: QueryResponse,
        message: str,
        error_type: str,
        sql: Optional[str] = None,
    ) -> QueryResponse:
        failed = response.model_copy(
            update={
                "status": QueryStatus.FAILED,
                "error": message,
                "error_type": error_type,
                "metadata": QueryMetadata(sql=sql),
                "completed_at": self.now(),
            }
        )
        self.results.put(failed)
        return failed

    def get_query_result(self, query_id: str) -> QueryResponse:
        """Raises QueryNotFoundError for unknown or evicted ids."""
        return self.results.get(query_id)

    def clear_expired(self) -> int:
        cutoff = self.now() - timedelta(seconds=self.result_ttl)
        return self.results.evict_older_than(cutoff)


async def run_result_sweeper(engine: QueryEngine, interval: float) -> None:
    """
    Periodically evict expired results. Runs until cancelled;
    the application lifespan owns the task.
    """
    while True:
        await asyncio.sleep(interval)
        removed = engine.clear_expired()
        if removed:
            logger.info(f"Evicted {removed} expired query results")
