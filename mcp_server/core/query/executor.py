import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from mcp_server.core.query.compiler import CompiledQuery
from mcp_server.core.query.errors import (
    QueryTimeoutError,
    StorageExecutionError,
    StorageUnavailableError,
)
from mcp_server.core.query.values import normalize_row

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    records: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    elapsed: float = 0.0  # seconds


class QueryExecutor:
    """Runs compiled queries on the storage engine and reshapes the rows."""

    def __init__(self, engine: Optional[AsyncEngine], timeout: Optional[float] = None):
        self.engine = engine
        self.timeout = timeout

    @property
    def available(self) -> bool:
        return self.engine is not None

    async def _fetch(self, compiled: CompiledQuery) -> List[Dict[str, Any]]:
        async with self.engine.connect() as conn:
            result = await conn.execute(text(compiled.statement), compiled.params)
            return [normalize_row(row) for row in result.mappings().all()]

    async def execute(self, compiled: CompiledQuery) -> ExecutionResult:
        """
        Execute a compiled query.

        Raises:
            StorageUnavailableError: no engine configured (schema-only mode).
            QueryTimeoutError: the round trip exceeded the configured timeout.
            StorageExecutionError: the database rejected or failed the query.
        """
        if self.engine is None:
            raise StorageUnavailableError(
                "Database connection not available - running in schema-only mode"
            )

        logger.debug(f"Executing query: {compiled.sql}")
        start = time.perf_counter()

        try:
            records = await asyncio.wait_for(self._fetch(compiled), timeout=self.timeout)
        except asyncio.TimeoutError:
            elapsed = time.perf_counter() - start
            raise QueryTimeoutError(f"query timed out after {elapsed:.3f}s")
        except DBAPIError as error:
            # Surface the driver's own message
            raise StorageExecutionError(str(error.orig)) from error
        except SQLAlchemyError as error:
            raise StorageExecutionError(str(error)) from error

        elapsed = time.perf_counter() - start
        return ExecutionResult(records=records, row_count=len(records), elapsed=elapsed)
