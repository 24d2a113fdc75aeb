import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from mcp_server.core.config import settings
from mcp_server.core.database import connect_storage
from mcp_server.core.query.engine import QueryEngine, run_result_sweeper, utcnow
from mcp_server.api.router import api_router

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


# Build the query engine on startup, stop the sweeper and close the pool on shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    storage = await connect_storage()

    app.state.query_engine = QueryEngine(
        storage=storage,
        timeout=settings.QUERY_TIMEOUT_SECONDS,
        result_ttl=settings.RESULT_TTL_SECONDS,
    )
    sweeper = asyncio.create_task(
        run_result_sweeper(
            app.state.query_engine, settings.RESULT_SWEEP_INTERVAL_SECONDS
        )
    )
    logger.info("Starting MCP Server")

    yield

    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    if storage is not None:
        await storage.dispose()


app = FastAPI(title="SmartSec MCP Server", lifespan=lifespan)

# Include the master router containing all our endpoints
app.include_router(api_router)


@app.get("/")
async def root():
    return {
        "service": "SmartSec MCP Server",
        "version": settings.SERVICE_VERSION,
        "description": "Model Context Protocol interface for SmartSec telemetry data",
        "endpoints": {
            "GET /mcp/schema": "Get the complete MCP schema",
            "POST /mcp/query": "Execute a structured query",
            "POST /mcp/query/validate": "Validate a structured query without running it",
            "GET /mcp/query/{id}/result": "Get query result by ID",
            "GET /mcp/examples": "Get query examples",
            "GET /mcp/entities": "Get available entities",
            "GET /mcp/entities/{name}": "Get specific entity information",
            "GET /mcp/health": "Health check",
        },
        "timestamp": utcnow(),
    }
