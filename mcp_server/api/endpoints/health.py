from fastapi import APIRouter

from mcp_server.api.dependencies import engine_dep
from mcp_server.core.config import settings
from mcp_server.core.query.engine import utcnow

router = APIRouter(tags=["Health"])


@router.get("/health")
@router.get("/mcp/health")
async def health_check(engine: engine_dep):
    return {
        "status": "healthy",
        "timestamp": utcnow(),
        "version": settings.SERVICE_VERSION,
        "service": "MCP Server",
        "storage": "connected" if engine.storage_available else "schema-only",
    }
