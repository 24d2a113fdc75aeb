from fastapi import APIRouter
from mcp_server.api.endpoints import health, query, schema

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(schema.router)
api_router.include_router(query.router)
api_router.include_router(health.router)
