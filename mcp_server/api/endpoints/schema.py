from collections import defaultdict
from typing import Optional

from fastapi import APIRouter, HTTPException, status

from mcp_server.api.dependencies import engine_dep
from mcp_server.core.config import settings
from mcp_server.core.query.engine import utcnow

router = APIRouter(prefix="/mcp", tags=["Schema"])


@router.get("/schema")
async def get_schema(engine: engine_dep):
    """Return the complete MCP schema with a fresh timestamp."""
    return {
        "schema": engine.get_schema(),
        "meta": {
            "version": settings.SERVICE_VERSION,
            "timestamp": utcnow(),
            "generated": "MCP Server for SmartSec Platform",
        },
    }


@router.get("/entities")
async def list_entities(engine: engine_dep):
    entities = engine.schema.entities
    return {"entities": entities, "total": len(entities)}


@router.get("/entities/{name}")
async def get_entity(name: str, engine: engine_dep):
    entity = engine.schema.get_entity(name)
    if entity is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Entity not found")
    return {"entity": entity}


@router.get("/examples")
async def get_examples(engine: engine_dep, entity: Optional[str] = None):
    """
    Return example queries for one entity,
    or all of them grouped by the entity they query.
    """
    if entity:
        return {"entity": entity, "examples": engine.schema.examples_for(entity)}

    grouped = defaultdict(list)
    for example in engine.schema.examples_for():
        grouped[example.request.entity].append(example)
    return {"examples": dict(grouped)}
