from typing import Annotated

from fastapi import Depends, Request

from mcp_server.core.query.engine import QueryEngine


# The engine is built once in the app lifespan and parked on app.state
def get_query_engine(request: Request) -> QueryEngine:
    return request.app.state.query_engine


engine_dep = Annotated[QueryEngine, Depends(get_query_engine)]
