import logging

from fastapi import APIRouter, HTTPException, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from mcp_server.api.dependencies import engine_dep
from mcp_server.core import schemas
from mcp_server.core.query.errors import (
    QueryNotFoundError,
    QueryTimeoutError,
    StorageExecutionError,
    StorageUnavailableError,
)

router = APIRouter(prefix="/mcp/query", tags=["Query"])

# Anything not listed here is a request problem (400)
FAILURE_STATUS = {
    StorageUnavailableError.code: status.HTTP_503_SERVICE_UNAVAILABLE,
    QueryTimeoutError.code: status.HTTP_504_GATEWAY_TIMEOUT,
    StorageExecutionError.code: status.HTTP_500_INTERNAL_SERVER_ERROR,
    "internal_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def failure_status(error_type: str) -> int:
    return FAILURE_STATUS.get(error_type, status.HTTP_400_BAD_REQUEST)


# Execute a structured query
@router.post("", response_model=schemas.QueryResponse)
async def post_query(request: schemas.QueryRequest, engine: engine_dep):
    response = await engine.execute_query(request)

    if response.status == schemas.QueryStatus.FAILED:
        logging.error(f"Query {response.id} failed: {response.error}")
        # Failed responses keep their id and full envelope
        return JSONResponse(
            status_code=failure_status(response.error_type),
            content=jsonable_encoder(response),
        )

    return response


# Pre-flight check, nothing is executed or stored
@router.post("/validate", response_model=schemas.QueryValidationResult)
async def validate_query(request: schemas.QueryRequest, engine: engine_dep):
    error = engine.validate_query(request)
    if error is None:
        return schemas.QueryValidationResult(valid=True)

    result = schemas.QueryValidationResult(
        valid=False, error=str(error), error_type=error.code
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST, content=jsonable_encoder(result)
    )


# Poll a result by id
@router.get("/{query_id}/result", response_model=schemas.QueryResponse)
async def get_query_result(query_id: str, engine: engine_dep):
    try:
        return engine.get_query_result(query_id)
    except QueryNotFoundError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Query not found")
