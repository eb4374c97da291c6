"""Query endpoints: connectivity, catalog, statistics and query execution."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Path, Query, Request
from fastapi.responses import JSONResponse, Response
from loguru import logger

from ..dependencies import get_app_settings, get_executor, get_tenant_id
from ..modules.query import QueryExecutor, Settings
from ..modules.query.delivery import build_response
from ..modules.query.models import (
    ChartDataResponse,
    DatabasesResponse,
    ErrorKind,
    ErrorResponse,
    ExecuteRequest,
    HealthResponse,
    StatisticsSearchRequest,
    StatisticsSearchResponse,
    ToolResult,
)

router = APIRouter(prefix="/api/query", tags=["query"])


def status_for(kind: Optional[ErrorKind]) -> int:
    """Data-level failures are the caller's; transport and protocol failures are ours."""
    if kind in ("query", "remote"):
        return 400
    return 500


def error_response(error: Optional[str], kind: Optional[ErrorKind]) -> JSONResponse:
    body = ErrorResponse(error=error or "Request failed")
    return JSONResponse(
        status_code=status_for(kind),
        content=body.model_dump(exclude_none=True),
    )


def _unwrap(value: Any, key: str) -> Any:
    if isinstance(value, dict) and key in value:
        return value[key]
    return value


@router.get("/health", response_model=HealthResponse)
async def health(
    tenant_id: str = Depends(get_tenant_id),
    executor: QueryExecutor = Depends(get_executor),
) -> HealthResponse:
    """Probe remote connectivity for the caller's tenant."""
    healthy = await executor.check_connection(tenant_id)
    return HealthResponse(
        success=True,
        healthy=healthy,
        message="Remote query service is connected" if healthy else "Remote query service is not responding",
    )


@router.get("/databases", response_model=DatabasesResponse)
async def list_databases(
    tenant_id: str = Depends(get_tenant_id),
    executor: QueryExecutor = Depends(get_executor),
) -> Any:
    """List databases available to the tenant."""
    result: ToolResult = await executor.list_databases(tenant_id)
    if not result.success:
        return error_response(result.error, result.error_kind)
    return DatabasesResponse(success=True, databases=_unwrap(result.value, "databases"))


@router.get("/schema")
async def get_schema(
    database: Optional[str] = Query(default=None),
    tenant_id: str = Depends(get_tenant_id),
    executor: QueryExecutor = Depends(get_executor),
) -> JSONResponse:
    """Get schema information, optionally for one database."""
    result = await executor.get_schema(tenant_id, database)
    if not result.success:
        return error_response(result.error, result.error_kind)
    return JSONResponse(content={"success": True, "schema": result.value, "database": database})


@router.post("/execute")
async def execute(
    body: ExecuteRequest,
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    executor: QueryExecutor = Depends(get_executor),
    settings: Settings = Depends(get_app_settings),
) -> Response:
    """
    Execute a query.

    Small results are returned as one JSON document; results above the
    streaming threshold are streamed as newline-delimited JSON.
    """
    result = await executor.execute_query(tenant_id, body.query, body.database)

    if not result.success:
        logger.warning(f"[Query] Execution failed for tenant {tenant_id}: {result.error}")
        return error_response(result.error, result.error_kind)

    return build_response(
        result,
        request=request,
        threshold=settings.streaming_threshold,
        check_interval=settings.stream_disconnect_check_interval,
    )


@router.post("/statistics/search", response_model=StatisticsSearchResponse)
async def search_statistics(
    body: StatisticsSearchRequest,
    tenant_id: str = Depends(get_tenant_id),
    executor: QueryExecutor = Depends(get_executor),
) -> Any:
    """Search the remote statistics catalog."""
    result = await executor.search_statistics(tenant_id, body.query, body.limit)
    if not result.success:
        return error_response(result.error, result.error_kind)
    return StatisticsSearchResponse(success=True, results=result.value)


@router.get("/statistics/charts/{chart_id}", response_model=ChartDataResponse)
async def get_chart_data(
    chart_id: int = Path(..., ge=1),
    tenant_id: str = Depends(get_tenant_id),
    executor: QueryExecutor = Depends(get_executor),
) -> Any:
    """Fetch the data behind one statistics chart."""
    result = await executor.get_chart_data(tenant_id, chart_id)
    if not result.success:
        return error_response(result.error, result.error_kind)
    return ChartDataResponse(success=True, chart=result.value)
