"""Pydantic models for query requests, normalized results and API responses."""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# transport/protocol failures are server-side, query/remote failures are caller-side
ErrorKind = Literal["transport", "protocol", "remote", "query"]


class ExecuteRequest(BaseModel):
    """Request to run a query against the remote service."""

    query: str = Field(..., min_length=1, max_length=10000, description="Query text, forwarded verbatim")
    database: Optional[str] = Field(default=None, description="Target database on the remote service")


class StatisticsSearchRequest(BaseModel):
    """Request to search the remote statistics catalog."""

    query: str = Field(..., min_length=1, max_length=1000)
    limit: int = Field(default=10, ge=1, le=100)


class QueryMetadata(BaseModel):
    """Metadata describing a normalized query result."""

    model_config = ConfigDict(populate_by_name=True)

    row_count: int = Field(default=0, alias="rowCount")
    execution_time: Optional[float] = Field(default=None, alias="executionTime")
    columns: Optional[list[str]] = None
    database: Optional[str] = None
    skipped_lines: Optional[int] = Field(default=None, alias="skippedLines")


class QueryResult(BaseModel):
    """
    Normalized query result, independent of the wire encoding.

    Exactly one of ``data`` or ``error`` is meaningful.
    """

    success: bool
    data: Optional[list[Any]] = None
    metadata: Optional[QueryMetadata] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = Field(default=None, exclude=True)

    @classmethod
    def failure(cls, error: str, kind: ErrorKind = "transport") -> "QueryResult":
        return cls(success=False, error=error, error_kind=kind)

    @property
    def row_count(self) -> int:
        if self.metadata is None:
            return 0
        return self.metadata.row_count

    def to_response(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error or "Query execution failed"}

        # rows are passed through untouched, null values included
        metadata = self.metadata or QueryMetadata()
        return {
            "success": True,
            "data": self.data or [],
            "metadata": metadata.model_dump(mode="json", by_alias=True, exclude_none=True),
        }


class ToolResult(BaseModel):
    """Result of a non-query tool call (schema, databases, statistics)."""

    success: bool
    value: Any = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = Field(default=None, exclude=True)

    @classmethod
    def failure(cls, error: str, kind: ErrorKind = "transport") -> "ToolResult":
        return cls(success=False, error=error, error_kind=kind)


class ErrorResponse(BaseModel):
    """Body returned for every inbound failure."""

    success: bool = False
    error: str
    details: Optional[list[dict[str, Any]]] = None


class HealthResponse(BaseModel):
    """Remote connectivity probe for the caller's tenant."""

    success: bool
    healthy: bool
    message: str


class DatabasesResponse(BaseModel):
    success: bool
    databases: Any


class StatisticsSearchResponse(BaseModel):
    success: bool
    results: Any


class ChartDataResponse(BaseModel):
    success: bool
    chart: Any
