"""
Query execution facade.

Orchestrates handshake, tool call and decoding for a tenant, and converts
every failure into a ``success=False`` result. Nothing raised below this
layer reaches the HTTP handlers.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from .client import (
    MCPError,
    MCPProtocolError,
    MCPRemoteError,
    MCPTransportError,
    TenantMCPClient,
)
from .codec import Envelope, RecordStream, classify_payload, to_query_result, to_tool_result
from .config import Settings
from .models import ErrorKind, QueryResult, ToolResult
from .registry import ClientRegistry

Operation = Callable[[TenantMCPClient], Awaitable[Envelope]]


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry for transport failures. One attempt means no retry."""

    max_attempts: int = 1
    base_delay: float = 0.5
    max_delay: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, settings.query_max_attempts),
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )

    def delay(self, attempt: int) -> float:
        # exponential backoff with full jitter
        return random.uniform(0, min(self.max_delay, self.base_delay * 2**attempt))


def error_kind(exc: Exception) -> ErrorKind:
    if isinstance(exc, MCPRemoteError):
        return "remote"
    if isinstance(exc, MCPProtocolError):
        return "protocol"
    return "transport"


class QueryExecutor:
    """Per-tenant query execution against the remote service."""

    def __init__(
        self,
        registry: ClientRegistry,
        settings: Settings,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.settings = settings
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self._sleep = sleep

    async def execute_query(
        self,
        tenant_id: str,
        query: str,
        database: Optional[str] = None,
    ) -> QueryResult:
        """
        Execute a query for a tenant.

        Args:
            tenant_id: Tenant issuing the query
            query: Query text, forwarded verbatim
            database: Optional target database

        Returns:
            Normalized result; ``success=False`` with ``error`` on any failure
        """
        logger.info(f"[Executor] Executing query for tenant {tenant_id}: {query[:100]}")

        try:
            envelope = await self._call(
                tenant_id, lambda client: client.execute_query(query, database)
            )
            payload = classify_payload(envelope)

            if isinstance(payload, RecordStream) and self._too_corrupt(payload):
                logger.error(
                    f"[Executor] {payload.skipped_lines}/{payload.total_lines} "
                    "record lines unparseable; failing query"
                )
                return QueryResult.failure(
                    f"Result payload corrupted: {payload.skipped_lines} of "
                    f"{payload.total_lines} lines could not be parsed",
                    kind="protocol",
                )

            result = to_query_result(payload, database=database)
        except MCPError as exc:
            logger.error(f"[Executor] MCP error for tenant {tenant_id}: {exc}")
            return QueryResult.failure(str(exc), kind=error_kind(exc))
        except Exception as exc:
            logger.exception(f"[Executor] Unexpected error for tenant {tenant_id}")
            return QueryResult.failure(f"Unexpected error executing query: {str(exc)}")

        if not result.success:
            logger.warning(f"[Executor] Query reported failure: {result.error}")
        else:
            logger.info(f"[Executor] Query returned {result.row_count} rows")
        return result

    async def check_connection(self, tenant_id: str) -> bool:
        try:
            client = await self.registry.get_or_create(tenant_id, initialize=False)
        except MCPError as exc:
            logger.error(f"[Executor] Cannot probe remote service: {exc}")
            return False
        return await client.check_health()

    async def list_databases(self, tenant_id: str) -> ToolResult:
        return await self._call_tool(tenant_id, "list_databases", lambda client: client.list_databases())

    async def get_schema(self, tenant_id: str, database: Optional[str] = None) -> ToolResult:
        return await self._call_tool(tenant_id, "get_schema", lambda client: client.get_schema(database))

    async def search_statistics(self, tenant_id: str, query: str, limit: int = 10) -> ToolResult:
        return await self._call_tool(
            tenant_id,
            "search_statistics",
            lambda client: client.search_statistics(query, limit),
        )

    async def get_chart_data(self, tenant_id: str, chart_id: int) -> ToolResult:
        return await self._call_tool(
            tenant_id,
            "get_chart_data",
            lambda client: client.get_chart_data(chart_id),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _call_tool(self, tenant_id: str, label: str, operation: Operation) -> ToolResult:
        try:
            envelope = await self._call(tenant_id, operation)
            result = to_tool_result(classify_payload(envelope))
        except MCPError as exc:
            logger.error(f"[Executor] {label} failed for tenant {tenant_id}: {exc}")
            return ToolResult.failure(str(exc), kind=error_kind(exc))
        except Exception as exc:
            logger.exception(f"[Executor] Unexpected error in {label} for tenant {tenant_id}")
            return ToolResult.failure(f"Unexpected error: {str(exc)}")

        if not result.success:
            logger.warning(f"[Executor] {label} reported failure: {result.error}")
        return result

    async def _call(self, tenant_id: str, operation: Operation) -> Envelope:
        attempt = 0
        while True:
            try:
                client = await self.registry.get_or_create(tenant_id)
                return await operation(client)
            except MCPTransportError as exc:
                attempt += 1
                if attempt >= self.retry_policy.max_attempts:
                    raise
                delay = self.retry_policy.delay(attempt)
                logger.warning(
                    f"[Executor] Transport error (attempt {attempt}/"
                    f"{self.retry_policy.max_attempts}), retrying in {delay:.2f}s: {exc}"
                )
                await self._sleep(delay)

    def _too_corrupt(self, payload: RecordStream) -> bool:
        limit = self.settings.max_skipped_line_ratio
        if limit is None or not payload.skipped_lines:
            return False
        return payload.skipped_ratio > limit
