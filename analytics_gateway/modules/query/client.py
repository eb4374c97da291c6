"""
Tenant-scoped client for the remote query service.

Every tenant gets its own client and its own session with the remote service.
The client performs the ``initialize`` handshake lazily before the first
tool call and attaches the granted session id to every later request.
"""

import asyncio
import itertools
from typing import Any, Optional

import httpx
from loguru import logger

from .codec import Envelope, ProtocolError, decode
from .config import Settings

SESSION_HEADER = "mcp-session-id"


class MCPError(Exception):
    """Base exception for MCP-related errors."""

    pass


class MCPTransportError(MCPError):
    """Connection failure, timeout, or non-2xx response with an unreadable body."""


class MCPSessionExpiredError(MCPTransportError):
    """The remote service no longer knows the session id we sent."""


class MCPProtocolError(MCPError):
    """The response matched none of the recognized encodings."""


class MCPHandshakeError(MCPProtocolError):
    """The handshake response was rejected or malformed."""


class MCPRemoteError(MCPError):
    """The remote service answered with a JSON-RPC error object."""


class MCPDisabledError(MCPError):
    """The remote query integration is disabled in configuration."""


def _consume_exception(task: "asyncio.Future[Any]") -> None:
    if not task.cancelled():
        task.exception()


class TenantMCPClient:
    """
    HTTP client for the remote query service, bound to one tenant.

    Provides:
    - initialize(): handshake establishing the session id
    - execute_query(), get_schema(), list_databases(): SQL tools
    - search_statistics(), get_chart_data(): statistics tools
    - check_health(): connectivity probe
    """

    def __init__(
        self,
        tenant_id: str,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the client. No network call is made here.

        Args:
            tenant_id: Tenant the session belongs to
            settings: Gateway settings
            transport: Optional httpx transport (used to fake the remote service)
        """
        if not settings.mcp_enabled:
            raise MCPDisabledError("Remote query service is disabled in configuration")

        self.tenant_id = tenant_id
        self.settings = settings
        self.initialized = False
        self.session_id: Optional[str] = None

        self._request_ids = itertools.count(1)
        self._handshake: Optional["asyncio.Future[None]"] = None
        self._http = httpx.AsyncClient(timeout=settings.mcp_timeout, transport=transport)

        logger.info(
            f"[MCP] Client created for tenant {tenant_id} -> {settings.mcp_base_url}"
        )

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    async def initialize(self) -> None:
        """
        Establish the session with the remote service.

        Idempotent. Concurrent callers share a single in-flight handshake and
        all observe its outcome. A failed handshake leaves the client
        uninitialized so the next call starts over.
        """
        if self.initialized:
            return

        if self._handshake is None or self._handshake.done():
            self._handshake = asyncio.ensure_future(self._perform_handshake())
            self._handshake.add_done_callback(_consume_exception)

        handshake = self._handshake
        try:
            await asyncio.shield(handshake)
        finally:
            if handshake.done() and self._handshake is handshake:
                self._handshake = None

    async def _perform_handshake(self) -> None:
        params = {
            "protocolVersion": self.settings.mcp_protocol_version,
            "capabilities": {},
            "clientInfo": {
                "name": self.settings.mcp_client_name,
                "version": self.settings.mcp_client_version,
            },
        }

        logger.info(f"[MCP] Initializing session for tenant {self.tenant_id}")
        try:
            envelope, response = await self._post("initialize", params, with_session=False)
        except MCPError as exc:
            logger.error(f"[MCP] Handshake failed for tenant {self.tenant_id}: {exc}")
            raise

        if envelope.error is not None:
            raise MCPHandshakeError(f"Handshake rejected: {envelope.error}")
        if not isinstance(envelope.result, dict):
            raise MCPHandshakeError("Handshake response carried no valid result")

        session_id = response.headers.get(SESSION_HEADER) or envelope.result.get("sessionId")
        self.session_id = str(session_id) if session_id else None
        self.initialized = True

        logger.info(
            f"[MCP] Session initialized for tenant {self.tenant_id}: "
            f"session_id={self.session_id}, "
            f"capabilities={envelope.result.get('capabilities')}"
        )

    def invalidate(self) -> None:
        """Drop the current session; the next call performs a new handshake."""
        if self.initialized or self.session_id:
            logger.info(f"[MCP] Session invalidated for tenant {self.tenant_id}")
        self.initialized = False
        self.session_id = None

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------
    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Envelope:
        """
        Call a remote tool, handshaking first if needed.

        Raises:
            MCPError: If the transport fails or the response cannot be decoded
        """
        await self.initialize()
        envelope, _ = await self._post("tools/call", {"name": name, "arguments": arguments})
        return envelope

    async def execute_query(self, sql: str, database: Optional[str] = None) -> Envelope:
        logger.debug(f"[MCP] SQL query: {sql[:100]}")
        arguments: dict[str, Any] = {"sql": sql, "max_results": self.settings.max_results}
        if database:
            arguments["database"] = database
        return await self.call_tool(self.settings.sql_tool, arguments)

    async def get_schema(self, database: Optional[str] = None) -> Envelope:
        arguments: dict[str, Any] = {"include_sample_data": False, "sample_rows": 5}
        if database:
            arguments["database"] = database
        return await self.call_tool(self.settings.catalog_tool, arguments)

    async def list_databases(self) -> Envelope:
        return await self.call_tool(self.settings.databases_tool, {})

    async def search_statistics(self, query: str, limit: int = 10) -> Envelope:
        return await self.call_tool(
            self.settings.statistics_search_tool, {"query": query, "limit": limit}
        )

    async def get_chart_data(self, chart_id: int) -> Envelope:
        return await self.call_tool(self.settings.chart_data_tool, {"id": int(chart_id)})

    async def check_health(self) -> bool:
        """Probe the remote health endpoint. Never raises."""
        headers = {}
        if self.settings.mcp_api_key:
            headers["x-api-key"] = self.settings.mcp_api_key

        try:
            response = await self._http.get(
                self.settings.health_url,
                headers=headers,
                timeout=self.settings.mcp_health_timeout,
            )
        except httpx.HTTPError as exc:
            logger.error(f"[MCP] Health check failed for tenant {self.tenant_id}: {exc}")
            return False
        return response.is_success

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    def _headers(self, with_session: bool) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
            "X-Tenant-ID": self.tenant_id,
        }
        if self.settings.mcp_api_key:
            headers["x-api-key"] = self.settings.mcp_api_key
        if with_session and self.session_id:
            headers[SESSION_HEADER] = self.session_id
        return headers

    async def _post(
        self,
        method: str,
        params: dict[str, Any],
        with_session: bool = True,
    ) -> tuple[Envelope, httpx.Response]:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params,
        }
        sent_session_id = self.session_id if with_session else None

        try:
            response = await self._http.post(
                self.settings.rpc_url,
                json=payload,
                headers=self._headers(with_session),
            )
        except httpx.TimeoutException as exc:
            logger.error(f"[MCP] Timeout calling {method} for tenant {self.tenant_id}: {exc}")
            raise MCPTransportError(
                f"Request to remote query service timed out after {self.settings.mcp_timeout}s"
            ) from exc
        except httpx.RequestError as exc:
            logger.error(f"[MCP] Request error calling {method} for tenant {self.tenant_id}: {exc}")
            raise MCPTransportError(f"Connection error: {str(exc)}") from exc

        raw_text = response.text
        logger.debug(
            f"[MCP] {method} response: status={response.status_code}, {len(raw_text)} bytes"
        )
        decoded = decode(raw_text)

        if response.is_error:
            if response.status_code == 404 and sent_session_id:
                # only the session that was rejected is dropped
                if self.session_id == sent_session_id:
                    self.invalidate()
                raise MCPSessionExpiredError(
                    "Remote session expired; it will be re-established on the next call"
                )
            if isinstance(decoded, Envelope) and decoded.error is not None:
                raise MCPRemoteError(decoded.error)
            logger.error(f"[MCP] HTTP error calling {method}: {response.status_code}")
            raise MCPTransportError(f"HTTP {response.status_code}: {response.reason_phrase}")

        if isinstance(decoded, ProtocolError):
            logger.error(f"[MCP] Undecodable {method} response: {decoded.reason}")
            raise MCPProtocolError(f"Invalid response from remote query service: {decoded.reason}")

        return decoded, response
