"""Registry of tenant-scoped clients for the remote query service."""

from threading import Lock
from typing import Any, Optional

import httpx
from loguru import logger

from .client import TenantMCPClient
from .config import Settings


class ClientRegistry:
    """
    Holds one client per tenant for the life of the process.

    Owned by the application's lifespan and closed on shutdown. Only the
    lookup/insert is guarded by the lock; handshakes run outside of it and
    are single-flighted by the client itself.
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self._transport = transport
        self._clients: dict[str, TenantMCPClient] = {}
        self._lock = Lock()
        logger.info("[Registry] ClientRegistry initialized (in-memory)")

    async def get_or_create(self, tenant_id: str, initialize: bool = True) -> TenantMCPClient:
        """
        Return the tenant's client, creating it on first use.

        Args:
            tenant_id: Tenant identifier
            initialize: Ensure the session handshake has completed

        Raises:
            MCPError: If the integration is disabled or the handshake fails
        """
        with self._lock:
            client = self._clients.get(tenant_id)
            if client is None:
                client = TenantMCPClient(tenant_id, self.settings, transport=self._transport)
                self._clients[tenant_id] = client
                logger.info(f"[Registry] Client registered for tenant {tenant_id}")

        if initialize:
            await client.initialize()
        return client

    def get(self, tenant_id: str) -> Optional[TenantMCPClient]:
        with self._lock:
            return self._clients.get(tenant_id)

    def tenants(self) -> list[str]:
        with self._lock:
            return list(self._clients.keys())

    async def evict(self, tenant_id: str) -> bool:
        """
        Remove and close a tenant's client.

        Returns:
            True if a client was evicted, False if none was registered.
        """
        with self._lock:
            client = self._clients.pop(tenant_id, None)

        if client is None:
            return False

        await client.aclose()
        logger.info(f"[Registry] Client evicted for tenant {tenant_id}")
        return True

    async def aclose(self) -> None:
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()

        for client in clients:
            await client.aclose()

        if clients:
            logger.info(f"[Registry] Closed {len(clients)} tenant clients")

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            clients = list(self._clients.values())

        return {
            "total_clients": len(clients),
            "initialized_clients": sum(1 for client in clients if client.initialized),
            "tenants": [client.tenant_id for client in clients],
        }
