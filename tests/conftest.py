"""
Pytest configuration and fixtures for analytics gateway tests.

The remote query service is faked with an ``httpx.MockTransport`` so no
network is involved.
"""

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from remote_fakes import FakeRemoteService

from analytics_gateway.main import create_app
from analytics_gateway.modules.query import ClientRegistry, QueryExecutor, Settings


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        mcp_base_url="http://remote.test",
        mcp_api_key="test-key",
        log_level="DEBUG",
    )


@pytest.fixture
def remote() -> FakeRemoteService:
    return FakeRemoteService()


@pytest.fixture
def transport(remote: FakeRemoteService) -> httpx.MockTransport:
    return httpx.MockTransport(remote)


@pytest_asyncio.fixture
async def registry(settings: Settings, transport: httpx.MockTransport):
    registry = ClientRegistry(settings, transport=transport)
    yield registry
    await registry.aclose()


@pytest.fixture
def executor(registry: ClientRegistry, settings: Settings) -> QueryExecutor:
    return QueryExecutor(registry, settings)


@pytest.fixture
def api(settings: Settings, transport: httpx.MockTransport):
    """HTTP client against the full application, authenticated as tenant ``acme``."""
    app = create_app(settings=settings, transport=transport)
    with TestClient(app, headers={"X-Tenant-ID": "acme"}) as client:
        yield client
