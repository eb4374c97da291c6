"""Remote query service integration."""

from .client import MCPError, TenantMCPClient
from .config import Settings, get_settings
from .executor import QueryExecutor, RetryPolicy
from .registry import ClientRegistry

__all__ = [
    "ClientRegistry",
    "MCPError",
    "QueryExecutor",
    "RetryPolicy",
    "Settings",
    "TenantMCPClient",
    "get_settings",
]
