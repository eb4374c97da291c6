"""Configuration for the remote query service integration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Complete configuration of the analytics gateway."""

    # API Settings
    api_host: str = "0.0.0.0"
    api_port: int = 4000
    log_level: str = "INFO"

    # Remote query service (MCP) Settings
    mcp_enabled: bool = True
    mcp_base_url: str = "http://localhost:8002"
    mcp_endpoint: str = "/mcp"
    mcp_health_endpoint: str = "/health"
    mcp_api_key: str = ""
    mcp_timeout: float = 30.0
    mcp_health_timeout: float = 5.0
    mcp_protocol_version: str = "2024-11-05"
    mcp_client_name: str = "analytics-gateway"
    mcp_client_version: str = "1.0.0"

    # Remote tool names
    sql_tool: str = "sql"
    catalog_tool: str = "catalog"
    databases_tool: str = "list_databases"
    statistics_search_tool: str = "search-statistics"
    chart_data_tool: str = "get-chart-data-by-id"

    # Query behavior
    max_results: int = 1000
    streaming_threshold: int = 1000
    stream_disconnect_check_interval: int = 100
    max_skipped_line_ratio: Optional[float] = None

    # Retry policy at the facade boundary (1 attempt = no retry)
    query_max_attempts: int = 1
    retry_base_delay: float = 0.5
    retry_max_delay: float = 5.0

    model_config = SettingsConfigDict(
        env_prefix="QUERY_GATEWAY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def rpc_url(self) -> str:
        return f"{self.mcp_base_url.rstrip('/')}{self.mcp_endpoint}"

    @property
    def health_url(self) -> str:
        return f"{self.mcp_base_url.rstrip('/')}{self.mcp_health_endpoint}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get or create the process-wide settings instance."""
    return Settings()
