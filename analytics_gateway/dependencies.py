"""FastAPI dependencies shared by the routers."""

from typing import Optional

from fastapi import Cookie, Header, HTTPException, Request

from .modules.query import QueryExecutor, Settings


def get_executor(request: Request) -> QueryExecutor:
    """Dependency to get the query executor instance."""
    executor = getattr(request.app.state, "executor", None)
    if executor is None:
        raise HTTPException(status_code=503, detail="Query executor not initialized")
    return executor


def get_app_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        raise HTTPException(status_code=503, detail="Settings not initialized")
    return settings


def get_tenant_id(
    x_tenant_id: Optional[str] = Header(default=None),
    x_tenant_slug: Optional[str] = Header(default=None),
    tenant: Optional[str] = Cookie(default=None),
) -> str:
    """
    Resolve the tenant of the request.

    Authentication happens upstream; this only reads the tenant it established.
    """
    for candidate in (x_tenant_id, x_tenant_slug, tenant):
        if candidate and candidate.strip():
            return candidate.strip()

    raise HTTPException(
        status_code=400,
        detail="Tenant identification required. Please provide X-Tenant-ID or X-Tenant-Slug header",
    )
