"""Service liveness and registry monitoring endpoints."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(prefix="/api", tags=["monitoring"])


@router.get("/health")
async def health_check(request: Request) -> JSONResponse:
    """
    Liveness of the gateway itself.

    Does not contact the remote service; see ``/api/query/health`` for that.
    """
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": "Client registry not initialized"},
        )

    settings = request.app.state.settings
    return JSONResponse(
        content={
            "status": "healthy",
            "service": "analytics-gateway",
            "remote": {
                "enabled": settings.mcp_enabled,
                "base_url": settings.mcp_base_url,
            },
            "clients": registry.get_stats(),
        }
    )
