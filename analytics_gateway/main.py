"""
Analytics Gateway - Unified API

Tenant-scoped access to a remote analytical query service, with buffered or
streamed delivery depending on result size.
"""

import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from .modules.query import ClientRegistry, QueryExecutor, Settings, get_settings
from .routers import monitoring, query


def configure_logging(level: str) -> None:
    """Route loguru output to stderr at the configured level."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Explicit settings; defaults to environment-based settings
        transport: Optional httpx transport for the remote service
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifecycle manager."""
        configure_logging(settings.log_level)
        logger.info("=== Starting Analytics Gateway ===")

        registry = ClientRegistry(settings, transport=transport)
        app.state.settings = settings
        app.state.registry = registry
        app.state.executor = QueryExecutor(registry, settings)

        if not settings.mcp_enabled:
            logger.warning("Remote query service is disabled in configuration")
        else:
            logger.info(f"Remote query service: {settings.rpc_url}")

        logger.info("=== All services ready ===")

        yield

        # Shutdown
        logger.info("=== Shutting down ===")
        await registry.aclose()
        app.state.executor = None
        app.state.registry = None

    app = FastAPI(
        title="Analytics Gateway",
        description="Tenant-scoped query execution against a remote analytical service",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": str(exc.detail)},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "Invalid request",
                "details": [
                    {
                        "loc": jsonable_encoder(error.get("loc", ())),
                        "msg": error.get("msg", ""),
                        "type": error.get("type", ""),
                    }
                    for error in exc.errors()
                ],
            },
        )

    app.include_router(monitoring.router)
    app.include_router(query.router)

    @app.get("/")
    async def root():
        return {
            "message": "Analytics Gateway API",
            "docs": "/docs",
            "modules": {
                "query": "/api/query",
                "monitoring": "/api/health",
            },
        }

    return app


app = create_app()


def run_dev() -> None:
    """Helper to run the service in development."""
    import uvicorn

    settings = get_settings()
    logger.info(f"Starting Analytics Gateway on {settings.api_host}:{settings.api_port}")

    uvicorn.run(
        "analytics_gateway.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
    )


if __name__ == "__main__":
    run_dev()
