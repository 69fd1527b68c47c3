"""
FastAPI Application Factory

Creates and configures the reporting API application.
"""

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.gzip import GZipMiddleware

from territory_revenue.config import get_settings
from territory_revenue.serving.api.middleware import RequestLoggingMiddleware, install_error_handlers
from territory_revenue.serving.api.routes import attribution_router, health_router
from territory_revenue.warehouse import RevenueWarehouse


def create_api_app(warehouse: Optional[RevenueWarehouse] = None, lifespan=None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        warehouse: Warehouse to serve; otherwise the lifespan must attach one
            to app.state.warehouse
        lifespan: Optional lifespan context manager

    Returns:
        Configured FastAPI app instance
    """
    settings = get_settings()
    app = FastAPI(
        title="Territory Revenue API",
        description="Revenue attributed to sales territories over time",
        version=settings.version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )
    if warehouse is not None:
        app.state.warehouse = warehouse

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(RequestLoggingMiddleware)
    install_error_handlers(app)

    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(attribution_router, prefix="/api/v1/attribution", tags=["Attribution"])

    return app
