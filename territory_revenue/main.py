"""
Territory Revenue API

Production entry point: configures logging, connects the database and
serves the reporting API.

    uvicorn territory_revenue.main:app
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
import structlog

from territory_revenue.config import get_settings
from territory_revenue.config.logging import configure_logging
from territory_revenue.database.connection import close_database, get_session_factory, init_database
from territory_revenue.serving.api.main import create_api_app
from territory_revenue.warehouse import RevenueWarehouse

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    configure_logging()
    logger.info("Starting Territory Revenue API", environment=get_settings().app_env)

    await init_database()
    app.state.warehouse = RevenueWarehouse(get_session_factory())

    yield

    logger.info("Shutting down...")
    await close_database()


app = create_api_app(lifespan=lifespan)


def run() -> None:
    """Console entry point"""
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
