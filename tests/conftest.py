"""
Test Suite Configuration
"""
import pytest
from datetime import date, datetime
from typing import AsyncGenerator

import polars as pl
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from territory_revenue.clock import fixed_clock
from territory_revenue.config import AttributionPolicy, Settings
from territory_revenue.database.connection import build_engine, build_session_factory, create_schema
from territory_revenue.ingestion.seed_db import seed_sample_data
from territory_revenue.warehouse import RevenueWarehouse

TEST_NOW = datetime(2026, 10, 19, 9, 30)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
    )


@pytest.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test"""
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(test_engine)


@pytest.fixture
def clock():
    return fixed_clock(TEST_NOW)


@pytest.fixture
def warehouse(session_factory, clock) -> RevenueWarehouse:
    """Empty warehouse with the default attribution policy"""
    return RevenueWarehouse(session_factory, clock=clock, policy=AttributionPolicy.FIXED_REFERENCE)


@pytest.fixture
async def dated_warehouse(warehouse) -> RevenueWarehouse:
    """Warehouse with a 2022-01-01..2025-01-01 calendar and nothing else"""
    await warehouse.populate_dates(date(2022, 1, 1), date(2025, 1, 1))
    return warehouse


@pytest.fixture
async def seeded_warehouse(warehouse) -> RevenueWarehouse:
    """Warehouse loaded with the reference dataset"""
    await seed_sample_data(warehouse)
    return warehouse


@pytest.fixture
def sample_revenue_df() -> pl.DataFrame:
    """Revenue batch against customer version 1 (ACME in Northeast)"""
    return pl.DataFrame({
        "business_event_id": [2001, 2002, 2003],
        "customer_reference": [1, 1, 2],
        "actual_amount": ["100.00", "250.10", "75.25"],
        "forecast_amount": ["90.00", "240.00", "80.00"],
        "revenue_date_key": [20240715, 20240801, 20220315],
    })
