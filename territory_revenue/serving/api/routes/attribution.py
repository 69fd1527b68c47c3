"""
Attribution API Endpoints

Read-only REST surface over the attribution engine for reporting tools.
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
import structlog

from territory_revenue.database.models import EntityType
from territory_revenue.warehouse import RevenueWarehouse

router = APIRouter()
logger = structlog.get_logger(__name__)


def get_warehouse(request: Request) -> RevenueWarehouse:
    """Warehouse attached to the application at startup"""
    return request.app.state.warehouse


class TerritoryQuarterRevenue(BaseModel):
    """Revenue of one territory in one quarter"""
    territory_name: str
    year: int
    quarter: int
    total_actual_revenue: Decimal
    total_forecasted_revenue: Decimal


class CustomerQuarterRevenue(BaseModel):
    """Revenue of one customer in one quarter, with the attributed territory"""
    customer_name: str
    year: int
    quarter: int
    territory_name: str
    total_actual_revenue: Decimal
    total_forecasted_revenue: Decimal


class CustomerVersionView(BaseModel):
    """One customer version"""
    customer_key: int
    customer_id: int
    customer_name: str
    territory_name: str
    created_on_key: int
    effective_start_key: int
    effective_end_key: Optional[int]


class TerritoryVersionView(BaseModel):
    """One territory version"""
    territory_key: int
    territory_id: int
    territory_name: str
    region: Optional[str]
    effective_start_key: int
    effective_end_key: Optional[int]


class ThresholdResponse(BaseModel):
    """Distinct customers with a single fact above the limit"""
    limit: Decimal
    customers_with_high_revenue: int


@router.get("/territories/quarterly", response_model=List[TerritoryQuarterRevenue])
async def get_territory_quarterly_revenue(
    warehouse: RevenueWarehouse = Depends(get_warehouse),
) -> List[TerritoryQuarterRevenue]:
    """Actual and forecasted revenue by territory, year and quarter."""
    rows = await warehouse.revenue_by_territory_quarter()
    logger.info("Territory quarterly revenue returned", groups=len(rows))
    return [TerritoryQuarterRevenue(**row) for row in rows]


@router.get("/customers/quarterly", response_model=List[CustomerQuarterRevenue])
async def get_customer_quarterly_revenue(
    warehouse: RevenueWarehouse = Depends(get_warehouse),
) -> List[CustomerQuarterRevenue]:
    """Actual and forecasted revenue by customer, year, quarter and territory."""
    rows = await warehouse.revenue_by_customer_quarter()
    logger.info("Customer quarterly revenue returned", groups=len(rows))
    return [CustomerQuarterRevenue(**row) for row in rows]


@router.get("/customers/above-threshold", response_model=ThresholdResponse)
async def get_customers_above_threshold(
    limit: Decimal = Query(..., description="Single-fact actual revenue limit"),
    warehouse: RevenueWarehouse = Depends(get_warehouse),
) -> ThresholdResponse:
    count = await warehouse.count_customers_above(limit)
    return ThresholdResponse(limit=limit, customers_with_high_revenue=count)


@router.get("/customers/{customer_id}/history", response_model=List[CustomerVersionView])
async def get_customer_history(
    customer_id: int,
    warehouse: RevenueWarehouse = Depends(get_warehouse),
) -> List[CustomerVersionView]:
    """All versions of a customer ordered by effective start."""
    rows = await warehouse.customer_version_history(customer_id)
    return [CustomerVersionView(**row) for row in rows]


@router.get("/territories/{territory_id}/history", response_model=List[TerritoryVersionView])
async def get_territory_history(
    territory_id: int,
    warehouse: RevenueWarehouse = Depends(get_warehouse),
) -> List[TerritoryVersionView]:
    """All versions of a territory ordered by effective start."""
    rows = await warehouse.territory_version_history(territory_id)
    return [TerritoryVersionView(**row) for row in rows]


@router.get("/expired/{entity_type}", response_model=List[dict])
async def get_expired_versions(
    entity_type: EntityType,
    today_key: Optional[int] = Query(None, description="Reference date key, defaults to today"),
    warehouse: RevenueWarehouse = Depends(get_warehouse),
) -> List[dict]:
    """Versions whose effective end lies before today."""
    rows = await warehouse.expired_versions(entity_type, today_key=today_key)
    logger.info("Expired versions returned", entity_type=entity_type.value, versions=len(rows))
    return rows


@router.get("/customers/{customer_id}/as-of/{date_key}", response_model=CustomerVersionView)
async def get_customer_as_of(
    customer_id: int,
    date_key: int,
    warehouse: RevenueWarehouse = Depends(get_warehouse),
) -> CustomerVersionView:
    """Customer version valid on a date, with its territory."""
    version = await warehouse.as_of(EntityType.CUSTOMER, customer_id, date_key)
    rows = await warehouse.customer_version_history(customer_id)
    return next(CustomerVersionView(**row) for row in rows if row["customer_key"] == version.customer_key)
