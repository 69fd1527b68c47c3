"""
Revenue Warehouse

Library-level entry point for batch jobs, reporting tools and the API. It
wires the date registry, both versioned dimensions, the revenue ledger and
the attribution engine onto one session factory, one clock and one set of
per-entity locks.

Example:
    warehouse = RevenueWarehouse(get_session_factory())
    await warehouse.populate_dates(date(2022, 1, 1), date(2025, 1, 1))
    territory = await warehouse.create_initial(
        "territory", 1, {"name": "Northeast", "region": "East Coast"}, 20220101
    )
"""

from datetime import date
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

import polars as pl
import structlog
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from territory_revenue.attribution.engine import AttributionEngine, parse_entity_type
from territory_revenue.clock import Clock, system_clock
from territory_revenue.config import AttributionPolicy, get_settings
from territory_revenue.database.models import EntityType, FactRevenue
from territory_revenue.dimensions.calendar import DateRegistry
from territory_revenue.dimensions.customer import CustomerStore
from territory_revenue.dimensions.territory import TerritoryStore
from territory_revenue.dimensions.versioning import KeyedLocks, VersionedEntityStore
from territory_revenue.facts.revenue import RevenueFactInput, RevenueFactStore
from territory_revenue.quality.validators import (
    ValidationResult,
    ValidationStatus,
    create_revenue_validator,
    create_versioned_dimension_validator,
)

logger = structlog.get_logger(__name__)

INTERVAL_SCHEMA = {
    "business_id": pl.Int64,
    "surrogate_key": pl.Int64,
    "effective_start_key": pl.Int64,
    "effective_end_key": pl.Int64,
}


class LoadStatus(str, Enum):
    """Batch load status"""
    COMPLETED = "completed"
    FAILED = "failed"


class LoadResult(BaseModel):
    """Result of a revenue batch load"""
    status: LoadStatus
    rows_received: int
    rows_loaded: int = 0
    failed_checks: List[str] = []


class RevenueWarehouse:
    """Write and read surface of the territory revenue model"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Optional[Clock] = None,
        policy: Optional[AttributionPolicy] = None,
    ):
        self.clock = clock or system_clock
        self.policy = policy or get_settings().attribution.policy

        locks = KeyedLocks()
        self.dates = DateRegistry(session_factory)
        self.territories = TerritoryStore(session_factory, clock=self.clock, locks=locks)
        self.customers = CustomerStore(session_factory, clock=self.clock, locks=locks)
        self.facts = RevenueFactStore(session_factory, self.customers, policy=self.policy)
        self.attribution = AttributionEngine(session_factory, clock=self.clock)

        logger.debug("Warehouse assembled", policy=self.policy.value)

    def store_for(self, entity_type: Union[EntityType, str]) -> VersionedEntityStore:
        """
        Raises:
            InvalidQueryError: Unknown entity type
        """
        kind = parse_entity_type(entity_type)
        if kind is EntityType.TERRITORY:
            return self.territories
        return self.customers

    # ------------------------------------------------------------------
    # Write surface
    # ------------------------------------------------------------------

    async def populate_dates(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> int:
        """Populate the calendar, defaulting to the configured range"""
        calendar = get_settings().calendar
        return await self.dates.populate(start_date or calendar.start_date, end_date or calendar.end_date)

    async def create_initial(
        self,
        entity_type: Union[EntityType, str],
        business_id: int,
        attrs: Union[BaseModel, Mapping[str, Any]],
        start_key: int,
    ):
        return await self.store_for(entity_type).create_initial(business_id, attrs, start_key)

    async def revise(
        self,
        entity_type: Union[EntityType, str],
        business_id: int,
        attrs: Union[BaseModel, Mapping[str, Any]],
        change_key: int,
    ):
        return await self.store_for(entity_type).revise(business_id, attrs, change_key)

    async def retire(self, entity_type: Union[EntityType, str], business_id: int, end_key: int):
        return await self.store_for(entity_type).retire(business_id, end_key)

    async def record_fact(
        self,
        business_event_id: int,
        customer_reference: int,
        actual_amount: Any,
        forecast_amount: Any,
        revenue_date_key: int,
    ) -> FactRevenue:
        return await self.facts.record(
            business_event_id, customer_reference, actual_amount, forecast_amount, revenue_date_key
        )

    async def load_revenue(self, df: pl.DataFrame) -> LoadResult:
        """
        Validate a revenue batch and record it in one transaction.

        The frame needs the RevenueFactInput columns. A batch failing
        validation is not recorded at all; errors raised while recording
        (unknown references, duplicate events) propagate.
        """
        validation = create_revenue_validator().validate(df)
        if validation.status == ValidationStatus.FAILED:
            failed = [check.name for check in validation.failures()]
            logger.warning("Revenue batch failed validation", rows=len(df), failed_checks=failed)
            return LoadResult(status=LoadStatus.FAILED, rows_received=len(df), failed_checks=failed)

        facts = [RevenueFactInput.model_validate(row) for row in df.to_dicts()]
        rows = await self.facts.record_many(facts)
        return LoadResult(status=LoadStatus.COMPLETED, rows_received=len(df), rows_loaded=len(rows))

    # ------------------------------------------------------------------
    # Read surface
    # ------------------------------------------------------------------

    async def as_of(self, entity_type: Union[EntityType, str], business_id: int, date_key: int):
        return await self.store_for(entity_type).as_of(business_id, date_key)

    async def revenue_by_customer_quarter(self) -> List[Dict[str, Any]]:
        return await self.attribution.revenue_by_customer_quarter()

    async def revenue_by_territory_quarter(self) -> List[Dict[str, Any]]:
        return await self.attribution.revenue_by_territory_quarter()

    async def aggregate(self, grain, order_by=None) -> List[Dict[str, Any]]:
        return await self.attribution.aggregate(grain, order_by=order_by)

    async def customer_version_history(self, customer_id: int) -> List[Dict[str, Any]]:
        return await self.attribution.customer_version_history(customer_id)

    async def territory_version_history(self, territory_id: int) -> List[Dict[str, Any]]:
        return await self.attribution.territory_version_history(territory_id)

    async def count_customers_above(self, limit: Any) -> int:
        return await self.attribution.count_customers_above(limit)

    async def expired_versions(
        self,
        entity_type: Union[EntityType, str],
        today_key: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await self.attribution.expired_versions(entity_type, today_key=today_key)

    async def validate_dimensions(self) -> Dict[EntityType, ValidationResult]:
        """Run the SCD Type 2 integrity suite over both dimensions"""
        results = {}
        for kind in EntityType:
            rows = await self.store_for(kind).interval_rows()
            frame = pl.DataFrame(rows, schema=INTERVAL_SCHEMA)
            results[kind] = create_versioned_dimension_validator().validate(frame)
        return results
