"""
Attribution Engine

Read-only projections over

    FactRevenue -> DimCustomer (stored customer_key)
                -> DimTerritory (customer version's territory_key)
    FactRevenue -> DimDate (revenue_date_key)

A fact is attributed to the territory version bound to the customer version
stored on the fact. Nothing is re-resolved at query time, so a customer
moving territories later never re-homes revenue already recorded.

Each query is a single statement and returns an ordered list of flat dict
rows; empty results are valid.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import polars as pl
import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from territory_revenue.clock import Clock, system_clock
from territory_revenue.database.models import (
    DimCustomer,
    DimDate,
    DimTerritory,
    EntityType,
    FactRevenue,
)
from territory_revenue.dimensions.calendar import date_key_for
from territory_revenue.exceptions import InvalidQueryError

logger = structlog.get_logger(__name__)

Row = Dict[str, Any]

# Columns a revenue aggregation may be grouped by
DIMENSION_COLUMNS = {
    "customer_id": DimCustomer.customer_id,
    "customer_name": DimCustomer.customer_name,
    "territory_id": DimTerritory.territory_id,
    "territory_name": DimTerritory.territory_name,
    "region": DimTerritory.region,
    "year": DimDate.year,
    "quarter": DimDate.quarter,
    "month": DimDate.month,
    "week_of_year": DimDate.week_of_year,
    "is_weekend": DimDate.is_weekend,
}

# Columns listed for each dimension's versions
VERSION_COLUMNS = {
    EntityType.TERRITORY: (
        DimTerritory.territory_key,
        DimTerritory.territory_id,
        DimTerritory.territory_name,
        DimTerritory.region,
        DimTerritory.effective_start_key,
        DimTerritory.effective_end_key,
    ),
    EntityType.CUSTOMER: (
        DimCustomer.customer_key,
        DimCustomer.customer_id,
        DimCustomer.customer_name,
        DimCustomer.territory_key,
        DimCustomer.created_on_key,
        DimCustomer.effective_start_key,
        DimCustomer.effective_end_key,
    ),
}

VERSION_MODELS = {
    EntityType.TERRITORY: DimTerritory,
    EntityType.CUSTOMER: DimCustomer,
}

BUSINESS_ID_COLUMNS = {
    EntityType.TERRITORY: DimTerritory.territory_id,
    EntityType.CUSTOMER: DimCustomer.customer_id,
}


def parse_entity_type(entity_type: Union[EntityType, str]) -> EntityType:
    """
    Raises:
        InvalidQueryError: Not a versioned dimension
    """
    try:
        return EntityType(entity_type)
    except ValueError:
        raise InvalidQueryError(
            f"Unknown entity type {entity_type!r}; expected one of {[e.value for e in EntityType]}",
            entity_type=entity_type,
        )


def to_frame(rows: Sequence[Mapping[str, Any]], columns: Optional[Sequence[str]] = None) -> pl.DataFrame:
    """Result rows as a polars DataFrame for reporting tools"""
    if not rows:
        return pl.DataFrame({name: [] for name in columns or []})
    return pl.DataFrame([dict(row) for row in rows], infer_schema_length=None)


class AttributionEngine:
    """
    Revenue attribution queries.

    Example:
        engine = AttributionEngine(session_factory)
        rows = await engine.revenue_by_territory_quarter()
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: Optional[Clock] = None):
        self._session_factory = session_factory
        self._clock = clock or system_clock

    async def _fetch(self, stmt) -> List[Row]:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [dict(row) for row in result.mappings()]

    async def aggregate(
        self,
        grain: Sequence[str],
        order_by: Optional[Sequence[str]] = None,
    ) -> List[Row]:
        """
        Sum actual and forecasted revenue grouped by the given grain.

        Args:
            grain: Dimension columns to group by, see DIMENSION_COLUMNS
            order_by: Grain columns to sort by, defaults to the grain order

        Raises:
            InvalidQueryError: Empty grain, unknown column, or an order_by
                column outside the grain
        """
        grain = list(grain)
        order_by = list(order_by) if order_by is not None else grain

        if not grain:
            raise InvalidQueryError("Aggregation grain must name at least one column")
        unknown = [name for name in grain if name not in DIMENSION_COLUMNS]
        if unknown:
            raise InvalidQueryError(
                f"Unknown grain columns {unknown}; allowed: {sorted(DIMENSION_COLUMNS)}",
                grain=grain,
            )
        if len(set(grain)) != len(grain):
            raise InvalidQueryError(f"Grain columns repeat: {grain}", grain=grain)
        outside = [name for name in order_by if name not in grain]
        if outside:
            raise InvalidQueryError(f"Cannot order by {outside}: not part of the grain", order_by=order_by)

        group_columns = [DIMENSION_COLUMNS[name] for name in grain]
        stmt = (
            select(
                *[column.label(name) for name, column in zip(grain, group_columns)],
                func.sum(FactRevenue.actual_revenue_amount).label("total_actual_revenue"),
                func.sum(FactRevenue.forecasted_revenue_amount).label("total_forecasted_revenue"),
            )
            .select_from(FactRevenue)
            .join(DimCustomer, FactRevenue.customer_key == DimCustomer.customer_key)
            .join(DimTerritory, DimCustomer.territory_key == DimTerritory.territory_key)
            .join(DimDate, FactRevenue.revenue_date_key == DimDate.date_key)
            .group_by(*group_columns)
            .order_by(*[DIMENSION_COLUMNS[name] for name in order_by])
        )

        rows = await self._fetch(stmt)
        logger.debug("Revenue aggregated", grain=grain, groups=len(rows))
        return rows

    async def revenue_by_customer_quarter(self) -> List[Row]:
        """Revenue per customer, year, quarter and territory; ordered by customer, year, quarter"""
        return await self.aggregate(
            ["customer_name", "year", "quarter", "territory_name"],
            order_by=["customer_name", "year", "quarter", "territory_name"],
        )

    async def revenue_by_territory_quarter(self) -> List[Row]:
        """Revenue per territory, year and quarter; ordered by year, quarter, territory"""
        return await self.aggregate(
            ["territory_name", "year", "quarter"],
            order_by=["year", "quarter", "territory_name"],
        )

    async def customer_version_history(self, customer_id: int) -> List[Row]:
        """Every version of one customer with its territory, ordered by effective start"""
        stmt = (
            select(
                DimCustomer.customer_key,
                DimCustomer.customer_id,
                DimCustomer.customer_name,
                DimTerritory.territory_name,
                DimCustomer.created_on_key,
                DimCustomer.effective_start_key,
                DimCustomer.effective_end_key,
            )
            .join(DimTerritory, DimCustomer.territory_key == DimTerritory.territory_key)
            .where(DimCustomer.customer_id == customer_id)
            .order_by(DimCustomer.effective_start_key)
        )
        return await self._fetch(stmt)

    async def territory_version_history(self, territory_id: int) -> List[Row]:
        """Every version of one territory, ordered by effective start"""
        stmt = (
            select(*VERSION_COLUMNS[EntityType.TERRITORY])
            .where(DimTerritory.territory_id == territory_id)
            .order_by(DimTerritory.effective_start_key)
        )
        return await self._fetch(stmt)

    async def count_customers_above(self, limit: Any) -> int:
        """
        Number of distinct customers with at least one fact whose actual
        amount exceeds limit.

        Raises:
            InvalidQueryError: limit is not a finite number
        """
        try:
            threshold = limit if isinstance(limit, Decimal) else Decimal(str(limit))
        except (InvalidOperation, ValueError):
            raise InvalidQueryError(f"Threshold {limit!r} is not a number", limit=limit)
        if not threshold.is_finite():
            raise InvalidQueryError(f"Threshold {limit!r} is not finite", limit=limit)

        stmt = (
            select(func.count(func.distinct(DimCustomer.customer_id)))
            .select_from(FactRevenue)
            .join(DimCustomer, FactRevenue.customer_key == DimCustomer.customer_key)
            .where(FactRevenue.actual_revenue_amount > threshold)
        )
        async with self._session_factory() as session:
            return await session.scalar(stmt) or 0

    async def expired_versions(
        self,
        entity_type: Union[EntityType, str],
        today_key: Optional[int] = None,
    ) -> List[Row]:
        """
        Versions closed strictly before today.

        Open versions and versions ending today or later are excluded.
        today_key defaults to the injected clock.
        """
        kind = parse_entity_type(entity_type)
        model = VERSION_MODELS[kind]
        if today_key is None:
            today_key = date_key_for(self._clock().date())

        stmt = (
            select(*VERSION_COLUMNS[kind])
            .where(
                model.effective_end_key.is_not(None),
                model.effective_end_key < today_key,
            )
            .order_by(BUSINESS_ID_COLUMNS[kind], model.effective_start_key)
        )
        rows = await self._fetch(stmt)
        logger.debug("Expired versions listed", entity_type=kind.value, today_key=today_key, versions=len(rows))
        return rows
