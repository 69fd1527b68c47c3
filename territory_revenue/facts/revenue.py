"""
Revenue Fact Store

Append-only ledger of revenue events. Each fact references one customer
version (surrogate key) and one date key, never a raw customer id. There
is no update or delete; a correction is recorded as a new fact.

Which customer version a fact is bound to depends on the attribution policy:

- fixed_reference: the version the caller passed in is stored as-is
- as_of_date: the caller's reference only identifies the customer; the
  version valid on the revenue date is stored instead
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, List, Optional, Sequence

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from territory_revenue.config.settings import AttributionPolicy
from territory_revenue.database.models import DimCustomer, FactRevenue
from territory_revenue.dimensions.calendar import require_date_key
from territory_revenue.dimensions.customer import CustomerStore
from territory_revenue.exceptions import (
    DuplicateKeyError,
    ForeignKeyError,
    InvalidAmountError,
    NotFoundError,
)

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")
# Numeric(15, 2) holds 13 integer digits
MAX_AMOUNT = Decimal("1e13")


class RevenueFactInput(BaseModel):
    """One revenue event to record"""
    business_event_id: int = Field(..., description="Business revenue id, unique across the ledger")
    customer_reference: int = Field(..., description="Surrogate key of a customer version")
    actual_amount: Any = Field(..., description="Actual revenue, non-negative")
    forecast_amount: Any = Field(..., description="Forecasted revenue, non-negative")
    revenue_date_key: int = Field(..., description="Date registry key of the revenue")


def to_amount(field: str, value: Any) -> Decimal:
    """
    Normalize a revenue amount to a cent-precision Decimal.

    Raises:
        InvalidAmountError: value is missing, not numeric, not finite, negative
            or too large for the amount columns
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmountError(field, value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidAmountError(field, value)
    if not amount.is_finite() or amount < 0 or amount >= MAX_AMOUNT:
        raise InvalidAmountError(field, value)

    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if amount >= MAX_AMOUNT:
        raise InvalidAmountError(field, value)
    return amount


class RevenueFactStore:
    """
    Revenue ledger.

    Example:
        facts = RevenueFactStore(session_factory, customers)
        await facts.record(1001, customer_key, "500.00", "490.00", 20240701)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        customers: CustomerStore,
        policy: AttributionPolicy = AttributionPolicy.FIXED_REFERENCE,
    ):
        self._session_factory = session_factory
        self._customers = customers
        self.policy = policy

    async def _resolve_customer_key(self, session: AsyncSession, customer_reference: int, revenue_date_key: int) -> int:
        customer = await session.get(DimCustomer, customer_reference)
        if customer is None:
            raise ForeignKeyError(
                f"Customer version {customer_reference} does not exist",
                customer_reference=customer_reference,
            )

        if self.policy is AttributionPolicy.FIXED_REFERENCE:
            return customer.customer_key

        covering = await self._customers.covering_version(session, customer.customer_id, revenue_date_key)
        if covering is None:
            raise NotFoundError(
                f"No version of customer {customer.customer_id} covers {revenue_date_key}",
                customer_id=customer.customer_id,
                revenue_date_key=revenue_date_key,
            )
        if covering.customer_key != customer.customer_key:
            logger.info(
                "Customer reference re-resolved to date-effective version",
                customer_id=customer.customer_id,
                passed_key=customer.customer_key,
                resolved_key=covering.customer_key,
                revenue_date_key=revenue_date_key,
            )
        return covering.customer_key

    async def _record_in(self, session: AsyncSession, fact: RevenueFactInput) -> FactRevenue:
        actual = to_amount("actual_amount", fact.actual_amount)
        forecast = to_amount("forecast_amount", fact.forecast_amount)

        await require_date_key(session, fact.revenue_date_key, "revenue_date_key")
        customer_key = await self._resolve_customer_key(session, fact.customer_reference, fact.revenue_date_key)

        existing = await session.scalar(
            select(FactRevenue.revenue_key).where(FactRevenue.revenue_id == fact.business_event_id)
        )
        if existing is not None:
            raise DuplicateKeyError(
                f"Revenue event {fact.business_event_id} is already recorded",
                business_event_id=fact.business_event_id,
            )

        row = FactRevenue(
            revenue_id=fact.business_event_id,
            customer_key=customer_key,
            actual_revenue_amount=actual,
            forecasted_revenue_amount=forecast,
            revenue_date_key=fact.revenue_date_key,
        )
        session.add(row)
        try:
            await session.flush()
        except IntegrityError as e:
            raise DuplicateKeyError(
                f"Revenue event {fact.business_event_id} is already recorded",
                business_event_id=fact.business_event_id,
            ) from e
        return row

    async def record(
        self,
        business_event_id: int,
        customer_reference: int,
        actual_amount: Any,
        forecast_amount: Any,
        revenue_date_key: int,
    ) -> FactRevenue:
        """
        Append one revenue fact.

        Raises:
            InvalidAmountError: An amount is negative or not a finite number
            ForeignKeyError: Unknown customer version or date key
            NotFoundError: as_of_date policy and no customer version covers the date
            DuplicateKeyError: business_event_id was already recorded
        """
        fact = RevenueFactInput(
            business_event_id=business_event_id,
            customer_reference=customer_reference,
            actual_amount=actual_amount,
            forecast_amount=forecast_amount,
            revenue_date_key=revenue_date_key,
        )
        return (await self.record_many([fact]))[0]

    async def record_many(self, facts: Sequence[RevenueFactInput]) -> List[FactRevenue]:
        """Append a batch of facts in one transaction; any failure records none"""
        rows: List[FactRevenue] = []
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    for fact in facts:
                        rows.append(await self._record_in(session, fact))
        except Exception as e:
            logger.warning(
                "Revenue batch rejected",
                facts=len(facts),
                recorded_before_failure=len(rows),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        logger.info("Revenue recorded", facts=len(rows), policy=self.policy.value)
        return rows

    async def get(self, revenue_key: int) -> FactRevenue:
        async with self._session_factory() as session:
            row = await session.get(FactRevenue, revenue_key)
        if row is None:
            raise NotFoundError(f"Unknown revenue fact {revenue_key}", revenue_key=revenue_key)
        return row

    async def count(self) -> int:
        async with self._session_factory() as session:
            return await session.scalar(select(func.count()).select_from(FactRevenue))

    async def find_by_event(self, business_event_id: int) -> Optional[FactRevenue]:
        async with self._session_factory() as session:
            return await session.scalar(
                select(FactRevenue).where(FactRevenue.revenue_id == business_event_id)
            )
