"""
Date Registry

Pre-materialized calendar with one DimDate row per day. Every other table
refers to days only through the YYYYMMDD integer key.

Weekday numbering is ISO 8601 (1=Monday ... 7=Sunday), so is_weekend is
true for day_of_week 6 and 7 regardless of locale.
"""

from datetime import date, timedelta
from typing import Any, Dict, Iterator, Optional

import structlog
from sqlalchemy import func, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from territory_revenue.database.models import DimDate
from territory_revenue.exceptions import DuplicateKeyError, ForeignKeyError, InvalidRangeError

logger = structlog.get_logger(__name__)


def date_key_for(value: date) -> int:
    """Dense sortable key for a calendar day, e.g. 2024-07-01 -> 20240701"""
    return value.year * 10000 + value.month * 100 + value.day


def date_for_key(date_key: int) -> date:
    """Inverse of date_key_for"""
    return date(date_key // 10000, (date_key // 100) % 100, date_key % 100)


def calendar_row(value: date) -> Dict[str, Any]:
    """All derived calendar attributes of one day"""
    _, iso_week, iso_weekday = value.isocalendar()
    return {
        "date_key": date_key_for(value),
        "calendar_date": value,
        "year": value.year,
        "quarter": (value.month - 1) // 3 + 1,
        "month": value.month,
        "day": value.day,
        "day_of_week": iso_weekday,
        "week_of_year": iso_week,
        "is_weekend": iso_weekday >= 6,
    }


def iter_calendar(start_date: date, end_date: date) -> Iterator[Dict[str, Any]]:
    """
    Yield one calendar row per day in [start_date, end_date].

    The generator is lazy and finite; calling it again restarts from
    start_date.

    Raises:
        InvalidRangeError: end_date precedes start_date
    """
    if end_date < start_date:
        raise InvalidRangeError(
            f"Calendar range ends ({end_date}) before it starts ({start_date})",
            start_date=start_date,
            end_date=end_date,
        )

    current = start_date
    while current <= end_date:
        yield calendar_row(current)
        current += timedelta(days=1)


class DateRegistry:
    """
    Calendar dimension store.

    Example:
        registry = DateRegistry(session_factory)
        await registry.populate(date(2022, 1, 1), date(2025, 1, 1))
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], chunk_size: int = 1000):
        self._session_factory = session_factory
        self.chunk_size = chunk_size

    async def populate(self, start_date: date, end_date: date) -> int:
        """
        Materialize the calendar for [start_date, end_date] in one transaction.

        Returns:
            Number of rows inserted

        Raises:
            InvalidRangeError: end_date precedes start_date
            DuplicateKeyError: Any day of the range is already registered
        """
        rows = list(iter_calendar(start_date, end_date))
        first_key, last_key = rows[0]["date_key"], rows[-1]["date_key"]

        async with self._session_factory() as session:
            async with session.begin():
                existing = await session.scalar(
                    select(func.count())
                    .select_from(DimDate)
                    .where(DimDate.date_key.between(first_key, last_key))
                )
                if existing:
                    logger.warning(
                        "Calendar range already populated",
                        start_key=first_key,
                        end_key=last_key,
                        existing=existing,
                    )
                    raise DuplicateKeyError(
                        f"{existing} date keys between {first_key} and {last_key} already exist",
                        start_key=first_key,
                        end_key=last_key,
                    )

                try:
                    for i in range(0, len(rows), self.chunk_size):
                        await session.execute(insert(DimDate), rows[i:i + self.chunk_size])
                        await session.flush()
                except IntegrityError as e:
                    raise DuplicateKeyError(
                        f"Date key collision while populating {first_key}..{last_key}",
                        start_key=first_key,
                        end_key=last_key,
                    ) from e

        logger.info("Calendar populated", start_key=first_key, end_key=last_key, rows=len(rows))
        return len(rows)

    async def get(self, date_key: int) -> Optional[DimDate]:
        async with self._session_factory() as session:
            return await session.get(DimDate, date_key)

    async def exists(self, date_key: int) -> bool:
        return await self.get(date_key) is not None

    async def count(self) -> int:
        async with self._session_factory() as session:
            return await session.scalar(select(func.count()).select_from(DimDate))


async def require_date_key(session: AsyncSession, date_key: int, role: str) -> None:
    """Fail with ForeignKeyError unless date_key is registered"""
    if await session.get(DimDate, date_key) is None:
        logger.warning("Date key not registered", date_key=date_key, role=role)
        raise ForeignKeyError(f"{role} {date_key} is not in the date registry", date_key=date_key, role=role)
