"""
Database Models - Star Schema Design

Fact Tables:
- FactRevenue: Actual and forecasted revenue events

Dimension Tables:
- DimDate: Pre-materialized calendar keyed by YYYYMMDD
- DimTerritory: Sales territories, SCD Type 2
- DimCustomer: Customers bound to a specific territory version, SCD Type 2

Every versioned dimension carries a half-open validity interval
[effective_start_key, effective_end_key) in date keys. A NULL end key marks the
open (current) version, and a partial unique index allows at most one of those
per business id.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# =============================================================================
# ENUMERATIONS
# =============================================================================

class EntityType(str, Enum):
    """Versioned dimension kinds"""
    TERRITORY = "territory"
    CUSTOMER = "customer"


# =============================================================================
# DIMENSION TABLES
# =============================================================================

class DimDate(Base):
    """
    Date Dimension Table

    One row per calendar day. Weekdays use ISO numbering (1=Monday, 7=Sunday)
    and week_of_year is the ISO week.
    """
    __tablename__ = "dim_date"

    date_key: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)  # YYYYMMDD
    calendar_date: Mapped[date] = mapped_column(Date, unique=True, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    quarter: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    day: Mapped[int] = mapped_column(Integer, nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    week_of_year: Mapped[int] = mapped_column(Integer, nullable=False)
    is_weekend: Mapped[bool] = mapped_column(Boolean, nullable=False)

    __table_args__ = (
        Index("idx_year_month", "year", "month"),
    )


class DimTerritory(Base):
    """
    Territory Dimension Table

    SCD Type 2: a change closes the open row and inserts a successor.
    """
    __tablename__ = "dim_territory"

    territory_key: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    territory_id: Mapped[int] = mapped_column(Integer, nullable=False)
    territory_name: Mapped[str] = mapped_column(String(100), nullable=False)
    region: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    effective_start_key: Mapped[int] = mapped_column(
        Integer, ForeignKey("dim_date.date_key"), nullable=False
    )
    effective_end_key: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("dim_date.date_key")
    )

    customers: Mapped[List["DimCustomer"]] = relationship(back_populates="territory")

    __table_args__ = (
        UniqueConstraint("territory_id", "effective_start_key", name="unique_territory_period"),
        Index(
            "uq_territory_open_version",
            "territory_id",
            unique=True,
            postgresql_where=text("effective_end_key IS NULL"),
            sqlite_where=text("effective_end_key IS NULL"),
        ),
        Index("idx_territory_start_key", "effective_start_key"),
    )


class DimCustomer(Base):
    """
    Customer Dimension Table

    SCD Type 2. territory_key points at one specific territory version and
    never moves; created_on_key is carried unchanged across revisions.
    """
    __tablename__ = "dim_customer"

    customer_key: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(Integer, nullable=False)
    customer_name: Mapped[str] = mapped_column(String(100), nullable=False)
    territory_key: Mapped[int] = mapped_column(
        Integer, ForeignKey("dim_territory.territory_key"), nullable=False
    )
    created_on_key: Mapped[int] = mapped_column(
        Integer, ForeignKey("dim_date.date_key"), nullable=False
    )

    effective_start_key: Mapped[int] = mapped_column(
        Integer, ForeignKey("dim_date.date_key"), nullable=False
    )
    effective_end_key: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("dim_date.date_key")
    )

    territory: Mapped["DimTerritory"] = relationship(back_populates="customers")
    revenue: Mapped[List["FactRevenue"]] = relationship(back_populates="customer")

    __table_args__ = (
        UniqueConstraint("customer_id", "effective_start_key", name="unique_customer_period"),
        Index(
            "uq_customer_open_version",
            "customer_id",
            unique=True,
            postgresql_where=text("effective_end_key IS NULL"),
            sqlite_where=text("effective_end_key IS NULL"),
        ),
        Index("idx_effective_start_key", "effective_start_key"),
    )


# =============================================================================
# FACT TABLES
# =============================================================================

class FactRevenue(Base):
    """
    Revenue Fact Table

    Append-only. Grain: one business revenue event, bound to the customer
    version that was passed (or resolved) when it was recorded.
    """
    __tablename__ = "fact_revenue"

    revenue_key: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    revenue_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)

    customer_key: Mapped[int] = mapped_column(
        Integer, ForeignKey("dim_customer.customer_key"), nullable=False
    )
    revenue_date_key: Mapped[int] = mapped_column(
        Integer, ForeignKey("dim_date.date_key"), nullable=False
    )

    # Measures
    actual_revenue_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    forecasted_revenue_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    customer: Mapped["DimCustomer"] = relationship(back_populates="revenue")

    __table_args__ = (
        Index("idx_revenue_date_key", "revenue_date_key"),
        Index("idx_revenue_customer_key", "customer_key"),
    )
