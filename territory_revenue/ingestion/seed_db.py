"""
Reference dataset loader.

Loads the sample warehouse: a 2022-01-01..2025-01-01 calendar, territories
Northeast and Mid-Market, customers ACME / ACME #2 / ACME #3, ACME moving
from Northeast to Mid-Market on 2024-10-01, and four revenue facts.

Run with:
    python -m territory_revenue.ingestion.seed_db
"""

import asyncio
from datetime import date
from typing import Dict

import structlog

from territory_revenue.config.logging import configure_logging
from territory_revenue.database.connection import close_database, get_session_factory, init_database
from territory_revenue.dimensions.customer import CustomerAttributes
from territory_revenue.dimensions.territory import TerritoryAttributes
from territory_revenue.warehouse import RevenueWarehouse

logger = structlog.get_logger(__name__)

CALENDAR_START = date(2022, 1, 1)
CALENDAR_END = date(2025, 1, 1)

TERRITORIES = [
    (1, TerritoryAttributes(name="Northeast", region="East Coast"), 20220101),
    (2, TerritoryAttributes(name="Mid-Market", region="West Coast"), 20220101),
]

# (customer_id, name, territory_id, start_key)
CUSTOMERS = [
    (101, "ACME", 1, 20240701),
    (102, "ACME #2", 2, 20220301),
    (103, "ACME #3", 1, 20230401),
]

# (customer_id, name, new territory_id, change_key)
CUSTOMER_MOVES = [
    (101, "ACME", 2, 20241001),
]

# (revenue_id, customer_id, actual, forecast, revenue_date_key); each fact is
# bound to the customer version open on its date
REVENUE = [
    (1001, 101, "500.00", "490.00", 20240701),
    (1002, 102, "750.50", "1000.00", 20220301),
    (1003, 101, "1200.00", "1201.00", 20241001),
    (1004, 103, "300.25", "300.50", 20230401),
]


async def seed_dimensions(warehouse: RevenueWarehouse) -> Dict[int, int]:
    """Load territories and customers, returning territory_id -> territory_key"""
    logger.info("Seeding territories...")
    territory_keys = {}
    for territory_id, attrs, start_key in TERRITORIES:
        version = await warehouse.territories.create_initial(territory_id, attrs, start_key)
        territory_keys[territory_id] = version.territory_key

    logger.info("Seeding customers...")
    for customer_id, name, territory_id, start_key in CUSTOMERS:
        attrs = CustomerAttributes(name=name, territory_key=territory_keys[territory_id])
        await warehouse.customers.create_initial(customer_id, attrs, start_key)

    for customer_id, name, territory_id, change_key in CUSTOMER_MOVES:
        attrs = CustomerAttributes(name=name, territory_key=territory_keys[territory_id])
        await warehouse.customers.revise(customer_id, attrs, change_key)

    return territory_keys


async def seed_revenue(warehouse: RevenueWarehouse) -> int:
    logger.info("Seeding revenue facts...")
    for revenue_id, customer_id, actual, forecast, date_key in REVENUE:
        customer = await warehouse.customers.as_of(customer_id, date_key)
        await warehouse.record_fact(revenue_id, customer.customer_key, actual, forecast, date_key)
    return len(REVENUE)


async def seed_sample_data(warehouse: RevenueWarehouse) -> None:
    """Load the complete reference dataset into an empty warehouse"""
    await warehouse.populate_dates(CALENDAR_START, CALENDAR_END)
    await seed_dimensions(warehouse)
    await seed_revenue(warehouse)


async def main():
    configure_logging()
    logger.info("Starting database seeding...")
    await init_database(create_tables=True)

    try:
        await seed_sample_data(RevenueWarehouse(get_session_factory()))
        logger.info("Database seeding completed successfully!")
    except Exception as e:
        logger.error("Seeding failed", error=str(e), error_type=type(e).__name__)
        raise
    finally:
        await close_database()


if __name__ == "__main__":
    asyncio.run(main())
