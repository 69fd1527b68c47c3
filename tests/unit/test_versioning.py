"""
Unit Tests - SCD Type 2 Dimensions
"""
import asyncio

import pytest
from pydantic import ValidationError
from structlog.testing import capture_logs

from territory_revenue.database.models import DimTerritory, EntityType
from territory_revenue.dimensions import CustomerAttributes, TerritoryAttributes
from territory_revenue.exceptions import (
    ConflictError,
    ForeignKeyError,
    InvalidQueryError,
    InvalidRangeError,
    NotFoundError,
)
from territory_revenue.quality.validators import ValidationStatus

NORTHEAST = TerritoryAttributes(name="Northeast", region="East Coast")
MID_MARKET = TerritoryAttributes(name="Mid-Market", region="West Coast")


async def _two_territories(warehouse):
    northeast = await warehouse.create_initial(EntityType.TERRITORY, 1, NORTHEAST, 20220101)
    mid_market = await warehouse.create_initial(EntityType.TERRITORY, 2, MID_MARKET, 20220101)
    return northeast, mid_market


class TestCreateInitial:
    """Tests for the first version of an entity"""

    async def test_creates_open_version(self, dated_warehouse):
        territory = await dated_warehouse.create_initial("territory", 1, NORTHEAST, 20220101)

        assert territory.territory_id == 1
        assert territory.territory_name == "Northeast"
        assert territory.region == "East Coast"
        assert territory.effective_start_key == 20220101
        assert territory.effective_end_key is None

    async def test_created_at_comes_from_clock(self, dated_warehouse, clock):
        territory = await dated_warehouse.create_initial("territory", 1, NORTHEAST, 20220101)
        assert territory.created_at == clock()

    async def test_accepts_mapping_payload(self, dated_warehouse):
        territory = await dated_warehouse.create_initial(
            "territory", 3, {"name": "Enterprise", "region": None}, 20230101
        )
        assert territory.territory_name == "Enterprise"
        assert territory.region is None

    async def test_malformed_payload_rejected(self, dated_warehouse):
        with pytest.raises(ValidationError):
            await dated_warehouse.create_initial("territory", 3, {"region": "Nowhere"}, 20230101)

    async def test_second_open_version_rejected(self, dated_warehouse):
        """Test create_initial on an entity with an open version conflicts"""
        await dated_warehouse.create_initial("territory", 1, NORTHEAST, 20220101)

        with pytest.raises(ConflictError):
            await dated_warehouse.create_initial("territory", 1, MID_MARKET, 20230101)

        history = await dated_warehouse.territories.history(1)
        assert len(history) == 1

    async def test_unknown_start_key_rejected(self, dated_warehouse):
        with pytest.raises(ForeignKeyError):
            await dated_warehouse.create_initial("territory", 1, NORTHEAST, 20300101)

    async def test_unknown_territory_version_rejected(self, dated_warehouse):
        """Test a customer cannot point at a territory version that does not exist"""
        with pytest.raises(ForeignKeyError):
            await dated_warehouse.create_initial(
                "customer", 101, CustomerAttributes(name="ACME", territory_key=999), 20240701
            )
        assert await dated_warehouse.customers.history(101) == []

    async def test_unknown_entity_type_rejected(self, dated_warehouse):
        with pytest.raises(InvalidQueryError):
            await dated_warehouse.create_initial("product", 1, NORTHEAST, 20220101)


class TestRevise:
    """Tests for closing a version and opening its successor"""

    async def test_revise_closes_and_opens(self, dated_warehouse):
        northeast, mid_market = await _two_territories(dated_warehouse)
        first = await dated_warehouse.create_initial(
            "customer", 101, CustomerAttributes(name="ACME", territory_key=northeast.territory_key), 20240701
        )

        second = await dated_warehouse.revise(
            "customer", 101, CustomerAttributes(name="ACME", territory_key=mid_market.territory_key), 20241001
        )

        history = await dated_warehouse.customers.history(101)
        assert [v.customer_key for v in history] == [first.customer_key, second.customer_key]
        assert history[0].effective_end_key == 20241001
        assert history[1].effective_start_key == 20241001
        assert history[1].effective_end_key is None
        assert second.customer_key != first.customer_key

    async def test_created_on_carried_across_revisions(self, dated_warehouse):
        northeast, mid_market = await _two_territories(dated_warehouse)
        await dated_warehouse.create_initial(
            "customer", 101, {"name": "ACME", "territory_key": northeast.territory_key}, 20240701
        )
        revised = await dated_warehouse.revise(
            "customer", 101, {"name": "ACME Corp", "territory_key": mid_market.territory_key}, 20241001
        )

        assert revised.created_on_key == 20240701
        assert revised.customer_name == "ACME Corp"

    async def test_revise_without_open_version(self, dated_warehouse):
        with pytest.raises(NotFoundError):
            await dated_warehouse.revise("territory", 42, NORTHEAST, 20230101)

    async def test_change_key_must_follow_start(self, dated_warehouse):
        """Test revising on or before the open version's start is rejected"""
        await dated_warehouse.create_initial("territory", 1, NORTHEAST, 20230101)

        with pytest.raises(InvalidRangeError):
            await dated_warehouse.revise("territory", 1, MID_MARKET, 20230101)
        with pytest.raises(InvalidRangeError):
            await dated_warehouse.revise("territory", 1, MID_MARKET, 20221231)

        current = await dated_warehouse.territories.current(1)
        assert current.territory_name == "Northeast"
        assert current.effective_end_key is None

    async def test_failed_revise_leaves_no_trace(self, dated_warehouse):
        """Test a successor that cannot be built rolls back the close as well"""
        northeast, _ = await _two_territories(dated_warehouse)
        first = await dated_warehouse.create_initial(
            "customer", 101, {"name": "ACME", "territory_key": northeast.territory_key}, 20240701
        )

        with pytest.raises(ForeignKeyError):
            await dated_warehouse.revise("customer", 101, {"name": "ACME", "territory_key": 999}, 20241001)

        history = await dated_warehouse.customers.history(101)
        assert len(history) == 1
        assert history[0].customer_key == first.customer_key
        assert history[0].effective_end_key is None

    async def test_unknown_change_key_rejected(self, dated_warehouse):
        await dated_warehouse.create_initial("territory", 1, NORTHEAST, 20220101)

        with pytest.raises(ForeignKeyError):
            await dated_warehouse.revise("territory", 1, MID_MARKET, 20300101)

        assert (await dated_warehouse.territories.current(1)).effective_end_key is None

    async def test_concurrent_revisions_serialize(self, dated_warehouse):
        """Test racing revisions of one entity never leave two open versions"""
        await dated_warehouse.create_initial("territory", 1, NORTHEAST, 20220101)

        results = await asyncio.gather(
            dated_warehouse.revise("territory", 1, MID_MARKET, 20230101),
            dated_warehouse.revise("territory", 1, {"name": "Enterprise"}, 20240101),
            return_exceptions=True,
        )

        assert not any(isinstance(result, Exception) for result in results)
        history = await dated_warehouse.territories.history(1)
        assert [v.effective_start_key for v in history] == [20220101, 20230101, 20240101]
        assert sum(1 for v in history if v.effective_end_key is None) == 1

    async def test_racing_revision_rejected_cleanly(self, dated_warehouse):
        """Test the losing racer fails instead of overlapping the winner"""
        await dated_warehouse.create_initial("territory", 1, NORTHEAST, 20220101)

        results = await asyncio.gather(
            dated_warehouse.revise("territory", 1, MID_MARKET, 20240101),
            dated_warehouse.revise("territory", 1, {"name": "Enterprise"}, 20230101),
            return_exceptions=True,
        )

        assert isinstance(results[1], InvalidRangeError)
        history = await dated_warehouse.territories.history(1)
        assert [v.effective_start_key for v in history] == [20220101, 20240101]


class TestRetire:
    """Tests for closing an entity without a successor"""

    async def test_retire_closes_open_version(self, dated_warehouse):
        await dated_warehouse.create_initial("territory", 1, NORTHEAST, 20220101)

        retired = await dated_warehouse.retire("territory", 1, 20230601)

        assert retired.effective_end_key == 20230601
        with pytest.raises(NotFoundError):
            await dated_warehouse.territories.current(1)

    async def test_reopen_after_retire(self, dated_warehouse):
        """Test a retired entity may restart on or after its last end"""
        await dated_warehouse.create_initial("territory", 1, NORTHEAST, 20220101)
        await dated_warehouse.retire("territory", 1, 20230601)

        with pytest.raises(ConflictError):
            await dated_warehouse.create_initial("territory", 1, NORTHEAST, 20230101)

        reopened = await dated_warehouse.create_initial("territory", 1, NORTHEAST, 20230601)
        assert reopened.effective_start_key == 20230601

    async def test_retire_before_start_rejected(self, dated_warehouse):
        await dated_warehouse.create_initial("territory", 1, NORTHEAST, 20230101)

        with pytest.raises(InvalidRangeError):
            await dated_warehouse.retire("territory", 1, 20230101)


class TestAsOf:
    """Tests for point-in-time lookups"""

    @pytest.fixture
    async def moved_customer(self, dated_warehouse):
        northeast, mid_market = await _two_territories(dated_warehouse)
        first = await dated_warehouse.create_initial(
            "customer", 101, {"name": "ACME", "territory_key": northeast.territory_key}, 20240701
        )
        second = await dated_warehouse.revise(
            "customer", 101, {"name": "ACME", "territory_key": mid_market.territory_key}, 20241001
        )
        return first, second

    async def test_start_is_inclusive(self, dated_warehouse, moved_customer):
        first, _ = moved_customer
        version = await dated_warehouse.as_of("customer", 101, 20240701)
        assert version.customer_key == first.customer_key

    async def test_end_is_exclusive(self, dated_warehouse, moved_customer):
        """Test the change day belongs to the successor"""
        first, second = moved_customer

        assert (await dated_warehouse.as_of("customer", 101, 20240930)).customer_key == first.customer_key
        assert (await dated_warehouse.as_of("customer", 101, 20241001)).customer_key == second.customer_key

    async def test_open_version_covers_future(self, dated_warehouse, moved_customer):
        _, second = moved_customer
        version = await dated_warehouse.as_of("customer", 101, 20991231)
        assert version.customer_key == second.customer_key

    async def test_before_first_version(self, dated_warehouse, moved_customer):
        with pytest.raises(NotFoundError):
            await dated_warehouse.as_of("customer", 101, 20240630)

    async def test_unknown_entity(self, dated_warehouse):
        with pytest.raises(NotFoundError):
            await dated_warehouse.as_of("territory", 77, 20240101)

    async def test_get_by_surrogate_key(self, dated_warehouse, moved_customer):
        first, _ = moved_customer

        version = await dated_warehouse.customers.get(first.customer_key)
        assert version.effective_end_key == 20241001

        with pytest.raises(NotFoundError):
            await dated_warehouse.customers.get(999)


class TestDimensionIntegrity:
    """Tests for the interval invariants after sequences of writes"""

    async def test_validation_passes_after_writes(self, dated_warehouse):
        northeast, mid_market = await _two_territories(dated_warehouse)
        await dated_warehouse.revise("territory", 1, {"name": "Northeast", "region": "New England"}, 20230101)
        await dated_warehouse.create_initial(
            "customer", 101, {"name": "ACME", "territory_key": northeast.territory_key}, 20220301
        )
        for change_key in (20220601, 20230101, 20240101):
            await dated_warehouse.revise(
                "customer", 101, {"name": "ACME", "territory_key": mid_market.territory_key}, change_key
            )
        await dated_warehouse.retire("customer", 101, 20240601)

        results = await dated_warehouse.validate_dimensions()

        assert set(results) == {EntityType.TERRITORY, EntityType.CUSTOMER}
        for result in results.values():
            assert result.status == ValidationStatus.PASSED

    async def test_validation_of_empty_dimensions(self, warehouse):
        results = await warehouse.validate_dimensions()

        assert all(result.status == ValidationStatus.PASSED for result in results.values())

    async def test_revisions_chain_without_gaps(self, dated_warehouse):
        """Test each version ends exactly where its successor starts"""
        await dated_warehouse.create_initial("territory", 1, NORTHEAST, 20220101)
        for change_key in (20220301, 20230101, 20240701):
            await dated_warehouse.revise("territory", 1, MID_MARKET, change_key)

        history = await dated_warehouse.territories.history(1)
        for earlier, later in zip(history, history[1:]):
            assert earlier.effective_end_key == later.effective_start_key


def _warnings(logs):
    return [entry for entry in logs if entry["log_level"] == "warning"]


class TestRejectionLogging:
    """Tests that rejected writes leave a warning with their context"""

    async def test_retire_without_open_version(self, dated_warehouse):
        with capture_logs() as logs:
            with pytest.raises(NotFoundError):
                await dated_warehouse.retire("territory", 7, 20230601)

        warning = _warnings(logs)[0]
        assert warning["event"] == "Retirement without open version"
        assert warning["business_id"] == 7
        assert warning["end_key"] == 20230601

    async def test_retire_before_start(self, dated_warehouse):
        await dated_warehouse.create_initial("territory", 1, NORTHEAST, 20230101)

        with capture_logs() as logs:
            with pytest.raises(InvalidRangeError):
                await dated_warehouse.retire("territory", 1, 20220601)

        warning = _warnings(logs)[0]
        assert warning["event"] == "Retirement would close version before it opened"
        assert warning["effective_start_key"] == 20230101

    async def test_unknown_territory_version(self, dated_warehouse):
        with capture_logs() as logs:
            with pytest.raises(ForeignKeyError):
                await dated_warehouse.create_initial(
                    "customer", 101, CustomerAttributes(name="ACME", territory_key=999), 20240701
                )

        assert any(
            entry["event"] == "Customer version references unknown territory version"
            and entry["business_id"] == 101
            and entry["territory_key"] == 999
            for entry in _warnings(logs)
        )

    async def test_unregistered_date_key(self, dated_warehouse):
        with capture_logs() as logs:
            with pytest.raises(ForeignKeyError):
                await dated_warehouse.create_initial("territory", 1, NORTHEAST, 20300101)

        assert any(
            entry["event"] == "Date key not registered"
            and entry["date_key"] == 20300101
            and entry["role"] == "effective_start_key"
            for entry in _warnings(logs)
        )

    async def test_constraint_violation_on_flush(self, dated_warehouse, session_factory, clock):
        """Test a row colliding with the open-version index maps to a logged ConflictError"""
        await dated_warehouse.create_initial("territory", 1, NORTHEAST, 20220101)

        with capture_logs() as logs:
            async with session_factory() as session:
                session.add(DimTerritory(
                    territory_id=1,
                    territory_name="Northeast",
                    region="East Coast",
                    created_at=clock(),
                    effective_start_key=20220101,
                    effective_end_key=None,
                ))
                with pytest.raises(ConflictError):
                    await dated_warehouse.territories._flush(session, 1, 20220101)
                await session.rollback()

        warning = _warnings(logs)[0]
        assert warning["event"] == "Version write hit a uniqueness constraint"
        assert warning["business_id"] == 1
        assert warning["start_key"] == 20220101
