"""
Customer dimension: SCD Type 2 store of customers.

Each customer version is bound to one territory *version* (surrogate key),
so moving a customer to another territory is a customer revision, and a
territory revision never re-homes existing customer versions.
"""

from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from territory_revenue.database.models import DimCustomer, DimTerritory, EntityType
from territory_revenue.dimensions.versioning import VersionedEntityStore
from territory_revenue.exceptions import ForeignKeyError

logger = structlog.get_logger(__name__)


class CustomerAttributes(BaseModel):
    """Versioned payload of a customer"""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, max_length=100, description="Customer name")
    territory_key: int = Field(..., description="Surrogate key of the territory version")


class CustomerStore(VersionedEntityStore[DimCustomer, CustomerAttributes]):
    """Customer versions keyed by customer_id"""

    entity_type = EntityType.CUSTOMER
    model = DimCustomer
    attributes = CustomerAttributes
    business_id_attr = "customer_id"
    surrogate_key_attr = "customer_key"

    async def _build_version(
        self,
        session: AsyncSession,
        business_id: int,
        attrs: CustomerAttributes,
        start_key: int,
        predecessor: Optional[DimCustomer],
    ) -> DimCustomer:
        if await session.get(DimTerritory, attrs.territory_key) is None:
            logger.warning("Customer version references unknown territory version",
                           business_id=business_id, territory_key=attrs.territory_key)
            raise ForeignKeyError(
                f"Territory version {attrs.territory_key} does not exist",
                business_id=business_id,
                territory_key=attrs.territory_key,
            )

        # created_on belongs to the business entity, not to the version
        created_on_key = predecessor.created_on_key if predecessor is not None else start_key

        return DimCustomer(
            customer_id=business_id,
            customer_name=attrs.name,
            territory_key=attrs.territory_key,
            created_on_key=created_on_key,
            effective_start_key=start_key,
            effective_end_key=None,
        )
