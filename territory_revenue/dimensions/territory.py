"""
Territory dimension: SCD Type 2 store of sales territories.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from territory_revenue.database.models import DimTerritory, EntityType
from territory_revenue.dimensions.versioning import VersionedEntityStore


class TerritoryAttributes(BaseModel):
    """Versioned payload of a territory"""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, max_length=100, description="Territory name")
    region: Optional[str] = Field(default=None, max_length=100, description="Sales region")


class TerritoryStore(VersionedEntityStore[DimTerritory, TerritoryAttributes]):
    """Territory versions keyed by territory_id"""

    entity_type = EntityType.TERRITORY
    model = DimTerritory
    attributes = TerritoryAttributes
    business_id_attr = "territory_id"
    surrogate_key_attr = "territory_key"

    async def _build_version(
        self,
        session: AsyncSession,
        business_id: int,
        attrs: TerritoryAttributes,
        start_key: int,
        predecessor: Optional[DimTerritory],
    ) -> DimTerritory:
        return DimTerritory(
            territory_id=business_id,
            territory_name=attrs.name,
            region=attrs.region,
            created_at=self._clock(),
            effective_start_key=start_key,
            effective_end_key=None,
        )
