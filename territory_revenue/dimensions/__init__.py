"""
Dimensions Module

Date registry plus the SCD Type 2 territory and customer stores.
"""
from .calendar import DateRegistry, date_for_key, date_key_for, iter_calendar
from .customer import CustomerAttributes, CustomerStore
from .territory import TerritoryAttributes, TerritoryStore
from .versioning import KeyedLocks, VersionedEntityStore

__all__ = [
    "DateRegistry",
    "date_for_key",
    "date_key_for",
    "iter_calendar",
    "CustomerAttributes",
    "CustomerStore",
    "TerritoryAttributes",
    "TerritoryStore",
    "KeyedLocks",
    "VersionedEntityStore",
]
