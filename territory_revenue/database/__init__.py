"""
Database Module
"""
from .connection import (
    build_engine,
    build_session_factory,
    close_database,
    create_schema,
    get_db,
    get_session_factory,
    init_database,
)
from .models import Base, DimCustomer, DimDate, DimTerritory, EntityType, FactRevenue

__all__ = [
    "build_engine",
    "build_session_factory",
    "close_database",
    "create_schema",
    "get_db",
    "get_session_factory",
    "init_database",
    "Base",
    "DimCustomer",
    "DimDate",
    "DimTerritory",
    "EntityType",
    "FactRevenue",
]
