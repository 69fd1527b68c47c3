"""
Attribution Module
"""
from .engine import DIMENSION_COLUMNS, AttributionEngine, parse_entity_type, to_frame

__all__ = ["DIMENSION_COLUMNS", "AttributionEngine", "parse_entity_type", "to_frame"]
