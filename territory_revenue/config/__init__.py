"""
Territory Revenue Attribution
Configuration Module
"""
from .settings import AttributionPolicy, Settings, get_settings

__all__ = ["AttributionPolicy", "Settings", "get_settings"]
