"""
API Routes Module
"""
from .attribution import router as attribution_router
from .health import router as health_router

__all__ = [
    "attribution_router",
    "health_router",
]
