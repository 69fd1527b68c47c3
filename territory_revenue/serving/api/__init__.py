"""
Reporting API
"""
from .main import create_api_app

__all__ = ["create_api_app"]
