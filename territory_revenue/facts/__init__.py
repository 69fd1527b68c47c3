"""
Facts Module
"""
from .revenue import RevenueFactInput, RevenueFactStore, to_amount

__all__ = ["RevenueFactInput", "RevenueFactStore", "to_amount"]
