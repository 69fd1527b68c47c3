"""
Ingestion Module
"""
from .batch_loader import FileFormat, RevenueBatchLoader, RevenueFileConfig
from .seed_db import seed_sample_data

__all__ = [
    "FileFormat",
    "RevenueBatchLoader",
    "RevenueFileConfig",
    "seed_sample_data",
]
