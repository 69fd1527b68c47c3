"""
Data Quality Module
"""
from .validators import (
    DataValidator,
    ValidationResult,
    ValidationStatus,
    create_revenue_validator,
    create_versioned_dimension_validator,
)

__all__ = [
    "DataValidator",
    "ValidationResult",
    "ValidationStatus",
    "create_revenue_validator",
    "create_versioned_dimension_validator",
]
