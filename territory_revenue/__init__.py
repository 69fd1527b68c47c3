"""
Territory Revenue Attribution

Star-schema revenue model with SCD Type 2 customer and territory dimensions.
"""

__version__ = "1.0.0"
