"""
Unit-tagged scalars used throughout the NCA layer.

Small closed set of time, amount, volume and mass symbols; no conversion
between them.
"""

from pynca.units._quantity import (
    DIMENSIONLESS,
    PERCENT,
    SYMBOLS,
    Quantity,
    Unit,
)

__all__ = [
    "DIMENSIONLESS",
    "PERCENT",
    "SYMBOLS",
    "Quantity",
    "Unit",
]
