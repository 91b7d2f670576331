"""
pynca: unit-aware noncompartmental analysis of drug-concentration data.

Area-under-curve integration, terminal-phase estimation and derived
exposure metrics for single subjects and whole populations, with every
value tagged by its physical unit.

Usage:
    from pynca import nca, units
"""

__version__ = "0.1.0"

from pynca import units
from pynca import nca

__all__ = [
    "__version__",
    "units",
    "nca",
]
