"""Error taxonomy shared by all pynca subpackages.

Every error is a ``ValueError`` so that callers who only care about bad
input can catch the builtin.
"""

from __future__ import annotations


class NCAError(ValueError):
    """Base class for all pynca errors."""


class ValidationError(NCAError):
    """Input rejected at construction (ordering, missing columns, bad values)."""


class UnitMismatchError(ValidationError):
    """Quantities with incompatible units were combined."""


class InsufficientDataError(NCAError):
    """Too few usable points for the requested computation."""


class InvalidRateError(NCAError):
    """Fitted terminal slope does not describe elimination (rate <= 0)."""


class OutOfRangeError(NCAError):
    """Requested time lies where neither interpolation nor extrapolation applies."""
