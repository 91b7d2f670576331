"""Unit-tagged scalars.

A :class:`Unit` is a product of symbols from a closed set, each raised to
an integer power (``hr*mg/L`` is ``{hr: 1, mg: 1, L: -1}``).  A
:class:`Quantity` pairs a float with a unit.  Arithmetic checks units:
addition, subtraction and comparison need identical units, multiplication
and division combine them.  No scale conversion is ever performed, so
``hr`` and ``min`` do not mix.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from numbers import Real

from pynca._errors import UnitMismatchError


# ---------------------------------------------------------------------------
# Closed symbol set
# ---------------------------------------------------------------------------

SYMBOLS: dict[str, str] = {
    # time
    "s": "time",
    "min": "time",
    "h": "time",
    "hr": "time",
    "d": "time",
    "day": "time",
    "wk": "time",
    # amount
    "g": "amount",
    "mg": "amount",
    "ug": "amount",
    "ng": "amount",
    "pg": "amount",
    "mol": "amount",
    "mmol": "amount",
    "umol": "amount",
    "nmol": "amount",
    "pmol": "amount",
    "IU": "amount",
    # volume
    "L": "volume",
    "dL": "volume",
    "mL": "volume",
    "uL": "volume",
    # body mass
    "kg": "mass",
    # percent
    "%": "percent",
}

_FACTOR_RE = re.compile(r"^([A-Za-z%]+)(?:(?:\^|\*\*)(-?\d+))?$")


def _split_product(text: str) -> list[str]:
    text = text.strip()
    if text.startswith("(") and text.endswith(")"):
        text = text[1:-1]
    # '**' is an exponent, not a product separator
    return [f for f in re.split(r"(?<!\*)\*(?!\*)", text) if f.strip()]


def _parse_factor(factor: str) -> tuple[str, int] | None:
    factor = factor.strip()
    if factor == "1":
        return None
    m = _FACTOR_RE.match(factor)
    if m is None:
        raise UnitMismatchError(f"cannot parse unit factor {factor!r}")
    symbol, power = m.group(1), m.group(2)
    if symbol not in SYMBOLS:
        raise UnitMismatchError(
            f"unknown unit symbol {symbol!r}; expected one of {sorted(SYMBOLS)}"
        )
    return symbol, int(power) if power is not None else 1


# ---------------------------------------------------------------------------
# Unit
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Unit:
    """Product of unit symbols with integer exponents.

    ``terms`` is kept sorted by symbol with zero exponents removed, so two
    units compare equal exactly when they have the same symbols and powers.
    """

    terms: tuple[tuple[str, int], ...] = ()

    @staticmethod
    def _from_mapping(powers: dict[str, int]) -> Unit:
        items = sorted(
            ((s, p) for s, p in powers.items() if p != 0),
            key=lambda sp: (sp[0].lower(), sp[0]),
        )
        return Unit(tuple(items))

    @classmethod
    def parse(cls, text: str | Unit) -> Unit:
        """Parse ``'mg/L'``, ``'hr*mg/L'``, ``'1/hr'``, ``'mg/(L*ug)'`` etc."""
        if isinstance(text, Unit):
            return text
        if not isinstance(text, str):
            raise UnitMismatchError(f"unit must be a string, got {type(text).__name__}")
        text = text.strip()
        if text in ("", "1"):
            return cls()
        parts = text.split("/")
        powers: dict[str, int] = {}
        for i, part in enumerate(parts):
            if not part.strip():
                raise UnitMismatchError(f"cannot parse unit {text!r}")
            sign = 1 if i == 0 else -1
            for factor in _split_product(part):
                parsed = _parse_factor(factor)
                if parsed is None:
                    continue
                symbol, power = parsed
                powers[symbol] = powers.get(symbol, 0) + sign * power
        return cls._from_mapping(powers)

    @property
    def dimensionless(self) -> bool:
        return not self.terms

    def dimension(self) -> dict[str, int]:
        """Net exponent per physical dimension (time, amount, volume, ...)."""
        dims: dict[str, int] = {}
        for symbol, power in self.terms:
            kind = SYMBOLS[symbol]
            dims[kind] = dims.get(kind, 0) + power
        return {k: v for k, v in dims.items() if v != 0}

    def __mul__(self, other: Unit) -> Unit:
        if not isinstance(other, Unit):
            return NotImplemented
        powers = dict(self.terms)
        for symbol, power in other.terms:
            powers[symbol] = powers.get(symbol, 0) + power
        return Unit._from_mapping(powers)

    def __truediv__(self, other: Unit) -> Unit:
        if not isinstance(other, Unit):
            return NotImplemented
        return self * other ** -1

    def __pow__(self, n: int) -> Unit:
        return Unit._from_mapping({s: p * n for s, p in self.terms})

    def __str__(self) -> str:
        def fmt(symbol: str, power: int) -> str:
            return symbol if power == 1 else f"{symbol}^{power}"

        num = [fmt(s, p) for s, p in self.terms if p > 0]
        den = [fmt(s, -p) for s, p in self.terms if p < 0]
        if not num and not den:
            return ""
        top = "*".join(num) if num else "1"
        if not den:
            return top
        if len(den) == 1:
            return f"{top}/{den[0]}"
        return f"{top}/({'*'.join(den)})"

    def __repr__(self) -> str:
        return f"Unit({str(self)!r})"


DIMENSIONLESS = Unit()
PERCENT = Unit.parse("%")


# ---------------------------------------------------------------------------
# Quantity
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Quantity:
    """A float with a physical unit.  NaN marks an undefined value."""

    value: float
    unit: Unit = DIMENSIONLESS

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", float(self.value))
        if not isinstance(self.unit, Unit):
            object.__setattr__(self, "unit", Unit.parse(self.unit))

    @staticmethod
    def undefined(unit: Unit | str = DIMENSIONLESS) -> Quantity:
        return Quantity(math.nan, Unit.parse(unit))

    @property
    def is_defined(self) -> bool:
        return not math.isnan(self.value)

    def _check_same(self, other: Quantity, op: str) -> None:
        if self.unit != other.unit:
            raise UnitMismatchError(
                f"cannot {op} quantities in {str(self.unit)!r} and {str(other.unit)!r}"
            )

    def _coerce(self, other: object) -> Quantity:
        if isinstance(other, Quantity):
            return other
        if isinstance(other, Real) and self.unit.dimensionless:
            return Quantity(other)
        raise UnitMismatchError(
            f"cannot combine a bare number with a quantity in {str(self.unit)!r}"
        )

    # additive ---------------------------------------------------------------

    def __add__(self, other: object) -> Quantity:
        other = self._coerce(other)
        self._check_same(other, "add")
        return Quantity(self.value + other.value, self.unit)

    def __radd__(self, other: object) -> Quantity:
        # the integer 0 is the start value of sum()
        if isinstance(other, Real) and not isinstance(other, bool) and other == 0:
            return self
        return self.__add__(other)

    def __sub__(self, other: object) -> Quantity:
        other = self._coerce(other)
        self._check_same(other, "subtract")
        return Quantity(self.value - other.value, self.unit)

    def __rsub__(self, other: object) -> Quantity:
        return self._coerce(other) - self

    def __neg__(self) -> Quantity:
        return Quantity(-self.value, self.unit)

    # multiplicative ---------------------------------------------------------

    def __mul__(self, other: object) -> Quantity:
        if isinstance(other, Quantity):
            return Quantity(self.value * other.value, self.unit * other.unit)
        if isinstance(other, Real):
            return Quantity(self.value * other, self.unit)
        return NotImplemented

    __rmul__ = __mul__

    def __truediv__(self, other: object) -> Quantity:
        if isinstance(other, Quantity):
            if other.value == 0:
                return Quantity(math.nan, self.unit / other.unit)
            return Quantity(self.value / other.value, self.unit / other.unit)
        if isinstance(other, Real):
            return Quantity(self.value / other if other != 0 else math.nan, self.unit)
        return NotImplemented

    def __rtruediv__(self, other: object) -> Quantity:
        if isinstance(other, Real):
            value = other / self.value if self.value != 0 else math.nan
            return Quantity(value, DIMENSIONLESS / self.unit)
        return NotImplemented

    # comparison -------------------------------------------------------------

    def __lt__(self, other: Quantity) -> bool:
        other = self._coerce(other)
        self._check_same(other, "compare")
        return self.value < other.value

    def __le__(self, other: Quantity) -> bool:
        other = self._coerce(other)
        self._check_same(other, "compare")
        return self.value <= other.value

    def __gt__(self, other: Quantity) -> bool:
        other = self._coerce(other)
        self._check_same(other, "compare")
        return self.value > other.value

    def __ge__(self, other: Quantity) -> bool:
        other = self._coerce(other)
        self._check_same(other, "compare")
        return self.value >= other.value

    def __float__(self) -> float:
        return self.value

    def to_string(self, fmt: str = ".4g") -> str:
        unit = str(self.unit)
        return f"{self.value:{fmt}} {unit}".rstrip()

    def __str__(self) -> str:
        return self.to_string()


def as_unit(unit: Unit | str | None, what: str) -> Unit:
    """Parse a required unit argument, naming the field on failure."""
    if unit is None:
        raise UnitMismatchError(f"{what} unit must be given explicitly")
    return Unit.parse(unit)
