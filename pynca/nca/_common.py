"""Shared configuration and result types for noncompartmental analysis."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field, replace
from numbers import Real

from pynca._errors import InvalidRateError, UnitMismatchError, ValidationError
from pynca.units import DIMENSIONLESS, PERCENT, Quantity, Unit

METHODS = ("linear", "linuplogdown", "linlog")
AUCTYPES = ("inf", "last")
DEFAULT_THRESHOLD = 10


class Route(str, enum.Enum):
    """Administration route of a dose."""

    IV = "iv"
    EV = "ev"

    @classmethod
    def parse(cls, value: str | Route) -> Route:
        if isinstance(value, Route):
            return value
        key = str(value).strip().lower()
        aliases = {
            "iv": cls.IV,
            "intravenous": cls.IV,
            "ev": cls.EV,
            "extravascular": cls.EV,
            "oral": cls.EV,
            "po": cls.EV,
        }
        if key not in aliases:
            raise ValidationError(
                f"route must be one of {sorted(aliases)}, got {value!r}"
            )
        return aliases[key]


# ---------------------------------------------------------------------------
# Per-call configuration
# ---------------------------------------------------------------------------

def _bound(value: object, units: set[Unit], what: str = "interval bounds") -> float:
    if isinstance(value, Quantity):
        units.add(value.unit)
        return value.value
    if isinstance(value, Real):
        return float(value)
    raise ValidationError(f"{what} must be numbers, got {value!r}")


def _is_bound(value: object) -> bool:
    return isinstance(value, (Real, Quantity))


def _normalize_intervals(
    interval: object,
) -> tuple[tuple[tuple[float, float], ...] | None, bool, Unit | None]:
    """Return (pairs, given_as_list, unit_of_quantity_bounds)."""
    if interval is None:
        return None, False, None
    try:
        items = list(interval)  # type: ignore[call-overload]
    except TypeError:
        raise ValidationError(f"interval must be a pair or a list of pairs, got {interval!r}")

    if len(items) == 2 and all(_is_bound(v) for v in items):
        raw_pairs, multi = [items], False
    else:
        raw_pairs, multi = items, True
        if not raw_pairs:
            raise ValidationError("interval list is empty")

    units: set[Unit] = set()
    pairs = []
    for pair in raw_pairs:
        try:
            lo, hi = pair
        except (TypeError, ValueError):
            raise ValidationError(f"each interval must be a (start, end) pair, got {pair!r}")
        lo_f, hi_f = _bound(lo, units), _bound(hi, units)
        if math.isnan(lo_f) or math.isnan(hi_f):
            raise ValidationError(f"interval bounds must not be NaN, got {pair!r}")
        if not lo_f < hi_f:
            raise ValidationError(f"interval start must be before its end, got {pair!r}")
        if math.isinf(lo_f):
            raise ValidationError(f"interval start must be finite, got {pair!r}")
        pairs.append((lo_f, hi_f))

    if len(units) > 1:
        raise UnitMismatchError(
            f"interval bounds use different units: {sorted(str(u) for u in units)}"
        )
    return tuple(pairs), multi, units.pop() if units else None


@dataclass(frozen=True)
class NCAConfig:
    """Immutable parameterization of one NCA computation.

    Instances are hashable and serve as cache keys in :class:`NCASubject`,
    so two calls with equal configurations share one result.

    Parameters
    ----------
    method : str
        ``'linear'``, ``'linuplogdown'`` or ``'linlog'``.
    interval : pair, list of pairs, or None
        Integration window(s).  ``None`` means ``[t_first, inf)``.  Bounds
        may be plain numbers (in the series time unit) or time Quantities.
    auctype : str
        ``'inf'`` extrapolates an infinite upper bound past Tlast,
        ``'last'`` stops at Tlast.
    threshold : int or None
        Maximum number of trailing positive points considered for lambda-z
        (``None`` means 10).
    idxs, slopetimes : sequence or None
        Pin the lambda-z points by index or by observation time.  At most one
        of ``threshold``, ``idxs`` and ``slopetimes`` may be given.  Like
        interval bounds, slopetimes may be time Quantities; their unit is
        kept in ``slopetimes_unit``.
    llq : float or None
        Re-quantify the series with this lower limit before computing.
    """

    method: str = "linear"
    interval: object = None
    auctype: str = "inf"
    threshold: int | None = None
    idxs: tuple[int, ...] | None = None
    slopetimes: tuple[float, ...] | None = None
    llq: float | None = None
    multi: bool = field(default=False, init=False)
    interval_unit: Unit | None = field(default=None, init=False)
    slopetimes_unit: Unit | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        if self.method not in METHODS:
            raise ValidationError(f"method must be one of {METHODS}, got {self.method!r}")
        if self.auctype not in AUCTYPES:
            raise ValidationError(f"auctype must be one of {AUCTYPES}, got {self.auctype!r}")

        pinned = [
            name for name, v in
            (("threshold", self.threshold), ("idxs", self.idxs), ("slopetimes", self.slopetimes))
            if v is not None
        ]
        if len(pinned) > 1:
            raise ValidationError(
                f"threshold, idxs and slopetimes are mutually exclusive, got {pinned}"
            )
        if self.threshold is not None:
            if isinstance(self.threshold, bool) or not isinstance(self.threshold, Real) \
                    or int(self.threshold) != self.threshold or self.threshold < 2:
                raise ValidationError(f"threshold must be an integer >= 2, got {self.threshold!r}")
            object.__setattr__(self, "threshold", int(self.threshold))
        if self.idxs is not None:
            object.__setattr__(self, "idxs", tuple(int(i) for i in self.idxs))
        if self.slopetimes is not None:
            units: set[Unit] = set()
            times = tuple(_bound(t, units, "slopetimes") for t in self.slopetimes)
            if len(units) > 1:
                raise UnitMismatchError(
                    f"slopetimes use different units: {sorted(str(u) for u in units)}"
                )
            object.__setattr__(self, "slopetimes", times)
            object.__setattr__(self, "slopetimes_unit", units.pop() if units else None)
        if self.llq is not None:
            llq = float(self.llq)
            if not math.isfinite(llq) or llq < 0:
                raise ValidationError(f"llq must be finite and non-negative, got {self.llq!r}")
            object.__setattr__(self, "llq", llq)

        pairs, multi, unit = _normalize_intervals(self.interval)
        object.__setattr__(self, "interval", pairs)
        object.__setattr__(self, "multi", multi)
        object.__setattr__(self, "interval_unit", unit)

    @property
    def lambdaz_threshold(self) -> int:
        return DEFAULT_THRESHOLD if self.threshold is None else self.threshold

    def lambdaz_key(self) -> NCAConfig:
        """Configuration reduced to the fields that affect lambda-z."""
        return NCAConfig(
            threshold=self.threshold, idxs=self.idxs,
            slopetimes=self._given_slopetimes(), llq=self.llq,
        )

    def _given_slopetimes(self) -> tuple | None:
        if self.slopetimes is None or self.slopetimes_unit is None:
            return self.slopetimes
        return tuple(Quantity(t, self.slopetimes_unit) for t in self.slopetimes)

    def with_(self, **changes) -> NCAConfig:
        """Copy with some fields replaced (``interval`` and ``slopetimes`` are re-normalised)."""
        if "slopetimes" not in changes:
            changes["slopetimes"] = self._given_slopetimes()
        if "interval" not in changes and self.interval is not None:
            pairs = list(self.interval)
            if self.interval_unit is not None:
                u = self.interval_unit
                pairs = [(Quantity(lo, u), Quantity(hi, u)) for lo, hi in pairs]
            changes["interval"] = pairs if self.multi else pairs[0]
        return replace(self, **changes)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Exposure:
    """AUC or AUMC over one interval.

    ``value = observed + extrapolated``.  ``extrapolated`` is exactly zero
    when the interval ends at or before the last observation, and NaN when a tail was needed
    but no valid lambda-z was available.
    """

    kind: str  # 'auc' or 'aumc'
    interval: tuple[float, float]
    method: str
    observed: Quantity
    extrapolated: Quantity
    extrapolates: bool  # interval needs the terminal tail

    @property
    def value(self) -> Quantity:
        return self.observed + self.extrapolated

    @property
    def extrap_percent(self) -> Quantity:
        if not self.extrapolates:
            return Quantity(0.0, PERCENT)
        total = self.value
        if not total.is_defined or total.value == 0:
            return Quantity.undefined(PERCENT)
        return Quantity(100.0 * self.extrapolated.value / total.value, PERCENT)


@dataclass(frozen=True)
class LambdaZResult:
    """Terminal-phase log-linear regression.

    ``rate`` is the negated slope of ln(C) against time.  A rate that is not
    strictly positive is still reported but ``is_valid`` is false, and
    half-life and extrapolation built on it are undefined.

    Attributes
    ----------
    rate : float
        Terminal rate constant (1/time).
    r2, adjr2 : float
        Coefficient of determination and its adjusted form (NaN for a
        two-point fit).
    intercept : float
        Intercept of ln(C) at time zero.
    first_time, last_time : float
        Time span of the points used.
    n_points : int
        Number of points in the regression.
    indices : tuple of int
        Positions of those points in the analysed series.
    time_unit, conc_unit : Unit
    """

    rate: float
    r2: float
    adjr2: float
    intercept: float
    first_time: float
    last_time: float
    n_points: int
    indices: tuple[int, ...]
    time_unit: Unit
    conc_unit: Unit

    @property
    def is_valid(self) -> bool:
        return math.isfinite(self.rate) and self.rate > 0

    def require_valid(self) -> LambdaZResult:
        if not self.is_valid:
            raise InvalidRateError(
                f"terminal slope gives a non-positive rate ({self.rate:.6g}); "
                f"elimination is not described by points at {self.indices}"
            )
        return self

    def rate_quantity(self) -> Quantity:
        return Quantity(self.rate, DIMENSIONLESS / self.time_unit)

    @property
    def thalf(self) -> Quantity:
        if not self.is_valid:
            return Quantity.undefined(self.time_unit)
        return Quantity(math.log(2) / self.rate, self.time_unit)

    def predict(self, t: float) -> float:
        """Concentration on the fitted line at time ``t``."""
        return math.exp(self.intercept - self.rate * t)

    def summary(self) -> str:
        """Human-readable summary."""
        tu = str(self.time_unit)
        lines = [
            "Terminal phase (lambda-z)",
            "",
            f"  lambda_z      = {self.rate:.4g} 1/{tu}",
            f"  t1/2          = {self.thalf.value:.4g} {tu}",
            f"  r-squared     = {self.r2:.4f}",
            f"  adj r-squared = {self.adjr2:.4f}",
            f"  points        = {self.n_points} ({self.first_time:g} to {self.last_time:g} {tu})",
        ]
        if not self.is_valid:
            lines.append("")
            lines.append("NOTE: non-positive rate; half-life and extrapolation undefined")
        return "\n".join(lines)
