"""Area under the concentration (AUC) and first-moment (AUMC) curves.

Three integration rules:

- ``linear``: linear trapezoidal throughout.
- ``linuplogdown``: linear on rising or flat segments, log-trapezoidal on
  strictly decreasing positive segments.
- ``linlog``: log-trapezoidal wherever both ends are positive and differ,
  linear otherwise.

Up to the last observation the curve follows the data, including zeros
observed after Tlast (the last positive quantifiable concentration).  Past
the last observation, and for AUC to infinity past Tlast, the curve is the
terminal decay ``Clast*exp(-lz*(t - Tlast))``, integrated analytically.
The tail needs a valid lambda-z; without one the extrapolated part is NaN,
never zero.

References
----------
Gibaldi & Perrier (1982). *Pharmacokinetics*, 2nd ed.

Validates against: R ``PKNCA::pk.calc.auc()``, ``PKNCA::interp.extrap.conc()``.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence

import numpy as np
from numpy.typing import NDArray

from pynca._errors import (
    InsufficientDataError,
    InvalidRateError,
    OutOfRangeError,
    UnitMismatchError,
    ValidationError,
)
from pynca.nca._common import AUCTYPES, METHODS, Exposure, LambdaZResult, _normalize_intervals
from pynca.nca._lambdaz import lambdaz as estimate_lambdaz
from pynca.nca._series import TimeSeries
from pynca.units import Quantity

logger = logging.getLogger(__name__)

LambdaZSource = LambdaZResult | Callable[[], LambdaZResult] | None


# ---------------------------------------------------------------------------
# Segment rules
# ---------------------------------------------------------------------------

def _use_log(c1: float, c2: float, method: str) -> bool:
    """Whether the segment (c1 -> c2) is integrated on the log scale."""
    if method == "linear":
        return False
    if c1 <= 0 or c2 <= 0 or c1 == c2:
        return False
    if method == "linuplogdown":
        return c2 < c1
    return True


def _auc_linear_segment(t1: float, t2: float, c1: float, c2: float) -> float:
    """Linear trapezoidal AUC for a single interval."""
    return 0.5 * (c1 + c2) * (t2 - t1)


def _auc_log_segment(t1: float, t2: float, c1: float, c2: float) -> float:
    """Log-trapezoidal AUC: (C1 - C2) * (t2 - t1) / ln(C1/C2)."""
    return (c1 - c2) * (t2 - t1) / math.log(c1 / c2)


def _aumc_linear_segment(t1: float, t2: float, c1: float, c2: float) -> float:
    """Linear trapezoidal AUMC: 0.5 * (t1*C1 + t2*C2) * (t2 - t1)."""
    return 0.5 * (t1 * c1 + t2 * c2) * (t2 - t1)


def _aumc_log_segment(t1: float, t2: float, c1: float, c2: float) -> float:
    """Log-trapezoidal AUMC.

    For C(t) = C1 * exp(-k*(t-t1)) with k = ln(C1/C2)/(t2-t1):
    AUMC = (t1*C1 - t2*C2)/k + (C1 - C2)/k^2
    """
    k = math.log(c1 / c2) / (t2 - t1)
    return (t1 * c1 - t2 * c2) / k + (c1 - c2) / (k * k)


_SEGMENT = {
    "auc": (_auc_linear_segment, _auc_log_segment),
    "aumc": (_aumc_linear_segment, _aumc_log_segment),
}


def _sum_segments(
    time: NDArray[np.float64],
    concentration: NDArray[np.float64],
    method: str,
    kind: str,
) -> float:
    """Sum per-segment contributions over consecutive points."""
    linear, log = _SEGMENT[kind]
    total = 0.0
    for i in range(time.shape[0] - 1):
        t1, t2 = float(time[i]), float(time[i + 1])
        c1, c2 = float(concentration[i]), float(concentration[i + 1])
        if _use_log(c1, c2, method):
            total += log(t1, t2, c1, c2)
        else:
            total += linear(t1, t2, c1, c2)
    return total


def _interpolate_segment(t1: float, t2: float, c1: float, c2: float, t: float, method: str) -> float:
    frac = (t - t1) / (t2 - t1)
    if _use_log(c1, c2, method):
        return math.exp(math.log(c1) + frac * (math.log(c2) - math.log(c1)))
    return c1 + frac * (c2 - c1)


# ---------------------------------------------------------------------------
# Observed region and terminal tail
# ---------------------------------------------------------------------------

def _observed(series: TimeSeries) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Analysed points up to and including Tlast."""
    end = series.last_index
    if end < 0:
        end = len(series) - 1
    return series.time[: end + 1], series.conc[: end + 1]


def _interp_inside(
    time: NDArray[np.float64],
    concentration: NDArray[np.float64],
    t: float,
    method: str,
) -> float:
    """Concentration at ``time[0] <= t <= time[-1]`` by the segment rule."""
    i = int(np.searchsorted(time, t, side="left"))
    if i < time.shape[0] and time[i] == t:
        return float(concentration[i])
    if time.shape[0] < 2:
        raise InsufficientDataError("interpolation needs at least 2 observations")
    return _interpolate_segment(
        float(time[i - 1]), float(time[i]),
        float(concentration[i - 1]), float(concentration[i]), t, method,
    )


def _resolve_rate(series: TimeSeries, source: LambdaZSource) -> float:
    """Valid lambda-z from ``source`` or NaN when none is available."""
    try:
        if source is None:
            fit = estimate_lambdaz(series)
        elif callable(source):
            fit = source()
        else:
            fit = source
        return fit.require_valid().rate
    except (InsufficientDataError, InvalidRateError) as exc:
        logger.debug("no terminal rate for extrapolation: %s", exc)
        return math.nan


def _tail(kind: str, tlast: float, clast: float, rate: float, start: float, end: float) -> float:
    """Integral of the terminal decay from ``start`` to ``end`` (may be inf)."""
    if math.isnan(rate):
        return math.nan
    c_start = clast * math.exp(-rate * (start - tlast))
    if math.isinf(end):
        c_end, end_moment = 0.0, 0.0
    else:
        c_end = clast * math.exp(-rate * (end - tlast))
        end_moment = end * c_end
    if kind == "auc":
        return (c_start - c_end) / rate
    return (start * c_start - end_moment) / rate + (c_start - c_end) / (rate * rate)


def requires_extrapolation(
    series: TimeSeries,
    interval: tuple[float, float] | None = None,
    auctype: str = "inf",
) -> bool:
    """Whether integrating over ``interval`` needs the terminal tail.

    A finite end needs it only past the last observation; an infinite end
    needs it unless ``auctype`` is ``'last'``.
    """
    hi = math.inf if interval is None else interval[1]
    if math.isinf(hi):
        return auctype == "inf"
    return hi > float(series.time[-1])


# ---------------------------------------------------------------------------
# Integration
# ---------------------------------------------------------------------------

def _integrate(
    series: TimeSeries,
    kind: str,
    method: str,
    lo: float,
    hi: float,
    auctype: str,
    rate_source: Callable[[], float],
) -> Exposure:
    last_t, last_c = _observed(series)
    tfirst, tlast, clast = float(series.time[0]), float(last_t[-1]), float(last_c[-1])
    if lo < tfirst:
        raise OutOfRangeError(
            f"interval starts at {lo:g}, before the first observation at {tfirst:g}"
        )

    extrapolates = requires_extrapolation(series, (lo, hi), auctype)
    if extrapolates or math.isinf(hi):
        # data stop at Tlast; later zeros give way to the tail or to AUClast
        time, conc, end = last_t, last_c, min(hi, tlast)
    else:
        time, conc, end = series.time, series.conc, hi

    observed = 0.0
    if lo < end:
        inner = (time > lo) & (time < end)
        t_pts = np.concatenate(([lo], time[inner], [end]))
        c_pts = np.concatenate((
            [_interp_inside(time, conc, lo, method)],
            conc[inner],
            [_interp_inside(time, conc, end, method)],
        ))
        observed = _sum_segments(t_pts, c_pts, method, kind)

    extrapolated = 0.0
    if extrapolates:
        extrapolated = _tail(kind, tlast, clast, rate_source(), max(lo, tlast), hi)

    unit = series.auc_unit if kind == "auc" else series.aumc_unit
    return Exposure(
        kind=kind,
        interval=(lo, hi),
        method=method,
        observed=Quantity(observed, unit),
        extrapolated=Quantity(extrapolated, unit),
        extrapolates=extrapolates,
    )


def _exposures(
    series: TimeSeries,
    kind: str,
    method: str,
    interval,
    auctype: str,
    lambdaz: LambdaZSource,
) -> Exposure | list[Exposure]:
    if method not in METHODS:
        raise ValidationError(f"method must be one of {METHODS}, got {method!r}")
    if auctype not in AUCTYPES:
        raise ValidationError(f"auctype must be one of {AUCTYPES}, got {auctype!r}")
    pairs, multi, unit = _normalize_intervals(interval)
    if unit is not None and unit != series.time_unit:
        raise UnitMismatchError(
            f"interval in {str(unit)!r} used with a series in {str(series.time_unit)!r}"
        )
    if pairs is None:
        pairs = ((series.tfirst, math.inf),)

    rate: list[float] = []

    def rate_source() -> float:
        if not rate:
            rate.append(_resolve_rate(series, lambdaz))
        return rate[0]

    results = [
        _integrate(series, kind, method, lo, hi, auctype, rate_source)
        for lo, hi in pairs
    ]
    return results if multi else results[0]


def auc(
    series: TimeSeries,
    method: str = "linear",
    interval=None,
    auctype: str = "inf",
    lambdaz: LambdaZSource = None,
) -> Exposure | list[Exposure]:
    """Area under the concentration-time curve.

    Parameters
    ----------
    series : TimeSeries
    method : str
        ``'linear'``, ``'linuplogdown'`` or ``'linlog'``.
    interval : pair, list of pairs, or None
        ``None`` integrates ``[t_first, inf)``.  A list of pairs returns one
        :class:`Exposure` per pair, in input order.
    auctype : str
        ``'inf'`` or ``'last'``; only matters for an infinite upper bound.
    lambdaz : LambdaZResult, callable, or None
        Terminal fit for the tail.  A callable is evaluated only when a tail
        is needed; ``None`` fits lambda-z with default settings.

    Returns
    -------
    Exposure or list of Exposure
    """
    return _exposures(series, "auc", method, interval, auctype, lambdaz)


def aumc(
    series: TimeSeries,
    method: str = "linear",
    interval=None,
    auctype: str = "inf",
    lambdaz: LambdaZSource = None,
) -> Exposure | list[Exposure]:
    """Area under the first-moment curve, t*C(t).  Same arguments as :func:`auc`."""
    return _exposures(series, "aumc", method, interval, auctype, lambdaz)


def auc_extrap_percent(series: TimeSeries, **kwargs) -> Quantity | list[Quantity]:
    """Extrapolated share of AUC in percent (0 when the interval ends by the last observation)."""
    res = auc(series, **kwargs)
    if isinstance(res, list):
        return [r.extrap_percent for r in res]
    return res.extrap_percent


def aumc_extrap_percent(series: TimeSeries, **kwargs) -> Quantity | list[Quantity]:
    """Extrapolated share of AUMC in percent."""
    res = aumc(series, **kwargs)
    if isinstance(res, list):
        return [r.extrap_percent for r in res]
    return res.extrap_percent


# ---------------------------------------------------------------------------
# Interpolation / extrapolation of concentrations
# ---------------------------------------------------------------------------

def interpextrapconc(
    series: TimeSeries,
    t: float | Quantity | Sequence[float | Quantity],
    method: str = "linear",
    lambdaz: LambdaZSource = None,
) -> Quantity | list[Quantity]:
    """Concentration at arbitrary time(s).

    Up to the last observation the segment rule of ``method`` is used, so
    a zero observed after Tlast is interpolated towards.  Past the last
    observation the terminal decay from Clast applies (NaN without a valid
    lambda-z).

    Raises
    ------
    OutOfRangeError
        ``t`` before the first observation.
    InsufficientDataError
        Fewer than two observations and ``t`` is not an observation time.
    """
    if method not in METHODS:
        raise ValidationError(f"method must be one of {METHODS}, got {method!r}")
    scalar = isinstance(t, (Quantity, int, float, np.floating, np.integer))
    times = [t] if scalar else list(t)  # type: ignore[arg-type]
    last_t, last_c = _observed(series)
    tlast, clast = float(last_t[-1]), float(last_c[-1])
    time, conc = series.time, series.conc
    tfirst, tend = float(time[0]), float(time[-1])

    rate: list[float] = []
    out = []
    for value in times:
        tv = series.check_time(value)
        if math.isnan(tv) or tv < tfirst:
            raise OutOfRangeError(
                f"time {tv:g} is before the first observation at {tfirst:g}; "
                f"no absorption model to extrapolate backwards"
            )
        if tv <= tend:
            c = _interp_inside(time, conc, tv, method)
        else:
            if not rate:
                rate.append(_resolve_rate(series, lambdaz))
            c = clast * math.exp(-rate[0] * (tv - tlast)) if not math.isnan(rate[0]) else math.nan
        out.append(Quantity(c, series.conc_unit))
    return out[0] if scalar else out
