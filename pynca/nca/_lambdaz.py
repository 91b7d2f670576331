"""Terminal elimination rate constant (lambda-z).

Fits ln(C) against time over the terminal phase by least squares.  With
no pinned points, trailing windows of three or more positive
concentrations ending at the last one are tried and the window with the
best adjusted R-squared wins; windows within ``ADJR2_TOLERANCE`` of the
best count as ties and the one with more points is kept.

References
----------
Gabrielsson & Weiner (2000). *Pharmacokinetic and Pharmacodynamic
Data Analysis*, 3rd ed.

Validates against: R ``PKNCA::pk.calc.half.life()``.
"""

from __future__ import annotations

import logging
import math

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pynca._errors import InsufficientDataError, ValidationError
from pynca.nca._common import DEFAULT_THRESHOLD, LambdaZResult
from pynca.nca._series import TimeSeries
from pynca.units import Quantity

logger = logging.getLogger(__name__)

ADJR2_TOLERANCE = 1e-4


# ---------------------------------------------------------------------------
# Regression
# ---------------------------------------------------------------------------

def _fit(series: TimeSeries, idx: NDArray[np.intp]) -> LambdaZResult:
    """Regress ln(C) on time over the points ``idx``."""
    t_fit = series.time[idx]
    log_c_fit = np.log(series.conc[idx])
    slope, intercept, r_value, _, _ = stats.linregress(t_fit, log_c_fit)
    n_fit = int(idx.shape[0])
    r_sq = float(r_value) ** 2
    if n_fit > 2:
        r_sq_adj = 1.0 - (1.0 - r_sq) * (n_fit - 1) / (n_fit - 2)
    else:
        r_sq_adj = math.nan
    return LambdaZResult(
        rate=-float(slope),
        r2=r_sq,
        adjr2=r_sq_adj,
        intercept=float(intercept),
        first_time=float(t_fit[0]),
        last_time=float(t_fit[-1]),
        n_points=n_fit,
        indices=tuple(int(i) for i in idx),
        time_unit=series.time_unit,
        conc_unit=series.conc_unit,
    )


def _check_pinned(series: TimeSeries, idx: NDArray[np.intp]) -> NDArray[np.intp]:
    idx = np.unique(idx)
    if idx.shape[0] < 2:
        raise InsufficientDataError(
            f"lambda-z needs at least 2 points, {idx.shape[0]} pinned"
        )
    nonpositive = idx[series.conc[idx] <= 0]
    if nonpositive.shape[0]:
        raise ValidationError(
            f"pinned lambda-z points must have positive concentration; "
            f"index {int(nonpositive[0])} has {series.conc[nonpositive[0]]:g}"
        )
    return idx


def _pinned_by_index(series: TimeSeries, idxs) -> NDArray[np.intp]:
    idx = np.asarray(list(idxs), dtype=np.intp)
    n = len(series)
    out = idx[(idx < 0) | (idx >= n)]
    if out.shape[0]:
        raise ValidationError(f"lambda-z index {int(out[0])} outside 0..{n - 1}")
    return _check_pinned(series, idx)


def _pinned_by_time(series: TimeSeries, slopetimes) -> NDArray[np.intp]:
    positions = []
    for t in slopetimes:
        t = series.check_time(t)
        hit = np.flatnonzero(series.time == t)
        if hit.shape[0] == 0:
            raise ValidationError(f"slope time {t:g} is not an observation time")
        positions.append(int(hit[0]))
    return _check_pinned(series, np.asarray(positions, dtype=np.intp))


def _best_window(series: TimeSeries, candidates: NDArray[np.intp]) -> LambdaZResult:
    fits = [_fit(series, candidates[-n_try:]) for n_try in range(3, candidates.shape[0] + 1)]
    scores = np.array([f.adjr2 for f in fits])
    finite = np.isfinite(scores)
    if not np.any(finite):
        return fits[-1]
    best = float(np.max(scores[finite]))
    # fits are ordered by window size, so the last tie is the largest window
    chosen = [f for f, s in zip(fits, scores) if np.isfinite(s) and s >= best - ADJR2_TOLERANCE]
    return chosen[-1]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def lambdaz(
    series: TimeSeries,
    threshold: int | None = None,
    idxs=None,
    slopetimes=None,
) -> LambdaZResult:
    """Estimate the terminal rate constant of a series.

    Parameters
    ----------
    series : TimeSeries
    threshold : int or None
        Consider only the last ``threshold`` positive concentrations
        (default 10, or fewer if the series is shorter).
    idxs : sequence of int, optional
        Use exactly these positions of the analysed series.
    slopetimes : sequence of float or Quantity, optional
        Use exactly the observations at these times.

    Returns
    -------
    LambdaZResult
        ``is_valid`` is false when the fitted rate is not positive.

    Raises
    ------
    InsufficientDataError
        Fewer than two positive points to regress on.
    ValidationError
        More than one window control given, or pinned points that do not
        exist or are not positive.
    """
    given = [name for name, v in
             (("threshold", threshold), ("idxs", idxs), ("slopetimes", slopetimes))
             if v is not None]
    if len(given) > 1:
        raise ValidationError(f"threshold, idxs and slopetimes are mutually exclusive, got {given}")

    if idxs is not None:
        result = _fit(series, _pinned_by_index(series, idxs))
    elif slopetimes is not None:
        result = _fit(series, _pinned_by_time(series, slopetimes))
    else:
        n_max = DEFAULT_THRESHOLD if threshold is None else int(threshold)
        if n_max < 2:
            raise ValidationError(f"threshold must be >= 2, got {threshold!r}")
        positive = np.flatnonzero(series.conc > 0)
        candidates = positive[-n_max:]
        if candidates.shape[0] < 2:
            raise InsufficientDataError(
                f"lambda-z needs at least 2 positive concentrations in the tail, "
                f"found {candidates.shape[0]}"
            )
        if candidates.shape[0] == 2:
            result = _fit(series, candidates)
        else:
            result = _best_window(series, candidates)

    logger.debug(
        "lambda-z over %d point(s) [%g, %g]: rate=%.6g adjr2=%.6g",
        result.n_points, result.first_time, result.last_time, result.rate, result.adjr2,
    )
    return result


def thalf(fit: LambdaZResult) -> Quantity:
    """Terminal half-life ln(2)/lambda-z; NaN when the rate is not positive."""
    return fit.thalf
