"""Validated concentration-time series and dose records.

Construction validates and cleans the data and does no numerical work.
Observations below the lower limit of quantification (BLQ) are flagged and,
by default, dropped from the arrays the computations see.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray

from pynca._errors import UnitMismatchError, ValidationError
from pynca.nca._common import Route
from pynca.units import Quantity, Unit
from pynca.units._quantity import as_unit

logger = logging.getLogger(__name__)

BLQ_RULES = ("drop", "zero")


@dataclass(frozen=True)
class Observation:
    """One sampled concentration."""

    time: float
    concentration: float
    is_blq: bool


def _readonly(a: NDArray[np.float64]) -> NDArray[np.float64]:
    a.setflags(write=False)
    return a


class TimeSeries:
    """Concentration-time observations for one subject/occasion.

    Parameters
    ----------
    time, concentration : array-like
        Sampling times (finite, strictly increasing) and concentrations
        (non-negative; NaN marks a missing sample and is dropped).
    time_unit, conc_unit : Unit or str
        Required.  Every value in the series carries these units.
    amount_unit : Unit or str, optional
        Unit expected for dose amounts attached to this series.
    llq : float
        Lower limit of quantification.  ``concentration < llq`` is BLQ.
    blq : str
        ``'drop'`` (default) removes BLQ samples, ``'zero'`` keeps them as 0.

    Raises
    ------
    ValidationError
        Non-monotonic or non-finite times, negative concentrations, length
        mismatch, or no quantifiable observation.
    UnitMismatchError
        A unit is missing or not a time/concentration unit.
    """

    def __init__(
        self,
        time: ArrayLike,
        concentration: ArrayLike,
        *,
        time_unit: Unit | str,
        conc_unit: Unit | str,
        amount_unit: Unit | str | None = None,
        llq: float = 0.0,
        blq: str = "drop",
    ) -> None:
        self.time_unit = as_unit(time_unit, "time")
        self.conc_unit = as_unit(conc_unit, "concentration")
        if self.time_unit.dimension() != {"time": 1}:
            raise UnitMismatchError(f"{str(self.time_unit)!r} is not a time unit")
        if self.conc_unit.dimension() not in ({"amount": 1, "volume": -1}, {"mass": 1, "volume": -1}):
            raise UnitMismatchError(f"{str(self.conc_unit)!r} is not a concentration unit")
        self.amount_unit = None if amount_unit is None else Unit.parse(amount_unit)
        if self.amount_unit is not None and self.amount_unit.dimension() != {"amount": 1}:
            raise UnitMismatchError(f"{str(self.amount_unit)!r} is not an amount unit")

        if blq not in BLQ_RULES:
            raise ValidationError(f"blq must be one of {BLQ_RULES}, got {blq!r}")
        llq = float(llq)
        if not math.isfinite(llq) or llq < 0:
            raise ValidationError(f"llq must be finite and non-negative, got {llq!r}")
        self.llq = llq
        self.blq = blq

        t = np.asarray(time, dtype=np.float64).ravel().copy()
        c = np.asarray(concentration, dtype=np.float64).ravel().copy()
        if t.shape[0] != c.shape[0]:
            raise ValidationError(
                f"time and concentration must have equal length, "
                f"got {t.shape[0]} and {c.shape[0]}"
            )
        if t.shape[0] == 0:
            raise ValidationError("a time series needs at least one observation")
        if not np.all(np.isfinite(t)):
            raise ValidationError("time values must be finite")
        steps = np.diff(t)
        if np.any(steps <= 0):
            bad = int(np.argmax(steps <= 0))
            raise ValidationError(
                f"time must be strictly increasing; "
                f"t[{bad}]={t[bad]:g} is followed by t[{bad + 1}]={t[bad + 1]:g}"
            )
        missing = np.isnan(c)
        if np.any(c[~missing] < 0):
            raise ValidationError("concentration values must be non-negative")
        if np.any(np.isinf(c)):
            raise ValidationError("concentration values must be finite")

        is_blq = np.zeros(c.shape[0], dtype=bool)
        is_blq[~missing] = c[~missing] < llq

        self._raw_time = _readonly(t)
        self._raw_conc = _readonly(c)
        self._missing = _readonly(missing)
        self._is_blq = _readonly(is_blq)

        if blq == "drop":
            keep = ~missing & ~is_blq
            conc = c[keep]
        else:
            keep = ~missing
            conc = np.where(is_blq, 0.0, c)[keep]
        if not np.any(~missing & ~is_blq):
            raise ValidationError(
                f"no quantifiable observation (all {c.shape[0]} samples missing or below llq={llq:g})"
            )
        if np.any(missing):
            logger.debug("dropped %d missing concentration(s)", int(missing.sum()))
        if blq == "drop" and np.any(is_blq):
            logger.debug("dropped %d BLQ observation(s) below llq=%g", int(is_blq.sum()), llq)

        self.time: NDArray[np.float64] = _readonly(t[keep].copy())
        self.conc: NDArray[np.float64] = _readonly(np.asarray(conc, dtype=np.float64).copy())

    # -- views ----------------------------------------------------------------

    @property
    def observations(self) -> list[Observation]:
        """All non-missing samples in time order, BLQ ones flagged."""
        return [
            Observation(float(t), float(c), bool(b))
            for t, c, b, m in zip(self._raw_time, self._raw_conc, self._is_blq, self._missing)
            if not m
        ]

    @property
    def n_blq(self) -> int:
        return int(self._is_blq.sum())

    def __len__(self) -> int:
        return int(self.time.shape[0])

    @property
    def tfirst(self) -> float:
        return float(self.time[0])

    @property
    def dose_origin(self) -> float | None:
        """0.0 when the first sample is at time zero, the dose origin."""
        return 0.0 if self._raw_time[0] == 0 else None

    @property
    def last_index(self) -> int:
        """Index of the last positive quantifiable concentration, or -1."""
        positive = np.flatnonzero(self.conc > 0)
        return int(positive[-1]) if positive.shape[0] else -1

    @property
    def auc_unit(self) -> Unit:
        return self.conc_unit * self.time_unit

    @property
    def aumc_unit(self) -> Unit:
        return self.conc_unit * self.time_unit ** 2

    def with_llq(self, llq: float) -> TimeSeries:
        """Re-quantify the raw samples with another lower limit."""
        if llq == self.llq:
            return self
        return TimeSeries(
            self._raw_time, self._raw_conc,
            time_unit=self.time_unit, conc_unit=self.conc_unit,
            amount_unit=self.amount_unit, llq=llq, blq=self.blq,
        )

    def check_time(self, value: float | Quantity) -> float:
        """Return a time as a float in this series' unit."""
        if isinstance(value, Quantity):
            if value.unit != self.time_unit:
                raise UnitMismatchError(
                    f"time in {str(value.unit)!r} used with a series in {str(self.time_unit)!r}"
                )
            return value.value
        return float(value)

    def __repr__(self) -> str:
        return (
            f"TimeSeries(n={len(self)}, t=[{self.tfirst:g}, {float(self.time[-1]):g}] "
            f"{self.time_unit}, conc {self.conc_unit}, llq={self.llq:g}, blq={self.n_blq})"
        )


@dataclass(frozen=True)
class DoseRecord:
    """One administered dose.

    ``amount`` must be a Quantity in an amount unit (``mg``, ``nmol``...).
    """

    amount: Quantity
    time: float = 0.0
    route: Route = Route.EV
    occasion: object = None

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Quantity):
            raise UnitMismatchError(
                f"dose amount must carry a unit (Quantity), got {self.amount!r}"
            )
        if self.amount.unit.dimension() != {"amount": 1}:
            raise UnitMismatchError(f"{str(self.amount.unit)!r} is not an amount unit")
        if not math.isfinite(self.amount.value) or self.amount.value < 0:
            raise ValidationError(f"dose amount must be finite and non-negative, got {self.amount}")
        t = float(self.time)
        if not math.isfinite(t):
            raise ValidationError(f"dose time must be finite, got {self.time!r}")
        object.__setattr__(self, "time", t)
        object.__setattr__(self, "route", Route.parse(self.route))
