"""One subject/occasion with lazily computed, memoized NCA metrics."""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable, Sequence

import numpy as np

from pynca._errors import InsufficientDataError, UnitMismatchError, ValidationError
from pynca.nca import _auc
from pynca.nca._common import Exposure, LambdaZResult, NCAConfig, Route
from pynca.nca._lambdaz import lambdaz as estimate_lambdaz
from pynca.nca._series import DoseRecord, TimeSeries
from pynca.units import Quantity

logger = logging.getLogger(__name__)


def _each(value, fn: Callable):
    """Apply ``fn`` to a single result or to each result of a list."""
    if isinstance(value, list):
        return [fn(v) for v in value]
    return fn(value)


def _each2(a, b, fn: Callable):
    if isinstance(a, list):
        return [fn(x, y) for x, y in zip(a, b)]
    return fn(a, b)


class NCASubject:
    """Concentration-time data and doses for one ``(id, occasion)``.

    Construction only validates; every metric is computed on first request
    and cached under the full :class:`NCAConfig` of that request, so a call
    with other settings computes and caches separately.  Accessors accept
    the ``NCAConfig`` fields as keyword arguments, or ``config=``.

    Parameters
    ----------
    id : hashable
        Subject identifier.
    series : TimeSeries
    doses : sequence of DoseRecord
        Zero or more doses given in this occasion.
    occasion : hashable, optional
    """

    def __init__(
        self,
        id,
        series: TimeSeries,
        doses: Sequence[DoseRecord] | DoseRecord = (),
        occasion=None,
    ) -> None:
        if not isinstance(series, TimeSeries):
            raise ValidationError(f"series must be a TimeSeries, got {type(series).__name__}")
        if isinstance(doses, DoseRecord):
            doses = (doses,)
        doses = tuple(sorted(doses, key=lambda d: d.time))
        for d in doses:
            if not isinstance(d, DoseRecord):
                raise ValidationError(f"doses must be DoseRecord, got {type(d).__name__}")
            if d.occasion is not None and occasion is not None and d.occasion != occasion:
                raise ValidationError(
                    f"dose for occasion {d.occasion!r} attached to occasion {occasion!r}"
                )
            if series.amount_unit is not None and d.amount.unit != series.amount_unit:
                raise UnitMismatchError(
                    f"dose in {str(d.amount.unit)!r}, series expects {str(series.amount_unit)!r}"
                )
        if len({d.amount.unit for d in doses}) > 1:
            raise UnitMismatchError("doses of one subject must share an amount unit")

        self.id = id
        self.occasion = occasion
        self.series = series
        self.doses = doses
        self._cache: dict[tuple[str, NCAConfig], object] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    # -- identity -------------------------------------------------------------

    @property
    def key(self) -> tuple:
        return (self.id, self.occasion)

    @property
    def dose(self) -> DoseRecord | None:
        """The first dose of the occasion, used for dose normalization."""
        return self.doses[0] if self.doses else None

    @property
    def route(self) -> Route | None:
        return self.dose.route if self.dose is not None else None

    def __repr__(self) -> str:
        return f"NCASubject(id={self.id!r}, occasion={self.occasion!r}, {self.series!r})"

    # -- cache ----------------------------------------------------------------

    def _cached(self, metric: str, config: NCAConfig, compute: Callable[[NCAConfig], object]):
        key = (metric, config)
        with self._lock:
            if key in self._cache:
                self._hits += 1
                return self._cache[key]
            self._misses += 1
            logger.debug("subject %r/%r: computing %s", self.id, self.occasion, metric)
            value = compute(config)
            self._cache[key] = value
            return value

    def cache_info(self) -> dict[str, int]:
        with self._lock:
            return {"hits": self._hits, "misses": self._misses, "size": len(self._cache)}

    @staticmethod
    def _config(config: NCAConfig | None, kwargs: dict) -> NCAConfig:
        if config is not None:
            if kwargs:
                return config.with_(**kwargs)
            return config
        return NCAConfig(**kwargs)

    def _series(self, config: NCAConfig) -> TimeSeries:
        if config.llq is None:
            return self.series
        return self.series.with_llq(config.llq)

    def _require_dose(self, metric: str) -> DoseRecord:
        if self.dose is None:
            raise InsufficientDataError(f"{metric} needs a dose; subject {self.id!r} has none")
        return self.dose

    def _require_iv(self, metric: str) -> DoseRecord:
        dose = self._require_dose(metric)
        if dose.route is not Route.IV:
            raise ValidationError(f"{metric} is defined for intravenous doses only")
        return dose

    # -- peak / last ----------------------------------------------------------

    def _windows(self, config: NCAConfig) -> list[tuple[float, float]]:
        if config.interval is None:
            return [(-math.inf, math.inf)]
        if config.interval_unit is not None and config.interval_unit != self.series.time_unit:
            raise UnitMismatchError(
                f"interval in {str(config.interval_unit)!r} used with a series in "
                f"{str(self.series.time_unit)!r}"
            )
        return list(config.interval)

    def _extreme(self, config: NCAConfig, pick: Callable) -> list[tuple[float, float]]:
        series = self._series(config)
        out = []
        for lo, hi in self._windows(config):
            inside = np.flatnonzero((series.time >= lo) & (series.time <= hi))
            if inside.shape[0] == 0:
                raise InsufficientDataError(f"no observation inside interval [{lo:g}, {hi:g}]")
            i = inside[int(pick(series.conc[inside]))]
            out.append((float(series.conc[i]), float(series.time[i])))
        return out

    def _shape(self, config: NCAConfig, values: list):
        return values if config.multi else values[0]

    def cmax(self, config: NCAConfig | None = None, **kwargs) -> Quantity | list[Quantity]:
        """Maximum observed concentration, within each interval when given."""
        cfg = self._config(config, kwargs)
        peaks = self._cached("peak", cfg, lambda c: self._extreme(c, np.argmax))
        return self._shape(cfg, [Quantity(c, self.series.conc_unit) for c, _ in peaks])

    def tmax(self, config: NCAConfig | None = None, **kwargs) -> Quantity | list[Quantity]:
        """Time of the (first) maximum concentration."""
        cfg = self._config(config, kwargs)
        peaks = self._cached("peak", cfg, lambda c: self._extreme(c, np.argmax))
        return self._shape(cfg, [Quantity(t, self.series.time_unit) for _, t in peaks])

    def cmin(self, config: NCAConfig | None = None, **kwargs) -> Quantity | list[Quantity]:
        """Minimum observed concentration, within each interval when given."""
        cfg = self._config(config, kwargs)
        troughs = self._cached("trough", cfg, lambda c: self._extreme(c, np.argmin))
        return self._shape(cfg, [Quantity(c, self.series.conc_unit) for c, _ in troughs])

    def _last(self, config: NCAConfig) -> tuple[float, float]:
        series = self._series(config)
        i = series.last_index
        if i < 0:
            raise InsufficientDataError(
                f"subject {self.id!r} has no positive concentration at or above llq"
            )
        return float(series.conc[i]), float(series.time[i])

    def clast(self, config: NCAConfig | None = None, **kwargs) -> Quantity:
        """Last positive concentration at or above LLQ."""
        cfg = self._config(config, kwargs)
        c, _ = self._cached("last", NCAConfig(llq=cfg.llq), self._last)
        return Quantity(c, self.series.conc_unit)

    def tlast(self, config: NCAConfig | None = None, **kwargs) -> Quantity:
        """Time of :meth:`clast`."""
        cfg = self._config(config, kwargs)
        _, t = self._cached("last", NCAConfig(llq=cfg.llq), self._last)
        return Quantity(t, self.series.time_unit)

    # -- terminal phase -------------------------------------------------------

    def _lambdaz(self, config: NCAConfig) -> LambdaZResult:
        unit = config.slopetimes_unit
        if unit is not None and unit != self.series.time_unit:
            raise UnitMismatchError(
                f"slopetimes in {str(unit)!r} used with a series in "
                f"{str(self.series.time_unit)!r}"
            )
        return self._cached(
            "lambdaz", config.lambdaz_key(),
            lambda c: estimate_lambdaz(
                self._series(c), threshold=c.threshold, idxs=c.idxs, slopetimes=c.slopetimes,
            ),
        )

    def lambdaz(self, config: NCAConfig | None = None, **kwargs) -> LambdaZResult:
        """Terminal-phase fit (see :func:`pynca.nca.lambdaz`)."""
        return self._lambdaz(self._config(config, kwargs))

    def thalf(self, config: NCAConfig | None = None, **kwargs) -> Quantity:
        """ln(2)/lambda-z; NaN when the fitted rate is not positive."""
        return self.lambdaz(config, **kwargs).thalf

    def clast_pred(self, config: NCAConfig | None = None, **kwargs) -> Quantity:
        """Clast predicted by the terminal regression line."""
        cfg = self._config(config, kwargs)
        fit = self._lambdaz(cfg)
        _, t = self._cached("last", NCAConfig(llq=cfg.llq), self._last)
        value = fit.predict(t) if fit.is_valid else math.nan
        return Quantity(value, self.series.conc_unit)

    # -- exposure -------------------------------------------------------------

    def _exposure(self, kind: str, config: NCAConfig) -> Exposure | list[Exposure]:
        def compute(c: NCAConfig):
            series = self._series(c)
            integrate = _auc.auc if kind == "auc" else _auc.aumc
            interval = None
            if c.interval is not None:
                pairs = list(c.interval)
                if c.interval_unit is not None:
                    pairs = [(Quantity(lo, c.interval_unit), Quantity(hi, c.interval_unit))
                             for lo, hi in pairs]
                interval = pairs if c.multi else pairs[0]
            return integrate(
                series, method=c.method, interval=interval, auctype=c.auctype,
                lambdaz=lambda: self._lambdaz(c),
            )

        return self._cached(kind, config, compute)

    def auc(self, config: NCAConfig | None = None, **kwargs) -> Quantity | list[Quantity]:
        """AUC over the configured interval(s)."""
        return _each(self._exposure("auc", self._config(config, kwargs)), lambda e: e.value)

    def aumc(self, config: NCAConfig | None = None, **kwargs) -> Quantity | list[Quantity]:
        """AUMC over the configured interval(s)."""
        return _each(self._exposure("aumc", self._config(config, kwargs)), lambda e: e.value)

    def auc_extrap_percent(self, config: NCAConfig | None = None, **kwargs):
        return _each(self._exposure("auc", self._config(config, kwargs)),
                     lambda e: e.extrap_percent)

    def aumc_extrap_percent(self, config: NCAConfig | None = None, **kwargs):
        return _each(self._exposure("aumc", self._config(config, kwargs)),
                     lambda e: e.extrap_percent)

    def interpextrapconc(self, t, config: NCAConfig | None = None, **kwargs):
        """Concentration at time(s) ``t``; see :func:`pynca.nca.interpextrapconc`."""
        cfg = self._config(config, kwargs)
        return _auc.interpextrapconc(
            self._series(cfg), t, method=cfg.method, lambdaz=lambda: self._lambdaz(cfg),
        )

    def cavg(self, config: NCAConfig | None = None, **kwargs):
        """Average concentration AUC/(end - start) over finite interval(s)."""
        cfg = self._config(config, kwargs)
        if cfg.interval is None or any(math.isinf(hi) for _, hi in cfg.interval):
            raise ValidationError("cavg needs finite interval(s)")
        spans = [Quantity(hi - lo, self.series.time_unit) for lo, hi in cfg.interval]
        value = self.auc(cfg)
        return _each2(value, spans if cfg.multi else spans[0], lambda a, s: a / s)

    # -- dose-dependent -------------------------------------------------------

    def c0(self, config: NCAConfig | None = None, **kwargs) -> Quantity:
        """Concentration at the time of an IV bolus dose.

        Observed when sampled at the dose time; otherwise back-extrapolated
        log-linearly from the first two positive samples when they decline,
        else the first positive sample.
        """
        cfg = self._config(config, kwargs)
        dose = self._require_iv("c0")

        def compute(c: NCAConfig) -> float:
            series = self._series(c)
            at_dose = np.flatnonzero(series.time == dose.time)
            if at_dose.shape[0] and series.conc[at_dose[0]] > 0:
                return float(series.conc[at_dose[0]])
            after = np.flatnonzero((series.time > dose.time) & (series.conc > 0))
            if after.shape[0] == 0:
                raise InsufficientDataError("c0 needs a positive concentration after the dose")
            t1, c1 = float(series.time[after[0]]), float(series.conc[after[0]])
            if after.shape[0] >= 2:
                t2, c2 = float(series.time[after[1]]), float(series.conc[after[1]])
                if c2 < c1:
                    return c1 * (c1 / c2) ** ((t1 - dose.time) / (t2 - t1))
            return c1

        return Quantity(self._cached("c0", NCAConfig(llq=cfg.llq), compute), self.series.conc_unit)

    def cmax_dn(self, config: NCAConfig | None = None, **kwargs):
        """Cmax divided by the dose amount.

        Defined for both routes; unlike :meth:`c0` or :meth:`vss` it does not
        depend on how the dose entered the body.
        """
        dose = self._require_dose("cmax_dn")
        return _each(self.cmax(config, **kwargs), lambda c: c / dose.amount)

    def auc_dn(self, config: NCAConfig | None = None, **kwargs):
        """AUC divided by the dose amount."""
        dose = self._require_dose("auc_dn")
        return _each(self.auc(config, **kwargs), lambda a: a / dose.amount)

    def mrt(self, config: NCAConfig | None = None, **kwargs):
        """Mean residence time AUMC/AUC."""
        cfg = self._config(config, kwargs)
        return _each2(self.aumc(cfg), self.auc(cfg), lambda m, a: m / a)

    def cl(self, config: NCAConfig | None = None, **kwargs):
        """Clearance Dose/AUC (CL/F for extravascular doses)."""
        dose = self._require_dose("cl")
        return _each(self.auc(config, **kwargs), lambda a: dose.amount / a)

    def vz(self, config: NCAConfig | None = None, **kwargs):
        """Terminal volume Dose/(lambda-z * AUC) (Vz/F for extravascular doses)."""
        cfg = self._config(config, kwargs)
        dose = self._require_dose("vz")
        fit = self._lambdaz(cfg)
        rate = fit.rate_quantity() if fit.is_valid else Quantity.undefined(fit.rate_quantity().unit)
        return _each(self.auc(cfg), lambda a: dose.amount / (rate * a))

    def vss(self, config: NCAConfig | None = None, **kwargs):
        """Steady-state volume CL * MRT, intravenous doses only."""
        cfg = self._config(config, kwargs)
        self._require_iv("vss")
        return _each2(self.cl(cfg), self.mrt(cfg), lambda c, m: c * m)
