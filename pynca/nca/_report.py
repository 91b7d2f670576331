"""Population NCA report: the full metric set for every subject/occasion.

Each subject is computed independently, so the work can be spread over a
thread pool.  A metric that fails for one subject (too few points, no
dose, a route it does not apply to) becomes an undefined (NaN) cell; the
rest of the row and the other subjects are unaffected.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import pandas as pd

from pynca._errors import NCAError, UnitMismatchError
from pynca.nca._common import NCAConfig, Route
from pynca.nca._population import NCAPopulation
from pynca.nca._subject import NCASubject
from pynca.units import DIMENSIONLESS, PERCENT, Quantity, Unit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Metric:
    name: str
    unit: Callable[[Unit, Unit, Unit | None], Unit | None]
    compute: Callable[[NCASubject, NCAConfig, NCAConfig], Quantity]
    route: Route | None = None  # only computed for this route


def _rate(s: NCASubject, last: NCAConfig, inf: NCAConfig) -> Quantity:
    return s.lambdaz(inf).rate_quantity()


def _aucinf_pred(s: NCASubject, last: NCAConfig, inf: NCAConfig) -> Quantity:
    fit = s.lambdaz(inf)
    if not fit.is_valid:
        return Quantity.undefined(s.series.auc_unit)
    return s.auc(last) + s.clast_pred(inf) / fit.rate_quantity()


def _dimensionless(value: float) -> Quantity:
    return Quantity(value, DIMENSIONLESS)


def _per_amount(u: Unit, a: Unit | None) -> Unit | None:
    return None if a is None else u / a


STANDARD_METRICS: tuple[_Metric, ...] = (
    _Metric("cmax", lambda T, C, A: C, lambda s, l, i: s.cmax(i)),
    _Metric("tmax", lambda T, C, A: T, lambda s, l, i: s.tmax(i)),
    _Metric("cmin", lambda T, C, A: C, lambda s, l, i: s.cmin(i)),
    _Metric("clast", lambda T, C, A: C, lambda s, l, i: s.clast(i)),
    _Metric("tlast", lambda T, C, A: T, lambda s, l, i: s.tlast(i)),
    _Metric("c0", lambda T, C, A: C, lambda s, l, i: s.c0(i), route=Route.IV),
    _Metric("cmax_dn", lambda T, C, A: _per_amount(C, A), lambda s, l, i: s.cmax_dn(i)),
    _Metric("auclast", lambda T, C, A: C * T, lambda s, l, i: s.auc(l)),
    _Metric("aucinf", lambda T, C, A: C * T, lambda s, l, i: s.auc(i)),
    _Metric("aucinf_pred", lambda T, C, A: C * T, _aucinf_pred),
    _Metric("auc_extrap_percent", lambda T, C, A: PERCENT,
            lambda s, l, i: s.auc_extrap_percent(i)),
    _Metric("aumclast", lambda T, C, A: C * T ** 2, lambda s, l, i: s.aumc(l)),
    _Metric("aumcinf", lambda T, C, A: C * T ** 2, lambda s, l, i: s.aumc(i)),
    _Metric("aumc_extrap_percent", lambda T, C, A: PERCENT,
            lambda s, l, i: s.aumc_extrap_percent(i)),
    _Metric("lambdaz", lambda T, C, A: DIMENSIONLESS / T, _rate),
    _Metric("lambdaz_r2", lambda T, C, A: DIMENSIONLESS,
            lambda s, l, i: _dimensionless(s.lambdaz(i).r2)),
    _Metric("lambdaz_adjr2", lambda T, C, A: DIMENSIONLESS,
            lambda s, l, i: _dimensionless(s.lambdaz(i).adjr2)),
    _Metric("lambdaz_intercept", lambda T, C, A: DIMENSIONLESS,
            lambda s, l, i: _dimensionless(s.lambdaz(i).intercept)),
    _Metric("lambdaz_firsttime", lambda T, C, A: T,
            lambda s, l, i: Quantity(s.lambdaz(i).first_time, s.series.time_unit)),
    _Metric("lambdaz_npoints", lambda T, C, A: DIMENSIONLESS,
            lambda s, l, i: _dimensionless(s.lambdaz(i).n_points)),
    _Metric("thalf", lambda T, C, A: T, lambda s, l, i: s.thalf(i)),
    _Metric("mrt", lambda T, C, A: T, lambda s, l, i: s.mrt(i)),
    _Metric("cl", lambda T, C, A: None if A is None else A / (C * T),
            lambda s, l, i: s.cl(i)),
    _Metric("vz", lambda T, C, A: None if A is None else A / C, lambda s, l, i: s.vz(i)),
    _Metric("vss", lambda T, C, A: None if A is None else A / C,
            lambda s, l, i: s.vss(i), route=Route.IV),
    _Metric("auc_dn", lambda T, C, A: _per_amount(C * T, A), lambda s, l, i: s.auc_dn(i)),
)


def _interval_label(kind: str, lo: float, hi: float) -> str:
    return f"{kind}[{lo:g},{hi:g}]"


class NCAReport:
    """Full NCA metric set for every subject of a population.

    Parameters
    ----------
    population : NCAPopulation
    reference_occasion : hashable, optional
        When given, adds ``auc_dn_ratio`` and ``cmax_dn_ratio``: each
        subject's dose-normalized AUCinf and Cmax divided by the same
        subject's values on this occasion.
    config : NCAConfig, optional
        Method and lambda-z settings shared by every metric.  Its interval
        is ignored; use ``intervals``.
    intervals : sequence of (start, end), optional
        Extra partial-AUC/AUMC columns, one pair each.
    max_workers : int, optional
        ``> 1`` computes subjects on a thread pool.

    Raises
    ------
    UnitMismatchError
        Subjects use different time, concentration or amount units.
    """

    def __init__(
        self,
        population: NCAPopulation,
        reference_occasion=None,
        config: NCAConfig | None = None,
        intervals: Sequence[tuple[float, float]] | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.population = population
        self.reference_occasion = reference_occasion
        base = config if config is not None else NCAConfig()
        self.config = base.with_(interval=None)
        self.intervals = [tuple(p) for p in intervals] if intervals is not None else []
        for pair in self.intervals:
            NCAConfig(interval=pair)  # validates

        T, C, A = self._common_units(population)
        self.units: dict[str, str] = {"route": ""}
        for m in STANDARD_METRICS:
            unit = m.unit(T, C, A) if T is not None else None
            self.units[m.name] = "" if unit is None else str(unit)
        for lo, hi in self.intervals:
            self.units[_interval_label("auc", lo, hi)] = "" if T is None else str(C * T)
            self.units[_interval_label("aumc", lo, hi)] = "" if T is None else str(C * T ** 2)
        if reference_occasion is not None:
            self.units["auc_dn_ratio"] = ""
            self.units["cmax_dn_ratio"] = ""

        subjects = list(population)
        if max_workers is not None and max_workers > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                rows = list(pool.map(self._row, subjects))
        else:
            rows = [self._row(s) for s in subjects]
        self._rows: dict[tuple, dict[str, object]] = {s.key: r for s, r in zip(subjects, rows)}

        n_undefined = sum(
            1 for r in rows for v in r.values()
            if isinstance(v, Quantity) and not v.is_defined
        )
        logger.info(
            "NCA report: %d subject(s), %d metric(s), %d undefined cell(s)",
            len(rows), len(self.units) - 1, n_undefined,
        )

    # -- construction helpers -------------------------------------------------

    @staticmethod
    def _common_units(population: NCAPopulation) -> tuple[Unit | None, Unit | None, Unit | None]:
        time_units = {s.series.time_unit for s in population}
        conc_units = {s.series.conc_unit for s in population}
        amount_units = {d.amount.unit for s in population for d in s.doses}
        for what, found in (("time", time_units), ("concentration", conc_units),
                            ("amount", amount_units)):
            if len(found) > 1:
                raise UnitMismatchError(
                    f"subjects use different {what} units: {sorted(str(u) for u in found)}"
                )
        pick = lambda found: next(iter(found)) if found else None  # noqa: E731
        return pick(time_units), pick(conc_units), pick(amount_units)

    def _undefined(self, name: str) -> Quantity:
        return Quantity.undefined(Unit.parse(self.units[name]))

    def _safe(self, subject: NCASubject, name: str, compute: Callable[[], Quantity]) -> Quantity:
        try:
            return compute()
        except NCAError as exc:
            logger.warning(
                "subject %r/%r: %s undefined (%s)", subject.id, subject.occasion, name, exc,
            )
            return self._undefined(name)

    def _row(self, s: NCASubject) -> dict[str, object]:
        last = self.config.with_(auctype="last")
        inf = self.config.with_(auctype="inf")
        row: dict[str, object] = {"route": s.route.value if s.route is not None else None}

        for m in STANDARD_METRICS:
            if m.route is not None and s.route is not m.route:
                row[m.name] = self._undefined(m.name)
                continue
            needs_dose = m.unit(s.series.time_unit, s.series.conc_unit, None) is None
            if needs_dose and s.dose is None:
                row[m.name] = self._undefined(m.name)
                continue
            row[m.name] = self._safe(s, m.name, lambda m=m: m.compute(s, last, inf))

        for lo, hi in self.intervals:
            window = inf.with_(interval=(lo, hi))
            for kind in ("auc", "aumc"):
                name = _interval_label(kind, lo, hi)
                row[name] = self._safe(s, name, lambda k=kind: getattr(s, k)(window))

        if self.reference_occasion is not None:
            ref = self.population.get(s.id, self.reference_occasion)
            for name, metric in (("auc_dn_ratio", "auc_dn"), ("cmax_dn_ratio", "cmax_dn")):
                if ref is None:
                    row[name] = self._undefined(name)
                    continue
                row[name] = self._safe(
                    s, name,
                    lambda metric=metric: getattr(s, metric)(inf) / getattr(ref, metric)(inf),
                )
        return row

    # -- access ---------------------------------------------------------------

    @property
    def metrics(self) -> list[str]:
        return [name for name in self.units if name != "route"]

    def __len__(self) -> int:
        return len(self._rows)

    def get(self, id, occasion=None, metric: str = "aucinf") -> Quantity:
        """One cell as a Quantity."""
        value = self._rows[(id, occasion)][metric]
        if not isinstance(value, Quantity):
            raise KeyError(metric)
        return value

    def row(self, id, occasion=None) -> dict[str, object]:
        return dict(self._rows[(id, occasion)])

    def to_table(self) -> pd.DataFrame:
        return to_table(self)


def to_table(report: NCAReport) -> pd.DataFrame:
    """Materialize a report as a DataFrame.

    One row per ``(id, occasion)``, one float column per metric plus
    ``route``.  Units are kept per column in ``df.attrs["units"]``;
    undefined cells are NaN.
    """
    records = []
    for (sid, occ), row in report._rows.items():
        record: dict[str, object] = {"id": sid, "occasion": occ}
        for name, value in row.items():
            record[name] = value.value if isinstance(value, Quantity) else value
        records.append(record)
    columns = ["id", "occasion", *report.units]
    df = pd.DataFrame.from_records(records, columns=columns)
    df = df.set_index(["id", "occasion"])
    for name in report.metrics:
        df[name] = df[name].astype(float)
    df.attrs["units"] = dict(report.units)
    return df
