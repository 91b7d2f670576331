"""Populations of NCA subjects and construction from tabular data."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

import numpy as np
import pandas as pd

from pynca._errors import ValidationError
from pynca.nca._common import Route
from pynca.nca._series import DoseRecord, TimeSeries
from pynca.nca._subject import NCASubject
from pynca.units import Quantity, Unit
from pynca.units._quantity import as_unit

logger = logging.getLogger(__name__)


class NCAPopulation:
    """Ordered collection of :class:`NCASubject`, unique by ``(id, occasion)``.

    Membership is fixed at construction.  ``rejected`` maps the keys of
    subjects that failed validation during a :func:`read_nca` build to the
    error raised for them.
    """

    def __init__(
        self,
        subjects: Iterable[NCASubject],
        rejected: dict[tuple, ValidationError] | None = None,
    ) -> None:
        self._subjects: dict[tuple, NCASubject] = {}
        for s in subjects:
            if not isinstance(s, NCASubject):
                raise ValidationError(f"expected NCASubject, got {type(s).__name__}")
            if s.key in self._subjects:
                raise ValidationError(f"duplicate subject (id, occasion) = {s.key!r}")
            self._subjects[s.key] = s
        self.rejected: dict[tuple, ValidationError] = dict(rejected or {})

    def __len__(self) -> int:
        return len(self._subjects)

    def __iter__(self) -> Iterator[NCASubject]:
        return iter(self._subjects.values())

    def __contains__(self, key) -> bool:
        return self._normalize_key(key) in self._subjects

    def __getitem__(self, key) -> NCASubject:
        k = self._normalize_key(key)
        if k not in self._subjects:
            raise KeyError(key)
        return self._subjects[k]

    @staticmethod
    def _normalize_key(key) -> tuple:
        if isinstance(key, tuple) and len(key) == 2:
            return key
        return (key, None)

    @property
    def keys(self) -> list[tuple]:
        return list(self._subjects)

    @property
    def ids(self) -> list:
        return list(dict.fromkeys(k[0] for k in self._subjects))

    @property
    def occasions(self) -> list:
        return list(dict.fromkeys(k[1] for k in self._subjects))

    def get(self, id, occasion=None) -> NCASubject | None:
        return self._subjects.get((id, occasion))

    def __repr__(self) -> str:
        return f"NCAPopulation(n={len(self)}, rejected={len(self.rejected)})"


# ---------------------------------------------------------------------------
# Tabular input
# ---------------------------------------------------------------------------

def _require_columns(df: pd.DataFrame, columns: dict[str, str | None]) -> None:
    missing = [f"{role}={name!r}" for role, name in columns.items()
               if name is not None and name not in df.columns]
    if missing:
        raise ValidationError(f"missing required column(s): {', '.join(missing)}")


def _build_subject(
    key: tuple,
    rows: pd.DataFrame,
    *,
    time_col: str,
    conc_col: str,
    amt_col: str | None,
    route_col: str | None,
    route: str,
    time_unit: Unit,
    conc_unit: Unit,
    amount_unit: Unit | None,
    llq: float,
    blq: str,
) -> NCASubject:
    time = pd.to_numeric(rows[time_col], errors="coerce")
    conc = pd.to_numeric(rows[conc_col], errors="coerce")
    is_obs = conc.notna()
    doses: list[DoseRecord] = []
    if amt_col is not None:
        amt = pd.to_numeric(rows[amt_col], errors="coerce")
        for i in np.flatnonzero(amt.notna().to_numpy()):
            row_route = rows[route_col].iloc[i] if route_col is not None else route
            if route_col is not None and pd.isna(row_route):
                row_route = route
            doses.append(DoseRecord(
                amount=Quantity(float(amt.iloc[i]), amount_unit),
                time=float(time.iloc[i]),
                route=Route.parse(row_route),
                occasion=key[1],
            ))
    if not is_obs.any():
        raise ValidationError(f"subject {key!r} has no concentration observations")
    series = TimeSeries(
        time[is_obs].to_numpy(dtype=np.float64),
        conc[is_obs].to_numpy(dtype=np.float64),
        time_unit=time_unit,
        conc_unit=conc_unit,
        amount_unit=amount_unit,
        llq=llq,
        blq=blq,
    )
    return NCASubject(key[0], series, doses, occasion=key[1])


def read_nca(
    df: pd.DataFrame,
    *,
    id_col: str = "id",
    time_col: str = "time",
    conc_col: str = "conc",
    time_unit: Unit | str | None = None,
    conc_unit: Unit | str | None = None,
    occasion_col: str | None = None,
    amt_col: str | None = None,
    amount_unit: Unit | str | None = None,
    route_col: str | None = None,
    route: str = "ev",
    llq: float = 0.0,
    blq: str = "drop",
) -> NCAPopulation:
    """Build an :class:`NCAPopulation` from a long-format table.

    One row per sample or dose event.  Rows are grouped by
    ``(id, occasion)`` in order of first appearance.  Rows with a
    concentration are observations; rows with an amount are doses (a row may
    be both).  Concentrations must be numeric; a missing concentration on a
    non-dose row is treated as a missing sample.

    Parameters
    ----------
    df : DataFrame
    id_col, time_col, conc_col : str
        Required columns.
    time_unit, conc_unit : Unit or str
        Required; units are never guessed.
    occasion_col : str, optional
        Occasion column.  Without it every subject has a single occasion
        ``None``.
    amt_col, amount_unit : optional
        Dose amount column and its unit (required together).
    route_col : str, optional
        Per-dose route; ``route`` is the default.
    llq : float
        Lower limit of quantification.
    blq : str
        ``'drop'`` or ``'zero'``.

    Returns
    -------
    NCAPopulation
        Subjects that fail validation are logged and recorded in
        ``population.rejected``; the rest are built.

    Raises
    ------
    ValidationError
        Missing columns or units, which affect every subject.
    """
    if not isinstance(df, pd.DataFrame):
        raise ValidationError(f"df must be a pandas DataFrame, got {type(df).__name__}")
    _require_columns(df, {
        "id_col": id_col, "time_col": time_col, "conc_col": conc_col,
        "occasion_col": occasion_col, "amt_col": amt_col, "route_col": route_col,
    })
    t_unit = as_unit(time_unit, "time")
    c_unit = as_unit(conc_unit, "concentration")
    a_unit = None
    if amt_col is not None:
        a_unit = as_unit(amount_unit, "amount")
    elif amount_unit is not None:
        a_unit = Unit.parse(amount_unit)
    Route.parse(route)

    group_cols = [id_col] if occasion_col is None else [id_col, occasion_col]
    subjects: list[NCASubject] = []
    rejected: dict[tuple, ValidationError] = {}
    for name, rows in df.groupby(group_cols, sort=False, dropna=False):
        name = name if isinstance(name, tuple) else (name,)
        key = (name[0], name[1] if occasion_col is not None else None)
        try:
            subjects.append(_build_subject(
                key, rows,
                time_col=time_col, conc_col=conc_col, amt_col=amt_col,
                route_col=route_col, route=route,
                time_unit=t_unit, conc_unit=c_unit, amount_unit=a_unit,
                llq=llq, blq=blq,
            ))
        except ValidationError as exc:
            logger.warning("rejected subject %r: %s", key, exc)
            rejected[key] = exc

    logger.info("built %d subject(s), rejected %d", len(subjects), len(rejected))
    return NCAPopulation(subjects, rejected)
