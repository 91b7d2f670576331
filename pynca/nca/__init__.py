"""
Non-compartmental pharmacokinetic analysis (NCA).

AUC/AUMC under linear, linear-up/log-down and lin-log rules with interval
restriction and terminal extrapolation, lambda-z and half-life, Cmax/Tmax,
Clast/Tlast and the dose-dependent metrics (CL, Vz, Vss, MRT), per
subject/occasion and across populations.

Validates against: R packages PKNCA, NonCompart.
"""

from pynca._errors import (
    InsufficientDataError,
    InvalidRateError,
    NCAError,
    OutOfRangeError,
    UnitMismatchError,
    ValidationError,
)
from pynca.nca._auc import (
    auc,
    auc_extrap_percent,
    aumc,
    aumc_extrap_percent,
    interpextrapconc,
    requires_extrapolation,
)
from pynca.nca._common import Exposure, LambdaZResult, NCAConfig, Route
from pynca.nca._lambdaz import lambdaz, thalf
from pynca.nca._population import NCAPopulation, read_nca
from pynca.nca._report import NCAReport, to_table
from pynca.nca._series import DoseRecord, Observation, TimeSeries
from pynca.nca._subject import NCASubject

__all__ = [
    "DoseRecord",
    "Exposure",
    "InsufficientDataError",
    "InvalidRateError",
    "LambdaZResult",
    "NCAConfig",
    "NCAError",
    "NCAPopulation",
    "NCAReport",
    "NCASubject",
    "Observation",
    "OutOfRangeError",
    "Route",
    "TimeSeries",
    "UnitMismatchError",
    "ValidationError",
    "auc",
    "auc_extrap_percent",
    "aumc",
    "aumc_extrap_percent",
    "interpextrapconc",
    "lambdaz",
    "read_nca",
    "requires_extrapolation",
    "thalf",
    "to_table",
]
