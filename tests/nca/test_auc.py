"""Tests for AUC/AUMC integration and concentration interpolation."""

import math

import numpy as np
import pytest

from pynca.nca import (
    Exposure,
    InsufficientDataError,
    OutOfRangeError,
    TimeSeries,
    UnitMismatchError,
    ValidationError,
    auc,
    auc_extrap_percent,
    aumc,
    aumc_extrap_percent,
    interpextrapconc,
    lambdaz,
    requires_extrapolation,
)
from pynca.units import Quantity

LZ = math.log(2) / 2  # terminal rate of the profile fixture


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def profile():
    """Hand-calculable profile.

    Linear AUC(0 -> 8) = 0.5*1*(0+8) + 0.5*1*(8+6) + 0.5*2*(6+3) + 0.5*4*(3+0.75)
                       = 4 + 7 + 9 + 7.5 = 27.5
    From t=2 the decline has a half-life of exactly 2.
    """
    return TimeSeries([0, 1, 2, 4, 8], [0, 8, 6, 3, 0.75], time_unit="hr", conc_unit="mg/L")


@pytest.fixture
def monoexp():
    """C(t) = 10*exp(-0.2*t), on which the log rules are exact."""
    time = np.array([0.0, 1, 2, 4, 8])
    return TimeSeries(time, 10.0 * np.exp(-0.2 * time), time_unit="hr", conc_unit="mg/L")


# ---------------------------------------------------------------------------
# Observed region
# ---------------------------------------------------------------------------

class TestAUCLast:

    def test_hand_calculation(self, profile):
        e = auc(profile, interval=(0, 8))
        assert isinstance(e, Exposure)
        assert e.value.value == pytest.approx(27.5)
        assert str(e.value.unit) == "hr*mg/L"

    def test_auctype_last(self, profile):
        e = auc(profile, auctype="last")
        assert e.value.value == pytest.approx(27.5)
        assert not e.extrapolates
        assert e.extrapolated.value == 0.0

    def test_matches_trapezoid(self, profile):
        t, c = profile.time, profile.conc
        expected = float(np.sum(np.diff(t) * (c[:-1] + c[1:]) / 2))
        assert auc(profile, auctype="last").value.value == pytest.approx(expected)

    def test_trailing_zeros_ignored(self):
        s = TimeSeries([0, 1, 2, 4, 8, 12], [0, 8, 6, 3, 0.75, 0],
                       time_unit="hr", conc_unit="mg/L")
        assert auc(s, auctype="last").value.value == pytest.approx(27.5)

    def test_partial_interval_interpolates(self, profile):
        # C(3) = 4.5 by linear interpolation; 11 + 0.5*(6+4.5)*1
        assert auc(profile, interval=(0, 3)).value.value == pytest.approx(16.25)

    def test_interval_inside_segment(self, profile):
        # C(2.5)=5.25, C(3.5)=3.75
        assert auc(profile, interval=(2.5, 3.5)).value.value == pytest.approx(4.5)

    def test_extrap_percent_zero_inside(self, profile):
        assert auc_extrap_percent(profile, interval=(0, 4)).value == 0.0
        assert aumc_extrap_percent(profile, interval=(0, 8)).value == 0.0

    def test_aumc_linear(self, profile):
        # 0.5*(t1*C1 + t2*C2)*(t2 - t1) per segment
        expected = 0.5 * (0 + 8) * 1 + 0.5 * (8 + 12) * 1 + 0.5 * (12 + 12) * 2 + 0.5 * (12 + 6) * 4
        e = aumc(profile, auctype="last")
        assert e.value.value == pytest.approx(expected)
        assert str(e.value.unit) == "hr^2*mg/L"

    def test_starts_before_first_sample(self, profile):
        s = TimeSeries([1, 2, 4, 8], [8, 6, 3, 0.75], time_unit="hr", conc_unit="mg/L")
        with pytest.raises(OutOfRangeError, match="before the first observation"):
            auc(s, interval=(0, 8))


# ---------------------------------------------------------------------------
# Integration rules
# ---------------------------------------------------------------------------

class TestMethods:

    @pytest.mark.parametrize("method", ["linuplogdown", "linlog"])
    def test_log_rules_exact_on_exponential(self, monoexp, method):
        exact = 10 / 0.2 * (1 - math.exp(-1.6))
        e = auc(monoexp, method=method, interval=(0, 8))
        assert e.value.value == pytest.approx(exact, rel=1e-10)

    @pytest.mark.parametrize("method", ["linuplogdown", "linlog"])
    def test_log_aumc_exact_on_exponential(self, monoexp, method):
        exact = 10 / 0.2 ** 2 * (1 - math.exp(-1.6) * (1 + 1.6))
        e = aumc(monoexp, method=method, interval=(0, 8))
        assert e.value.value == pytest.approx(exact, rel=1e-10)

    def test_linear_overestimates_convex_decline(self, monoexp):
        exact = 10 / 0.2 * (1 - math.exp(-1.6))
        assert auc(monoexp, method="linear", interval=(0, 8)).value.value > exact

    def test_linuplogdown_linear_on_rise(self, profile):
        # rising segment 0 -> 8 stays linear; zero start is never logged
        linear = auc(profile, interval=(0, 1)).value.value
        mixed = auc(profile, method="linuplogdown", interval=(0, 1)).value.value
        assert mixed == pytest.approx(linear)

    def test_linlog_logs_rising_positive_segment(self):
        s = TimeSeries([0, 1, 2], [1, 2, 1], time_unit="hr", conc_unit="mg/L")
        up = auc(s, method="linuplogdown", interval=(0, 1)).value.value
        ll = auc(s, method="linlog", interval=(0, 1)).value.value
        assert up == pytest.approx(1.5)
        assert ll == pytest.approx(1 / math.log(2))

    def test_bad_method(self, profile):
        with pytest.raises(ValidationError, match="method"):
            auc(profile, method="cubic")

    def test_bad_auctype(self, profile):
        with pytest.raises(ValidationError, match="auctype"):
            auc(profile, auctype="both")


# ---------------------------------------------------------------------------
# Extrapolation past Tlast
# ---------------------------------------------------------------------------

class TestExtrapolation:

    def test_aucinf(self, profile):
        e = auc(profile)
        assert e.extrapolates
        assert e.observed.value == pytest.approx(27.5)
        assert e.extrapolated.value == pytest.approx(0.75 / LZ, rel=1e-9)

    def test_extrap_percent(self, profile):
        total = 27.5 + 0.75 / LZ
        p = auc_extrap_percent(profile)
        assert p.value == pytest.approx(100 * (0.75 / LZ) / total, rel=1e-9)
        assert str(p.unit) == "%"

    def test_exact_on_exponential(self, monoexp):
        assert auc(monoexp, method="linuplogdown").value.value == pytest.approx(50.0, rel=1e-9)
        assert aumc(monoexp, method="linuplogdown").value.value == pytest.approx(250.0, rel=1e-9)

    def test_finite_end_past_tlast(self, profile):
        e = auc(profile, interval=(0, 10))
        tail = 0.75 / LZ * (1 - math.exp(-LZ * 2))
        assert e.extrapolated.value == pytest.approx(tail, rel=1e-9)

    def test_interval_entirely_past_tlast(self, profile):
        e = auc(profile, interval=(10, math.inf))
        assert e.observed.value == 0.0
        assert e.extrapolated.value == pytest.approx(0.375 / LZ, rel=1e-9)
        assert e.extrap_percent.value == pytest.approx(100.0)

    def test_invalid_rate_gives_undefined_tail(self):
        s = TimeSeries([0, 1, 2, 3], [1, 2, 3, 4], time_unit="hr", conc_unit="mg/L")
        e = auc(s)
        assert math.isnan(e.extrapolated.value)
        assert not e.value.is_defined
        assert not e.extrap_percent.is_defined
        assert auc(s, auctype="last").value.value == pytest.approx(7.5)

    def test_too_few_tail_points_gives_undefined_tail(self):
        s = TimeSeries([0, 1, 2], [0, 5, 0], time_unit="hr", conc_unit="mg/L")
        e = auc(s)
        assert e.observed.value == pytest.approx(2.5)
        assert not e.value.is_defined

    def test_explicit_lambdaz(self, profile):
        fit = lambdaz(profile, slopetimes=[4, 8])
        e = auc(profile, lambdaz=fit)
        assert e.extrapolated.value == pytest.approx(0.75 / LZ, rel=1e-9)

    def test_lambdaz_callable_not_called_without_tail(self, profile):
        def boom():
            raise AssertionError("tail should not be needed")
        auc(profile, interval=(0, 8), lambdaz=boom)
        auc(profile, auctype="last", lambdaz=boom)

    def test_requires_extrapolation(self, profile):
        assert not requires_extrapolation(profile, (0, 8))
        assert requires_extrapolation(profile, (0, 10))
        assert requires_extrapolation(profile)
        assert not requires_extrapolation(profile, auctype="last")


# ---------------------------------------------------------------------------
# Multiple intervals and units
# ---------------------------------------------------------------------------

class TestIntervals:

    def test_list_preserves_order(self, profile):
        res = auc(profile, interval=[(2, 4), (0, 2), (0, 8)])
        assert isinstance(res, list)
        assert [r.value.value for r in res] == pytest.approx([9.0, 11.0, 27.5])
        assert [r.interval for r in res] == [(2.0, 4.0), (0.0, 2.0), (0.0, 8.0)]

    def test_single_pair_in_list_is_list(self, profile):
        res = auc(profile, interval=[(0, 8)])
        assert isinstance(res, list)
        assert len(res) == 1

    def test_extrap_percent_list(self, profile):
        res = auc_extrap_percent(profile, interval=[(0, 8), (0, math.inf)])
        assert res[0].value == 0.0
        assert res[1].value > 0

    def test_quantity_interval(self, profile):
        e = auc(profile, interval=(Quantity(0, "hr"), Quantity(8, "hr")))
        assert e.value.value == pytest.approx(27.5)

    def test_quantity_interval_wrong_unit(self, profile):
        with pytest.raises(UnitMismatchError):
            auc(profile, interval=(Quantity(0, "min"), Quantity(480, "min")))


# ---------------------------------------------------------------------------
# interpextrapconc
# ---------------------------------------------------------------------------

class TestInterpExtrapConc:

    def test_at_observation(self, profile):
        assert interpextrapconc(profile, 2).value == 6.0

    def test_linear_interior(self, profile):
        c = interpextrapconc(profile, 3)
        assert c.value == pytest.approx(4.5)
        assert str(c.unit) == "mg/L"

    def test_log_interior(self, profile):
        c = interpextrapconc(profile, 3, method="linuplogdown")
        assert c.value == pytest.approx(math.sqrt(18))

    def test_past_tlast(self, profile):
        assert interpextrapconc(profile, 10).value == pytest.approx(0.375, rel=1e-9)

    def test_sequence(self, profile):
        res = interpextrapconc(profile, [0.5, 3, 8])
        assert [c.value for c in res] == pytest.approx([4.0, 4.5, 0.75])

    def test_before_first_raises(self, profile):
        with pytest.raises(OutOfRangeError):
            interpextrapconc(profile, -1)

    def test_invalid_rate_past_tlast(self):
        s = TimeSeries([0, 1, 2, 3], [1, 2, 3, 4], time_unit="hr", conc_unit="mg/L")
        assert not interpextrapconc(s, 5).is_defined

    def test_single_observation(self):
        s = TimeSeries([1.0], [5.0], time_unit="hr", conc_unit="mg/L")
        assert interpextrapconc(s, 1.0).value == 5.0
        assert not interpextrapconc(s, 2.0).is_defined

    def test_quantity_time(self, profile):
        assert interpextrapconc(profile, Quantity(3, "hr")).value == pytest.approx(4.5)
        with pytest.raises(UnitMismatchError):
            interpextrapconc(profile, Quantity(180, "min"))

    def test_single_positive_then_zero(self):
        s = TimeSeries([1.0, 2.0], [5.0, 0.0], time_unit="hr", conc_unit="mg/L")
        # the observed zero bounds the segment, so no lambda-z is needed
        assert interpextrapconc(s, 1.5).value == pytest.approx(2.5)
        assert not interpextrapconc(s, 3.0).is_defined
        with pytest.raises(InsufficientDataError):
            lambdaz(s)


# ---------------------------------------------------------------------------
# Zeros observed after Tlast
# ---------------------------------------------------------------------------

class TestTrailingZero:

    @pytest.fixture
    def washout(self):
        """The profile fixture followed by a zero at t=12 (Tlast stays 8)."""
        return TimeSeries([0, 1, 2, 4, 8, 12], [0, 8, 6, 3, 0.75, 0],
                          time_unit="hr", conc_unit="mg/L")

    @pytest.mark.parametrize("method", ["linear", "linuplogdown", "linlog"])
    def test_interval_to_last_observation(self, washout, method):
        e = auc(washout, method=method, interval=(0, 12))
        last = auc(washout, method=method, auctype="last").value.value
        assert not e.extrapolates
        assert e.extrapolated.value == 0.0
        assert e.extrap_percent.value == 0.0
        # 0.75 -> 0 over 4 hr is always linear
        assert e.value.value == pytest.approx(last + 1.5)

    @pytest.mark.parametrize("method", ["linear", "linuplogdown", "linlog"])
    def test_interval_ending_between_tlast_and_zero(self, washout, method):
        e = auc(washout, method=method, interval=(0, 10))
        last = auc(washout, method=method, auctype="last").value.value
        assert e.extrap_percent.value == 0.0
        # C(10) = 0.375 on the segment towards zero
        assert e.value.value == pytest.approx(last + 1.125)

    @pytest.mark.parametrize("method", ["linear", "linuplogdown", "linlog"])
    def test_aumc_to_last_observation(self, washout, method):
        assert aumc_extrap_percent(washout, method=method, interval=(0, 12)).value == 0.0

    def test_requires_extrapolation(self, washout):
        assert not requires_extrapolation(washout, (0, 12))
        assert requires_extrapolation(washout, (0, 13))
        assert requires_extrapolation(washout)

    def test_past_last_observation_tails_from_tlast(self, washout):
        e = auc(washout, interval=(0, 13))
        assert e.observed.value == pytest.approx(27.5)
        tail = 0.75 / LZ * (1 - math.exp(-LZ * 5))
        assert e.extrapolated.value == pytest.approx(tail, rel=1e-9)

    def test_aucinf_unchanged_by_zero(self, washout, profile):
        assert auc(washout).value.value == pytest.approx(auc(profile).value.value, rel=1e-12)

    @pytest.mark.parametrize("method", ["linear", "linuplogdown", "linlog"])
    def test_interpextrapconc_towards_zero(self, washout, method):
        # linear between (8, 0.75) and (12, 0); the tail would give 0.53
        assert interpextrapconc(washout, 9, method=method).value == pytest.approx(0.5625)
        assert interpextrapconc(washout, 12, method=method).value == 0.0
