"""Tests for NCAConfig and the shared result types."""

import math

import pytest

from pynca.nca import Exposure, NCAConfig, UnitMismatchError, ValidationError
from pynca.units import Quantity, Unit


class TestNCAConfig:

    def test_defaults(self):
        cfg = NCAConfig()
        assert cfg.method == "linear"
        assert cfg.auctype == "inf"
        assert cfg.interval is None
        assert cfg.lambdaz_threshold == 10

    def test_hashable_and_equal(self):
        a = NCAConfig(method="linuplogdown", interval=(0, 24))
        b = NCAConfig(method="linuplogdown", interval=[0.0, 24.0])
        assert a == b
        assert hash(a) == hash(b)
        assert len({a, b, NCAConfig()}) == 2

    def test_single_pair(self):
        cfg = NCAConfig(interval=(0, 8))
        assert cfg.interval == ((0.0, 8.0),)
        assert not cfg.multi

    def test_list_of_pairs(self):
        cfg = NCAConfig(interval=[(0, 2), (2, 4)])
        assert cfg.interval == ((0.0, 2.0), (2.0, 4.0))
        assert cfg.multi

    def test_infinite_end_allowed(self):
        cfg = NCAConfig(interval=(0, math.inf))
        assert cfg.interval == ((0.0, math.inf),)

    @pytest.mark.parametrize("interval", [
        (8, 0),
        (2, 2),
        (math.nan, 1),
        (-math.inf, 1),
        [],
        [(0, 1, 2)],
        "0-8",
    ])
    def test_bad_interval(self, interval):
        with pytest.raises(ValidationError):
            NCAConfig(interval=interval)

    def test_quantity_interval(self):
        cfg = NCAConfig(interval=(Quantity(0, "hr"), Quantity(8, "hr")))
        assert cfg.interval == ((0.0, 8.0),)
        assert cfg.interval_unit == Unit.parse("hr")

    def test_mixed_unit_interval(self):
        with pytest.raises(UnitMismatchError):
            NCAConfig(interval=(Quantity(0, "hr"), Quantity(8, "min")))

    def test_bad_method(self):
        with pytest.raises(ValidationError, match="method"):
            NCAConfig(method="spline")

    def test_bad_auctype(self):
        with pytest.raises(ValidationError, match="auctype"):
            NCAConfig(auctype="all")

    def test_window_controls_exclusive(self):
        with pytest.raises(ValidationError, match="mutually exclusive"):
            NCAConfig(threshold=3, idxs=(1, 2, 3))

    @pytest.mark.parametrize("threshold", [1, 2.5, True])
    def test_bad_threshold(self, threshold):
        with pytest.raises(ValidationError):
            NCAConfig(threshold=threshold)

    def test_idxs_normalized_to_tuple(self):
        cfg = NCAConfig(idxs=[2, 3, 4])
        assert cfg.idxs == (2, 3, 4)
        hash(cfg)

    def test_plain_slopetimes_have_no_unit(self):
        cfg = NCAConfig(slopetimes=[4, 8])
        assert cfg.slopetimes == (4.0, 8.0)
        assert cfg.slopetimes_unit is None

    def test_quantity_slopetimes_keep_unit(self):
        cfg = NCAConfig(slopetimes=[Quantity(240, "min"), Quantity(480, "min")])
        assert cfg.slopetimes == (240.0, 480.0)
        assert cfg.slopetimes_unit == Unit.parse("min")
        assert cfg != NCAConfig(slopetimes=[240, 480])

    def test_mixed_unit_slopetimes(self):
        with pytest.raises(UnitMismatchError, match="slopetimes"):
            NCAConfig(slopetimes=[Quantity(4, "hr"), Quantity(480, "min")])

    def test_bad_slopetimes(self):
        with pytest.raises(ValidationError, match="slopetimes"):
            NCAConfig(slopetimes=["4h", "8h"])

    def test_slopetimes_unit_survives_with_and_lambdaz_key(self):
        cfg = NCAConfig(slopetimes=[Quantity(4, "min"), Quantity(8, "min")], method="linlog")
        assert cfg.with_(method="linear").slopetimes_unit == Unit.parse("min")
        key = cfg.lambdaz_key()
        assert key.slopetimes == (4.0, 8.0)
        assert key.slopetimes_unit == Unit.parse("min")

    def test_with_keeps_interval(self):
        cfg = NCAConfig(interval=(0, 8)).with_(auctype="last")
        assert cfg.auctype == "last"
        assert cfg.interval == ((0.0, 8.0),)
        assert not cfg.multi

    def test_with_keeps_interval_unit(self):
        cfg = NCAConfig(interval=(Quantity(0, "hr"), Quantity(8, "hr")))
        assert cfg.with_(method="linlog").interval_unit == Unit.parse("hr")

    def test_with_replaces_interval(self):
        cfg = NCAConfig(interval=(0, 8)).with_(interval=[(0, 1), (1, 2)])
        assert cfg.multi
        assert cfg.with_(interval=None).interval is None

    def test_lambdaz_key_ignores_integration_fields(self):
        a = NCAConfig(method="linear", interval=(0, 4), threshold=4)
        b = NCAConfig(method="linlog", auctype="last", threshold=4)
        assert a.lambdaz_key() == b.lambdaz_key()
        assert a.lambdaz_key() != NCAConfig(threshold=5).lambdaz_key()


class TestExposure:

    def _exposure(self, observed, extrapolated, extrapolates=True):
        return Exposure(
            kind="auc", interval=(0.0, math.inf), method="linear",
            observed=Quantity(observed, "hr*mg/L"),
            extrapolated=Quantity(extrapolated, "hr*mg/L"),
            extrapolates=extrapolates,
        )

    def test_value_is_sum(self):
        e = self._exposure(90.0, 10.0)
        assert e.value == Quantity(100.0, "hr*mg/L")

    def test_extrap_percent(self):
        e = self._exposure(90.0, 10.0)
        assert e.extrap_percent.value == pytest.approx(10.0)
        assert str(e.extrap_percent.unit) == "%"

    def test_no_extrapolation_is_zero_percent(self):
        e = self._exposure(90.0, 0.0, extrapolates=False)
        assert e.extrap_percent.value == 0.0

    def test_undefined_tail_propagates(self):
        e = self._exposure(90.0, math.nan)
        assert not e.value.is_defined
        assert not e.extrap_percent.is_defined
