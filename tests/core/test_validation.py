"""
Tests for input validators.

Each validator checks one thing and names the offending parameter in its
error message.
"""

import numpy as np
import pytest

from pysurvstat.core.exceptions import DimensionError, ValidationError
from pysurvstat.core.validation import (
    check_1d,
    check_array,
    check_choice,
    check_consistent_length,
    check_finite,
    check_min_samples,
    check_ndim,
    check_open_unit_interval,
)


class TestCheckArray:
    def test_list_to_float_array(self):
        arr = check_array([1, 2, 3], "time")
        assert arr.dtype == np.float64

    def test_bool_to_float(self):
        arr = check_array([True, False], "event")
        assert arr.dtype == np.float64
        assert list(arr) == [1.0, 0.0]

    def test_float32_preserved(self):
        arr = check_array(np.array([1.0], dtype=np.float32), "x")
        assert arr.dtype == np.float32

    def test_nan_allowed(self):
        arr = check_array([1.0, np.nan], "x")
        assert np.isnan(arr[1])

    def test_rejects_strings(self):
        with pytest.raises(ValidationError, match="time"):
            check_array(["a", "b"], "time")

    def test_rejects_mixed_types(self):
        with pytest.raises(ValidationError, match="mixed types"):
            check_array([1, "a", None], "X")

    def test_numeric_objects_converted(self):
        arr = check_array(np.array([1, 2.5], dtype=object), "X")
        assert arr.dtype == np.float64


class TestCheckFinite:
    def test_finite_passes(self):
        check_finite(np.array([1.0, 2.0]), "X")

    def test_nan_rejected(self):
        with pytest.raises(ValidationError, match="1 NaN"):
            check_finite(np.array([1.0, np.nan]), "X")

    def test_inf_rejected(self):
        with pytest.raises(ValidationError, match="1 Inf"):
            check_finite(np.array([[1.0, np.inf]]), "X")


class TestCheckNdim:
    def test_passes(self):
        check_ndim(np.zeros((2, 3)), 2, "X")
        check_1d(np.zeros(3), "time")

    def test_wrong_ndim(self):
        with pytest.raises(DimensionError, match=r"expected 1D array, got 2D"):
            check_1d(np.zeros((2, 2)), "time")


class TestCheckConsistentLength:
    def test_same_length_passes(self):
        check_consistent_length(np.zeros(3), np.zeros((3, 2)), names=("time", "X"))

    def test_different_length(self):
        with pytest.raises(DimensionError, match="time=3, event=2"):
            check_consistent_length(np.zeros(3), np.zeros(2), names=("time", "event"))

    def test_wrong_number_of_names(self):
        with pytest.raises(ValueError, match="names"):
            check_consistent_length(np.zeros(3), np.zeros(3), names=("time",))


class TestCheckMinSamples:
    def test_enough(self):
        check_min_samples(np.zeros(1), 1, "time")

    def test_empty_rejected(self):
        with pytest.raises(ValidationError, match="at least 1"):
            check_min_samples(np.zeros(0), 1, "time")


class TestCheckOpenUnitInterval:
    @pytest.mark.parametrize("value", [0.5, 1e-12, 0.999])
    def test_inside(self, value):
        check_open_unit_interval(value, "alpha")

    @pytest.mark.parametrize("value", [0.0, 1.0, -0.1, 95])
    def test_outside(self, value):
        with pytest.raises(ValidationError, match="conf_level"):
            check_open_unit_interval(value, "conf_level")


class TestCheckChoice:
    def test_allowed(self):
        check_choice("efron", ("efron", "breslow"), "ties")

    def test_rejected_lists_choices(self):
        with pytest.raises(ValidationError, match="'efron', 'breslow'"):
            check_choice("exact", ("efron", "breslow"), "ties")
