"""
Tests for the event time table (SurvivalDesign) and Subject records.
"""

import dataclasses

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from pysurvstat.core.exceptions import (
    DimensionError,
    InvalidObservationError,
    InvalidObservationWarning,
    MissingCovariateError,
    ValidationError,
)
from pysurvstat.survival import Subject, SurvivalDesign


RECORDS = [
    {"time": 12, "event": 1, "sex": "Male", "age": 61.0, "treatment": "B"},
    {"time": 3, "event": 0, "sex": "Female", "age": 54.0, "treatment": "A"},
    {"time": 7, "event": 1, "sex": "Female", "age": None, "treatment": "A"},
    {"time": 7, "event": 0, "sex": "Male", "age": 70.0},
    {"time": 20, "event": 1, "sex": None, "age": 66.0, "treatment": "B"},
]


class TestForSurvival:
    """Array entry point."""

    def test_basic_creation(self):
        design = SurvivalDesign.for_survival([1, 2, 3], [1, 0, 1])
        assert design.n == 3
        assert design.p is None
        assert design.n_events == 2
        assert design.X is None
        assert design.strata is None

    def test_sorted_events_before_censoring(self):
        """Ascending time; at tied times events come first."""
        design = SurvivalDesign.for_survival([3, 1, 2, 1], [0, 0, 1, 1])
        assert_allclose(design.time, [1, 1, 2, 3])
        assert_allclose(design.event, [1, 0, 1, 0])
        assert_array_equal(design.order, [3, 1, 2, 0])

    def test_rows_travel_together(self):
        design = SurvivalDesign.for_survival(
            [3, 1, 2], [1, 1, 0], [[30.0], [10.0], [20.0]],
            strata=["c", "a", "b"],
        )
        assert_allclose(design.X[:, 0], [10.0, 20.0, 30.0])
        assert list(design.strata) == ["a", "b", "c"]

    def test_1d_covariates_reshaped(self):
        design = SurvivalDesign.for_survival([1, 2, 3], [1, 0, 1], [10, 20, 30])
        assert design.X.shape == (3, 1)
        assert design.p == 1

    def test_boolean_event(self):
        design = SurvivalDesign.for_survival([1, 2, 3], [True, False, True])
        assert design.n_events == 2

    def test_zero_time_rejected(self):
        with pytest.raises(InvalidObservationError, match="positive") as exc:
            SurvivalDesign.for_survival([1, 0, 3], [1, 1, 1])
        assert exc.value.index == 1
        assert exc.value.value == 0.0

    def test_negative_time_rejected(self):
        with pytest.raises(InvalidObservationError, match="positive"):
            SurvivalDesign.for_survival([-1, 2, 3], [1, 1, 1])

    def test_nan_time_rejected(self):
        with pytest.raises(InvalidObservationError):
            SurvivalDesign.for_survival([1.0, np.nan, 3.0], [1, 1, 1])

    def test_invalid_event_rejected(self):
        with pytest.raises(InvalidObservationError, match="0 and 1"):
            SurvivalDesign.for_survival([1, 2, 3], [0, 1, 2])

    def test_invalid_observation_is_validation_error(self):
        with pytest.raises(ValidationError):
            SurvivalDesign.for_survival([0.0], [1])

    def test_length_mismatch(self):
        with pytest.raises(DimensionError, match="Inconsistent lengths"):
            SurvivalDesign.for_survival([1, 2, 3], [1, 0])

    def test_covariate_row_mismatch(self):
        with pytest.raises(DimensionError, match="Inconsistent lengths"):
            SurvivalDesign.for_survival([1, 2, 3], [1, 0, 1], [[1, 2], [3, 4]])

    def test_strata_length_mismatch(self):
        with pytest.raises(DimensionError, match="strata"):
            SurvivalDesign.for_survival([1, 2, 3], [1, 0, 1], strata=[1, 2])

    def test_empty_rejected(self):
        with pytest.raises(ValidationError, match="at least 1"):
            SurvivalDesign.for_survival([], [])

    def test_frozen(self):
        design = SurvivalDesign.for_survival([1, 2], [1, 0])
        with pytest.raises(dataclasses.FrozenInstanceError):
            design.time = np.array([5.0, 6.0])


class TestForRecords:
    """Record entry point with named covariates."""

    def test_covariates_collected(self):
        design = SurvivalDesign.for_records(RECORDS)
        assert set(design.covariates) == {"sex", "age", "treatment"}
        assert design.n == 5
        assert_allclose(design.time, [3, 7, 7, 12, 20])
        assert_allclose(design.event, [0, 1, 0, 1, 1])

    def test_categorical_and_continuous_detected(self):
        design = SurvivalDesign.for_records(RECORDS)
        assert design.is_categorical("sex")
        assert design.is_categorical("treatment")
        assert not design.is_categorical("age")
        assert design.levels("sex") == ["Female", "Male"]

    def test_absent_key_is_missing(self):
        design = SurvivalDesign.for_records(RECORDS)
        # Subject at time 7 censored has no treatment key
        treatment = design.column("treatment")
        assert treatment[2] is None
        assert np.isnan(design.column("age")[1])

    def test_subject_objects(self):
        subjects = [
            Subject(time=5.0, event=True, covariates={"sex": "Male"}),
            Subject(time=2.0, event=False, covariates={"sex": "Female"}),
        ]
        design = SurvivalDesign.for_records(subjects)
        assert_allclose(design.time, [2.0, 5.0])
        assert list(design.column("sex")) == ["Female", "Male"]

    def test_record_without_time(self):
        with pytest.raises(InvalidObservationError, match="time"):
            SurvivalDesign.for_records([{"event": 1, "sex": "Male"}])

    def test_empty_records(self):
        with pytest.raises(ValidationError, match="at least one"):
            SurvivalDesign.for_records([])

    def test_drop_invalid_warns(self):
        records = RECORDS + [{"time": 0, "event": 1, "sex": "Male", "age": 50.0}]
        with pytest.warns(InvalidObservationWarning, match="Dropped 1"):
            design = SurvivalDesign.for_records(records, drop_invalid=True)
        assert design.n == 5

    def test_drop_invalid_warning_points_at_caller(self):
        records = RECORDS + [{"time": -1, "event": 1, "sex": "Male", "age": 50.0}]
        with pytest.warns(InvalidObservationWarning) as rec:
            SurvivalDesign.for_records(records, drop_invalid=True)
        assert rec[0].filename == __file__

    def test_invalid_raises_by_default(self):
        records = RECORDS + [{"time": None, "event": 1}]
        with pytest.raises(InvalidObservationError):
            SurvivalDesign.for_records(records)


class TestSubject:
    def test_immutable(self):
        s = Subject(time=3.0, event=True, covariates={"sex": "Male"})
        with pytest.raises(dataclasses.FrozenInstanceError):
            s.time = 4.0
        with pytest.raises(TypeError):
            s.covariates["sex"] = "Female"

    def test_covariates_copied(self):
        cov = {"sex": "Male"}
        s = Subject(time=3.0, event=True, covariates=cov)
        cov["sex"] = "Female"
        assert s.covariates["sex"] == "Male"


class TestForColumns:
    def test_numeric_codes_as_categorical(self):
        design = SurvivalDesign.for_columns(
            {"time": [1, 2, 3, 4], "event": [1, 1, 0, 1], "stage": [1, 2, 1, 3]},
            categorical=["stage"],
        )
        assert design.is_categorical("stage")
        assert design.levels("stage") == ["1", "2", "3"]

    def test_selected_covariates_only(self):
        design = SurvivalDesign.for_columns(
            {"time": [1, 2], "event": [1, 0], "a": [1.0, 2.0], "b": ["x", "y"]},
            covariates=["a"],
        )
        assert list(design.covariates) == ["a"]

    def test_unknown_column(self):
        with pytest.raises(MissingCovariateError, match="not found") as exc:
            SurvivalDesign.for_columns(
                {"time": [1, 2], "event": [1, 0]}, covariates=["age"]
            )
        assert exc.value.name == "age"

    def test_continuous_levels_rejected(self):
        design = SurvivalDesign.for_columns(
            {"time": [1, 2], "event": [1, 0], "age": [50.0, 60.0]}
        )
        with pytest.raises(ValidationError, match="continuous"):
            design.levels("age")

    def test_drop_invalid_warning_points_at_caller(self):
        columns = {"time": [1, 0, 3], "event": [1, 1, 0]}
        with pytest.warns(InvalidObservationWarning) as rec:
            design = SurvivalDesign.for_columns(columns, drop_invalid=True)
        assert rec[0].filename == __file__
        assert design.n == 2


class TestCompleteCases:
    """Per-analysis complete-case restriction."""

    def test_drops_missing(self):
        design = SurvivalDesign.for_records(RECORDS)
        cc, n_dropped = design.complete_cases(["age", "treatment"])
        # age missing for one subject, treatment for another
        assert n_dropped == 2
        assert cc.n == 3
        assert design.n == 5

    def test_generator_names_logged(self, caplog):
        design = SurvivalDesign.for_records(RECORDS)
        with caplog.at_level("INFO", logger="pysurvstat.survival.design"):
            cc, n_dropped = design.complete_cases(n for n in ("age", "treatment"))
        assert n_dropped == 2
        assert "['age', 'treatment']" in caplog.text

    def test_nothing_missing_returns_same(self):
        design = SurvivalDesign.for_records(RECORDS)
        cc, n_dropped = design.complete_cases([])
        assert n_dropped == 0
        assert cc is design

    def test_sorted_order_kept(self):
        design = SurvivalDesign.for_records(RECORDS)
        cc, _ = design.complete_cases(["sex"])
        assert np.all(np.diff(cc.time) >= 0)

    def test_unknown_covariate(self):
        design = SurvivalDesign.for_records(RECORDS)
        with pytest.raises(MissingCovariateError, match="weight") as exc:
            design.complete_cases(["weight"])
        assert isinstance(exc.value, KeyError)
        assert "sex" in exc.value.available

    def test_column_unknown(self):
        design = SurvivalDesign.for_records(RECORDS)
        with pytest.raises(MissingCovariateError):
            design.column("weight")
