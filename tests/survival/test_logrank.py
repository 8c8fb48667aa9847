"""
Tests for survdiff() / pairwise_survdiff() matching R
survival::survdiff(Surv(time, event) ~ group).

R reference code:
    library(survival)
    survdiff(Surv(time, event) ~ group, data=...)
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from pysurvstat.core.exceptions import (
    DimensionError,
    MissingCovariateWarning,
    SingularCovarianceWarning,
    ValidationError,
)
from pysurvstat.survival import (
    LogRankSolution,
    PairwiseLogRankSolution,
    SurvivalDesign,
    p_adjust,
    pairwise_survdiff,
    survdiff,
)


# ── Fixtures ─────────────────────────────────────────────────────────

TWO_GROUP_TIME = np.array([6, 7, 10, 15, 16, 22, 23, 6, 9, 10, 11, 17, 19, 20],
                          dtype=np.float64)
TWO_GROUP_EVENT = np.array([1, 1, 1, 1, 0, 1, 1, 0, 1, 0, 1, 1, 1, 1],
                           dtype=np.float64)
TWO_GROUP = np.array([1, 1, 1, 1, 1, 1, 1, 2, 2, 2, 2, 2, 2, 2])

# Balanced risk sets: after every death one subject of the other group is
# censored before the next event time, so both groups have m_j at risk at
# every event time. Group 1 dies at 1, 2, 4; group 0 at 3, 5.
#   O = (2, 3), E = (2.5, 2.5), V_00 = 5 * 1/4 → chisq = 0.25 / 1.25 = 0.2
BAL_TIME = np.array([1, 2, 4, 3.5, 5.5, 1.5, 2.5, 4.5, 3, 5])
BAL_EVENT = np.array([1, 1, 1, 0, 0, 0, 0, 0, 1, 1])
BAL_GROUP = np.array([1, 1, 1, 1, 1, 0, 0, 0, 0, 0])

# Three well separated groups
SEP_TIME = np.concatenate([np.arange(1, 6), np.arange(20, 25), np.arange(40, 45)])
SEP_EVENT = np.ones(15)
SEP_GROUP = np.repeat(["early", "middle", "late"], 5)


class TestLogRankBasic:
    """Basic log-rank test (rho=0)."""

    def test_two_group_basic(self):
        result = survdiff(TWO_GROUP_TIME, TWO_GROUP_EVENT, TWO_GROUP)

        assert isinstance(result, LogRankSolution)
        assert result.n_groups == 2
        assert result.df == 1
        assert result.statistic >= 0
        assert 0 <= result.p_value <= 1

        total_events = np.sum(TWO_GROUP_EVENT)
        assert_allclose(np.sum(result.observed), total_events, rtol=1e-10)
        assert_allclose(np.sum(result.expected), total_events, rtol=1e-10)
        assert_allclose(result.n_per_group, [7, 7])

    def test_hand_computed_statistic(self):
        result = survdiff(BAL_TIME, BAL_EVENT, BAL_GROUP)
        assert_allclose(result.observed, [2, 3])
        assert_allclose(result.expected, [2.5, 2.5])
        assert_allclose(result.variance, [[1.25, -1.25], [-1.25, 1.25]])
        assert result.statistic == pytest.approx(0.2, rel=1e-12)

    def test_p_value_from_chi_square(self):
        from scipy import stats

        result = survdiff(BAL_TIME, BAL_EVENT, BAL_GROUP)
        assert result.p_value == pytest.approx(stats.chi2.sf(0.2, 1), rel=1e-12)

    def test_identical_groups(self):
        """Same times and censoring in both groups → chisq 0, p 1.

        R:
            survdiff(Surv(rep(1:5, 2), rep(c(1, 1, 0, 1, 1), 2)) ~ rep(1:2, each=5))
            # Chisq= 0  on 1 degrees of freedom, p= 1
        """
        time = np.tile([1, 2, 3, 4, 5], 2)
        event = np.tile([1, 1, 0, 1, 1], 2)
        group = np.repeat([1, 2], 5)

        result = survdiff(time, event, group)
        assert result.statistic == pytest.approx(0.0, abs=1e-10)
        assert result.p_value == pytest.approx(1.0, abs=1e-6)

    def test_very_different_groups(self):
        time = np.array([1, 2, 3, 4, 5, 50, 60, 70, 80, 90])
        event = np.ones(10)
        group = np.array([1, 1, 1, 1, 1, 2, 2, 2, 2, 2])

        result = survdiff(time, event, group)
        assert result.statistic > 5
        assert result.p_value < 0.05

    def test_three_groups(self):
        result = survdiff(SEP_TIME, SEP_EVENT, SEP_GROUP)
        assert result.n_groups == 3
        assert result.df == 2
        assert list(result.group_labels) == ["early", "late", "middle"]
        assert result.p_value < 0.001

    def test_observed_minus_expected_sums_to_zero(self, rng):
        time = rng.exponential(5, 60) + 0.01
        event = rng.binomial(1, 0.6, 60)
        group = np.repeat([0, 1, 2], 20)

        result = survdiff(time, event, group)
        assert np.sum(result.observed - result.expected) == pytest.approx(0.0, abs=1e-10)

    def test_variance_rows_sum_to_zero(self):
        result = survdiff(SEP_TIME, SEP_EVENT, SEP_GROUP)
        assert_allclose(result.variance.sum(axis=1), 0.0, atol=1e-12)


class TestLogRankGRho:
    """G-rho family weights (rho > 0)."""

    def test_peto_peto_rho1(self):
        result = survdiff(TWO_GROUP_TIME, TWO_GROUP_EVENT, TWO_GROUP, rho=1.0)
        assert result.rho == 1.0
        assert result.df == 1
        assert 0 <= result.p_value <= 1

    def test_rho1_downweights_late_events(self):
        """With weights S(t-) <= 1 the weighted observed count shrinks."""
        lr = survdiff(TWO_GROUP_TIME, TWO_GROUP_EVENT, TWO_GROUP, rho=0.0)
        pp = survdiff(TWO_GROUP_TIME, TWO_GROUP_EVENT, TWO_GROUP, rho=1.0)
        assert np.sum(pp.observed) < np.sum(lr.observed)

    def test_negative_rho_rejected(self):
        with pytest.raises(ValidationError, match="rho"):
            survdiff(TWO_GROUP_TIME, TWO_GROUP_EVENT, TWO_GROUP, rho=-1.0)


class TestLogRankEdgeCases:
    """Edge cases for log-rank test."""

    def test_no_events(self):
        """All censored → statistic 0, p 1."""
        result = survdiff([1, 2, 3, 4, 5, 6], np.zeros(6), [1, 1, 1, 2, 2, 2])
        assert result.statistic == 0.0
        assert result.p_value == 1.0

    def test_single_group_rejected(self):
        with pytest.raises(ValueError, match="2 groups"):
            survdiff([1, 2, 3], [1, 1, 1], [1, 1, 1])

    def test_group_length_mismatch(self):
        with pytest.raises(DimensionError):
            survdiff([1, 2, 3], [1, 1, 1], [1, 2])

    def test_group_required(self):
        with pytest.raises(ValidationError, match="group"):
            survdiff([1, 2, 3], [1, 1, 1])

    def test_string_group_labels(self):
        result = survdiff(
            [1, 2, 3, 4, 5, 6],
            [1, 1, 0, 1, 0, 1],
            ["control"] * 3 + ["treatment"] * 3,
        )
        assert list(result.group_labels) == ["control", "treatment"]

    def test_degenerate_group_singular(self):
        """A group never at risk at an event time makes V singular.

        The generalized inverse then reproduces the two-group test of the
        remaining groups, with df = rank(V) = 1.
        """
        time = [0.5, 0.5, 1, 3, 2, 4]
        event = [0, 0, 1, 1, 1, 1]
        group = ["a", "a", "b", "b", "c", "c"]

        with pytest.warns(SingularCovarianceWarning, match="generalized inverse"):
            result = survdiff(time, event, group)

        assert result.singular
        assert result.df == 1
        assert result.warnings

        two = survdiff(time[2:], event[2:], group[2:])
        assert not two.singular
        assert result.statistic == pytest.approx(two.statistic, rel=1e-10)

    def test_summary_flags_singular(self):
        with pytest.warns(SingularCovarianceWarning):
            result = survdiff([0.5, 0.5, 1, 3, 2, 4], [0, 0, 1, 1, 1, 1],
                              ["a", "a", "b", "b", "c", "c"])
        assert "singular" in result.summary()


class TestLogRankDesign:
    """Grouping by covariate name on an event time table."""

    def test_group_by_name(self, cohort):
        result = survdiff(cohort, group="treatment")
        assert result.n_groups == 3
        assert sum(result.n_per_group) == cohort.n

    def test_missing_group_dropped(self):
        design = SurvivalDesign.for_records([
            {"time": 1, "event": 1, "arm": "x"},
            {"time": 2, "event": 1, "arm": "y"},
            {"time": 3, "event": 0, "arm": None},
            {"time": 4, "event": 1, "arm": "x"},
        ])
        with pytest.warns(MissingCovariateWarning):
            result = survdiff(design, group="arm")
        assert sum(result.n_per_group) == 3
        assert result.warnings

    def test_array_group_with_design_rejected(self, cohort):
        with pytest.raises(ValidationError, match="covariate name"):
            survdiff(cohort, group=np.zeros(cohort.n))


class TestLogRankSolution:
    def test_summary_output(self):
        s = survdiff(TWO_GROUP_TIME, TWO_GROUP_EVENT, TWO_GROUP).summary()
        assert "survdiff()" in s
        assert "Chisq=" in s
        assert "degrees of freedom" in s
        assert "Observed" in s

    def test_repr(self):
        r = repr(survdiff(TWO_GROUP_TIME, TWO_GROUP_EVENT, TWO_GROUP))
        assert "LogRankSolution" in r
        assert "chisq=" in r

    def test_backend_and_provenance(self):
        result = survdiff(TWO_GROUP_TIME, TWO_GROUP_EVENT, TWO_GROUP)
        assert result.backend_name == "cpu_logrank"
        assert result.timing is not None
        assert "numpy_version" in result._result.provenance


class TestPairwise:
    """Hierarchical post-hoc pairwise log-rank tests."""

    def test_runs_when_global_rejects(self):
        result = pairwise_survdiff(SEP_TIME, SEP_EVENT, SEP_GROUP)

        assert isinstance(result, PairwiseLogRankSolution)
        assert result.performed
        assert len(result.comparisons) == 3
        assert result.p_adjust == "BH"

    def test_pair_matches_two_group_test(self):
        result = pairwise_survdiff(SEP_TIME, SEP_EVENT, SEP_GROUP)
        mask = SEP_GROUP != "middle"
        direct = survdiff(SEP_TIME[mask], SEP_EVENT[mask], SEP_GROUP[mask])

        c = result.comparison("late", "early")
        assert c.statistic == pytest.approx(direct.statistic, rel=1e-12)
        assert c.p_value == pytest.approx(direct.p_value, rel=1e-12)

    def test_adjusted_p_values(self):
        result = pairwise_survdiff(SEP_TIME, SEP_EVENT, SEP_GROUP, p_adjust="bonferroni")
        for c in result.comparisons:
            assert c.p_adjusted == pytest.approx(min(3 * c.p_value, 1.0))

    def test_skipped_when_global_not_significant(self):
        time = np.tile([1, 2, 3, 4, 5], 3)
        event = np.tile([1, 1, 0, 1, 1], 3)
        group = np.repeat(["a", "b", "c"], 5)

        result = pairwise_survdiff(time, event, group)
        assert not result.performed
        assert result.comparisons == ()
        assert result.global_test.p_value > 0.05
        assert "not performed" in result.summary()

    def test_force(self):
        time = np.tile([1, 2, 3, 4, 5], 3)
        event = np.tile([1, 1, 0, 1, 1], 3)
        group = np.repeat(["a", "b", "c"], 5)

        result = pairwise_survdiff(time, event, group, force=True)
        assert result.performed
        assert len(result.comparisons) == 3

    def test_global_test_solution(self):
        result = pairwise_survdiff(SEP_TIME, SEP_EVENT, SEP_GROUP)
        direct = survdiff(SEP_TIME, SEP_EVENT, SEP_GROUP)
        assert result.global_test.statistic == pytest.approx(direct.statistic)

    def test_unknown_pair(self):
        result = pairwise_survdiff(SEP_TIME, SEP_EVENT, SEP_GROUP)
        with pytest.raises(KeyError):
            result.comparison("early", "never")

    def test_invalid_method(self):
        with pytest.raises(ValidationError, match="p_adjust"):
            pairwise_survdiff(SEP_TIME, SEP_EVENT, SEP_GROUP, p_adjust="fdr")

    def test_summary(self):
        s = pairwise_survdiff(SEP_TIME, SEP_EVENT, SEP_GROUP).summary()
        assert "early vs late" in s


class TestPAdjust:
    """p-value adjustment matching R p.adjust()."""

    def test_bh(self):
        # R: p.adjust(c(0.01, 0.02, 0.03, 0.04, 0.05), "BH") → all 0.05
        assert_allclose(p_adjust([0.01, 0.02, 0.03, 0.04, 0.05], "BH"), [0.05] * 5)

    def test_holm(self):
        # R: p.adjust(c(0.01, 0.04, 0.03), "holm") → 0.03 0.06 0.06
        assert_allclose(p_adjust([0.01, 0.04, 0.03], "holm"), [0.03, 0.06, 0.06])

    def test_bonferroni_capped(self):
        assert_allclose(p_adjust([0.01, 0.5], "bonferroni"), [0.02, 1.0])

    def test_none(self):
        assert_allclose(p_adjust([0.2, 0.1], "none"), [0.2, 0.1])

    def test_unknown_method(self):
        with pytest.raises(ValidationError):
            p_adjust([0.1], "hochberg")
