"""
Solution wrappers for survival analysis results.

Each Solution wraps a Result[Params] and exposes user-friendly properties
with R-style summary() methods.
"""

from __future__ import annotations

from typing import Iterator

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pysurvstat.core.exceptions import ValidationError
from pysurvstat.core.result import Result
from pysurvstat.survival._common import (
    CoxParams,
    EliminationParams,
    KMParams,
    LogRankParams,
    PairwiseLogRankParams,
    ZPHParams,
)
from pysurvstat.survival._cox import term_wald_test
from pysurvstat.survival._stepwise import likelihood_ratio
from pysurvstat.survival.control import ALPHA
from pysurvstat.survival.design import SurvivalDesign


def _format_p(p: float) -> str:
    return f"{p:.4g}" if p >= 2e-16 else "<2e-16"


class KMSolution:
    """Kaplan-Meier survival curve solution.

    Properties mirror R's survfit() output.
    """

    __slots__ = ('_result',)

    def __init__(self, _result: Result[KMParams]) -> None:
        self._result = _result

    # -- Properties delegating to KMParams --

    @property
    def time(self):
        """Unique event times."""
        return self._result.params.time

    @property
    def survival(self):
        """S(t) at each event time."""
        return self._result.params.survival

    @property
    def n_risk(self):
        """Number at risk just before each event time."""
        return self._result.params.n_risk

    @property
    def n_events(self):
        """Number of events at each event time."""
        return self._result.params.n_events

    @property
    def n_censored(self):
        """Number censored in [t_j, t_{j+1})."""
        return self._result.params.n_censored

    @property
    def se(self):
        """Greenwood standard error of S(t)."""
        return self._result.params.se

    @property
    def ci_lower(self):
        """Lower confidence bound for S(t)."""
        return self._result.params.ci_lower

    @property
    def ci_upper(self):
        """Upper confidence bound for S(t)."""
        return self._result.params.ci_upper

    @property
    def conf_level(self) -> float:
        return self._result.params.conf_level

    @property
    def conf_type(self) -> str:
        return self._result.params.conf_type

    @property
    def n_observations(self) -> int:
        return self._result.params.n_observations

    @property
    def n_events_total(self) -> int:
        return self._result.params.n_events_total

    @property
    def max_time(self) -> float:
        """Last follow-up time the curve covers."""
        return self._result.params.max_time

    @property
    def label(self):
        """Stratum label, or None for a pooled curve."""
        return self._result.info.get("stratum")

    @property
    def median_survival(self) -> float | None:
        """Median survival time (smallest t where S(t) <= 0.5).

        None when the curve never reaches 0.5 ("not reached").
        """
        return _first_crossing(self.time, self.survival)

    @property
    def median_ci(self) -> tuple[float | None, float | None]:
        """Confidence interval for the median, read off the CI curves.

        The lower limit is where the lower band first reaches 0.5 and the
        upper limit where the upper band does; either may be None.
        """
        return (
            _first_crossing(self.time, self.ci_lower),
            _first_crossing(self.time, self.ci_upper),
        )

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    def survival_at(self, t) -> NDArray:
        """Evaluate the right-continuous step function S(t).

        Times past the end of follow-up are NaN: the curve is not
        extrapolated.
        """
        t_arr = np.atleast_1d(np.asarray(t, dtype=np.float64))
        idx = np.searchsorted(self.time, t_arr, side="right")
        values = np.concatenate([[1.0], self.survival])[idx]
        return np.where(t_arr > self.max_time, np.nan, values)

    def steps(self) -> tuple[NDArray, NDArray]:
        """Step-plot coordinates (use with ``where='post'``).

        Starts at (0, 1.0), has one point per event time and, when
        follow-up continues past the last event, a final point at
        ``max_time``.
        """
        t = np.concatenate([[0.0], self.time])
        s = np.concatenate([[1.0], self.survival])
        if self.max_time > t[-1]:
            t = np.append(t, self.max_time)
            s = np.append(s, s[-1])
        return t, s

    def summary(self) -> str:
        """R-style summary of Kaplan-Meier fit."""
        lines = []
        title = "Call: kaplan_meier()"
        if self.label is not None:
            title += f"  stratum: {self.label}"
        lines.append(title)
        lines.append("")
        lines.append(
            f"  n={self.n_observations}, "
            f"events={self.n_events_total}"
        )
        lines.append("")

        median = self.median_survival
        lcl, ucl = self.median_ci
        lines.append(
            f"  median survival = {_fmt_time(median)}  "
            f"({int(self.conf_level * 100)}% CI {_fmt_time(lcl)}, "
            f"{_fmt_time(ucl)})"
        )
        lines.append("")

        # Table header
        ci_pct = int(self.conf_level * 100)
        lines.append(
            f"  {'time':>8s}  {'n.risk':>8s}  {'n.event':>8s}  "
            f"{'survival':>10s}  {'se':>10s}  "
            f"{f'lower {ci_pct}%':>10s}  {f'upper {ci_pct}%':>10s}"
        )

        # Show up to 20 rows
        m = len(self.time)
        show = min(m, 20)
        for i in range(show):
            lines.append(
                f"  {self.time[i]:8.4g}  {self.n_risk[i]:8.0f}  "
                f"{self.n_events[i]:8.0f}  "
                f"{self.survival[i]:10.6f}  {self.se[i]:10.6f}  "
                f"{self.ci_lower[i]:10.6f}  {self.ci_upper[i]:10.6f}"
            )
        if m > 20:
            lines.append(f"  ... ({m - 20} more rows)")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"KMSolution(n={self.n_observations}, "
            f"events={self.n_events_total}, "
            f"median={self.median_survival})"
        )


def _first_crossing(time: NDArray, curve: NDArray) -> float | None:
    # Products of (1 - d/n) can land an ulp above 0.5
    idx = np.flatnonzero(curve <= 0.5 + 1e-12)
    if len(idx) == 0:
        return None
    return float(time[idx[0]])


def _fmt_time(t: float | None) -> str:
    return "not reached" if t is None else f"{t:.4g}"


class KMStrataSolution:
    """One Kaplan-Meier curve per stratum, keyed by stratum label."""

    __slots__ = ('_curves', '_variable')

    def __init__(self, curves: dict, variable: str | None = None) -> None:
        self._curves = dict(curves)
        self._variable = variable

    @property
    def labels(self) -> list:
        return list(self._curves)

    @property
    def variable(self) -> str | None:
        """Covariate the strata were taken from, if named."""
        return self._variable

    @property
    def medians(self) -> dict:
        """Stratum label -> median survival (None if not reached)."""
        return {k: v.median_survival for k, v in self._curves.items()}

    def __getitem__(self, label) -> KMSolution:
        try:
            return self._curves[label]
        except KeyError:
            raise KeyError(
                f"no stratum {label!r}; strata are {self.labels}"
            ) from None

    def __iter__(self) -> Iterator:
        return iter(self._curves)

    def __len__(self) -> int:
        return len(self._curves)

    def items(self):
        return self._curves.items()

    def summary(self) -> str:
        lines = [f"Call: kaplan_meier(strata={self._variable or '...'})", ""]
        lines.append(
            f"  {'stratum':>12s}  {'n':>6s}  {'events':>6s}  "
            f"{'median':>12s}  {'lower':>12s}  {'upper':>12s}"
        )
        for label, km in self._curves.items():
            lcl, ucl = km.median_ci
            lines.append(
                f"  {str(label):>12s}  {km.n_observations:6d}  "
                f"{km.n_events_total:6d}  "
                f"{_fmt_time(km.median_survival):>12s}  "
                f"{_fmt_time(lcl):>12s}  {_fmt_time(ucl):>12s}"
            )
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"KMStrataSolution(strata={self.labels})"


class LogRankSolution:
    """Log-rank test solution.

    Properties mirror R's survdiff() output.
    """

    __slots__ = ('_result',)

    def __init__(self, _result: Result[LogRankParams]) -> None:
        self._result = _result

    @property
    def statistic(self) -> float:
        return self._result.params.statistic

    @property
    def df(self) -> int:
        return self._result.params.df

    @property
    def p_value(self) -> float:
        return self._result.params.p_value

    @property
    def n_groups(self) -> int:
        return self._result.params.n_groups

    @property
    def observed(self):
        return self._result.params.observed

    @property
    def expected(self):
        return self._result.params.expected

    @property
    def variance(self):
        """k x k covariance matrix of O - E."""
        return self._result.params.variance

    @property
    def n_per_group(self):
        return self._result.params.n_per_group

    @property
    def rho(self) -> float:
        return self._result.params.rho

    @property
    def group_labels(self):
        return self._result.params.group_labels

    @property
    def singular(self) -> bool:
        """True when a generalized inverse was needed (reduced confidence)."""
        return self._result.params.singular

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    def summary(self) -> str:
        """R-style summary of log-rank test."""
        lines = []
        lines.append("Call: survdiff()")
        lines.append("")

        # Group table
        lines.append(f"  {'':>12s}  {'N':>6s}  {'Observed':>10s}  {'Expected':>10s}  {'(O-E)^2/E':>10s}")
        for i in range(self.n_groups):
            oe = ((self.observed[i] - self.expected[i]) ** 2
                  / self.expected[i]) if self.expected[i] > 0 else 0
            label = str(self.group_labels[i])
            lines.append(
                f"  {label:>12s}  {self.n_per_group[i]:6.0f}  "
                f"{self.observed[i]:10.1f}  {self.expected[i]:10.1f}  "
                f"{oe:10.3f}"
            )

        lines.append("")
        lines.append(
            f"  Chisq= {self.statistic:.4f} on {self.df} degrees of freedom, "
            f"p= {_format_p(self.p_value)}"
        )
        if self.singular:
            lines.append("  (singular covariance: generalized inverse used)")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"LogRankSolution(chisq={self.statistic:.4f}, "
            f"df={self.df}, p={self.p_value:.4g})"
        )


class PairwiseLogRankSolution:
    """Global log-rank test with post-hoc pairwise comparisons."""

    __slots__ = ('_result',)

    def __init__(self, _result: Result[PairwiseLogRankParams]) -> None:
        self._result = _result

    @property
    def global_test(self) -> LogRankSolution:
        r = self._result
        return LogRankSolution(_result=Result(
            params=r.params.global_test,
            info=r.info,
            timing=r.timing,
            backend_name=r.backend_name,
            warnings=r.warnings,
            provenance=r.provenance,
        ))

    @property
    def comparisons(self):
        """Tuple of PairwiseComparison, empty when not performed."""
        return self._result.params.comparisons

    @property
    def performed(self) -> bool:
        """Whether the global test rejected (or pairwise tests were forced)."""
        return self._result.params.performed

    @property
    def alpha(self) -> float:
        return self._result.params.alpha

    @property
    def p_adjust(self) -> str:
        return self._result.params.p_adjust

    @property
    def timing(self):
        return self._result.timing

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    def comparison(self, a, b):
        """The comparison of groups a and b, in either order."""
        for c in self.comparisons:
            if {c.group_a, c.group_b} == {a, b}:
                return c
        raise KeyError(f"no pairwise comparison of {a!r} and {b!r}")

    def summary(self) -> str:
        g = self._result.params.global_test
        lines = ["Call: pairwise_survdiff()", ""]
        lines.append(
            f"  Global: Chisq= {g.statistic:.4f} on {g.df} df, "
            f"p= {_format_p(g.p_value)}"
        )
        lines.append("")
        if not self.performed:
            lines.append(
                f"  Pairwise comparisons not performed "
                f"(global p >= {self.alpha})"
            )
            return "\n".join(lines)

        lines.append(
            f"  {'comparison':>20s}  {'Chisq':>10s}  {'p':>10s}  "
            f"{'p.adj (' + self.p_adjust + ')':>14s}"
        )
        for c in self.comparisons:
            name = f"{c.group_a} vs {c.group_b}"
            lines.append(
                f"  {name:>20s}  {c.statistic:10.4f}  "
                f"{_format_p(c.p_value):>10s}  {_format_p(c.p_adjusted):>14s}"
            )
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"PairwiseLogRankSolution(performed={self.performed}, "
            f"comparisons={len(self.comparisons)})"
        )


class CoxSolution:
    """Cox proportional hazards solution.

    Properties mirror R's coxph() output. Holds the design it was fitted
    on so that diagnostics and risk scores need no further input.
    """

    __slots__ = ('_result', '_design')

    def __init__(
        self,
        _result: Result[CoxParams],
        _design: SurvivalDesign | None = None,
    ) -> None:
        self._result = _result
        self._design = _design

    @property
    def coefficients(self):
        return self._result.params.coefficients

    @property
    def hazard_ratios(self):
        return self._result.params.hazard_ratios

    @property
    def standard_errors(self):
        return self._result.params.standard_errors

    @property
    def z_statistics(self):
        return self._result.params.z_statistics

    @property
    def p_values(self):
        return self._result.params.p_values

    @property
    def ci_lower(self):
        """Lower confidence bound of the hazard ratio."""
        return self._result.params.ci_lower

    @property
    def ci_upper(self):
        """Upper confidence bound of the hazard ratio."""
        return self._result.params.ci_upper

    @property
    def conf_level(self) -> float:
        return self._result.params.conf_level

    @property
    def vcov(self):
        return self._result.params.vcov

    @property
    def loglik(self):
        """(null log partial likelihood, fitted log partial likelihood)."""
        return self._result.params.loglik

    @property
    def concordance(self) -> float:
        return self._result.params.concordance

    @property
    def names(self) -> tuple[str, ...]:
        """Coefficient (model matrix column) names."""
        return self._result.params.column_names

    @property
    def terms(self) -> tuple[str, ...]:
        """Term labels, in model order."""
        return tuple(self._result.params.term_columns)

    @property
    def term_columns(self) -> dict[str, tuple[int, ...]]:
        return self._result.params.term_columns

    @property
    def baseline_hazard(self) -> tuple[NDArray, NDArray, NDArray]:
        """Breslow cumulative baseline hazard at x = 0.

        Returns (time, cumulative_hazard, stratum) arrays.
        """
        p = self._result.params
        return p.baseline_time, p.baseline_cumhaz, p.baseline_strata

    @property
    def n_events(self) -> int:
        return self._result.params.n_events

    @property
    def n_observations(self) -> int:
        return self._result.params.n_observations

    @property
    def n_strata(self) -> int:
        return self._result.params.n_strata

    @property
    def n_iter(self) -> int:
        return self._result.params.n_iter

    @property
    def converged(self) -> bool:
        return self._result.params.converged

    @property
    def ties(self) -> str:
        return self._result.params.ties

    @property
    def design(self) -> SurvivalDesign | None:
        """Event time table (with model matrix) the model was fitted on."""
        return self._design

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    # -- Global tests --

    @property
    def lr_statistic(self) -> float:
        return 2.0 * (self.loglik[1] - self.loglik[0])

    def global_tests(self) -> dict[str, tuple[float, int, float]]:
        """Likelihood ratio, Wald and score tests that all β are zero.

        Returns name -> (statistic, df, p_value).
        """
        df = len(self.coefficients)
        p = self._result.params
        out = {}
        for name, stat in (
            ("likelihood_ratio", max(self.lr_statistic, 0.0)),
            ("wald", p.wald_statistic),
            ("score", p.score_statistic),
        ):
            out[name] = (float(stat), df, float(stats.chi2.sf(stat, df)))
        return out

    def term_tests(self) -> dict[str, tuple[float, int, float]]:
        """Multi-df Wald test per term: label -> (statistic, df, p_value)."""
        return {
            label: term_wald_test(self._result.params, label)
            for label in self.term_columns
        }

    def lr_test(self, other: CoxSolution) -> tuple[float, int, float]:
        """Likelihood-ratio test between this fit and a nested one.

        Either model may be the larger. Both must be fitted on the same
        subjects.

        Returns
        -------
        (statistic, df, p_value)
        """
        a, b = self._result.params, other._result.params
        larger, smaller = (a, b) if len(a.coefficients) >= len(b.coefficients) else (b, a)
        return likelihood_ratio(larger, smaller)

    # -- Prediction --

    def linear_predictor(self, X=None) -> NDArray:
        """β·x per subject (the fitted subjects when X is None)."""
        if X is None:
            if self._design is None or self._design.X is None:
                raise ValidationError("no fitted design; pass X explicitly")
            X = self._design.X
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 1:
            X = X.reshape(-1, 1) if len(self.coefficients) == 1 else X.reshape(1, -1)
        if X.shape[1] != len(self.coefficients):
            raise ValidationError(
                f"X has {X.shape[1]} columns, model has "
                f"{len(self.coefficients)} coefficients"
            )
        return X @ self.coefficients

    def risk_scores(self, X=None) -> NDArray:
        """Relative hazard exp(β·x) per subject."""
        return np.exp(self.linear_predictor(X))

    def summary(self) -> str:
        """R-style summary of Cox PH fit."""
        lines = []
        lines.append("Call: coxph()")
        lines.append("")
        lines.append(
            f"  n= {self.n_observations}, "
            f"number of events= {self.n_events}"
            + (f", strata= {self.n_strata}" if self.n_strata > 1 else "")
        )
        lines.append("")

        width = max([10] + [len(n) for n in self.names])

        # Coefficient table
        lines.append(
            f"  {'':>{width}s}  {'coef':>10s}  {'exp(coef)':>10s}  "
            f"{'se(coef)':>10s}  {'z':>10s}  {'Pr(>|z|)':>12s}"
        )
        p = len(self.coefficients)
        for i in range(p):
            lines.append(
                f"  {self.names[i]:>{width}s}  {self.coefficients[i]:10.6f}  "
                f"{self.hazard_ratios[i]:10.6f}  "
                f"{self.standard_errors[i]:10.6f}  "
                f"{self.z_statistics[i]:10.4f}  "
                f"{_format_p(self.p_values[i]):>12s}"
            )

        lines.append("")
        pct = f"{self.conf_level * 100:g}%"
        lines.append(
            f"  {'':>{width}s}  {'exp(coef)':>10s}  {'lower ' + pct:>10s}  "
            f"{'upper ' + pct:>10s}"
        )
        for i in range(p):
            lines.append(
                f"  {self.names[i]:>{width}s}  {self.hazard_ratios[i]:10.4f}  "
                f"{self.ci_lower[i]:10.4f}  {self.ci_upper[i]:10.4f}"
            )

        lines.append("")
        lines.append(
            f"  Concordance= {self.concordance:.4f}"
        )
        labels = {
            "likelihood_ratio": "Likelihood ratio test",
            "wald": "Wald test",
            "score": "Score (logrank) test",
        }
        for key, (stat, df, pv) in self.global_tests().items():
            lines.append(
                f"  {labels[key]}= {stat:.4f} on {df} df, p= {_format_p(pv)}"
            )

        for w in self.warnings:
            lines.append(f"  Warning: {w}")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"CoxSolution(n={self.n_observations}, "
            f"events={self.n_events}, "
            f"concordance={self.concordance:.4f})"
        )


class ZPHSolution:
    """Proportional-hazards test solution.

    Properties mirror R's cox.zph() output.
    """

    __slots__ = ('_result',)

    def __init__(self, _result: Result[ZPHParams]) -> None:
        self._result = _result

    @property
    def names(self) -> tuple[str, ...]:
        return self._result.params.names

    @property
    def statistics(self):
        return self._result.params.statistics

    @property
    def df(self):
        return np.ones(len(self.names), dtype=int)

    @property
    def p_values(self):
        return self._result.params.p_values

    @property
    def correlations(self):
        """Correlation of transformed time with each scaled residual."""
        return self._result.params.correlations

    @property
    def global_statistic(self) -> float:
        return self._result.params.global_statistic

    @property
    def global_df(self) -> int:
        return self._result.params.global_df

    @property
    def global_p_value(self) -> float:
        return self._result.params.global_p_value

    @property
    def transform(self) -> str:
        return self._result.params.transform

    @property
    def event_times(self):
        return self._result.params.event_times

    @property
    def transformed_time(self):
        return self._result.params.transformed_time

    @property
    def scaled_residuals(self):
        """(d, p) scaled Schoenfeld residuals, for plotting against time."""
        return self._result.params.scaled_residuals

    @property
    def schoenfeld_residuals(self):
        return self._result.params.schoenfeld_residuals

    @property
    def timing(self):
        return self._result.timing

    def table(self) -> dict[str, tuple[float, int, float]]:
        """name -> (chisq, df, p), with a final "GLOBAL" row."""
        rows = {
            name: (float(s), 1, float(p))
            for name, s, p in zip(self.names, self.statistics, self.p_values)
        }
        rows["GLOBAL"] = (self.global_statistic, self.global_df, self.global_p_value)
        return rows

    def ph_ok(self, alpha: float = ALPHA) -> bool:
        """True when no term and not the global test rejects at alpha."""
        return bool(np.all(self.p_values > alpha) and self.global_p_value > alpha)

    def summary(self) -> str:
        width = max([8] + [len(n) for n in self.names])
        lines = [f"Call: cox_zph(transform={self.transform!r})", ""]
        lines.append(f"  {'':>{width}s}  {'chisq':>10s}  {'df':>4s}  {'p':>10s}")
        for name, (chisq, df, p) in self.table().items():
            lines.append(
                f"  {name:>{width}s}  {chisq:10.4f}  {df:4d}  {_format_p(p):>10s}"
            )
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"ZPHSolution(global_chisq={self.global_statistic:.4f}, "
            f"df={self.global_df}, p={self.global_p_value:.4g})"
        )


class EliminationSolution:
    """Backward elimination trace with the initial and final Cox fits."""

    __slots__ = ('_result', '_initial', '_final')

    def __init__(
        self,
        _result: Result[EliminationParams],
        _initial: CoxSolution,
        _final: CoxSolution,
    ) -> None:
        self._result = _result
        self._initial = _initial
        self._final = _final

    @property
    def steps(self):
        """Tuple of EliminationStep, in the order terms were dropped."""
        return self._result.params.steps

    @property
    def dropped(self) -> list[str]:
        return [s.dropped for s in self.steps]

    @property
    def initial_terms(self) -> tuple[str, ...]:
        return self._result.params.initial_terms

    @property
    def final_terms(self) -> tuple[str, ...]:
        return self._result.params.final_terms

    @property
    def initial_fit(self) -> CoxSolution:
        return self._initial

    @property
    def final_fit(self) -> CoxSolution:
        return self._final

    @property
    def alpha(self) -> float:
        return self._result.params.alpha

    @property
    def timing(self):
        return self._result.timing

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    def summary(self) -> str:
        lines = ["Call: backward_eliminate()", ""]
        lines.append(f"  start: {' + '.join(self.initial_terms)}")
        if not self.steps:
            lines.append("  no term removed")
        for i, s in enumerate(self.steps, 1):
            lines.append(
                f"  step {i}: drop {s.dropped} (Wald p= {_format_p(s.wald_p_value)}); "
                f"LR= {s.lr_statistic:.4f} on {s.lr_df} df, "
                f"p= {_format_p(s.lr_p_value)}"
            )
        lines.append(f"  final: {' + '.join(self.final_terms)}")
        lines.append("")
        lines.append(self._final.summary())
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"EliminationSolution(dropped={self.dropped}, "
            f"final={list(self.final_terms)})"
        )
