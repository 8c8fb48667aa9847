"""
Parameter payloads for survival analysis results.

Each dataclass is a frozen payload carried inside a Result[P] envelope.
"""

from __future__ import annotations

from dataclasses import dataclass

from numpy.typing import NDArray


@dataclass(frozen=True)
class KMParams:
    """Kaplan-Meier survival curve parameters.

    Matches the output of R's survival::survfit().
    """

    time: NDArray                # (m,) distinct event times
    survival: NDArray            # (m,) S(t) at each event time
    n_risk: NDArray              # (m,) number at risk just before each time
    n_events: NDArray            # (m,) events at each time
    n_censored: NDArray          # (m,) censored in [t_j, t_{j+1})
    se: NDArray                  # (m,) Greenwood standard error
    ci_lower: NDArray            # (m,) lower CI for S(t)
    ci_upper: NDArray            # (m,) upper CI for S(t)
    conf_level: float            # confidence level (e.g. 0.95)
    conf_type: str               # CI type: "log" (default), "plain", "log-log"
    n_observations: int          # total n
    n_events_total: int          # total events (within horizon)
    max_time: float              # last follow-up time covered by the curve


@dataclass(frozen=True)
class LogRankParams:
    """Log-rank test parameters.

    Matches the output of R's survival::survdiff().
    """

    statistic: float             # chi-squared statistic
    df: int                      # degrees of freedom (rank of V)
    p_value: float
    n_groups: int
    observed: NDArray            # (n_groups,) observed events per group
    expected: NDArray            # (n_groups,) expected events per group
    variance: NDArray            # (n_groups, n_groups) covariance of O - E
    n_per_group: NDArray         # (n_groups,) subjects per group
    rho: float                   # weight parameter (0=log-rank, 1=Peto-Peto)
    group_labels: NDArray        # unique group labels
    singular: bool               # generalized inverse was needed


@dataclass(frozen=True)
class PairwiseComparison:
    """One two-group log-rank comparison."""

    group_a: object
    group_b: object
    statistic: float
    df: int
    p_value: float
    p_adjusted: float


@dataclass(frozen=True)
class PairwiseLogRankParams:
    """Global log-rank test plus gated post-hoc pairwise comparisons."""

    global_test: LogRankParams
    comparisons: tuple[PairwiseComparison, ...]
    performed: bool              # False when the global test did not reject
    alpha: float
    p_adjust: str


@dataclass(frozen=True)
class CoxParams:
    """Cox proportional hazards model parameters.

    Matches the output of R's survival::coxph().
    """

    coefficients: NDArray        # (p,) log hazard ratios
    hazard_ratios: NDArray       # (p,) exp(coef)
    standard_errors: NDArray     # (p,) from observed information matrix
    z_statistics: NDArray        # (p,) coef / se
    p_values: NDArray            # (p,) two-sided Wald test
    ci_lower: NDArray            # (p,) exp(coef - z * se)
    ci_upper: NDArray            # (p,) exp(coef + z * se)
    conf_level: float
    vcov: NDArray                # (p, p) inverse observed information
    loglik: tuple[float, float]  # (null log-lik, model log-lik)
    wald_statistic: float        # global Wald test, p df
    score_statistic: float       # global score (log-rank) test at beta = 0
    concordance: float           # Harrell's C-statistic
    baseline_time: NDArray       # (m,) distinct event times
    baseline_cumhaz: NDArray     # (m,) Breslow cumulative hazard at x = 0
    baseline_strata: NDArray     # (m,) stratum label of each row
    n_events: int
    n_observations: int
    n_iter: int                  # Newton-Raphson iterations
    converged: bool
    ties: str                    # "efron" or "breslow"
    column_names: tuple[str, ...]
    term_columns: dict[str, tuple[int, ...]]
    n_strata: int


@dataclass(frozen=True)
class ZPHParams:
    """Proportional-hazards test parameters.

    Matches the output of R's survival::cox.zph() (per-coefficient form).
    """

    names: tuple[str, ...]
    statistics: NDArray          # (p,) chi-square, 1 df each
    p_values: NDArray            # (p,)
    correlations: NDArray        # (p,) corr(transformed time, scaled resid)
    global_statistic: float
    global_df: int
    global_p_value: float
    transform: str
    event_times: NDArray         # (d,) one entry per event
    transformed_time: NDArray    # (d,)
    scaled_residuals: NDArray    # (d, p)
    schoenfeld_residuals: NDArray  # (d, p) unscaled


@dataclass(frozen=True)
class EliminationStep:
    """One refit of backward elimination."""

    dropped: str                 # term label removed at this step
    wald_p_value: float          # its Wald p-value in the larger model
    lr_statistic: float          # 2 * (loglik_larger - loglik_smaller)
    lr_df: int
    lr_p_value: float
    remaining: tuple[str, ...]   # terms left after dropping


@dataclass(frozen=True)
class EliminationParams:
    """Backward elimination trace."""

    initial_terms: tuple[str, ...]
    final_terms: tuple[str, ...]
    steps: tuple[EliminationStep, ...]
    alpha: float
    keep: tuple[str, ...]
