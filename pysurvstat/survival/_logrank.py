"""
Log-rank test (G-rho family) for comparing survival curves across groups.

Matches R's survival::survdiff(Surv(time, event) ~ group, rho=0):
- Standard log-rank test (rho=0): Mantel-Haenszel / Cochran-Mantel
- G-rho family (rho>0): Fleming-Harrington weighted variant
  When rho=1, gives the Peto & Peto modification of the Gehan-Wilcoxon test.

Algorithm:
    1. At each distinct event time t_j of the pooled sample:
       - n_kj = number at risk in group k, d_kj = events in group k
       - N_j = total at risk, D_j = total events
       - Expected events in group k: E_kj = n_kj * D_j / N_j
       - Weight w_j = S_hat(t_j-)^rho (pooled KM just before t_j)
    2. Hypergeometric covariance of (O - E):
       V_kl = Σ_j w_j^2 D_j (N_j - D_j) / (N_j^2 (N_j - 1))
                   * (δ_kl N_j n_kj - n_kj n_lj)
    3. Chi-squared = (O - E)' V^- (O - E) on the first k-1 groups; when
       that block is singular, a Moore-Penrose inverse of the full V is
       used and df = rank(V).

References:
    Harrington, D. P. & Fleming, T. R. (1982). A class of rank test
        procedures for censored survival data. Biometrika, 69(3), 553-566.
    R Core Team. survival::survdiff
"""

from __future__ import annotations

from itertools import combinations

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pysurvstat.core.exceptions import ValidationError
from pysurvstat.survival._common import (
    LogRankParams,
    PairwiseComparison,
    PairwiseLogRankParams,
)

P_ADJUST_METHODS = ("none", "bonferroni", "holm", "BH")


def logrank_test(
    time: NDArray,
    event: NDArray,
    group: NDArray,
    rho: float = 0.0,
) -> LogRankParams:
    """Compute log-rank test (G-rho family).

    Parameters
    ----------
    time : NDArray
        (n,) time to event or censoring.
    event : NDArray
        (n,) event indicator (1=event, 0=censored).
    group : NDArray
        (n,) group labels.
    rho : float
        G-rho weight parameter: rho=0 is standard log-rank,
        rho=1 is Peto & Peto / Gehan-Wilcoxon.

    Returns
    -------
    LogRankParams
    """
    unique_groups, group_idx = np.unique(group, return_inverse=True)
    n_groups = len(unique_groups)

    if n_groups < 2:
        raise ValidationError(
            f"Need at least 2 groups for log-rank test, got {n_groups}"
        )

    n_per_group = np.bincount(group_idx, minlength=n_groups).astype(np.float64)
    unique_event_times = np.unique(time[event == 1])

    if len(unique_event_times) == 0:
        # No events: nothing to compare
        return LogRankParams(
            statistic=0.0,
            df=n_groups - 1,
            p_value=1.0,
            n_groups=n_groups,
            observed=np.zeros(n_groups, dtype=np.float64),
            expected=np.zeros(n_groups, dtype=np.float64),
            variance=np.zeros((n_groups, n_groups), dtype=np.float64),
            n_per_group=n_per_group,
            rho=rho,
            group_labels=unique_groups,
            singular=False,
        )

    m = len(unique_event_times)

    # Per event time × per group: at risk and observed events
    n_kg = np.empty((m, n_groups), dtype=np.float64)
    d_kg = np.empty((m, n_groups), dtype=np.float64)
    for k in range(n_groups):
        in_k = group_idx == k
        t_k = np.sort(time[in_k])
        ev_k = np.sort(time[in_k & (event == 1)])
        n_kg[:, k] = len(t_k) - np.searchsorted(t_k, unique_event_times, side="left")
        d_kg[:, k] = (
            np.searchsorted(ev_k, unique_event_times, side="right")
            - np.searchsorted(ev_k, unique_event_times, side="left")
        )

    D_j = d_kg.sum(axis=1)     # (m,) total events at each time
    N_j = n_kg.sum(axis=1)     # (m,) total at risk at each time

    # --- G-rho weights ---
    if rho == 0.0:
        weights = np.ones(m, dtype=np.float64)
    else:
        # Pooled KM just before each event time
        s_before = np.ones(m, dtype=np.float64)
        s_before[1:] = np.cumprod(1.0 - D_j / N_j)[:-1]
        weights = s_before ** rho

    # --- Observed and expected ---
    observed = weights @ d_kg
    expected = weights @ (n_kg * (D_j / N_j)[:, np.newaxis])

    # --- Hypergeometric covariance ---
    with np.errstate(divide='ignore', invalid='ignore'):
        factor = np.where(
            N_j > 1,
            weights ** 2 * D_j * (N_j - D_j) / (N_j ** 2 * (N_j - 1)),
            0.0,
        )
    V = np.diag((factor * N_j) @ n_kg) - (n_kg * factor[:, np.newaxis]).T @ n_kg

    statistic, df, singular = _chisq(observed - expected, V)
    p_value = float(stats.chi2.sf(statistic, df)) if df > 0 else 1.0

    return LogRankParams(
        statistic=statistic,
        df=df,
        p_value=p_value,
        n_groups=n_groups,
        observed=observed,
        expected=expected,
        variance=V,
        n_per_group=n_per_group,
        rho=rho,
        group_labels=unique_groups,
        singular=singular,
    )


def _chisq(diff: NDArray, V: NDArray) -> tuple[float, int, bool]:
    """(O - E)' V^- (O - E), its df, and whether V was singular.

    The last group is dropped for the regular inverse since
    Σ(O_k - E_k) = 0 makes the full V rank k-1 at most.
    """
    df = len(diff) - 1
    V_sub = V[:df, :df]
    if np.linalg.matrix_rank(V_sub) == df:
        statistic = float(diff[:df] @ np.linalg.solve(V_sub, diff[:df]))
        return max(statistic, 0.0), df, False

    rank = int(np.linalg.matrix_rank(V))
    if rank == 0:
        return 0.0, 0, True
    statistic = float(diff @ np.linalg.pinv(V) @ diff)
    return max(statistic, 0.0), rank, True


def p_adjust(p: NDArray, method: str = "BH") -> NDArray:
    """Adjust p-values for multiple comparisons. Matches R p.adjust().

    Parameters
    ----------
    p : NDArray
        Raw p-values.
    method : str
        "none", "bonferroni", "holm" or "BH".

    Returns
    -------
    NDArray
        Adjusted p-values clipped to [0, 1].
    """
    if method not in P_ADJUST_METHODS:
        raise ValidationError(
            f"method must be one of {P_ADJUST_METHODS}, got {method!r}"
        )
    pv = np.asarray(p, dtype=np.float64).ravel()
    n = len(pv)
    if n == 0 or method == "none":
        return pv.copy()

    if method == "bonferroni":
        return np.minimum(pv * n, 1.0)

    if method == "holm":
        # Step-down: multiply by (n - rank + 1), cumulative max
        order = np.argsort(pv)
        adjusted_sorted = np.maximum.accumulate(
            pv[order] * np.arange(n, 0, -1, dtype=np.float64)
        )
    else:
        # Benjamini-Hochberg step-up: p * n / rank, cumulative min from top
        order = np.argsort(pv)[::-1]
        ranks = np.arange(n, 0, -1, dtype=np.float64)
        adjusted_sorted = np.minimum.accumulate(pv[order] * n / ranks)

    result = np.empty(n, dtype=np.float64)
    result[order] = np.clip(adjusted_sorted, 0.0, 1.0)
    return result


def pairwise_logrank(
    time: NDArray,
    event: NDArray,
    group: NDArray,
    rho: float = 0.0,
    alpha: float = 0.05,
    method: str = "BH",
    force: bool = False,
) -> PairwiseLogRankParams:
    """Global log-rank test followed by gated two-group comparisons.

    Pairwise tests run only when the global test rejects at ``alpha``
    (or ``force`` is set). Each pair is tested on its own subjects only,
    so risk sets contain members of the two groups being compared.
    """
    if method not in P_ADJUST_METHODS:
        raise ValidationError(
            f"p_adjust must be one of {P_ADJUST_METHODS}, got {method!r}"
        )
    global_test = logrank_test(time, event, group, rho=rho)
    performed = bool(force or global_test.p_value < alpha)
    if not performed:
        return PairwiseLogRankParams(
            global_test=global_test,
            comparisons=(),
            performed=False,
            alpha=alpha,
            p_adjust=method,
        )

    pairs = list(combinations(global_test.group_labels, 2))
    tests = []
    for a, b in pairs:
        mask = (group == a) | (group == b)
        tests.append(logrank_test(time[mask], event[mask], group[mask], rho=rho))

    adjusted = p_adjust(np.array([t.p_value for t in tests]), method)
    comparisons = tuple(
        PairwiseComparison(
            group_a=a,
            group_b=b,
            statistic=t.statistic,
            df=t.df,
            p_value=t.p_value,
            p_adjusted=float(adj),
        )
        for (a, b), t, adj in zip(pairs, tests, adjusted)
    )
    return PairwiseLogRankParams(
        global_test=global_test,
        comparisons=comparisons,
        performed=True,
        alpha=alpha,
        p_adjust=method,
    )
