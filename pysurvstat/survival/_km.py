"""
Kaplan-Meier product-limit estimator.

Matches R's survival::survfit(Surv(time, event) ~ 1):
- Product-limit survival estimate: S(t) = ∏(1 - d_j / n_j)
- Greenwood variance: Var(S(t)) = S(t)^2 * Σ(d_j / (n_j * (n_j - d_j)))
- Confidence intervals via log, plain, or log-log transformation

References:
    Kaplan, E. L., & Meier, P. (1958). Nonparametric estimation from
        incomplete observations. JASA, 53(282), 457-481.
    R Core Team. survival::survfit.formula
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pysurvstat.survival._common import KMParams


def kaplan_meier_fit(
    time: NDArray,
    event: NDArray,
    conf_level: float,
    conf_type: str,
    horizon: float | None = None,
) -> KMParams:
    """Compute Kaplan-Meier survival curve.

    Parameters
    ----------
    time : NDArray
        (n,) time to event or censoring.
    event : NDArray
        (n,) event indicator (1=event, 0=censored).
    conf_level : float
        Confidence level for CI (e.g. 0.95).
    conf_type : str
        CI type: "log" (default, matches R), "plain", "log-log".
    horizon : float or None
        Only event times <= horizon enter the curve.

    Returns
    -------
    KMParams
    """
    n_total = len(time)

    # Ascending time, events before censoring at tied times
    order = np.lexsort((-event, time))
    t_sorted = time[order]
    e_sorted = event[order]

    event_t = t_sorted[e_sorted == 1]
    cens_t = t_sorted[e_sorted == 0]

    unique_event_times = np.unique(event_t)
    if horizon is not None:
        unique_event_times = unique_event_times[unique_event_times <= horizon]

    max_time = float(t_sorted[-1]) if n_total > 0 else 0.0
    if horizon is not None:
        max_time = min(max_time, float(horizon))

    m = len(unique_event_times)
    if m == 0:
        # No events: survival is 1 everywhere
        empty = np.array([], dtype=np.float64)
        return KMParams(
            time=empty,
            survival=empty,
            n_risk=empty,
            n_events=empty,
            n_censored=empty,
            se=empty,
            ci_lower=empty,
            ci_upper=empty,
            conf_level=conf_level,
            conf_type=conf_type,
            n_observations=n_total,
            n_events_total=0,
            max_time=max_time,
        )

    # n_j: alive and uncensored just before t_j (time >= t_j)
    n_risk = (n_total - np.searchsorted(t_sorted, unique_event_times, side="left"))
    n_risk = n_risk.astype(np.float64)

    # d_j: events exactly at t_j
    n_events = (
        np.searchsorted(event_t, unique_event_times, side="right")
        - np.searchsorted(event_t, unique_event_times, side="left")
    ).astype(np.float64)

    # Censored in [t_j, t_{j+1}); the last interval runs to the horizon
    upper = np.append(unique_event_times[1:], np.inf)
    hi = np.searchsorted(cens_t, upper, side="left")
    if horizon is not None:
        hi[-1] = np.searchsorted(cens_t, horizon, side="right")
    lo = np.searchsorted(cens_t, unique_event_times, side="left")
    n_censored = (hi - lo).astype(np.float64)

    # Product-limit estimate: S(t) = ∏_{j: t_j <= t} (1 - d_j / n_j)
    survival = np.cumprod(1.0 - n_events / n_risk)

    # Greenwood variance; n_j == d_j (all at risk die) contributes nothing
    denom = n_risk * (n_risk - n_events)
    denom = np.where(denom > 0, denom, np.inf)
    greenwood_sum = np.cumsum(n_events / denom)
    se = np.sqrt(survival ** 2 * greenwood_sum)

    z = stats.norm.ppf((1.0 + conf_level) / 2.0)
    ci_lower, ci_upper = _compute_ci(survival, se, z, conf_type)

    return KMParams(
        time=unique_event_times,
        survival=survival,
        n_risk=n_risk,
        n_events=n_events,
        n_censored=n_censored,
        se=se,
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        conf_level=conf_level,
        conf_type=conf_type,
        n_observations=n_total,
        n_events_total=int(n_events.sum()),
        max_time=max_time,
    )


def _compute_ci(
    survival: NDArray,
    se: NDArray,
    z: float,
    conf_type: str,
) -> tuple[NDArray, NDArray]:
    """Compute CI for survival function.

    Parameters
    ----------
    survival : S(t) values
    se : Greenwood standard errors
    z : normal quantile (e.g. 1.96 for 95%)
    conf_type : "log", "plain", or "log-log"

    Returns
    -------
    (ci_lower, ci_upper) clipped to [0, 1]
    """
    with np.errstate(divide='ignore', invalid='ignore'):
        if conf_type == "plain":
            ci_lower = survival - z * se
            ci_upper = survival + z * se

        elif conf_type == "log":
            # exp(log(S) ± z * se / S)
            se_log = se / survival
            ci_lower = survival * np.exp(-z * se_log)
            ci_upper = survival * np.exp(z * se_log)

        elif conf_type == "log-log":
            # se of log(-log(S)) = se(S) / (S * |log(S)|)
            log_s = np.log(survival)
            log_neg_log_s = np.log(-log_s)
            se_loglog = se / (survival * np.abs(log_s))
            ci_lower = np.exp(-np.exp(log_neg_log_s + z * se_loglog))
            ci_upper = np.exp(-np.exp(log_neg_log_s - z * se_loglog))
        else:
            raise ValueError(
                f"Unknown conf_type '{conf_type}'. "
                f"Choose from 'log', 'plain', 'log-log'."
            )

    ci_lower = np.clip(ci_lower, 0.0, 1.0)
    ci_upper = np.clip(ci_upper, 0.0, 1.0)

    # NaN from S=0 or S=1 edge cases
    ci_lower = np.where(np.isnan(ci_lower), 0.0, ci_lower)
    ci_upper = np.where(np.isnan(ci_upper), 1.0, ci_upper)

    return ci_lower, ci_upper
