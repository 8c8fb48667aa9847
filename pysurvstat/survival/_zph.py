"""
Test of the proportional hazards assumption for a fitted Cox model.

Matches the classic (per-coefficient) form of R's survival::cox.zph():

    Schoenfeld residual of event i at time t_i:
        r_i = x_i - E[x | R(t_i)]
        (risk-set weighted mean under the fitted β; for Efron ties the
        mean is averaged over the d_j fractional risk sets)

    Scaled residuals (Grambsch & Therneau):
        r*_i = d * V r_i + β          d = number of events, V = var(β)

    With g_i = transformed event time, g~ = g - mean(g):
        per-coefficient: T_k = (g~' r* )_k^2 / (d V_kk Σ g~^2),   1 df
        global:          T   = (g~' r) V (r' g~) d / Σ g~^2,      p df

References:
    Grambsch, P. M. & Therneau, T. M. (1994). Proportional hazards tests
        and diagnostics based on weighted residuals. Biometrika, 81(3),
        515-526.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pysurvstat.core.exceptions import ValidationError
from pysurvstat.survival._common import ZPHParams
from pysurvstat.survival._cox import split_strata
from pysurvstat.survival._km import kaplan_meier_fit

TRANSFORMS = ("km", "rank", "identity", "log")


def schoenfeld_residuals(
    beta: NDArray,
    time: NDArray,
    event: NDArray,
    X: NDArray,
    strata: NDArray | None,
    ties: str,
) -> tuple[NDArray, NDArray]:
    """Unscaled Schoenfeld residuals, one row per event, sorted by time.

    Returns
    -------
    (event_times, residuals)
        event_times : (d,)
        residuals : (d, p)
    """
    times: list[NDArray] = []
    rows: list[NDArray] = []

    for block in split_strata(time, event, X, strata):
        eta = block.X @ beta
        exp_eta = np.exp(eta - (np.max(eta) if len(eta) > 0 else 0.0))

        for t_j in block.event_times:
            risk_mask = block.time >= t_j
            S0 = np.sum(exp_eta[risk_mask])
            S1 = block.X[risk_mask].T @ exp_eta[risk_mask]

            event_at_tj = (block.time == t_j) & (block.event == 1)
            d_j = int(np.sum(event_at_tj))
            event_X = block.X[event_at_tj]

            if ties == "breslow" or d_j == 1:
                mean = S1 / S0
            else:
                death_exp = exp_eta[event_at_tj]
                death_S0 = np.sum(death_exp)
                death_S1 = event_X.T @ death_exp
                mean = np.mean(
                    [(S1 - (s / d_j) * death_S1) / (S0 - (s / d_j) * death_S0)
                     for s in range(d_j)],
                    axis=0,
                )

            times.append(np.full(d_j, t_j))
            rows.append(event_X - mean)

    event_times = np.concatenate(times)
    residuals = np.vstack(rows)
    order = np.argsort(event_times, kind="stable")
    return event_times[order], residuals[order]


def transform_time(
    event_times: NDArray,
    time: NDArray,
    event: NDArray,
    transform: str,
) -> NDArray:
    """Map event times onto the scale used for the correlation test."""
    if transform == "identity":
        return event_times.astype(np.float64)
    if transform == "log":
        return np.log(event_times)
    if transform == "rank":
        return stats.rankdata(event_times)
    if transform == "km":
        # 1 - left-continuous pooled KM at each event time
        km = kaplan_meier_fit(time, event, conf_level=0.95, conf_type="plain")
        idx = np.searchsorted(km.time, event_times, side="left")
        s_before = np.concatenate([[1.0], km.survival])[idx]
        return 1.0 - s_before
    raise ValidationError(
        f"transform must be one of {TRANSFORMS}, got {transform!r}"
    )


def zph_test(
    beta: NDArray,
    vcov: NDArray,
    time: NDArray,
    event: NDArray,
    X: NDArray,
    strata: NDArray | None,
    ties: str,
    transform: str,
    names: tuple[str, ...],
) -> ZPHParams:
    """Per-coefficient and global proportional-hazards chi-square tests.

    Parameters
    ----------
    beta, vcov : NDArray
        Fitted coefficients and their covariance.
    time, event, X, strata : NDArray
        The data the model was fitted on.
    ties : str
        Tie handling used by the fit.
    transform : str
        "km" (default in R), "rank", "identity" or "log".
    names : tuple of str
        Coefficient labels.

    Returns
    -------
    ZPHParams
    """
    event_times, resid = schoenfeld_residuals(beta, time, event, X, strata, ties)
    d = len(event_times)

    g = transform_time(event_times, time, event, transform)
    g_c = g - np.mean(g)
    ss = float(g_c @ g_c)
    if ss <= 0:
        raise ValidationError(
            "proportional-hazards test needs events at two or more distinct times"
        )

    scaled = resid @ vcov * d + beta

    test = g_c @ scaled
    statistics = test ** 2 / (np.diag(vcov) * d * ss)
    p_values = stats.chi2.sf(statistics, 1)

    with np.errstate(divide='ignore', invalid='ignore'):
        sd = np.std(scaled, axis=0)
        correlations = np.where(
            sd > 0,
            (g_c @ (scaled - scaled.mean(axis=0))) / (d * np.std(g) * sd),
            0.0,
        )

    u = g_c @ resid
    global_statistic = float(u @ vcov @ u * d / ss)
    global_df = len(beta)
    global_p_value = float(stats.chi2.sf(global_statistic, global_df))

    return ZPHParams(
        names=tuple(names),
        statistics=statistics,
        p_values=p_values,
        correlations=correlations,
        global_statistic=global_statistic,
        global_df=global_df,
        global_p_value=global_p_value,
        transform=transform,
        event_times=event_times,
        transformed_time=g,
        scaled_residuals=scaled,
        schoenfeld_residuals=resid,
    )
