"""
Cox Proportional Hazards model via Newton-Raphson.

Implements Efron's and Breslow's methods for tied event times,
matching R's survival::coxph(), with optional stratification (separate
risk sets and baseline hazards per stratum, common coefficients).

Algorithm:
    Initialize β = 0
    For iteration 1..max_iter:
        Compute: partial log-likelihood L(β), score U(β), information I(β)
        β_new = β + I(β)^{-1} @ U(β)   (step capped at max_step)
        Converged when max|β_new - β| < tol or the relative change in
        L is below tol
    Not converged within max_iter → ConvergenceError

Efron's partial likelihood (R default):
    L(β) = Σ_{j: event times} [ Σ_{i ∈ D_j} x_i @ β
            - Σ_{s=0}^{d_j-1} log(Σ_{l ∈ R_j} exp(x_l @ β)
                - (s/d_j) * Σ_{i ∈ D_j} exp(x_i @ β)) ]

    where D_j = set of events at time t_j, d_j = |D_j|,
          R_j = risk set at time t_j (alive just before t_j).

References:
    Cox, D. R. (1972). Regression models and life-tables. JRSS-B, 34(2), 187-220.
    Efron, B. (1977). The efficiency of Cox's likelihood function for
        censored data. JASA, 72(359), 557-565.
    R Core Team. survival::coxph, agreg.fit
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pysurvstat.core.exceptions import ConvergenceError
from pysurvstat.survival._common import CoxParams
from pysurvstat.survival.control import CoxControl

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Stratum:
    """Sorted data for one stratum's risk sets."""

    label: object
    time: NDArray
    event: NDArray
    X: NDArray
    event_times: NDArray


def cox_fit(
    time: NDArray,
    event: NDArray,
    X: NDArray,
    strata: NDArray | None = None,
    ties: str = "efron",
    control: CoxControl | None = None,
    conf_level: float = 0.95,
    column_names: tuple[str, ...] | None = None,
    term_columns: dict[str, tuple[int, ...]] | None = None,
) -> CoxParams:
    """Fit Cox proportional hazards model.

    Parameters
    ----------
    time : NDArray
        (n,) time to event or censoring.
    event : NDArray
        (n,) event indicator (1=event, 0=censored).
    X : NDArray
        (n, p) covariate matrix (NO intercept).
    strata : NDArray or None
        (n,) stratum labels; risk sets never cross strata.
    ties : str
        Method for handling tied event times: "efron" (default) or "breslow".
    control : CoxControl or None
        Iteration settings; defaults to CoxControl().
    conf_level : float
        Confidence level for hazard-ratio intervals.
    column_names, term_columns : optional
        Labels carried through to the result.

    Returns
    -------
    CoxParams

    Raises
    ------
    ConvergenceError
        Iteration budget exhausted, singular information or overflow.
    """
    control = control or CoxControl()
    n, p = X.shape
    if column_names is None:
        column_names = tuple(f"x{i}" for i in range(p))
    if term_columns is None:
        term_columns = {name: (i,) for i, name in enumerate(column_names)}

    blocks = split_strata(time, event, X, strata)
    n_events_total = int(np.sum(event))

    if n_events_total == 0:
        raise ConvergenceError(
            "Cox model cannot be fitted: no events observed",
            iterations=0,
            reason="no_events",
        )

    # --- Newton-Raphson ---
    beta = np.zeros(p, dtype=np.float64)
    loglik, score, info_matrix = _score_and_information(beta, blocks, ties)
    null_loglik = loglik

    rank = np.linalg.matrix_rank(info_matrix)
    if rank < p:
        raise ConvergenceError(
            f"information matrix at beta=0 has rank {rank} < {p}; "
            f"covariates are collinear or constant",
            iterations=0,
            reason="singular_information",
        )

    # Score test at β = 0 (the log-rank test for a single binary covariate)
    score_statistic = float(score @ np.linalg.solve(info_matrix, score))

    converged = False
    n_iter = 0
    change = np.inf

    for iteration in range(1, control.max_iter + 1):
        try:
            step = np.linalg.solve(info_matrix, score)
        except np.linalg.LinAlgError as e:
            raise ConvergenceError(
                f"singular information matrix at iteration {iteration}",
                iterations=iteration - 1,
                final_change=change,
                reason="singular_information",
                threshold=control.tol,
            ) from e

        # Limit step size so exp(X @ beta) doesn't overflow
        max_step = np.max(np.abs(step)) if p > 0 else 0.0
        if max_step > control.max_step:
            step = step * (control.max_step / max_step)

        beta_new = beta + step
        loglik_new, score_new, info_new = _score_and_information(
            beta_new, blocks, ties
        )
        if not np.isfinite(loglik_new) or not np.all(np.isfinite(info_new)):
            raise ConvergenceError(
                f"non-finite partial likelihood at iteration {iteration}",
                iterations=iteration,
                final_change=change,
                reason="overflow",
                threshold=control.tol,
            )

        change = float(np.max(np.abs(beta_new - beta))) if p > 0 else 0.0
        rel_loglik = abs(loglik_new - loglik) / (abs(loglik) + 0.1)
        logger.debug(
            "coxph iter %d: loglik=%.10g max|step|=%.3g", iteration, loglik_new, change
        )

        beta, loglik, score, info_matrix = beta_new, loglik_new, score_new, info_new
        n_iter = iteration

        # R-style convergence: max|β_new - β| < tol, or relative loglik
        if change < control.tol or (iteration > 1 and rel_loglik < control.tol):
            converged = True
            break

    if not converged:
        raise ConvergenceError(
            f"Newton-Raphson did not converge in {control.max_iter} iterations "
            f"(last max|step| = {change:.3g})",
            iterations=n_iter,
            final_change=change,
            reason="max_iterations",
            threshold=control.tol,
        )

    # Variance from the observed information at the solution
    try:
        vcov = np.linalg.inv(info_matrix)
        se = np.sqrt(np.maximum(np.diag(vcov), 0.0))
    except np.linalg.LinAlgError:
        vcov = np.full((p, p), np.inf)
        se = np.full(p, np.inf)

    # Wald z-statistics, p-values and intervals
    with np.errstate(divide='ignore', invalid='ignore'):
        z = np.where(se > 0, beta / se, 0.0)
    p_values = 2.0 * stats.norm.sf(np.abs(z))
    q = stats.norm.ppf((1.0 + conf_level) / 2.0)
    with np.errstate(over='ignore'):
        ci_lower = np.exp(beta - q * se)
        ci_upper = np.exp(beta + q * se)

    wald_statistic = float(beta @ info_matrix @ beta)

    eta = X @ beta
    base_time, base_cumhaz, base_strata = _breslow_baseline(beta, blocks)

    return CoxParams(
        coefficients=beta,
        hazard_ratios=np.exp(beta),
        standard_errors=se,
        z_statistics=z,
        p_values=p_values,
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        conf_level=conf_level,
        vcov=vcov,
        loglik=(float(null_loglik), float(loglik)),
        wald_statistic=wald_statistic,
        score_statistic=score_statistic,
        concordance=_concordance(eta, time, event, strata),
        baseline_time=base_time,
        baseline_cumhaz=base_cumhaz,
        baseline_strata=base_strata,
        n_events=n_events_total,
        n_observations=n,
        n_iter=n_iter,
        converged=converged,
        ties=ties,
        column_names=tuple(column_names),
        term_columns=dict(term_columns),
        n_strata=len(blocks),
    )


def separation_flags(params: CoxParams, control: CoxControl) -> list[str]:
    """Names of coefficients that look unbounded (monotone likelihood)."""
    flagged = []
    for name, coef, se in zip(
        params.column_names, params.coefficients, params.standard_errors
    ):
        if abs(coef) >= control.separation_coef or se >= control.separation_se:
            flagged.append(name)
    return flagged


def split_strata(
    time: NDArray,
    event: NDArray,
    X: NDArray,
    strata: NDArray | None,
) -> list[_Stratum]:
    if strata is None:
        labels = [None]
        masks = [np.ones(len(time), dtype=bool)]
    else:
        labels = list(np.unique(strata))
        masks = [strata == s for s in labels]

    blocks = []
    for label, mask in zip(labels, masks):
        t, e, x = time[mask], event[mask], X[mask]
        order = np.lexsort((e, t))  # ascending time, censored before events
        t, e, x = t[order], e[order], x[order]
        blocks.append(_Stratum(
            label=label,
            time=t,
            event=e,
            X=x,
            event_times=np.unique(t[e == 1]),
        ))
    return blocks


def _score_and_information(
    beta: NDArray,
    blocks: list[_Stratum],
    ties: str,
) -> tuple[float, NDArray, NDArray]:
    """Compute log-likelihood, score vector, and observed information matrix.

    Returns
    -------
    (loglik, score, info_matrix)
        loglik : float
        score : (p,) gradient of log-likelihood
        info_matrix : (p, p) negative Hessian (observed information)
    """
    p = len(beta)
    loglik = 0.0
    score = np.zeros(p, dtype=np.float64)
    info_matrix = np.zeros((p, p), dtype=np.float64)

    for block in blocks:
        ll, u, info = _stratum_terms(beta, block, ties)
        loglik += ll
        score += u
        info_matrix += info

    return loglik, score, info_matrix


def _stratum_terms(
    beta: NDArray,
    block: _Stratum,
    ties: str,
) -> tuple[float, NDArray, NDArray]:
    time, event, X = block.time, block.event, block.X
    n, p = X.shape
    eta = X @ beta

    # Center eta for numerical stability (cancels in partial likelihood)
    eta_c = eta - (np.max(eta) if n > 0 else 0.0)
    exp_eta = np.exp(eta_c)

    loglik = 0.0
    score = np.zeros(p, dtype=np.float64)
    info_matrix = np.zeros((p, p), dtype=np.float64)

    for t_j in block.event_times:
        risk_mask = time >= t_j
        risk_exp = exp_eta[risk_mask]
        risk_X = X[risk_mask]

        # Weighted sums over risk set
        S0 = np.sum(risk_exp)
        S1 = risk_X.T @ risk_exp
        S2 = (risk_X * risk_exp[:, np.newaxis]).T @ risk_X

        event_at_tj = (time == t_j) & (event == 1)
        d_j = int(np.sum(event_at_tj))

        event_X = X[event_at_tj]
        event_exp = exp_eta[event_at_tj]
        event_X_sum = np.sum(event_X, axis=0)
        event_eta_c_sum = np.sum(eta_c[event_at_tj])

        if ties == "breslow" or d_j == 1:
            # Breslow (or single event: both give same result)
            if S0 > 0:
                loglik += event_eta_c_sum - d_j * np.log(S0)
                score += event_X_sum - d_j * S1 / S0
                info_matrix += d_j * (S2 / S0 - np.outer(S1, S1) / S0**2)

        else:
            # Efron: the tied deaths leave the risk set fractionally
            death_S0 = np.sum(event_exp)
            death_S1 = event_X.T @ event_exp
            death_S2 = (event_X * event_exp[:, np.newaxis]).T @ event_X

            loglik += event_eta_c_sum

            for s in range(d_j):
                frac = s / d_j
                denom = S0 - frac * death_S0
                if denom <= 0:
                    continue

                mean = (S1 - frac * death_S1) / denom

                loglik -= np.log(denom)
                score -= mean
                info_matrix += (S2 - frac * death_S2) / denom - np.outer(mean, mean)

            score += event_X_sum

    return loglik, score, info_matrix


def _breslow_baseline(
    beta: NDArray,
    blocks: list[_Stratum],
) -> tuple[NDArray, NDArray, NDArray]:
    """Breslow cumulative baseline hazard at x = 0, per stratum.

    H_0(t) = Σ_{t_j <= t} d_j / Σ_{l ∈ R_j} exp(x_l @ β)
    """
    times, cumhaz, labels = [], [], []
    for block in blocks:
        eta = block.X @ beta
        shift = np.max(eta) if len(eta) > 0 else 0.0
        exp_eta = np.exp(eta - shift)
        # Suffix sums give Σ over time >= t for the ascending sort
        suffix = np.cumsum(exp_eta[::-1])[::-1]
        first = np.searchsorted(block.time, block.event_times, side="left")
        ev_t = block.time[block.event == 1]
        d = (
            np.searchsorted(ev_t, block.event_times, side="right")
            - np.searchsorted(ev_t, block.event_times, side="left")
        )
        with np.errstate(over='ignore'):
            increments = d * np.exp(-shift) / suffix[first]
        times.append(block.event_times)
        cumhaz.append(np.cumsum(increments))
        labels.append(np.full(len(block.event_times), block.label, dtype=object))

    return (
        np.concatenate(times),
        np.concatenate(cumhaz),
        np.concatenate(labels),
    )


def _concordance(
    eta: NDArray,
    time: NDArray,
    event: NDArray,
    strata: NDArray | None,
) -> float:
    """Harrell's concordance statistic (C-statistic).

    C = P(risk_i > risk_j | T_i < T_j, event_i = 1), pairs within strata.
    """
    concordant = 0
    discordant = 0
    tied_risk = 0

    for i in np.flatnonzero(event == 1):
        comparable = time > time[i]
        if strata is not None:
            comparable &= strata == strata[i]
        other = eta[comparable]
        concordant += int(np.sum(eta[i] > other))
        discordant += int(np.sum(eta[i] < other))
        tied_risk += int(np.sum(eta[i] == other))

    total = concordant + discordant + tied_risk
    if total == 0:
        return 0.5

    return (concordant + 0.5 * tied_risk) / total


def term_wald_test(params: CoxParams, label: str) -> tuple[float, int, float]:
    """Multi-df Wald test that every coefficient of one term is zero.

    Returns
    -------
    (statistic, df, p_value)
    """
    idx = list(params.term_columns[label])
    b = params.coefficients[idx]
    V = params.vcov[np.ix_(idx, idx)]
    try:
        statistic = float(b @ np.linalg.solve(V, b))
    except np.linalg.LinAlgError:
        statistic = float(b @ np.linalg.pinv(V) @ b)
    df = len(idx)
    return statistic, df, float(stats.chi2.sf(statistic, df))
