"""
Public API for survival analysis.

    kaplan_meier(time, event) → KMSolution | KMStrataSolution
    survdiff(time, event, group) → LogRankSolution
    pairwise_survdiff(time, event, group) → PairwiseLogRankSolution
    coxph(time, event, X) or coxph(design, terms=[...]) → CoxSolution
    cox_zph(fit) → ZPHSolution
    backward_eliminate(design, terms) → EliminationSolution

Each function accepts either raw arrays or a SurvivalDesign as its first
argument. With a design, grouping and strata are given by covariate name
and subjects missing any covariate the analysis needs are dropped for
that analysis only (with a MissingCovariateWarning). Each call validates
its inputs, runs the computation, and wraps the Result in a Solution.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import replace
from typing import Iterable, Literal, Mapping

import numpy as np

from pysurvstat.core.compute.timing import Timer, timed
from pysurvstat.core.exceptions import (
    MissingCovariateWarning,
    SeparationWarning,
    SingularCovarianceWarning,
    ValidationError,
)
from pysurvstat.core.result import Result
from pysurvstat.core.validation import (
    check_choice,
    check_finite,
    check_open_unit_interval,
)
from pysurvstat.survival._common import EliminationParams
from pysurvstat.survival._cox import cox_fit, separation_flags
from pysurvstat.survival._km import kaplan_meier_fit
from pysurvstat.survival._logrank import (
    P_ADJUST_METHODS,
    logrank_test,
    pairwise_logrank,
)
from pysurvstat.survival._stepwise import backward_elimination
from pysurvstat.survival._terms import (
    Term,
    build_model_matrix,
    covariate_names,
    parse_terms,
)
from pysurvstat.survival._zph import TRANSFORMS, zph_test
from pysurvstat.survival.control import ALPHA, CoxControl
from pysurvstat.survival.design import SurvivalDesign
from pysurvstat.survival.solution import (
    CoxSolution,
    EliminationSolution,
    KMSolution,
    KMStrataSolution,
    LogRankSolution,
    PairwiseLogRankSolution,
    ZPHSolution,
)

logger = logging.getLogger(__name__)

_CONF_TYPES = ("log", "plain", "log-log")
_TIES = ("efron", "breslow")


# ── Input resolution ─────────────────────────────────────────────────


def _resolve(time, event, labels, role: str, covariates: Iterable[str] = ()):
    """Event time table and per-subject labels for one analysis.

    Returns
    -------
    (design, labels, notes)
        labels is aligned with the design's sorted rows (or None); notes
        are complete-case messages still to be emitted.
    """
    if isinstance(time, SurvivalDesign):
        if event is not None:
            raise ValidationError(
                "event must be omitted when a SurvivalDesign is passed"
            )
        names = list(covariates)
        if labels is not None:
            if not isinstance(labels, str):
                raise ValidationError(
                    f"{role} must be a covariate name when a SurvivalDesign "
                    f"is passed, got {type(labels).__name__}"
                )
            if labels not in names:
                names.append(labels)
        design, notes = _complete_cases(time, names)
        label_arr = design.column(labels) if labels is not None else None
        return design, label_arr, notes

    if event is None:
        raise ValidationError("event is required when time is an array")
    if isinstance(labels, str):
        raise ValidationError(
            f"{role}={labels!r} names a covariate; pass a SurvivalDesign "
            f"as the first argument to use covariate names"
        )
    design = SurvivalDesign.for_survival(time, event, strata=labels)
    return design, design.strata, []


def _complete_cases(design: SurvivalDesign, names: list[str]):
    design, n_dropped = design.complete_cases(names)
    if n_dropped == 0:
        return design, []
    return design, [
        f"{n_dropped} subject(s) with missing {', '.join(names)} dropped "
        f"(complete-case analysis)"
    ]


def _emit(messages: list[str], category: type[Warning]) -> None:
    for msg in messages:
        warnings.warn(msg, category, stacklevel=3)


def _plain(label):
    # numpy scalars -> Python scalars for use as dict keys
    return label.item() if isinstance(label, np.generic) else label


# ── Kaplan-Meier ─────────────────────────────────────────────────────


def kaplan_meier(
    time,
    event=None,
    *,
    strata=None,
    horizon: float | None = None,
    conf_level: float = 0.95,
    conf_type: Literal["log", "plain", "log-log"] = "log",
) -> KMSolution | KMStrataSolution:
    """Kaplan-Meier survival curve estimation.

    Matches R's survival::survfit(Surv(time, event) ~ strata).

    Parameters
    ----------
    time : array-like or SurvivalDesign
        Time to event or censoring, or an event time table.
    event : array-like or None
        Event indicator (1=event, 0=censored). Omit with a design.
    strata : array-like, str or None
        Stratum labels (array form) or a covariate name (design form).
        One curve is estimated per stratum.
    horizon : float or None
        Only event times <= horizon enter the curve.
    conf_level : float
        Confidence level for CI (default 0.95).
    conf_type : str
        CI transformation: "log" (R default), "plain", "log-log".

    Returns
    -------
    KMSolution, or KMStrataSolution when strata is given
    """
    check_open_unit_interval(conf_level, "conf_level")
    check_choice(conf_type, _CONF_TYPES, "conf_type")
    if horizon is not None and not horizon > 0:
        raise ValidationError(f"horizon must be positive, got {horizon}")

    design, labels, notes = _resolve(time, event, strata, "strata")
    _emit(notes, MissingCovariateWarning)

    if labels is None:
        return _km(design.time, design.event, conf_level, conf_type,
                   horizon, notes)

    curves = {}
    for label in np.unique(labels):
        mask = labels == label
        curves[_plain(label)] = _km(
            design.time[mask], design.event[mask], conf_level, conf_type,
            horizon, notes, stratum=_plain(label),
        )
    logger.debug("kaplan_meier: %d strata", len(curves))

    return KMStrataSolution(
        curves, variable=strata if isinstance(strata, str) else None
    )


def _km(time, event, conf_level, conf_type, horizon, notes, stratum=None):
    timer = Timer()
    timer.start()

    params = kaplan_meier_fit(
        time, event,
        conf_level=conf_level,
        conf_type=conf_type,
        horizon=horizon,
    )

    timer.stop()

    info = {"method": "Kaplan-Meier", "horizon": horizon}
    if stratum is not None:
        info["stratum"] = stratum

    result = Result(
        params=params,
        info=info,
        timing=timer.result(),
        backend_name="cpu_km",
        warnings=tuple(notes),
    )

    return KMSolution(_result=result)


# ── Log-rank ─────────────────────────────────────────────────────────


def survdiff(
    time,
    event=None,
    group=None,
    *,
    rho: float = 0.0,
) -> LogRankSolution:
    """Log-rank test (and G-rho family).

    Matches R's survival::survdiff().

    Parameters
    ----------
    time : array-like or SurvivalDesign
        Time to event or censoring, or an event time table.
    event : array-like or None
        Event indicator (1=event, 0=censored). Omit with a design.
    group : array-like or str
        Group labels, or the name of a categorical covariate.
    rho : float
        G-rho weight parameter. rho=0 (default) gives the standard
        log-rank test. rho=1 gives Peto & Peto / Gehan-Wilcoxon.

    Returns
    -------
    LogRankSolution
    """
    if group is None:
        raise ValidationError("group is required for survdiff()")
    if rho < 0:
        raise ValidationError(f"rho must be non-negative, got {rho}")

    design, labels, notes = _resolve(time, event, group, "group")
    _emit(notes, MissingCovariateWarning)

    timer = Timer()
    timer.start()

    params = logrank_test(
        design.time, design.event, labels,
        rho=rho,
    )

    timer.stop()

    if params.singular:
        msg = (
            f"log-rank covariance is singular; generalized inverse used, "
            f"df reduced to {params.df}"
        )
        warnings.warn(msg, SingularCovarianceWarning, stacklevel=2)
        notes.append(msg)

    result = Result(
        params=params,
        info={"method": "Log-rank test", "rho": rho},
        timing=timer.result(),
        backend_name="cpu_logrank",
        warnings=tuple(notes),
    )

    return LogRankSolution(_result=result)


def pairwise_survdiff(
    time,
    event=None,
    group=None,
    *,
    rho: float = 0.0,
    alpha: float = ALPHA,
    p_adjust: str = "BH",
    force: bool = False,
) -> PairwiseLogRankSolution:
    """Global log-rank test with gated post-hoc pairwise tests.

    Two-group comparisons are computed only when the global test rejects
    at ``alpha`` (hierarchical testing), or when ``force=True``.

    Parameters
    ----------
    time, event, group, rho
        As for survdiff().
    alpha : float
        Significance level of the global gate.
    p_adjust : str
        Multiple-comparison adjustment of the pairwise p-values:
        "none", "bonferroni", "holm" or "BH" (default).
    force : bool
        Run pairwise tests regardless of the global result.

    Returns
    -------
    PairwiseLogRankSolution
    """
    if group is None:
        raise ValidationError("group is required for pairwise_survdiff()")
    check_open_unit_interval(alpha, "alpha")
    check_choice(p_adjust, P_ADJUST_METHODS, "p_adjust")

    design, labels, notes = _resolve(time, event, group, "group")
    _emit(notes, MissingCovariateWarning)

    timer = Timer()
    timer.start()

    params = pairwise_logrank(
        design.time, design.event, labels,
        rho=rho,
        alpha=alpha,
        method=p_adjust,
        force=force,
    )

    timer.stop()

    if params.global_test.singular:
        msg = "global log-rank covariance is singular; generalized inverse used"
        warnings.warn(msg, SingularCovarianceWarning, stacklevel=2)
        notes.append(msg)
    if not params.performed:
        logger.info(
            "pairwise log-rank skipped: global p=%.4g >= alpha=%g",
            params.global_test.p_value, alpha,
        )

    result = Result(
        params=params,
        info={"method": "Pairwise log-rank", "rho": rho},
        timing=timer.result(),
        backend_name="cpu_logrank",
        warnings=tuple(notes),
    )

    return PairwiseLogRankSolution(_result=result)


# ── Cox PH ───────────────────────────────────────────────────────────


def coxph(
    time,
    event=None,
    X=None,
    *,
    terms: Iterable[str | Term] | None = None,
    strata=None,
    reference: Mapping[str, str] | None = None,
    ties: Literal["efron", "breslow"] = "efron",
    conf_level: float = 0.95,
    control: CoxControl | None = None,
    tol: float | None = None,
    max_iter: int | None = None,
) -> CoxSolution:
    """Cox proportional hazards model.

    Matches R's survival::coxph().

    Parameters
    ----------
    time : array-like or SurvivalDesign
        Time to event or censoring, or an event time table.
    event : array-like or None
        Event indicator (1=event, 0=censored). Omit with a design.
    X : array-like or None
        Covariate matrix (n, p), array form only. No intercept.
    terms : iterable of str or None
        Design form only: main effects ("age"), pairwise interactions
        ("sex:treatment") and crossings ("sex*treatment").
    strata : array-like, str or None
        Stratification: separate risk sets and baseline hazards per
        stratum, common coefficients.
    reference : mapping or None
        Reference level per categorical covariate.
    ties : str
        Method for handling tied event times: "efron" (default) or "breslow".
    conf_level : float
        Confidence level of the hazard-ratio intervals.
    control : CoxControl or None
        Iteration and separation settings.
    tol, max_iter : optional
        Shortcuts overriding the matching CoxControl fields.

    Returns
    -------
    CoxSolution

    Raises
    ------
    ConvergenceError
        If Newton-Raphson fails; no partial estimates are returned.
    """
    check_choice(ties, _TIES, "ties")
    check_open_unit_interval(conf_level, "conf_level")
    control = control or CoxControl()
    overrides = {
        k: v for k, v in (("tol", tol), ("max_iter", max_iter)) if v is not None
    }
    if overrides:
        control = replace(control, **overrides)

    if isinstance(time, SurvivalDesign):
        if X is not None:
            raise ValidationError(
                "pass terms, not X, when fitting a SurvivalDesign"
            )
        if terms is None:
            raise ValidationError(
                "terms are required when fitting a SurvivalDesign"
            )
        parsed = parse_terms(terms)
        design, labels, notes = _resolve(
            time, event, strata, "strata", covariates=covariate_names(parsed)
        )
        mm = build_model_matrix(design, parsed, reference)
        design = design.with_model(mm.X, labels)
        column_names, term_columns = mm.column_names, mm.term_columns
        term_labels = [t.label for t in parsed]
    else:
        if X is None:
            raise ValidationError("X (covariates) is required for coxph()")
        if terms is not None:
            raise ValidationError("terms require a SurvivalDesign")
        if isinstance(strata, str):
            raise ValidationError(
                f"strata={strata!r} names a covariate; pass a SurvivalDesign"
            )
        design = SurvivalDesign.for_survival(time, event, X, strata=strata)
        notes = []
        column_names = term_columns = None
        term_labels = None

    _emit(notes, MissingCovariateWarning)
    check_finite(design.X, "X")

    timer = Timer()
    timer.start()

    with timer.section("newton_raphson"):
        params = cox_fit(
            design.time, design.event, design.X,
            strata=design.strata,
            ties=ties,
            control=control,
            conf_level=conf_level,
            column_names=column_names,
            term_columns=term_columns,
        )

    timer.stop()

    logger.debug(
        "coxph converged in %d iterations, loglik=%.6f",
        params.n_iter, params.loglik[1],
    )

    flags = separation_flags(params, control)
    if flags:
        msg = (
            f"possible separation: {', '.join(flags)} "
            f"(|coef| >= {control.separation_coef:g} or "
            f"se >= {control.separation_se:g}); "
            f"hazard ratios for these terms are not interpretable"
        )
        warnings.warn(msg, SeparationWarning, stacklevel=2)
        notes.append(msg)

    result = Result(
        params=params,
        info={
            "method": "Cox PH",
            "ties": ties,
            "n_iter": params.n_iter,
            "terms": term_labels,
            "strata": strata if isinstance(strata, str) else None,
        },
        timing=timer.result(),
        backend_name="cpu_cox",
        warnings=tuple(notes),
    )

    return CoxSolution(_result=result, _design=design)


def cox_zph(
    fit: CoxSolution,
    *,
    transform: Literal["km", "rank", "identity", "log"] = "km",
) -> ZPHSolution:
    """Test the proportional hazards assumption of a Cox fit.

    Matches R's survival::cox.zph() (per-coefficient tests, 1 df each,
    plus a global test).

    Parameters
    ----------
    fit : CoxSolution
        Fitted model; its stored design supplies the data.
    transform : str
        Time scale for the correlation test: "km" (default), "rank",
        "identity" or "log".

    Returns
    -------
    ZPHSolution
    """
    check_choice(transform, TRANSFORMS, "transform")
    design = fit.design
    if design is None or design.X is None:
        raise ValidationError("fit does not carry the data it was fitted on")
    if not np.all(np.isfinite(fit.vcov)):
        raise ValidationError(
            "coefficient covariance is not finite; the PH test is undefined"
        )

    timer = Timer()
    timer.start()

    params = zph_test(
        fit.coefficients, fit.vcov,
        design.time, design.event, design.X, design.strata,
        ties=fit.ties,
        transform=transform,
        names=fit.names,
    )

    timer.stop()

    result = Result(
        params=params,
        info={"method": "cox.zph", "transform": transform},
        timing=timer.result(),
        backend_name="cpu_zph",
        warnings=(),
    )

    return ZPHSolution(_result=result)


def backward_eliminate(
    design: SurvivalDesign,
    terms: Iterable[str | Term],
    *,
    keep: Iterable[str] = (),
    strata: str | None = None,
    reference: Mapping[str, str] | None = None,
    alpha: float = ALPHA,
    ties: Literal["efron", "breslow"] = "efron",
    conf_level: float = 0.95,
    control: CoxControl | None = None,
) -> EliminationSolution:
    """Backward elimination of Cox model terms by Wald p-value.

    Subjects missing any covariate of the full model are dropped once, up
    front, so every refit uses the same subjects and the recorded
    likelihood-ratio tests compare nested models.

    Parameters
    ----------
    design : SurvivalDesign
    terms : iterable of str
        Starting model, as for coxph().
    keep : iterable of str
        Terms never removed (e.g. the treatment of primary interest).
    strata : str or None
        Stratification covariate, held fixed across refits.
    alpha : float
        Terms with Wald p >= alpha are candidates for removal.

    Returns
    -------
    EliminationSolution
    """
    if not isinstance(design, SurvivalDesign):
        raise ValidationError("backward_eliminate() requires a SurvivalDesign")
    check_open_unit_interval(alpha, "alpha")
    parsed = parse_terms(terms)
    keep_labels = tuple(t.label for t in parse_terms(keep)) if keep else ()

    names = covariate_names(parsed)
    if strata is not None and strata not in names:
        names.append(strata)
    complete, notes = _complete_cases(design, names)
    _emit(notes, MissingCovariateWarning)

    def fit(current: tuple[Term, ...]) -> CoxSolution:
        return coxph(
            complete,
            terms=current,
            strata=strata,
            reference=reference,
            ties=ties,
            conf_level=conf_level,
            control=control,
        )

    with timed() as timer:
        initial, final, steps = backward_elimination(
            fit, parsed, keep=keep_labels, alpha=alpha
        )

    params = EliminationParams(
        initial_terms=tuple(t.label for t in parsed),
        final_terms=final.terms,
        steps=steps,
        alpha=alpha,
        keep=keep_labels,
    )
    result = Result(
        params=params,
        info={"method": "Backward elimination", "n_steps": len(steps)},
        timing=timer.result(),
        backend_name="cpu_cox",
        warnings=tuple(notes) + final.warnings,
    )

    return EliminationSolution(_result=result, _initial=initial, _final=final)
