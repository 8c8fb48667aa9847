"""
Backward elimination over nested Cox models.

Each step is a fresh, independent fit: nothing is mutated. The term with
the largest Wald p-value at or above alpha is removed, the reduced model is
refitted, and the likelihood-ratio test between the two nested fits is
recorded. Elimination stops when every candidate term is significant or
only protected terms remain.

A term is protected when the caller asked to keep it, or when it is a main
effect that still takes part in an interaction (marginality: an
interaction is dropped before its main effects).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Iterable

from scipy import stats

from pysurvstat.core.exceptions import ValidationError
from pysurvstat.survival._common import CoxParams, EliminationStep
from pysurvstat.survival._terms import Term

if TYPE_CHECKING:
    from pysurvstat.survival.solution import CoxSolution

logger = logging.getLogger(__name__)


def likelihood_ratio(
    larger: CoxParams,
    smaller: CoxParams,
) -> tuple[float, int, float]:
    """LR test of a model against a nested sub-model.

    Returns
    -------
    (statistic, df, p_value)
    """
    df = len(larger.coefficients) - len(smaller.coefficients)
    if df <= 0:
        raise ValidationError(
            f"models are not nested: {len(larger.coefficients)} vs "
            f"{len(smaller.coefficients)} coefficients"
        )
    if larger.n_observations != smaller.n_observations:
        raise ValidationError(
            f"models were fitted on different subjects "
            f"(n={larger.n_observations} vs n={smaller.n_observations})"
        )
    statistic = max(2.0 * (larger.loglik[1] - smaller.loglik[1]), 0.0)
    return statistic, df, float(stats.chi2.sf(statistic, df))


def protected_terms(terms: Iterable[Term], keep: Iterable[str]) -> set[str]:
    """Labels that backward elimination may not remove."""
    terms = list(terms)
    protected = set(keep)
    for term in terms:
        if term.is_interaction:
            protected.update(term.factors)
    return protected


def backward_elimination(
    fit: Callable[[tuple[Term, ...]], CoxSolution],
    terms: tuple[Term, ...],
    keep: Iterable[str] = (),
    alpha: float = 0.05,
) -> tuple[CoxSolution, CoxSolution, tuple[EliminationStep, ...]]:
    """Drive refits until no removable term is non-significant.

    Parameters
    ----------
    fit : callable
        Maps a tuple of terms to a fitted CoxSolution. Every call must use
        the same subjects so that successive fits are nested.
    terms : tuple of Term
        Starting model.
    keep : iterable of str
        Term labels never removed.
    alpha : float
        Terms with Wald p >= alpha are candidates for removal.

    Returns
    -------
    (initial_fit, final_fit, steps)
    """
    keep = tuple(keep)
    labels = {t.label for t in terms}
    unknown = [k for k in keep if k not in labels]
    if unknown:
        raise ValidationError(
            f"keep names terms not in the model: {unknown}; "
            f"terms are {sorted(labels)}"
        )

    current = tuple(terms)
    initial = current_fit = fit(current)
    steps: list[EliminationStep] = []

    while len(current) > 1:
        protected = protected_terms(current, keep)
        candidates = [
            (p, label)
            for label, (_, _, p) in current_fit.term_tests().items()
            if label not in protected and p >= alpha
        ]
        if not candidates:
            break

        # Largest p; equal p-values fall back to label order
        wald_p, drop = max(candidates)
        reduced = tuple(t for t in current if t.label != drop)
        reduced_fit = fit(reduced)

        lr_stat, lr_df, lr_p = current_fit.lr_test(reduced_fit)
        step = EliminationStep(
            dropped=drop,
            wald_p_value=float(wald_p),
            lr_statistic=lr_stat,
            lr_df=lr_df,
            lr_p_value=lr_p,
            remaining=tuple(t.label for t in reduced),
        )
        logger.info(
            "backward elimination: dropped %s (Wald p=%.4g, LR p=%.4g); "
            "%d term(s) remain",
            drop, wald_p, lr_p, len(reduced),
        )
        steps.append(step)
        current, current_fit = reduced, reduced_fit

    return initial, current_fit, tuple(steps)
