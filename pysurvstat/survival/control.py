"""
Fitting controls for survival models.

Plays the role of R's coxph.control(): one frozen object carrying every
iteration and tolerance knob, validated once at construction.
"""

from __future__ import annotations

from dataclasses import dataclass

from pysurvstat.core.exceptions import ValidationError

# Significance level for hierarchical pairwise testing, backward
# elimination and the proportional-hazards check.
ALPHA = 0.05


@dataclass(frozen=True)
class CoxControl:
    """Newton-Raphson settings for the Cox partial likelihood.

    Attributes
    ----------
    tol : float
        Convergence tolerance on max|Δβ| and on the relative change of the
        log partial likelihood.
    max_iter : int
        Iteration budget. Exceeding it raises ConvergenceError.
    max_step : float
        Largest allowed absolute coordinate change per Newton step. Keeps
        exp(Xβ) finite when the first steps overshoot.
    separation_coef : float
        |β| at or above which a coefficient is reported as (quasi-)separated.
    separation_se : float
        Standard error at or above which a coefficient is reported as
        (quasi-)separated.
    """

    tol: float = 1e-9
    max_iter: int = 20
    max_step: float = 5.0
    separation_coef: float = 10.0
    separation_se: float = 1e3

    def __post_init__(self) -> None:
        if not self.tol > 0:
            raise ValidationError(f"tol must be positive, got {self.tol}")
        if self.max_iter < 1:
            raise ValidationError(
                f"max_iter must be at least 1, got {self.max_iter}"
            )
        if not self.max_step > 0:
            raise ValidationError(
                f"max_step must be positive, got {self.max_step}"
            )
        if not self.separation_coef > 0 or not self.separation_se > 0:
            raise ValidationError(
                "separation thresholds must be positive, got "
                f"coef={self.separation_coef}, se={self.separation_se}"
            )
