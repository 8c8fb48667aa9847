"""
pysurvstat: survival analysis for clinical trial cohorts.

Kaplan-Meier estimation, log-rank comparison, Cox proportional hazards
regression and proportional-hazards diagnostics, computed from first
principles on an immutable event time table.

Submodules:
    core: Result envelope, exceptions, validation, timing
    survival: Event time table, estimators, tests and models
"""

__version__ = "0.1.0"

from pysurvstat import survival

__all__ = [
    "__version__",
    "survival",
]
