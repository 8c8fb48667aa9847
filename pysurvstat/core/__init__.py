"""
Core infrastructure for pysurvstat.

Key components:
    result: Generic Result[P] envelope
    exceptions: Exception and warning hierarchy
    validation: Input validators
    compute: Timing utilities
"""

from pysurvstat.core.result import Result
from pysurvstat.core.exceptions import (
    SurvStatError,
    ValidationError,
    DimensionError,
    InvalidObservationError,
    MissingCovariateError,
    ConvergenceError,
    SurvStatWarning,
    SeparationWarning,
    SingularCovarianceWarning,
    MissingCovariateWarning,
    InvalidObservationWarning,
)

__all__ = [
    # Result
    "Result",
    # Exceptions
    "SurvStatError",
    "ValidationError",
    "DimensionError",
    "InvalidObservationError",
    "MissingCovariateError",
    "ConvergenceError",
    # Warnings
    "SurvStatWarning",
    "SeparationWarning",
    "SingularCovarianceWarning",
    "MissingCovariateWarning",
    "InvalidObservationWarning",
]
