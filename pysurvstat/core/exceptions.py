"""
Exception and warning hierarchy for pysurvstat.

All exceptions inherit from SurvStatError so callers can catch any
library-specific failure of a single analysis and carry on with the rest
of a batch. Non-fatal conditions are warnings deriving from SurvStatWarning;
they are emitted through the warnings module and also recorded on the
Result envelope of the analysis that raised them.

Design principles:
    - Exceptions carry diagnostic information as attributes
    - Error messages are actionable with actual vs expected values
    - Never catch and re-raise with less information
"""


class SurvStatError(Exception):
    """Base exception for all pysurvstat errors."""
    pass


class ValidationError(SurvStatError, ValueError):
    """
    Input validation failed.

    Raised when user-provided inputs fail validation checks.
    """
    pass


class DimensionError(ValidationError):
    """
    Array dimensions are incorrect or inconsistent.
    """
    pass


class InvalidObservationError(ValidationError):
    """
    A subject's follow-up record is unusable.

    Raised for non-positive, non-finite or missing follow-up time, or an
    event indicator outside {0, 1}.

    Attributes:
        index: Position of the offending record in the input, if known
        value: The offending value
    """

    def __init__(
        self,
        message: str,
        index: int | None = None,
        value: object = None,
    ):
        super().__init__(message)
        self.index = index
        self.value = value


class MissingCovariateError(ValidationError, KeyError):
    """
    A covariate requested by an analysis is not part of the table.

    Attributes:
        name: The covariate that was requested
        available: Covariate names the table does carry
    """

    def __init__(
        self,
        message: str,
        name: str | None = None,
        available: tuple[str, ...] = (),
    ):
        super().__init__(message)
        self.name = name
        self.available = available

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return str(self.args[0]) if self.args else ""


class ConvergenceError(SurvStatError):
    """
    Iterative algorithm failed to converge.

    Raised when Newton-Raphson fails to meet its convergence criteria
    within the iteration budget, hits a singular information matrix, or
    overflows. No partial estimates are returned.

    Attributes:
        iterations: Number of iterations completed
        final_change: Final parameter or objective change
        reason: 'max_iterations', 'singular_information', 'overflow'
            or 'no_events'
        threshold: The convergence threshold that was not met
    """

    def __init__(
        self,
        message: str,
        iterations: int,
        final_change: float | None = None,
        reason: str | None = None,
        threshold: float | None = None
    ):
        super().__init__(message)
        self.iterations = iterations
        self.final_change = final_change
        self.reason = reason
        self.threshold = threshold


class SurvStatWarning(UserWarning):
    """Base class for pysurvstat warnings."""
    pass


class SeparationWarning(SurvStatWarning):
    """A covariate (nearly) perfectly predicts event status.

    The coefficient is effectively unbounded and its hazard ratio should
    not be interpreted.
    """
    pass


class SingularCovarianceWarning(SurvStatWarning):
    """Log-rank covariance was singular; a generalized inverse was used."""
    pass


class MissingCovariateWarning(SurvStatWarning):
    """Subjects were dropped from an analysis for missing covariate values."""
    pass


class InvalidObservationWarning(SurvStatWarning):
    """Records with unusable follow-up were dropped on request."""
    pass
