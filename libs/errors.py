# =============================================================================
# Pipeline Errors
# =============================================================================
# Error taxonomy shared by the run guard, merge engine and orchestrator.
# =============================================================================

"""Error taxonomy for the inference pipeline."""

from typing import Optional

__all__ = [
    "PipelineError",
    "InputValidationError",
    "MissingInputError",
    "NotFoundError",
    "TransientError",
    "VersionConflictError",
    "ConcurrencyExhaustedError",
    "ConflictOnCreateError",
    "RetryExhaustedError",
    "NonDeterminismError",
    "RunNotActiveError",
]


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class InputValidationError(PipelineError):
    """Missing or malformed required input. Always fatal, never retried."""


class MissingInputError(InputValidationError):
    """A value required to create a record was not supplied."""


class NotFoundError(PipelineError):
    """
    A referenced project, floor, run or document does not exist.

    Carries an HTTP-style status code so the webapp can map it to a 404.
    """

    status_code = 404

    def __init__(self, message: str, *, resource_type: Optional[str] = None, resource_id: Optional[str] = None):
        super().__init__(message)
        self.resource_type = resource_type
        self.resource_id = resource_id


class TransientError(PipelineError):
    """Network, timeout or overload failure on an external call."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class VersionConflictError(PipelineError):
    """A conditional write observed a different version than expected."""

    def __init__(self, document_id: str, expected_version: Optional[str]):
        super().__init__(
            f"Version conflict on document '{document_id}' (expected {expected_version!r})"
        )
        self.document_id = document_id
        self.expected_version = expected_version


class ConcurrencyExhaustedError(PipelineError):
    """The merge engine gave up after its bounded number of write attempts."""

    def __init__(self, floor_key: str, attempts: int):
        super().__init__(
            f"Editor document merge failed after {attempts} attempts (floor_key={floor_key})"
        )
        self.floor_key = floor_key
        self.attempts = attempts


class ConflictOnCreateError(PipelineError):
    """A create collided with an existing record holding the same key."""

    def __init__(self, resource_id: str):
        super().__init__(f"Record already exists: {resource_id}")
        self.resource_id = resource_id


class RetryExhaustedError(PipelineError):
    """A retried step ran out of attempts or of its cumulative time budget."""

    def __init__(self, step_name: str, attempts: int, last_error: Optional[str] = None):
        message = f"Step '{step_name}' failed after {attempts} attempt(s)"
        if last_error:
            message += f": {last_error}"
        super().__init__(message)
        self.step_name = step_name
        self.attempts = attempts
        self.last_error = last_error


class NonDeterminismError(PipelineError):
    """Replay reached a recorded step whose name differs from the step being run."""


class RunNotActiveError(PipelineError):
    """The run is not in a state that allows execution (e.g. Failed)."""
