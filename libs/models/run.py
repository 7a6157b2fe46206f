# =============================================================================
# Inference Run Model
# =============================================================================
# Defines the InferenceRun ledger document (one per target project) and the
# advisory progress projection published by the orchestrator.
# =============================================================================

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


__all__ = [
    "RunStatus",
    "RunStage",
    "FailureOrigin",
    "LaunchClaim",
    "DetectionTotals",
    "InferenceRun",
    "RunProgress",
    "TOTALS_KEYS",
    "inference_run_id",
    "zero_totals",
    "add_totals",
    "totals_regressed",
]


TOTALS_KEYS = ("columnsDetected", "beamsDetected", "polygonsDetected")

DetectionTotals = dict[str, int]


class RunStatus(str, Enum):
    """Status of an inference run in the MongoDB ledger."""

    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class FailureOrigin(str, Enum):
    """
    Who marked a run Failed.

    ENGINE failures are step errors; a re-admitted run starts a new attempt.
    HOST failures come from the Dagster run dying; a re-admitted run resumes
    the same attempt from its recorded history.
    """

    ENGINE = "engine"
    HOST = "host"


class RunStage(str, Enum):
    """Orchestrator state, published in the progress projection."""

    STARTING = "starting"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def inference_run_id(client_name: str, slug: str) -> str:
    """Deterministic run id for a target; also the idempotency key."""
    return f"infer::{client_name}::{slug}"


def zero_totals() -> DetectionTotals:
    return {key: 0 for key in TOTALS_KEYS}


def add_totals(left: DetectionTotals, right: DetectionTotals) -> DetectionTotals:
    """Component-wise sum over the union of keys."""
    keys = list(dict.fromkeys([*TOTALS_KEYS, *left.keys(), *right.keys()]))
    return {key: int(left.get(key, 0)) + int(right.get(key, 0)) for key in keys}


def totals_regressed(previous: DetectionTotals, candidate: DetectionTotals) -> list[str]:
    """Return the counters where candidate is lower than previous."""
    return [key for key, value in previous.items() if int(candidate.get(key, 0)) < int(value)]


class LaunchClaim(BaseModel):
    """Ownership of the job launch for one attempt of a run."""

    claim_id: str
    claimed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    dagster_run_id: Optional[str] = None


class InferenceRun(BaseModel):
    """
    Run document model for MongoDB tracking.

    One document exists per (client_name, slug) target for its whole
    lifetime. The Run Guard creates it, the orchestrator mutates it, and it is
    never deleted.

    Attributes:
        id: Deterministic run id (infer::<client_name>::<slug>)
        client_name: Client owning the project
        slug: Project slug
        project_id: Id of the project document
        requested_by: Who asked for the run (free-form)
        status: Running / Completed / Failed
        attempt: Execution number; incremented when a Failed run is re-admitted
        total_floors: Number of floors, unknown until the orchestrator starts
        processed_floors: Floors fully processed in the current attempt
        totals: Cumulative detection counters for the current attempt
        error_message: Error details if the run failed
        failure_origin: Whether the engine or the host marked the run Failed
        launch: Job launch claimed for the current attempt
        raw_outputs_prefix: Blob prefix for raw inference outputs
        started_at: When the current attempt was admitted
        completed_at: First transition into a terminal status
        updated_at: Last modification
    """

    id: str = Field(..., description="Deterministic run id")
    client_name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    project_id: str = Field(..., description="Project document id")
    requested_by: Optional[str] = Field(None, description="Requesting user")
    status: RunStatus = Field(RunStatus.RUNNING)
    attempt: int = Field(1, ge=1)
    total_floors: Optional[int] = Field(None, ge=0)
    processed_floors: int = Field(0, ge=0)
    totals: DetectionTotals = Field(default_factory=zero_totals)
    error_message: Optional[str] = None
    failure_origin: Optional[FailureOrigin] = None
    launch: Optional[LaunchClaim] = None
    raw_outputs_prefix: Optional[str] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("totals")
    @classmethod
    def validate_totals(cls, v: DetectionTotals) -> DetectionTotals:
        for key, value in v.items():
            if int(value) < 0:
                raise ValueError(f"totals['{key}'] must be non-negative, got {value}")
        return {key: int(value) for key, value in v.items()}

    @classmethod
    def new(
        cls,
        *,
        client_name: str,
        slug: str,
        project_id: str,
        requested_by: Optional[str] = None,
    ) -> "InferenceRun":
        """Build a fresh Running run with zeroed counters."""
        return cls(
            id=inference_run_id(client_name, slug),
            client_name=client_name,
            slug=slug,
            project_id=project_id,
            requested_by=requested_by,
            raw_outputs_prefix=f"projects/{slug}/inference/",
        )

    def to_document(self) -> dict[str, Any]:
        """Mongo document with the run id stored as _id."""
        doc = self.model_dump()
        doc["_id"] = doc.pop("id")
        doc["status"] = self.status.value
        if self.failure_origin is not None:
            doc["failure_origin"] = self.failure_origin.value
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "InferenceRun":
        data = dict(doc)
        data["id"] = data.pop("_id")
        return cls(**data)


class RunProgress(BaseModel):
    """Advisory status projection for external observers."""

    run_id: str
    stage: RunStage
    processed: int = 0
    total: Optional[int] = None
    totals: Optional[DetectionTotals] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
