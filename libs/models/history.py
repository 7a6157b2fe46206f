# =============================================================================
# Recorded History Models
# =============================================================================
# Step records make an orchestrator run resumable: a step whose result is
# recorded is replayed from the record instead of being executed again.
# =============================================================================

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


__all__ = ["StepRecord", "RetryState", "step_record_id"]


def step_record_id(run_id: str, attempt: int, seq: int) -> str:
    return f"{run_id}#{attempt}#{seq:05d}"


class StepRecord(BaseModel):
    """
    Result of one completed step.

    Attributes:
        run_id: Owning run
        attempt: Run attempt the step belongs to
        seq: Position of the step in the run's deterministic step sequence
        name: Step name; replay checks it against the step being executed
        result: JSON-compatible step result
        recorded_at: When the result was recorded
    """

    run_id: str
    attempt: int = Field(..., ge=1)
    seq: int = Field(..., ge=0)
    name: str
    result: Any = None
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def id(self) -> str:
        return step_record_id(self.run_id, self.attempt, self.seq)

    def to_document(self) -> dict[str, Any]:
        doc = self.model_dump(mode="python")
        doc["_id"] = self.id
        return doc


class RetryState(BaseModel):
    """Failed attempts of a step run under the durable retry policy."""

    run_id: str
    attempt: int
    seq: int
    name: str
    attempts: int = 0
    first_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
