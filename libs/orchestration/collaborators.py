# =============================================================================
# Orchestrator Collaborators
# =============================================================================
# Interfaces the orchestrator depends on. The Dagster resources implement
# them against MongoDB, MinIO and the inference endpoint; tests implement
# them with mongomock and plain fakes.
# =============================================================================

from dataclasses import dataclass
from typing import Any, Optional, Protocol

from libs.models import (
    ChangeEvent,
    DetectionTotals,
    EditorDocument,
    FailureOrigin,
    Floor,
    InferenceRun,
    Project,
    RetryState,
    RunProgress,
    RunStatus,
    StepRecord,
)

__all__ = [
    "ProjectStore",
    "RunStore",
    "EditorDocumentStore",
    "HistoryStore",
    "ProgressStore",
    "FloorMetricsStore",
    "BlobStore",
    "InferenceClient",
    "PipelineCollaborators",
]


class ProjectStore(Protocol):
    def find_project(self, client_name: str, slug: str) -> Project:
        """Raises NotFoundError if the project does not exist."""

    def list_floors(self, project_id: str) -> list[Floor]:
        """Floors of a project in creation order."""


class RunStore(Protocol):
    def read_run(self, run_id: str) -> Optional[InferenceRun]: ...

    def create_run(self, run: InferenceRun) -> None:
        """Raises ConflictOnCreateError if a run with the same id exists."""

    def update_run_progress(
        self,
        run_id: str,
        *,
        processed_floors: int,
        totals: DetectionTotals,
    ) -> None:
        """Persist a progress checkpoint; rejects totals regressions."""

    def update_run_status(
        self,
        run_id: str,
        status: RunStatus,
        *,
        total_floors: Optional[int] = None,
        processed_floors: Optional[int] = None,
        totals: Optional[DetectionTotals] = None,
        error_message: Optional[str] = None,
        failure_origin: Optional[FailureOrigin] = None,
    ) -> None: ...

    def restart_run(self, run_id: str, *, requested_by: Optional[str] = None) -> InferenceRun: ...


class EditorDocumentStore(Protocol):
    def read_editor_doc(self, document_id: str) -> tuple[EditorDocument, str]:
        """Returns (document, version). Raises NotFoundError."""

    def create_editor_doc(self, document: EditorDocument) -> str:
        """Returns the new version. Raises ConflictOnCreateError."""

    def write_editor_doc(self, document: EditorDocument, expected_version: str) -> str:
        """Returns the new version. Raises VersionConflictError."""

    def append_event(self, event: ChangeEvent) -> None:
        """Append-only; an event id that already exists is ignored."""


class HistoryStore(Protocol):
    def get_step(self, run_id: str, attempt: int, seq: int) -> Optional[StepRecord]: ...

    def record_step(self, record: StepRecord) -> None: ...

    def get_retry_state(self, run_id: str, attempt: int, seq: int) -> Optional[RetryState]: ...

    def record_retry_failure(self, state: RetryState) -> None: ...


class ProgressStore(Protocol):
    def publish_progress(self, progress: RunProgress) -> None: ...

    def get_progress(self, run_id: str) -> Optional[RunProgress]: ...


class FloorMetricsStore(Protocol):
    def update_floor_metrics(self, project_id: str, floor_id: str, counts: DetectionTotals) -> dict[str, Any]:
        """Raises NotFoundError if the floor does not exist."""


class BlobStore(Protocol):
    def issue_read_url(self, key: str, ttl_seconds: int) -> str: ...

    def write_raw(self, key: str, payload: Any) -> str: ...

    def write_editor_json(self, key: str, payload: dict[str, Any]) -> str: ...


class InferenceClient(Protocol):
    model: Optional[str]

    def infer(self, image_url: str, meta: dict[str, Any]) -> dict[str, Any]: ...


@dataclass
class PipelineCollaborators:
    """Everything the orchestrator talks to, injected at construction."""

    projects: ProjectStore
    runs: RunStore
    documents: EditorDocumentStore
    history: HistoryStore
    progress: ProgressStore
    metrics: FloorMetricsStore
    blobs: BlobStore
    inference: InferenceClient

    @classmethod
    def from_stores(cls, store, blobs: BlobStore, inference: InferenceClient) -> "PipelineCollaborators":
        """Use one store object for every document-store role."""
        return cls(
            projects=store,
            runs=store,
            documents=store,
            history=store,
            progress=store,
            metrics=store,
            blobs=blobs,
            inference=inference,
        )
