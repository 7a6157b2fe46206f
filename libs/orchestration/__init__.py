# =============================================================================
# Orchestration Engine
# =============================================================================
# Resumable per-floor inference pipeline driven by recorded step history.
# =============================================================================

from .collaborators import (
    BlobStore,
    EditorDocumentStore,
    FloorMetricsStore,
    HistoryStore,
    InferenceClient,
    PipelineCollaborators,
    ProgressStore,
    ProjectStore,
    RunStore,
)
from .engine import InferenceOrchestrator, RunResult, truncate_url
from .history import RecordedHistory

__all__ = [
    "BlobStore",
    "EditorDocumentStore",
    "FloorMetricsStore",
    "HistoryStore",
    "InferenceClient",
    "PipelineCollaborators",
    "ProgressStore",
    "ProjectStore",
    "RunStore",
    "InferenceOrchestrator",
    "RunResult",
    "RecordedHistory",
    "truncate_url",
]
