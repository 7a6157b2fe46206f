# =============================================================================
# Data Models Library
# =============================================================================
# Pydantic models and settings for the floor-plan inference pipeline.
# =============================================================================

"""
Data models for the inference pipeline.

This library provides:
- Project / Floor: read-only inputs (floors are the units of work)
- InferenceRun: the per-target run ledger document
- EditorDocument / Feature / ChangeEvent: the merge target and its audit trail
- StepRecord / RetryState: recorded history for resumable execution
- Configuration models
"""

__version__ = "0.1.0"

# Project models
from .project import Floor, Project

# Run models
from .run import (
    TOTALS_KEYS,
    DetectionTotals,
    FailureOrigin,
    InferenceRun,
    LaunchClaim,
    RunProgress,
    RunStage,
    RunStatus,
    add_totals,
    inference_run_id,
    totals_regressed,
    zero_totals,
)

# Editor models
from .editor import (
    SYSTEM_ACTOR,
    Actor,
    Basemap,
    ChangeEvent,
    ChangeEventType,
    DocumentKey,
    EditorDocument,
    Feature,
    FeatureSource,
    change_event_id,
    editor_doc_id,
    floor_key,
)

# History models
from .history import RetryState, StepRecord, step_record_id

# Configuration models
from .config import (
    InferenceSettings,
    MinIOSettings,
    MongoSettings,
    PipelineSettings,
    UnownedFeaturePolicy,
)

__all__ = [
    # Project models
    "Project",
    "Floor",
    # Run models
    "TOTALS_KEYS",
    "DetectionTotals",
    "FailureOrigin",
    "InferenceRun",
    "LaunchClaim",
    "RunProgress",
    "RunStage",
    "RunStatus",
    "add_totals",
    "inference_run_id",
    "totals_regressed",
    "zero_totals",
    # Editor models
    "SYSTEM_ACTOR",
    "Actor",
    "Basemap",
    "ChangeEvent",
    "ChangeEventType",
    "DocumentKey",
    "EditorDocument",
    "Feature",
    "FeatureSource",
    "change_event_id",
    "editor_doc_id",
    "floor_key",
    # History models
    "RetryState",
    "StepRecord",
    "step_record_id",
    # Configuration models
    "InferenceSettings",
    "MinIOSettings",
    "MongoSettings",
    "PipelineSettings",
    "UnownedFeaturePolicy",
]
