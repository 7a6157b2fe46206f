# =============================================================================
# Editor Merge
# =============================================================================
# Pure functions that build and merge editor documents. Nothing here touches
# a store; every function returns a new document and leaves its input as is.
# =============================================================================

from datetime import datetime, timezone
from typing import Iterable, Optional

from libs.detections import MACHINE_OWNED_TYPES
from libs.errors import InputValidationError, MissingInputError
from libs.models import (
    SYSTEM_ACTOR,
    Basemap,
    DocumentKey,
    EditorDocument,
    Feature,
    FeatureSource,
    UnownedFeaturePolicy,
)

__all__ = [
    "INFERENCE_SOURCE",
    "declared_transform",
    "new_editor_document",
    "filter_incoming",
    "merge_machine_features",
]

INFERENCE_SOURCE = "aml"


def declared_transform(paper_scale_denominator: Optional[float]) -> dict:
    """Drawing transform from the floor's declared paper scale (1:N)."""
    if isinstance(paper_scale_denominator, (int, float)) and paper_scale_denominator > 0:
        return {"mode": "declared", "declared": {"scaleDenominator": paper_scale_denominator}}
    return {"mode": "unknown"}


def new_editor_document(key: DocumentKey, *, now: Optional[datetime] = None) -> EditorDocument:
    """
    Build an empty editor document for a floor.

    Raises:
        MissingInputError: If basemap key, width or height was not supplied
    """
    if not key.basemap_key or not key.width or not key.height:
        raise MissingInputError(
            f"Editor document missing and cannot be initialised (floor_key={key.floor_key}): "
            "basemap key, width and height are required"
        )

    meta = {}
    if key.legacy_editor_state_url:
        meta["legacy"] = {"editorStateUrl": key.legacy_editor_state_url}

    return EditorDocument(
        id=key.document_id,
        client_name=key.client_name,
        project_slug=key.project_slug,
        floor_id=key.floor_id,
        floor_key=key.floor_key,
        basemap=Basemap(key=key.basemap_key, width=key.width, height=key.height),
        transform=declared_transform(key.paper_scale_denominator),
        meta=meta,
        revision=0,
        updated_at=now or datetime.now(timezone.utc),
        updated_by=SYSTEM_ACTOR.model_copy(),
    )


def filter_incoming(
    incoming: Iterable[Feature],
    policy: UnownedFeaturePolicy,
    owned_types: frozenset = MACHINE_OWNED_TYPES,
) -> list[Feature]:
    """
    Apply the unowned-type policy to an incoming batch.

    pass_through keeps features of any type (they are stored but never
    replaced by type on later merges), drop discards them, reject fails the
    whole batch.
    """
    features = list(incoming)
    unowned = [f for f in features if f.type not in owned_types]
    if not unowned or policy == UnownedFeaturePolicy.PASS_THROUGH:
        return features
    if policy == UnownedFeaturePolicy.REJECT:
        types = sorted({f.type for f in unowned})
        raise InputValidationError(f"Incoming features have non machine-owned types: {types}")
    return [f for f in features if f.type in owned_types]


def merge_machine_features(
    document: EditorDocument,
    incoming: Iterable[Feature],
    *,
    run_id: str,
    model: Optional[str] = None,
    owned_types: frozenset = MACHINE_OWNED_TYPES,
    now: Optional[datetime] = None,
) -> EditorDocument:
    """
    Compute the next document state for a machine merge.

    Machine features of an owned type are replaced wholesale by the incoming
    batch; user features and machine features of other types are kept.
    Incoming features overwrite by id. revision is left unchanged.
    """
    now = now or datetime.now(timezone.utc)

    features = {
        feature_id: feature.model_copy(deep=True)
        for feature_id, feature in document.features.items()
        if not (feature.source == FeatureSource.MACHINE and feature.type in owned_types)
    }
    for feature in incoming:
        features[feature.id] = feature.model_copy(deep=True)

    previous = dict(document.meta.get("inference") or {})
    meta = {
        **document.meta,
        "inference": {
            **previous,
            "lastRunId": run_id,
            "model": model or previous.get("model"),
            "runAt": now.isoformat(),
            "source": INFERENCE_SOURCE,
        },
    }

    return document.model_copy(
        update={
            "features": features,
            "meta": meta,
            "updated_at": now,
            "updated_by": SYSTEM_ACTOR.model_copy(),
        },
        deep=True,
    )
