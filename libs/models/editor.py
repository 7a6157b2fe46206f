# =============================================================================
# Editor Document Models
# =============================================================================
# The editor document is the convergent target of machine merges and human
# edits for one floor. Change events form its append-only audit trail.
# =============================================================================

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


__all__ = [
    "FeatureSource",
    "Feature",
    "Actor",
    "Basemap",
    "DocumentKey",
    "EditorDocument",
    "ChangeEventType",
    "ChangeEvent",
    "SYSTEM_ACTOR",
    "floor_key",
    "editor_doc_id",
    "change_event_id",
]


def floor_key(client_name: str, project_slug: str, floor_id: str) -> str:
    return f"{client_name}:{project_slug}:{floor_id}"


def editor_doc_id(key: str) -> str:
    return f"editor::{key}"


def change_event_id(key: str, run_id: str, attempt: int, event_type: str) -> str:
    """Deterministic event id so a re-attempted merge does not append twice."""
    return f"evt::{key}::{run_id}::{attempt}::{event_type}"


class FeatureSource(str, Enum):
    """Provenance of a feature in the editor document."""

    USER = "user"
    MACHINE = "ml"


class Feature(BaseModel):
    """
    A single editor feature.

    Geometry is kept as a plain mapping (point or polygon); the engine only
    cares about id, type and source.
    """

    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    geometry: dict[str, Any] = Field(default_factory=dict)
    source: FeatureSource = FeatureSource.USER
    audit: dict[str, Any] = Field(default_factory=dict)
    ml: Optional[dict[str, Any]] = None

    model_config = {"extra": "allow"}


class Actor(BaseModel):
    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None


SYSTEM_ACTOR = Actor(
    user_id="system",
    email="system@reveal",
    display_name="Reveal Inference",
)


class Basemap(BaseModel):
    key: str = Field(..., min_length=1)
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)


class DocumentKey(BaseModel):
    """Identifies the editor document of one floor and how to create it."""

    client_name: str = Field(..., min_length=1)
    project_slug: str = Field(..., min_length=1)
    floor_id: str = Field(..., min_length=1)
    basemap_key: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    paper_scale_denominator: Optional[float] = None
    legacy_editor_state_url: Optional[str] = None

    @property
    def floor_key(self) -> str:
        return floor_key(self.client_name, self.project_slug, self.floor_id)

    @property
    def document_id(self) -> str:
        return editor_doc_id(self.floor_key)


class EditorDocument(BaseModel):
    """
    Editor document for one floor.

    The version token (etag) is not part of the model; stores return it next
    to the document and require it back for conditional writes.

    Attributes:
        id: editor::<floor_key>
        revision: Counter for user edits. Machine merges never advance it.
        features: Feature id -> feature
        meta: Free-form metadata; meta.inference carries machine provenance
    """

    id: str
    schema_version: int = 1
    client_name: str
    project_slug: str
    floor_id: str
    floor_key: str
    basemap: Basemap
    transform: dict[str, Any] = Field(default_factory=lambda: {"mode": "unknown"})
    features: dict[str, Feature] = Field(default_factory=dict)
    meta: dict[str, Any] = Field(default_factory=dict)
    revision: int = Field(0, ge=0)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_by: Actor = Field(default_factory=lambda: SYSTEM_ACTOR.model_copy())

    def to_document(self) -> dict[str, Any]:
        """
        Mongo representation.

        Features are stored as a list because feature ids may contain
        characters Mongo does not accept in field names.
        """
        doc = self.model_dump(mode="python", exclude={"features"})
        doc["_id"] = doc.pop("id")
        doc["features"] = [f.model_dump(mode="json") for f in self.features.values()]
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "EditorDocument":
        data = {k: v for k, v in doc.items() if not k.startswith("_")}
        data["id"] = doc["_id"]
        features = doc.get("features") or []
        if isinstance(features, dict):
            features = list(features.values())
        data["features"] = {f["id"]: f for f in features}
        return cls.model_validate(data)


class ChangeEventType(str, Enum):
    INIT = "doc.init"
    IMPORT_FEATURES = "ml.importFeatures"


class ChangeEvent(BaseModel):
    """Append-only audit record for an editor document."""

    id: str
    document_id: str
    floor_key: str
    type: ChangeEventType
    actor: Actor = Field(default_factory=lambda: SYSTEM_ACTOR.model_copy())
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    payload: dict[str, Any] = Field(default_factory=dict)
    revision_before: Optional[int] = None
    revision_after: Optional[int] = None
    run_id: Optional[str] = None

    def to_document(self) -> dict[str, Any]:
        doc = self.model_dump(mode="python")
        doc["_id"] = doc.pop("id")
        doc["type"] = self.type.value
        return doc
