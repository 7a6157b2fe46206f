# =============================================================================
# Project and Floor Models
# =============================================================================
# Read-only inputs enumerated by the orchestrator. Floors are the units of
# work, processed in creation order.
# =============================================================================

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


__all__ = ["Project", "Floor"]


class Project(BaseModel):
    """Project document (one per client_name + slug)."""

    id: str
    client_name: str
    slug: str
    name: Optional[str] = None
    project_number: Optional[str] = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Project":
        data = {k: v for k, v in doc.items() if k != "_id"}
        data.setdefault("id", str(doc.get("_id")))
        return cls.model_validate(data)

    model_config = {"extra": "ignore"}


class Floor(BaseModel):
    """
    A floor to run inference on.

    Attributes:
        id: Floor id (unique within the project)
        name: Display name
        plan_url: Blob key of the floor plan image
        image_width: Plan image width in pixels (used as basemap width)
        image_height: Plan image height in pixels (used as basemap height)
        paper_scale_denominator: Declared paper scale (1:N), if known
        paper_scale_text: Declared paper scale as entered
        editor_state_url: Location of the legacy editor JSON, if any
        created_at: Creation timestamp; defines processing order
    """

    id: str
    name: Optional[str] = None
    plan_url: str = Field(..., min_length=1)
    image_width: Optional[int] = Field(None, gt=0)
    image_height: Optional[int] = Field(None, gt=0)
    paper_scale_denominator: Optional[float] = None
    paper_scale_text: Optional[str] = None
    editor_state_url: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Floor":
        data = {k: v for k, v in doc.items() if k != "_id"}
        data.setdefault("id", str(doc.get("_id")))
        return cls.model_validate(data)
