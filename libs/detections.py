# =============================================================================
# Detection Mapping
# =============================================================================
# Converts a raw inference response into editor features:
# - class 0 → column (point at the bbox centre)
# - class 1 → staircaseOpening (bbox rectangle polygon)
# - class 2 → floorPlateOpening (bbox rectangle polygon)
# Unknown classes and malformed boxes are skipped.
# =============================================================================

import math
from datetime import datetime, timezone
from typing import Any, Optional

from libs.models import SYSTEM_ACTOR, DetectionTotals, Feature, FeatureSource

__all__ = [
    "CLASS_TO_FEATURE_TYPE",
    "COLUMN",
    "STAIRCASE_OPENING",
    "FLOOR_PLATE_OPENING",
    "BEAM",
    "MACHINE_OWNED_TYPES",
    "extract_detections",
    "bbox_from_xyxy",
    "build_ml_features",
    "count_features",
]

COLUMN = "column"
STAIRCASE_OPENING = "staircaseOpening"
FLOOR_PLATE_OPENING = "floorPlateOpening"
BEAM = "beam"

CLASS_TO_FEATURE_TYPE = {
    0: COLUMN,
    1: STAIRCASE_OPENING,
    2: FLOOR_PLATE_OPENING,
}

# Feature types the inference pipeline produces and therefore replaces on merge.
MACHINE_OWNED_TYPES = frozenset(CLASS_TO_FEATURE_TYPE.values())

POLYGON_TYPES = frozenset({STAIRCASE_OPENING, FLOOR_PLATE_OPENING})


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    return n if math.isfinite(n) else None


def extract_detections(raw: Any) -> list[dict]:
    """
    Collect detections from either response shape:
    {"results": [{"detections": [...]}, ...]} or {"detections": [...]}.
    """
    if not isinstance(raw, dict):
        return []
    detections: list[dict] = []
    for result in raw.get("results") or []:
        if isinstance(result, dict):
            detections.extend(d for d in result.get("detections") or [] if isinstance(d, dict))
    if not detections:
        detections.extend(d for d in raw.get("detections") or [] if isinstance(d, dict))
    return detections


def bbox_from_xyxy(box: list) -> dict[str, float]:
    x1, y1, x2, y2 = (_as_number(v) or 0.0 for v in box[:4])
    return {
        "x": min(x1, x2),
        "y": min(y1, y2),
        "w": abs(x2 - x1),
        "h": abs(y2 - y1),
    }


def _rect_points(b: dict[str, float]) -> list[dict[str, float]]:
    return [
        {"x": b["x"], "y": b["y"]},
        {"x": b["x"] + b["w"], "y": b["y"]},
        {"x": b["x"] + b["w"], "y": b["y"] + b["h"]},
        {"x": b["x"], "y": b["y"] + b["h"]},
    ]


def build_ml_features(
    raw: Any,
    *,
    run_id: str,
    model: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[list[Feature], DetectionTotals]:
    """
    Build machine features from a raw inference response.

    Feature ids are deterministic per run (ml::<run_id>::<type>::<n>), so
    re-running the mapping for the same response yields the same ids.

    Returns:
        (features, counts)
    """
    created_at = (now or datetime.now(timezone.utc)).isoformat()
    audit = {"createdBy": SYSTEM_ACTOR.model_dump(), "createdAt": created_at}

    features: list[Feature] = []
    columns = 0
    polygons = 0

    for detection in extract_detections(raw):
        cls = _as_number(detection.get("cls"))
        feature_type = CLASS_TO_FEATURE_TYPE.get(int(cls)) if cls is not None and cls.is_integer() else None
        if feature_type is None:
            continue
        box = detection.get("box")
        if not isinstance(box, list) or len(box) < 4:
            continue

        bbox = bbox_from_xyxy(box)
        ml = {
            "runId": run_id,
            "model": model,
            "classId": int(cls),
            "score": _as_number(detection.get("score")),
            "sourceBBox": bbox,
        }

        if feature_type == COLUMN:
            geometry = {
                "kind": "point",
                "position": {"x": bbox["x"] + bbox["w"] / 2, "y": bbox["y"] + bbox["h"] / 2},
            }
            feature_id = f"ml::{run_id}::{COLUMN}::{columns}"
            columns += 1
        else:
            geometry = {"kind": "polygon", "points": _rect_points(bbox), "closed": True}
            feature_id = f"ml::{run_id}::{feature_type}::{polygons}"
            polygons += 1

        features.append(
            Feature(
                id=feature_id,
                type=feature_type,
                geometry=geometry,
                source=FeatureSource.MACHINE,
                audit=dict(audit),
                ml=ml,
            )
        )

    return features, count_features(features)


def count_features(features: list[Feature]) -> DetectionTotals:
    """Detection counters for a feature batch."""
    return {
        "columnsDetected": sum(1 for f in features if f.type == COLUMN),
        "beamsDetected": sum(1 for f in features if f.type == BEAM),
        "polygonsDetected": sum(1 for f in features if f.type in POLYGON_TYPES),
    }
