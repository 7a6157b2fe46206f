"""
Legacy editor JSON export.

Older consumers read projects/<slug>/editor/<floor>/latest.json instead of
the editor document. When enabled, the merge engine mirrors the machine
features into that format after a successful merge. The history copy is
best-effort.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from libs.detections import COLUMN, FLOOR_PLATE_OPENING, STAIRCASE_OPENING
from libs.models import DetectionTotals, EditorDocument, FeatureSource
from libs.paths import editor_history_path, editor_latest_path, safe_timestamp

logger = logging.getLogger(__name__)

CLASS_LABELS = {
    "0": "column",
    "1": "staircase-opening",
    "2": "floor-plate-opening",
}
COLUMN_SIZE = 60


def build_legacy_editor_json(
    document: EditorDocument,
    counts: DetectionTotals,
    run_id: str,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Render the machine features of a document in the latest.json layout."""
    now = now or datetime.now(timezone.utc)
    columns = []
    polygons = []

    for feature in document.features.values():
        if feature.source != FeatureSource.MACHINE:
            continue
        kind = feature.geometry.get("kind")
        if feature.type == COLUMN and kind == "point":
            position = feature.geometry.get("position") or {}
            columns.append(
                {
                    "id": feature.id,
                    "x": position.get("x"),
                    "y": position.get("y"),
                    "size": COLUMN_SIZE,
                    "userEdited": False,
                    "sourceBBox": (feature.ml or {}).get("sourceBBox"),
                }
            )
        elif feature.type in (STAIRCASE_OPENING, FLOOR_PLATE_OPENING) and kind == "polygon":
            polygons.append(
                {
                    "id": feature.id,
                    "kind": "opening",
                    "points": feature.geometry.get("points") or [],
                    "userEdited": False,
                }
            )

    return {
        "schemaVersion": 1,
        "mode": "columns",
        "basemaps": [
            {"id": "bm1", "url": "", "width": document.basemap.width, "height": document.basemap.height}
        ],
        "activeBasemap": 0,
        "columns": columns,
        "beams": [],
        "polygons": polygons,
        "meta": {
            "inference": {
                "runId": run_id,
                "model": (document.meta.get("inference") or {}).get("model"),
                "timestamp": now.isoformat(),
                "classLabels": CLASS_LABELS,
                "counts": dict(counts),
                "rawSummary": {},
            }
        },
        "comments": [],
    }


def export_legacy_editor_json(
    blob_store,
    document: EditorDocument,
    counts: DetectionTotals,
    run_id: str,
    *,
    write_history: bool = True,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Write latest.json and, if enabled, a timestamped history copy.

    The latest.json write must succeed; a failed history write is logged and
    reported in the result.
    """
    now = now or datetime.now(timezone.utc)
    payload = build_legacy_editor_json(document, counts, run_id, now=now)
    # Reject anything json cannot encode before touching the store
    json.dumps(payload)

    latest_path = editor_latest_path(document.project_slug, document.floor_id)
    blob_store.write_editor_json(latest_path, payload)
    result: dict[str, Any] = {"latest_path": latest_path}

    if write_history:
        history_path = editor_history_path(
            document.project_slug, document.floor_id, safe_timestamp(now.isoformat())
        )
        try:
            blob_store.write_editor_json(history_path, payload)
            result["history_path"] = history_path
            result["history_written"] = True
        except Exception as e:
            logger.warning(
                "Legacy editor history write failed (slug=%s, floor=%s): %s",
                document.project_slug,
                document.floor_id,
                e,
            )
            result["history_written"] = False

    return result
