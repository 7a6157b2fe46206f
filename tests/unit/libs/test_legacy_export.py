"""Unit tests for the legacy editor JSON export and blob key conventions."""

from datetime import datetime, timezone

import pytest

from libs.detections import build_ml_features
from libs.editor_merge import merge_machine_features, new_editor_document
from libs.errors import InputValidationError
from libs.legacy_export import build_legacy_editor_json, export_legacy_editor_json
from libs.models import DocumentKey, Feature
from libs.paths import (
    editor_history_path,
    editor_latest_path,
    inference_raw_path,
    safe_timestamp,
)
from tests.helpers import FakeBlobStore, detection_response


NOW = datetime(2024, 5, 1, 9, 30, 15, 250000, tzinfo=timezone.utc)


@pytest.fixture
def merged_document():
    key = DocumentKey(
        client_name="acme",
        project_slug="tower-a",
        floor_id="f1",
        basemap_key="plans/f1.png",
        width=1000,
        height=700,
    )
    features, _ = build_ml_features(detection_response(columns=2, staircases=1), run_id="r1", now=NOW)
    features.append(Feature(id="u.1", type="column", geometry={"kind": "point", "position": {"x": 1, "y": 1}}))
    return merge_machine_features(new_editor_document(key, now=NOW), features, run_id="r1", model="det", now=NOW)


class TestPaths:
    def test_layout(self):
        assert inference_raw_path("tower-a", "f1") == "projects/tower-a/inference/f1/score.raw.json"
        assert editor_latest_path("tower-a", "f1") == "projects/tower-a/editor/f1/latest.json"
        assert (
            editor_history_path("tower-a", "f1", "2024-05-01T09-30-15")
            == "projects/tower-a/editor/f1/history/2024-05-01T09-30-15.json"
        )

    @pytest.mark.parametrize("bad", ["", "  ", "../etc", "a/b", "a\\b"])
    def test_unsafe_segments_rejected(self, bad):
        with pytest.raises(InputValidationError):
            inference_raw_path(bad, "f1")

    def test_safe_timestamp(self):
        assert safe_timestamp("2024-05-01T09:30:15.250000+00:00") == "2024-05-01T09-30-15-250000+00-00"


class TestBuildLegacyEditorJson:
    def test_only_machine_features_exported(self, merged_document):
        payload = build_legacy_editor_json(merged_document, {"columnsDetected": 2}, "r1", now=NOW)

        assert payload["schemaVersion"] == 1
        assert payload["mode"] == "columns"
        assert [c["id"] for c in payload["columns"]] == ["ml::r1::column::0", "ml::r1::column::1"]
        assert payload["columns"][0]["size"] == 60
        assert payload["columns"][0]["userEdited"] is False
        assert len(payload["polygons"]) == 1
        assert payload["polygons"][0]["kind"] == "opening"
        assert payload["beams"] == []
        assert payload["basemaps"][0]["width"] == 1000

    def test_inference_meta(self, merged_document):
        payload = build_legacy_editor_json(merged_document, {"columnsDetected": 2}, "r1", now=NOW)

        inference = payload["meta"]["inference"]
        assert inference["runId"] == "r1"
        assert inference["model"] == "det"
        assert inference["counts"] == {"columnsDetected": 2}
        assert inference["classLabels"]["1"] == "staircase-opening"


class TestExportLegacyEditorJson:
    def test_writes_latest_and_history(self, merged_document):
        blobs = FakeBlobStore()

        result = export_legacy_editor_json(blobs, merged_document, {"columnsDetected": 2}, "r1", now=NOW)

        assert result["latest_path"] == "projects/tower-a/editor/f1/latest.json"
        assert result["history_written"] is True
        assert result["history_path"] in blobs.editor_json
        assert blobs.editor_json[result["latest_path"]] == blobs.editor_json[result["history_path"]]

    def test_history_failure_is_not_fatal(self, merged_document):
        blobs = FakeBlobStore()
        blobs.fail_history_writes = True

        result = export_legacy_editor_json(blobs, merged_document, {}, "r1", now=NOW)

        assert result["history_written"] is False
        assert list(blobs.editor_json) == ["projects/tower-a/editor/f1/latest.json"]

    def test_history_can_be_disabled(self, merged_document):
        blobs = FakeBlobStore()

        result = export_legacy_editor_json(blobs, merged_document, {}, "r1", write_history=False, now=NOW)

        assert "history_written" not in result
        assert len(blobs.editor_json) == 1
