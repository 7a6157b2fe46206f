"""
Unit tests for the inference pipeline models and settings.
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from libs.models import (
    ChangeEvent,
    ChangeEventType,
    DocumentKey,
    EditorDocument,
    Feature,
    FeatureSource,
    Floor,
    InferenceRun,
    PipelineSettings,
    Project,
    RunStatus,
    StepRecord,
    UnownedFeaturePolicy,
    add_totals,
    change_event_id,
    inference_run_id,
    step_record_id,
    totals_regressed,
    zero_totals,
)


# =============================================================================
# Run ledger
# =============================================================================


class TestInferenceRun:
    def test_run_id_is_deterministic_per_target(self):
        assert inference_run_id("acme", "tower-a") == "infer::acme::tower-a"
        assert inference_run_id("acme", "tower-a") == inference_run_id("acme", "tower-a")
        assert inference_run_id("acme", "tower-b") != inference_run_id("acme", "tower-a")

    def test_new_run_starts_running_with_zero_totals(self):
        run = InferenceRun.new(client_name="acme", slug="tower-a", project_id="p1", requested_by="ops@acme")

        assert run.id == "infer::acme::tower-a"
        assert run.status == RunStatus.RUNNING
        assert run.attempt == 1
        assert run.processed_floors == 0
        assert run.total_floors is None
        assert run.totals == {"columnsDetected": 0, "beamsDetected": 0, "polygonsDetected": 0}
        assert run.raw_outputs_prefix == "projects/tower-a/inference/"
        assert run.completed_at is None

    def test_document_round_trip_uses_id_as_mongo_key(self):
        run = InferenceRun.new(client_name="acme", slug="tower-a", project_id="p1")
        doc = run.to_document()

        assert doc["_id"] == run.id
        assert "id" not in doc
        assert doc["status"] == "Running"
        assert InferenceRun.from_document(doc) == run

    def test_negative_totals_rejected(self):
        with pytest.raises(ValidationError):
            InferenceRun(
                id="infer::a::b",
                client_name="a",
                slug="b",
                project_id="p",
                totals={"columnsDetected": -1},
            )

    def test_terminal_statuses(self):
        assert RunStatus.COMPLETED.is_terminal
        assert RunStatus.FAILED.is_terminal
        assert not RunStatus.RUNNING.is_terminal


class TestTotals:
    def test_add_totals_is_componentwise(self):
        left = {"columnsDetected": 2, "beamsDetected": 0, "polygonsDetected": 1}
        right = {"columnsDetected": 3, "beamsDetected": 1, "polygonsDetected": 0}

        assert add_totals(left, right) == {"columnsDetected": 5, "beamsDetected": 1, "polygonsDetected": 1}

    def test_add_totals_keeps_extra_keys(self):
        assert add_totals(zero_totals(), {"wallsDetected": 4})["wallsDetected"] == 4

    def test_totals_regressed_lists_decreasing_counters(self):
        previous = {"columnsDetected": 4, "beamsDetected": 0, "polygonsDetected": 2}
        candidate = {"columnsDetected": 4, "beamsDetected": 0, "polygonsDetected": 1}

        assert totals_regressed(previous, candidate) == ["polygonsDetected"]
        assert totals_regressed(previous, previous) == []


# =============================================================================
# Projects and floors
# =============================================================================


class TestProjectAndFloor:
    def test_project_from_document_uses_object_id(self):
        project = Project.from_document({"_id": "p1", "client_name": "acme", "slug": "tower-a", "extra": 1})
        assert project.id == "p1"
        assert project.slug == "tower-a"

    def test_floor_requires_plan_url(self):
        with pytest.raises(ValidationError):
            Floor.from_document({"_id": "f1", "plan_url": ""})

    def test_floor_ignores_unknown_fields(self):
        floor = Floor.from_document(
            {"_id": "f1", "plan_url": "plans/f1.png", "image_width": 800, "metrics": {"columnsDetected": 3}}
        )
        assert floor.id == "f1"
        assert floor.image_width == 800


# =============================================================================
# Editor documents
# =============================================================================


class TestEditorDocument:
    def test_document_key_ids(self):
        key = DocumentKey(client_name="acme", project_slug="tower-a", floor_id="f1")

        assert key.floor_key == "acme:tower-a:f1"
        assert key.document_id == "editor::acme:tower-a:f1"

    def test_features_stored_as_list_and_restored_by_id(self):
        doc = EditorDocument(
            id="editor::acme:tower-a:f1",
            client_name="acme",
            project_slug="tower-a",
            floor_id="f1",
            floor_key="acme:tower-a:f1",
            basemap={"key": "plans/f1.png", "width": 100, "height": 80},
            features={
                "u.1": Feature(id="u.1", type="column", geometry={"kind": "point"}),
                "ml::r::column::0": Feature(id="ml::r::column::0", type="column", source=FeatureSource.MACHINE),
            },
        )

        stored = doc.to_document()
        assert stored["_id"] == doc.id
        assert isinstance(stored["features"], list)
        assert {f["id"] for f in stored["features"]} == {"u.1", "ml::r::column::0"}

        restored = EditorDocument.from_document({**stored, "_etag": "abc"})
        assert set(restored.features) == {"u.1", "ml::r::column::0"}
        assert restored.features["ml::r::column::0"].source == FeatureSource.MACHINE

    def test_change_event_ids_are_deterministic(self):
        first = change_event_id("acme:tower-a:f1", "infer::acme::tower-a", 1, "ml.importFeatures")
        again = change_event_id("acme:tower-a:f1", "infer::acme::tower-a", 1, "ml.importFeatures")
        next_attempt = change_event_id("acme:tower-a:f1", "infer::acme::tower-a", 2, "ml.importFeatures")

        assert first == again
        assert first != next_attempt

    def test_change_event_document(self):
        event = ChangeEvent(
            id="evt-1",
            document_id="editor::k",
            floor_key="k",
            type=ChangeEventType.IMPORT_FEATURES,
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        doc = event.to_document()

        assert doc["_id"] == "evt-1"
        assert doc["type"] == "ml.importFeatures"
        assert doc["actor"]["user_id"] == "system"


class TestStepRecord:
    def test_step_ids_sort_in_sequence_order(self):
        ids = [step_record_id("run", 1, seq) for seq in (2, 10, 1)]
        assert sorted(ids) == [step_record_id("run", 1, 1), step_record_id("run", 1, 2), step_record_id("run", 1, 10)]

    def test_record_document(self):
        record = StepRecord(run_id="run", attempt=2, seq=3, name="call_inference", result={"ok": True})
        doc = record.to_document()

        assert doc["_id"] == "run#2#00003"
        assert doc["result"] == {"ok": True}


# =============================================================================
# Pipeline settings
# =============================================================================


class TestPipelineSettings:
    def test_defaults(self, monkeypatch):
        for name in ("AML_MAX_ATTEMPTS", "INFERENCE_RETRY_MAX_ATTEMPTS", "UNOWNED_FEATURE_POLICY"):
            monkeypatch.delenv(name, raising=False)

        settings = PipelineSettings()

        assert settings.retry_max_attempts == 4
        assert settings.inner_max_attempts == 1
        assert settings.merge_max_attempts == 4
        assert settings.unowned_feature_policy == UnownedFeaturePolicy.PASS_THROUGH
        assert settings.write_legacy_editor_json is False

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("INFERENCE_RETRY_MAX_ATTEMPTS", "3")
        monkeypatch.setenv("UNOWNED_FEATURE_POLICY", "reject")
        monkeypatch.setenv("WRITE_LEGACY_EDITOR_JSON", "true")

        settings = PipelineSettings()

        assert settings.retry_max_attempts == 3
        assert settings.unowned_feature_policy == UnownedFeaturePolicy.REJECT
        assert settings.write_legacy_editor_json is True

    def test_retry_layers_must_fit_total_budget(self):
        with pytest.raises(ValidationError, match="MAX_TOTAL_INFERENCE_ATTEMPTS"):
            PipelineSettings(
                AML_MAX_ATTEMPTS=4,
                INFERENCE_RETRY_MAX_ATTEMPTS=5,
                MAX_TOTAL_INFERENCE_ATTEMPTS=16,
            )

    def test_max_interval_not_below_first_interval(self):
        with pytest.raises(ValidationError):
            PipelineSettings(
                INFERENCE_FIRST_RETRY_SECONDS=10,
                INFERENCE_MAX_RETRY_INTERVAL_SECONDS=5,
            )
