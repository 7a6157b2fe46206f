"""MongoDB Resource - Inference ledger, editor documents and run history."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from functools import cached_property
from typing import Any, ClassVar, Dict, Optional

from dagster import ConfigurableResource
from pydantic import Field
from pymongo import MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from libs.errors import (
    ConflictOnCreateError,
    InputValidationError,
    NotFoundError,
    RunNotActiveError,
    VersionConflictError,
)
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
    step_record_id,
    totals_regressed,
    zero_totals,
)

__all__ = ["MongoDBResource"]


def _new_etag() -> str:
    return uuid.uuid4().hex


class MongoDBResource(ConfigurableResource):
    """
    Dagster resource for the inference ledger in MongoDB.

    Implements every document-store role the orchestrator needs: projects
    and floors (read-only), runs, editor documents with etag-conditional
    writes, change events, recorded step history and the progress
    projection.
    """

    connection_string: str = Field(..., description="MongoDB connection URI")
    database: str = Field("reveal", description="MongoDB database name")

    PROJECTS: ClassVar[str] = "projects"
    FLOORS: ClassVar[str] = "floors"
    RUNS: ClassVar[str] = "inference_runs"
    EDITOR_DOCS: ClassVar[str] = "editor_docs"
    EDITOR_EVENTS: ClassVar[str] = "editor_events"
    HISTORY: ClassVar[str] = "run_history"
    RETRY_STATE: ClassVar[str] = "run_retry_state"
    PROGRESS: ClassVar[str] = "run_progress"

    @cached_property
    def _client(self) -> MongoClient:
        return MongoClient(self.connection_string)

    def _get_db(self) -> Database:
        return self._client[self.database]

    def _get_collection(self, name: str) -> Collection:
        return self._get_db()[name]

    @staticmethod
    def _strip_object_id(doc: Dict) -> Dict:
        stripped = dict(doc)
        stripped.pop("_id", None)
        return stripped

    # ------------------------------------------------------------------
    # Project / floor operations
    # ------------------------------------------------------------------

    def find_project(self, client_name: str, slug: str) -> Project:
        """
        Load a project by client and slug.

        Raises:
            NotFoundError: If no such project exists
        """
        document = self._get_collection(self.PROJECTS).find_one(
            {"client_name": client_name, "slug": slug}
        )
        if not document:
            raise NotFoundError(
                f"Project not found: {client_name}/{slug}",
                resource_type="project",
                resource_id=f"{client_name}/{slug}",
            )
        return Project.from_document(document)

    def list_floors(self, project_id: str) -> list[Floor]:
        """Return a project's floors in creation order."""
        cursor = self._get_collection(self.FLOORS).find(
            {"project_id": project_id},
            sort=[("created_at", 1), ("_id", 1)],
        )
        return [Floor.from_document(doc) for doc in cursor]

    def update_floor_metrics(
        self, project_id: str, floor_id: str, counts: DetectionTotals
    ) -> dict[str, Any]:
        """
        Denormalise a floor's detection counts onto the floor document.

        Raises:
            NotFoundError: If the floor does not exist
        """
        metrics = {
            "columnsDetected": int(counts.get("columnsDetected", 0)),
            "beamsDetected": int(counts.get("beamsDetected", 0)),
            "polygonsDetected": int(counts.get("polygonsDetected", 0)),
        }
        now = datetime.now(timezone.utc)
        result = self._get_collection(self.FLOORS).update_one(
            {"_id": floor_id, "project_id": project_id},
            {"$set": {**{f"metrics.{k}": v for k, v in metrics.items()}, "updated_at": now}},
        )
        if result.matched_count == 0:
            raise NotFoundError(
                f"Floor not found: {floor_id}", resource_type="floor", resource_id=floor_id
            )
        return {"id": floor_id, "metrics": metrics}

    # ------------------------------------------------------------------
    # Run operations
    # ------------------------------------------------------------------

    def read_run(self, run_id: str) -> InferenceRun | None:
        document = self._get_collection(self.RUNS).find_one({"_id": run_id})
        if not document:
            return None
        return InferenceRun.from_document(document)

    def create_run(self, run: InferenceRun) -> None:
        """
        Insert a new run document.

        Raises:
            ConflictOnCreateError: If a run with the same id already exists
        """
        try:
            self._get_collection(self.RUNS).insert_one(run.to_document())
        except DuplicateKeyError as e:
            raise ConflictOnCreateError(run.id) from e

    def update_run_progress(
        self,
        run_id: str,
        *,
        processed_floors: int,
        totals: DetectionTotals,
    ) -> None:
        """
        Persist a progress checkpoint on a Running run.

        Raises:
            NotFoundError: If the run does not exist
            RunNotActiveError: If the run is not Running
            InputValidationError: If totals would decrease or processed
                floors would exceed the total
        """
        current = self.read_run(run_id)
        if current is None:
            raise NotFoundError(f"Run not found: {run_id}", resource_type="run", resource_id=run_id)
        if current.status != RunStatus.RUNNING:
            raise RunNotActiveError(f"Run {run_id} is {current.status.value}")

        regressed = totals_regressed(current.totals, totals)
        if regressed:
            raise InputValidationError(f"Run {run_id}: totals would decrease for {regressed}")
        if current.total_floors is not None and processed_floors > current.total_floors:
            raise InputValidationError(
                f"Run {run_id}: processed_floors {processed_floors} exceeds total {current.total_floors}"
            )

        result = self._get_collection(self.RUNS).update_one(
            {"_id": run_id, "status": RunStatus.RUNNING.value},
            {
                "$set": {
                    "processed_floors": processed_floors,
                    "totals": {k: int(v) for k, v in totals.items()},
                    "updated_at": datetime.now(timezone.utc),
                }
            },
        )
        if result.matched_count == 0:
            raise RunNotActiveError(f"Run {run_id} left Running during update")

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
    ) -> None:
        """
        Update a run's status and any supplied counters.

        completed_at is set only on the first transition into a terminal
        status of the current attempt.
        """
        collection = self._get_collection(self.RUNS)
        now = datetime.now(timezone.utc)
        update_doc: Dict[str, Any] = {"status": status.value, "updated_at": now}
        if total_floors is not None:
            update_doc["total_floors"] = total_floors
        if processed_floors is not None:
            update_doc["processed_floors"] = processed_floors
        if totals is not None:
            update_doc["totals"] = {k: int(v) for k, v in totals.items()}
        if error_message:
            update_doc["error_message"] = error_message
        if failure_origin is not None:
            update_doc["failure_origin"] = failure_origin.value

        result = collection.update_one({"_id": run_id}, {"$set": update_doc})
        if result.matched_count == 0:
            raise NotFoundError(f"Run not found: {run_id}", resource_type="run", resource_id=run_id)

        if status.is_terminal:
            collection.update_one(
                {"_id": run_id, "completed_at": None},
                {"$set": {"completed_at": now}},
            )

    def fail_run_if_running(self, run_id: str, error_message: str) -> bool:
        """
        Mark a run Failed on behalf of the host unless it is already terminal.

        The run keeps its attempt and recorded history; re-admission resumes it.
        """
        now = datetime.now(timezone.utc)
        result = self._get_collection(self.RUNS).update_one(
            {"_id": run_id, "status": RunStatus.RUNNING.value},
            {
                "$set": {
                    "status": RunStatus.FAILED.value,
                    "error_message": error_message,
                    "failure_origin": FailureOrigin.HOST.value,
                    "updated_at": now,
                    "completed_at": now,
                }
            },
        )
        return result.modified_count > 0

    def restart_run(self, run_id: str, *, requested_by: Optional[str] = None) -> InferenceRun:
        """
        Re-arm a Failed run.

        A run the host marked Failed resumes its current attempt: counters
        and recorded history are kept. Any other Failed run starts a new
        attempt with reset counters. If the run is no longer Failed (a
        concurrent request re-armed it) it is returned as is.
        """
        collection = self._get_collection(self.RUNS)
        now = datetime.now(timezone.utc)
        rearm: Dict[str, Any] = {
            "status": RunStatus.RUNNING.value,
            "error_message": None,
            "failure_origin": None,
            "launch": None,
            "completed_at": None,
            "updated_at": now,
        }
        if requested_by:
            rearm["requested_by"] = requested_by

        document = collection.find_one_and_update(
            {"_id": run_id, "status": RunStatus.FAILED.value, "failure_origin": FailureOrigin.HOST.value},
            {"$set": rearm},
            return_document=ReturnDocument.AFTER,
        )
        if document:
            return InferenceRun.from_document(document)

        reset = dict(
            rearm,
            total_floors=None,
            processed_floors=0,
            totals=zero_totals(),
            started_at=now,
        )
        document = collection.find_one_and_update(
            {"_id": run_id, "status": RunStatus.FAILED.value},
            {"$set": reset, "$inc": {"attempt": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if document:
            return InferenceRun.from_document(document)

        current = self.read_run(run_id)
        if current is None:
            raise NotFoundError(f"Run not found: {run_id}", resource_type="run", resource_id=run_id)
        return current

    # ------------------------------------------------------------------
    # Editor document operations
    # ------------------------------------------------------------------

    def read_editor_doc(self, document_id: str) -> tuple[EditorDocument, str]:
        """
        Load an editor document with its version token.

        Raises:
            NotFoundError: If the document does not exist
        """
        document = self._get_collection(self.EDITOR_DOCS).find_one({"_id": document_id})
        if not document:
            raise NotFoundError(
                f"Editor document not found: {document_id}",
                resource_type="editor_doc",
                resource_id=document_id,
            )
        return EditorDocument.from_document(document), document.get("_etag", "")

    def create_editor_doc(self, document: EditorDocument) -> str:
        """
        Insert a new editor document and return its version token.

        Raises:
            ConflictOnCreateError: If the document already exists
        """
        etag = _new_etag()
        try:
            self._get_collection(self.EDITOR_DOCS).insert_one({**document.to_document(), "_etag": etag})
        except DuplicateKeyError as e:
            raise ConflictOnCreateError(document.id) from e
        return etag

    def write_editor_doc(self, document: EditorDocument, expected_version: str) -> str:
        """
        Replace an editor document if its version token still matches.

        Raises:
            VersionConflictError: If another writer changed the document
        """
        etag = _new_etag()
        result = self._get_collection(self.EDITOR_DOCS).replace_one(
            {"_id": document.id, "_etag": expected_version},
            {**document.to_document(), "_etag": etag},
        )
        if result.matched_count == 0:
            raise VersionConflictError(document.id, expected_version)
        return etag

    def append_event(self, event: ChangeEvent) -> None:
        """Append a change event; an already recorded event id is ignored."""
        try:
            self._get_collection(self.EDITOR_EVENTS).insert_one(event.to_document())
        except DuplicateKeyError:
            pass

    def list_events(self, document_id: str) -> list[ChangeEvent]:
        cursor = self._get_collection(self.EDITOR_EVENTS).find(
            {"document_id": document_id}, sort=[("timestamp", 1), ("_id", 1)]
        )
        return [ChangeEvent.model_validate({**self._strip_object_id(doc), "id": doc["_id"]}) for doc in cursor]

    # ------------------------------------------------------------------
    # Recorded history
    # ------------------------------------------------------------------

    def get_step(self, run_id: str, attempt: int, seq: int) -> StepRecord | None:
        document = self._get_collection(self.HISTORY).find_one(
            {"_id": step_record_id(run_id, attempt, seq)}
        )
        if not document:
            return None
        return StepRecord.model_validate(self._strip_object_id(document))

    def record_step(self, record: StepRecord) -> None:
        """Record a step result (idempotent by step id)."""
        self._get_collection(self.HISTORY).replace_one(
            {"_id": record.id}, record.to_document(), upsert=True
        )

    def get_retry_state(self, run_id: str, attempt: int, seq: int) -> RetryState | None:
        document = self._get_collection(self.RETRY_STATE).find_one(
            {"_id": step_record_id(run_id, attempt, seq)}
        )
        if not document:
            return None
        return RetryState.model_validate(self._strip_object_id(document))

    def record_retry_failure(self, state: RetryState) -> None:
        doc = state.model_dump()
        doc["_id"] = step_record_id(state.run_id, state.attempt, state.seq)
        self._get_collection(self.RETRY_STATE).replace_one({"_id": doc["_id"]}, doc, upsert=True)

    # ------------------------------------------------------------------
    # Progress projection
    # ------------------------------------------------------------------

    def publish_progress(self, progress: RunProgress) -> None:
        doc = progress.model_dump()
        doc["stage"] = progress.stage.value
        self._get_collection(self.PROGRESS).replace_one({"_id": progress.run_id}, doc, upsert=True)

    def get_progress(self, run_id: str) -> RunProgress | None:
        document = self._get_collection(self.PROGRESS).find_one({"_id": run_id})
        if not document:
            return None
        return RunProgress.model_validate(self._strip_object_id(document))
