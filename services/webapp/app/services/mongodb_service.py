# =============================================================================
# MongoDB Service - Run Admission and Status Reads
# =============================================================================
# Service wrapper for the inference ledger in the webapp. Provides the store
# operations the run guard needs plus read-only status projections.
# =============================================================================

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pymongo import MongoClient, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from app.config import get_settings
from libs.errors import ConflictOnCreateError, NotFoundError
from libs.models import (
    FailureOrigin,
    InferenceRun,
    LaunchClaim,
    Project,
    RunProgress,
    RunStatus,
    zero_totals,
)


class MongoDBService:
    """Service for MongoDB operations."""

    PROJECTS = "projects"
    RUNS = "inference_runs"
    PROGRESS = "run_progress"

    def __init__(self, client: Optional[MongoClient] = None) -> None:
        settings = get_settings()
        self._client = client or MongoClient(settings.mongo_connection_string)
        self._db: Database = self._client[settings.mongo_database]
        self._launch_claim_stale_seconds = settings.launch_claim_stale_seconds

    # ------------------------------------------------------------------
    # Run guard store
    # ------------------------------------------------------------------

    def find_project(self, client_name: str, slug: str) -> Project:
        """
        Load a project by client and slug.

        Raises:
            NotFoundError: If no such project exists
        """
        document = self._db[self.PROJECTS].find_one({"client_name": client_name, "slug": slug})
        if not document:
            raise NotFoundError(
                f"Project not found: {client_name}/{slug}",
                resource_type="project",
                resource_id=f"{client_name}/{slug}",
            )
        return Project.from_document(document)

    def read_run(self, run_id: str) -> Optional[InferenceRun]:
        document = self._db[self.RUNS].find_one({"_id": run_id})
        if not document:
            return None
        return InferenceRun.from_document(document)

    def create_run(self, run: InferenceRun) -> None:
        """
        Insert a new run.

        Raises:
            ConflictOnCreateError: If the run already exists
        """
        try:
            self._db[self.RUNS].insert_one(run.to_document())
        except DuplicateKeyError as e:
            raise ConflictOnCreateError(run.id) from e

    def restart_run(self, run_id: str, *, requested_by: Optional[str] = None) -> InferenceRun:
        """
        Re-arm a Failed run (no-op if it is no longer Failed).

        Host failures resume the current attempt with its counters; engine
        failures start attempt + 1 from zero.
        """
        now = datetime.now(timezone.utc)
        update: dict[str, Any] = {
            "status": RunStatus.RUNNING.value,
            "error_message": None,
            "failure_origin": None,
            "launch": None,
            "completed_at": None,
            "updated_at": now,
        }
        if requested_by:
            update["requested_by"] = requested_by

        runs = self._db[self.RUNS]
        document = runs.find_one_and_update(
            {"_id": run_id, "status": RunStatus.FAILED.value, "failure_origin": FailureOrigin.HOST.value},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        if not document:
            update.update(total_floors=None, processed_floors=0, totals=zero_totals(), started_at=now)
            document = runs.find_one_and_update(
                {"_id": run_id, "status": RunStatus.FAILED.value},
                {"$set": update, "$inc": {"attempt": 1}},
                return_document=ReturnDocument.AFTER,
            )
        if document:
            return InferenceRun.from_document(document)

        current = self.read_run(run_id)
        if current is None:
            raise NotFoundError(f"Run not found: {run_id}", resource_type="run", resource_id=run_id)
        return current

    # ------------------------------------------------------------------
    # Job launch claims
    # ------------------------------------------------------------------

    def claim_launch(self, run_id: str, attempt: int) -> Optional[str]:
        """
        Atomically take ownership of launching the job for a run attempt.

        A claim that never recorded a Dagster run id expires after
        launch_claim_stale_seconds, so a webapp that died mid-launch does not
        block the run forever.

        Returns:
            The claim id if this caller won, None if the attempt is already claimed
        """
        now = datetime.now(timezone.utc)
        claim = LaunchClaim(claim_id=uuid.uuid4().hex, claimed_at=now)
        stale_before = now - timedelta(seconds=self._launch_claim_stale_seconds)

        document = self._db[self.RUNS].find_one_and_update(
            {
                "_id": run_id,
                "attempt": attempt,
                "status": RunStatus.RUNNING.value,
                "$or": [
                    {"launch": None},
                    {"launch.dagster_run_id": None, "launch.claimed_at": {"$lt": stale_before}},
                ],
            },
            {"$set": {"launch": claim.model_dump(), "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        return claim.claim_id if document else None

    def record_launch(self, run_id: str, claim_id: str, dagster_run_id: str) -> None:
        self._db[self.RUNS].update_one(
            {"_id": run_id, "launch.claim_id": claim_id},
            {"$set": {"launch.dagster_run_id": dagster_run_id}},
        )

    def release_launch(self, run_id: str, claim_id: str) -> None:
        """Drop a claim whose launch failed so the next request can retry it."""
        self._db[self.RUNS].update_one(
            {"_id": run_id, "launch.claim_id": claim_id},
            {"$set": {"launch": None}},
        )

    # ------------------------------------------------------------------
    # Status reads
    # ------------------------------------------------------------------

    def get_progress(self, run_id: str) -> Optional[RunProgress]:
        document = self._db[self.PROGRESS].find_one({"_id": run_id})
        if not document:
            return None
        document = dict(document)
        document.pop("_id", None)
        return RunProgress.model_validate(document)

    def ping(self) -> bool:
        """Check connectivity to MongoDB."""
        self._client.admin.command("ping")
        return True


# Singleton instance
_mongodb_service: Optional[MongoDBService] = None


def get_mongodb_service() -> MongoDBService:
    """Get or create the MongoDB service singleton."""
    global _mongodb_service
    if _mongodb_service is None:
        _mongodb_service = MongoDBService()
    return _mongodb_service
