# =============================================================================
# Inference Orchestrator
# =============================================================================
# Drives one inference run through its state machine:
#   Starting → Processing → Completed
#                   └────→ Failed
# Every store read, write and external call is a recorded step, so a run
# re-entered after a crash replays what already happened and continues with
# the first unrecorded step. Floors are processed strictly in order; the
# cumulative totals are checkpointed on the run after each floor.
# =============================================================================

import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from libs.detections import build_ml_features
from libs.errors import NotFoundError, RunNotActiveError
from libs.merge_engine import MergeEngine, MergeRequest
from libs.models import (
    DetectionTotals,
    DocumentKey,
    FailureOrigin,
    Floor,
    PipelineSettings,
    Project,
    RunProgress,
    RunStage,
    RunStatus,
    add_totals,
    editor_doc_id,
    zero_totals,
)
from libs.orchestration.collaborators import PipelineCollaborators
from libs.orchestration.history import RecordedHistory
from libs.paths import inference_raw_path
from libs.retry_policy import DurableRetryPolicy

__all__ = ["InferenceOrchestrator", "RunResult", "truncate_url"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunResult:
    ok: bool
    run_id: str
    project_id: str
    floors_processed: int
    totals: DetectionTotals


def truncate_url(url: str, head: int = 120, tail: int = 40) -> str:
    """Shorten a presigned URL for logging."""
    if len(url) <= head + tail:
        return url
    return f"{url[:head]}...{url[-tail:]}"


class InferenceOrchestrator:
    """
    Resumable per-floor inference pipeline.

    Args:
        collaborators: Stores, blob store and inference client
        settings: Retry, merge and export settings
        clock: Returns the current UTC time
        sleep: Used between durable retry attempts
        rng: Jitter source for backoff delays
        log: Logger (a Dagster op passes context.log)
    """

    def __init__(
        self,
        collaborators: PipelineCollaborators,
        settings: Optional[PipelineSettings] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        log=None,
    ):
        self.c = collaborators
        self.settings = settings or PipelineSettings()
        self.retry_policy = DurableRetryPolicy.from_settings(self.settings)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._rng = rng
        self.log = log or logger
        self._last_progress: dict[str, Any] = {"processed": 0, "total": None, "totals": None}
        self.merge_engine = MergeEngine.from_settings(
            self.c.documents, self.settings, blob_store=self.c.blobs, clock=self._clock
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, client_name: str, slug: str, run_id: str) -> RunResult:
        """
        Execute (or resume) a run.

        Raises:
            NotFoundError: The run or its project does not exist
            RunNotActiveError: The run is Failed; re-admit it first
            Any unrecoverable step error, after the run was marked Failed
        """
        run = self.c.runs.read_run(run_id)
        if run is None:
            raise NotFoundError(f"Run not found: {run_id}", resource_type="run", resource_id=run_id)
        if run.status == RunStatus.FAILED:
            raise RunNotActiveError(f"Run {run_id} attempt {run.attempt} is Failed; re-admit it to retry")
        if run.status == RunStatus.COMPLETED:
            self.log.info(f"Run {run_id} already completed")
            return RunResult(True, run_id, run.project_id, run.processed_floors, dict(run.totals))

        history = RecordedHistory(
            self.c.history,
            run_id,
            run.attempt,
            clock=self._clock,
            sleep=self._sleep,
            rng=self._rng,
            log=self.log,
        )
        self.log.info(f"Starting run {run_id} (attempt {run.attempt}) for {client_name}/{slug}")
        self._last_progress = {"processed": 0, "total": None, "totals": None}
        self._publish(run_id, RunStage.STARTING)

        try:
            return self._execute(history, client_name, slug, run_id)
        except Exception as e:
            self.log.error(f"Run {run_id} failed: {e}")
            self._mark_failed(run_id, e)
            # Keeps the last published counts
            self._publish(run_id, RunStage.FAILED, **self._last_progress)
            raise

    def _execute(self, history: RecordedHistory, client_name: str, slug: str, run_id: str) -> RunResult:
        loaded = history.step(
            "get_project_and_floors",
            lambda: self._get_project_and_floors(client_name, slug),
        )
        project = Project.model_validate(loaded["project"])
        floors = [Floor.model_validate(f) for f in loaded["floors"]]
        total = len(floors)

        totals = zero_totals()
        history.step(
            "init_run_status",
            lambda: self._update_status(
                run_id, RunStatus.RUNNING, total_floors=total, processed_floors=0, totals=zero_totals()
            ),
        )
        self._publish(run_id, RunStage.PROCESSING, processed=0, total=total)

        for index, floor in enumerate(floors):
            counts = self._process_floor(history, project, floor, run_id)
            totals = add_totals(totals, counts)
            processed = index + 1
            checkpoint = dict(totals)
            history.step(
                "update_run_progress",
                lambda: self._update_progress(run_id, processed, checkpoint),
            )
            self._publish(run_id, RunStage.PROCESSING, processed=processed, total=total, totals=totals)

        history.step(
            "finalize_run",
            lambda: self._update_status(run_id, RunStatus.COMPLETED, processed_floors=total, totals=dict(totals)),
        )
        self._publish(run_id, RunStage.COMPLETED, processed=total, total=total, totals=totals)
        self.log.info(
            f"Run {run_id} completed: {total} floor(s), totals={totals} "
            f"(executed {len(history.executed)} step(s), replayed {history.replayed})"
        )
        return RunResult(True, run_id, project.id, total, dict(totals))

    # ------------------------------------------------------------------
    # Per-floor pipeline
    # ------------------------------------------------------------------

    def _process_floor(self, history: RecordedHistory, project: Project, floor: Floor, run_id: str) -> DetectionTotals:
        key = DocumentKey(
            client_name=project.client_name,
            project_slug=project.slug,
            floor_id=floor.id,
            basemap_key=floor.plan_url,
            width=floor.image_width,
            height=floor.image_height,
            paper_scale_denominator=floor.paper_scale_denominator,
            legacy_editor_state_url=floor.editor_state_url,
        )

        history.step("read_editor_state", lambda: self._read_editor_state(key))

        capability = history.step("issue_read_capability", lambda: self._issue_read_capability(floor))

        meta = {
            "client_name": project.client_name,
            "slug": project.slug,
            "floorId": floor.id,
            "planUrl": floor.plan_url,
        }
        raw = history.retry_step(
            "call_inference",
            lambda: self.c.inference.infer(capability["url"], meta),
            self.retry_policy,
        )

        history.step("write_raw_output", lambda: self._write_raw(project.slug, floor.id, raw))

        merged = history.step("merge_features", lambda: self._merge(key, raw, run_id, history.attempt))
        counts = {k: int(v) for k, v in merged["counts"].items()}

        history.step(
            "update_floor_metrics",
            lambda: self.c.metrics.update_floor_metrics(project.id, floor.id, counts),
        )
        return counts

    # ------------------------------------------------------------------
    # Step bodies
    # ------------------------------------------------------------------

    def _get_project_and_floors(self, client_name: str, slug: str) -> dict[str, Any]:
        project = self.c.projects.find_project(client_name, slug)
        floors = self.c.projects.list_floors(project.id)
        self.log.info(f"Project {project.id} has {len(floors)} floor(s)")
        return {
            "project": project.model_dump(mode="json"),
            "floors": [f.model_dump(mode="json") for f in floors],
        }

    def _update_status(self, run_id: str, status: RunStatus, **fields) -> dict[str, Any]:
        self.c.runs.update_run_status(run_id, status, **fields)
        return {"status": status.value}

    def _update_progress(self, run_id: str, processed: int, totals: DetectionTotals) -> dict[str, Any]:
        self.c.runs.update_run_progress(run_id, processed_floors=processed, totals=totals)
        return {"processed_floors": processed, "totals": totals}

    def _read_editor_state(self, key: DocumentKey) -> dict[str, Any]:
        try:
            document, version = self.c.documents.read_editor_doc(editor_doc_id(key.floor_key))
        except NotFoundError:
            return {"exists": False, "floor_key": key.floor_key}
        return {
            "exists": True,
            "floor_key": key.floor_key,
            "revision": document.revision,
            "feature_count": len(document.features),
            "version": version,
        }

    def _issue_read_capability(self, floor: Floor) -> dict[str, Any]:
        url = self.c.blobs.issue_read_url(floor.plan_url, self.settings.read_url_ttl_seconds)
        self.log.info(f"Issued read URL for floor {floor.id} (truncated): {truncate_url(url)}")
        return {"url": url, "ttl_seconds": self.settings.read_url_ttl_seconds}

    def _write_raw(self, slug: str, floor_id: str, raw: Any) -> dict[str, Any]:
        path = inference_raw_path(slug, floor_id)
        self.c.blobs.write_raw(path, raw)
        self.log.info(f"Wrote raw inference output to {path}")
        return {"path": path}

    def _merge(self, key: DocumentKey, raw: Any, run_id: str, attempt: int) -> dict[str, Any]:
        model = getattr(self.c.inference, "model", None)
        features, _ = build_ml_features(raw, run_id=run_id, model=model, now=self._clock())
        result = self.merge_engine.merge_features(
            key, features, MergeRequest(run_id=run_id, attempt=attempt, model=model)
        )
        self.log.info(
            f"Merged {len(features)} feature(s) into {result.document_id} "
            f"(floor_key={key.floor_key}, attempts={result.attempts})"
        )
        return result.to_dict()

    # ------------------------------------------------------------------
    # Best-effort side effects
    # ------------------------------------------------------------------

    def _mark_failed(self, run_id: str, error: BaseException) -> None:
        try:
            self.c.runs.update_run_status(
                run_id,
                RunStatus.FAILED,
                error_message=f"{type(error).__name__}: {error}",
                failure_origin=FailureOrigin.ENGINE,
            )
        except Exception as e:
            self.log.error(f"Could not mark run {run_id} as Failed: {e}")

    def _publish(
        self,
        run_id: str,
        stage: RunStage,
        *,
        processed: int = 0,
        total: Optional[int] = None,
        totals: Optional[DetectionTotals] = None,
    ) -> None:
        self._last_progress = {"processed": processed, "total": total, "totals": totals}
        try:
            self.c.progress.publish_progress(
                RunProgress(
                    run_id=run_id,
                    stage=stage,
                    processed=processed,
                    total=total,
                    totals=dict(totals) if totals is not None else None,
                    updated_at=self._clock(),
                )
            )
        except Exception as e:
            self.log.warning(f"Could not publish progress for {run_id}: {e}")
