# =============================================================================
# Run Guard
# =============================================================================
# Admission control for inference runs. Exactly one run document exists per
# (client_name, slug) target for its whole lifetime:
# - Completed → already processed, nothing is started
# - Running   → reuse the run id (resume after a crash)
# - Failed    → re-arm the same run: a host failure resumes the current
#               attempt, an engine failure starts a new one
# - missing   → create it; a concurrent create is resolved by re-reading
# =============================================================================

import logging
from dataclasses import dataclass
from typing import Optional

from libs.errors import ConflictOnCreateError, PipelineError
from libs.models import InferenceRun, RunStatus, inference_run_id

__all__ = ["Admission", "admit"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Admission:
    """Result of an admission request."""

    already_processed: bool
    run_id: str
    project_id: str
    attempt: int = 1
    resumed: bool = False


def _admit_existing(store, run: InferenceRun, requested_by: Optional[str]) -> Admission:
    if run.status == RunStatus.COMPLETED:
        logger.info("Run %s already completed; not starting a new one", run.id)
        return Admission(True, run.id, run.project_id, run.attempt)

    if run.status == RunStatus.FAILED:
        restarted = store.restart_run(run.id, requested_by=requested_by)
        resumed = restarted.attempt == run.attempt
        if resumed:
            logger.info("Resuming run %s attempt %d after a host failure", run.id, restarted.attempt)
        else:
            logger.info("Re-admitting failed run %s as attempt %d", run.id, restarted.attempt)
        return Admission(False, restarted.id, restarted.project_id, restarted.attempt, resumed=resumed)

    logger.info("Run %s is still Running (attempt %d); reusing it", run.id, run.attempt)
    return Admission(False, run.id, run.project_id, run.attempt)


def admit(store, client_name: str, slug: str, requested_by: Optional[str] = None) -> Admission:
    """
    Admit a run request for a target.

    Args:
        store: Provides find_project, read_run, create_run and restart_run
        client_name: Client owning the project
        slug: Project slug
        requested_by: Free-form requester identity recorded on the run

    Returns:
        Admission with already_processed set when the target has a
        Completed run

    Raises:
        NotFoundError: If the project does not exist
    """
    project = store.find_project(client_name, slug)
    run_id = inference_run_id(client_name, slug)

    existing = store.read_run(run_id)
    if existing is not None:
        return _admit_existing(store, existing, requested_by)

    run = InferenceRun.new(
        client_name=client_name,
        slug=slug,
        project_id=project.id,
        requested_by=requested_by,
    )
    try:
        store.create_run(run)
        logger.info("Created run %s for project %s", run.id, project.id)
        return Admission(False, run.id, project.id, run.attempt)
    except ConflictOnCreateError:
        logger.info("Run %s was created concurrently; re-reading", run_id)

    existing = store.read_run(run_id)
    if existing is None:
        raise PipelineError(f"Run {run_id} reported as existing but could not be read")
    return _admit_existing(store, existing, requested_by)
