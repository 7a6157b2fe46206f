# =============================================================================
# Run Status Sensor - Ledger reconciliation for dead inference runs
# =============================================================================
# The orchestrator marks its own run Failed when a step fails. A Dagster run
# can also die where the orchestrator never gets the chance (process killed,
# resource init failure, retries exhausted). This sensor marks the ledger run
# Failed in that case so it can be re-admitted.
# =============================================================================

"""Run failure sensor for inference ledger reconciliation."""

from dagster import DagsterRunStatus, DefaultSensorStatus, RunFailureSensorContext, run_failure_sensor

from libs.models.config import MongoSettings

from ..ops.inference_ops import RUN_ID_TAG
from ..resources import MongoDBResource


__all__ = ["inference_run_failure_sensor"]


TRACKED_JOBS = frozenset(["inference_job"])


def _get_inference_run_id(run_tags: dict) -> str | None:
    """Extract the ledger run id from run tags."""
    return run_tags.get(RUN_ID_TAG)


def _get_mongodb_resource() -> MongoDBResource:
    """Create a MongoDB resource using settings from environment."""
    settings = MongoSettings()
    return MongoDBResource(connection_string=settings.connection_string, database=settings.database)


def _handle_run_failure(mongodb, *, job_name: str, dagster_run_id: str, status, tags: dict, log) -> bool:
    """
    Core logic for the failure sensor.

    Returns:
        True if a Running ledger run was marked Failed
    """
    if job_name not in TRACKED_JOBS:
        log.debug(f"Skipping untracked job: {job_name}")
        return False

    run_id = _get_inference_run_id(tags)
    if not run_id:
        log.warning(f"Run {dagster_run_id} has no {RUN_ID_TAG} tag, cannot update ledger")
        return False

    verb = "canceled" if status == DagsterRunStatus.CANCELED else "failed"
    error_message = f"Dagster run {verb}. See Dagster UI for details: {dagster_run_id}"

    try:
        updated = mongodb.fail_run_if_running(run_id, error_message)
    except Exception as e:
        log.error(f"Could not mark inference run {run_id} as Failed: {e}")
        return False

    if updated:
        log.info(f"Marked inference run {run_id} as Failed (dagster run {dagster_run_id})")
    else:
        log.info(f"Inference run {run_id} already terminal; nothing to update")
    return updated


@run_failure_sensor(
    name="inference_run_failure_sensor",
    description="Marks the ledger run Failed when an inference job run fails or is canceled",
    default_status=DefaultSensorStatus.RUNNING,
)
def inference_run_failure_sensor(context: RunFailureSensorContext):
    dagster_run = context.dagster_run
    _handle_run_failure(
        _get_mongodb_resource(),
        job_name=dagster_run.job_name,
        dagster_run_id=dagster_run.run_id,
        status=dagster_run.status,
        tags=dagster_run.tags,
        log=context.log,
    )
