# =============================================================================
# Inference Ops - Per-project floor inference
# =============================================================================
# Runs the resumable inference orchestrator for one admitted run. The target
# and run id come from run tags set by the webapp when it launches the job.
# =============================================================================

"""Inference op wrapping the orchestrator."""

from dagster import Backoff, Failure, OpExecutionContext, Out, RetryPolicy, op

from libs.errors import PipelineError
from libs.models import PipelineSettings, RunStatus
from libs.orchestration import InferenceOrchestrator, PipelineCollaborators


__all__ = ["run_inference_op", "INFERENCE_RUN_TAGS"]


RUN_ID_TAG = "inference_run_id"
CLIENT_NAME_TAG = "client_name"
SLUG_TAG = "slug"
INFERENCE_RUN_TAGS = (RUN_ID_TAG, CLIENT_NAME_TAG, SLUG_TAG)


def _read_run_tags(tags: dict) -> dict[str, str]:
    """
    Extract the target and ledger run id from Dagster run tags.

    Raises:
        Failure: If any required tag is missing (not retried)
    """
    missing = [tag for tag in INFERENCE_RUN_TAGS if not tags.get(tag)]
    if missing:
        raise Failure(
            description=f"Run is missing required tags: {missing}",
            allow_retries=False,
        )
    return {
        "run_id": tags[RUN_ID_TAG],
        "client_name": tags[CLIENT_NAME_TAG],
        "slug": tags[SLUG_TAG],
    }


def _ledger_marked_failed(mongodb, run_id: str, log) -> bool:
    try:
        run = mongodb.read_run(run_id)
    except Exception as e:
        log.warning(f"Could not read run {run_id} after failure: {e}")
        return False
    return run is not None and run.status == RunStatus.FAILED


def _run_inference_pipeline(
    mongodb,
    minio,
    inference,
    *,
    client_name: str,
    slug: str,
    run_id: str,
    settings: PipelineSettings,
    log,
) -> dict:
    """
    Core logic for running inference over a project's floors.

    This function is extracted for easier unit testing without Dagster context.

    Args:
        mongodb: MongoDBResource (every document-store role)
        minio: MinIOResource (read URLs, raw outputs, legacy editor JSON)
        inference: InferenceResource
        client_name: Target client
        slug: Target project slug
        run_id: Ledger run id admitted by the run guard
        settings: Pipeline settings
        log: Logger instance (context.log)

    Returns:
        Run summary dict

    Raises:
        Failure: Pipeline errors, or any error once the ledger run has been
            marked Failed; re-executing the op cannot help in either case
        Exception: Errors raised before the run was entered, left to the
            op's retry policy
    """
    collaborators = PipelineCollaborators.from_stores(mongodb, minio, inference)
    orchestrator = InferenceOrchestrator(collaborators, settings, log=log)

    try:
        result = orchestrator.run(client_name, slug, run_id)
    except PipelineError as e:
        raise Failure(
            description=f"Inference run {run_id} failed: {e}",
            metadata={"inference_run_id": run_id, "error_type": type(e).__name__},
            allow_retries=False,
        ) from e
    except Exception as e:
        if _ledger_marked_failed(mongodb, run_id, log):
            raise Failure(
                description=f"Inference run {run_id} failed: {e}",
                metadata={"inference_run_id": run_id, "error_type": type(e).__name__},
                allow_retries=False,
            ) from e
        raise

    return {
        "ok": result.ok,
        "inference_run_id": result.run_id,
        "project_id": result.project_id,
        "floors_processed": result.floors_processed,
        "totals": result.totals,
    }


@op(
    required_resource_keys={"mongodb", "minio", "inference"},
    out=Out(dict),
    retry_policy=RetryPolicy(max_retries=2, delay=10, backoff=Backoff.EXPONENTIAL),
)
def run_inference_op(context: OpExecutionContext) -> dict:
    """
    Run (or resume) floor inference for the run named in the run tags.

    Re-executions replay the run's recorded history, so completed steps are
    not repeated.

    Args:
        context: Dagster op execution context

    Returns:
        Run summary dict (floors processed and cumulative totals)
    """
    target = _read_run_tags(context.run.tags)
    context.log.info(
        f"Running inference: run_id={target['run_id']}, "
        f"client={target['client_name']}, slug={target['slug']}"
    )
    return _run_inference_pipeline(
        context.resources.mongodb,
        context.resources.minio,
        context.resources.inference,
        client_name=target["client_name"],
        slug=target["slug"],
        run_id=target["run_id"],
        settings=PipelineSettings(),
        log=context.log,
    )
