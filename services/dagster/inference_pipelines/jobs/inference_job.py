"""Floor-plan inference job (op-based)."""

from dagster import job

from ..ops import run_inference_op


@job(
    name="inference_job",
    description="Runs detection inference over every floor of a project and merges the results into the editor documents",
    tags={"source": "inference"},
)
def inference_job():
    """
    Inference job launched by the webapp after run admission.

    The ledger run id and target are passed as run tags
    (inference_run_id, client_name, slug); the single op drives the whole
    per-floor pipeline and resumes from recorded history when re-executed.
    """
    run_inference_op()
