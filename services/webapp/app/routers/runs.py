# =============================================================================
# Runs Router
# =============================================================================
# Start inference runs through the run guard and read their ledger status.
# =============================================================================

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from app.auth.dependencies import AuthenticatedUser, get_current_user
from app.services.dagster_service import get_dagster_service
from app.services.mongodb_service import get_mongodb_service
from libs.errors import NotFoundError, PipelineError
from libs.run_guard import admit

router = APIRouter(prefix="/runs", tags=["runs"])


class StartRunRequest(BaseModel):
    """Body of a start request. Fields are checked by hand to return 400."""

    client_name: Optional[str] = None
    slug: Optional[str] = None


class StartRunResponse(BaseModel):
    """Response for an accepted start request."""

    run_id: str
    dagster_run_id: Optional[str] = None
    attempt: int
    reused: bool = False
    resumed: bool = False


class RunStatusResponse(BaseModel):
    """Ledger view of a run plus its latest progress."""

    run: dict
    progress: Optional[dict] = None


@router.post("", status_code=status.HTTP_202_ACCEPTED, response_model=StartRunResponse)
async def start_run(
    body: StartRunRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> StartRunResponse:
    """
    Admit and launch an inference run for a project.

    Returns 409 when the project already has a Completed run, 404 when the
    project is unknown. A request for an attempt that is already launched
    (or being launched) returns that launch instead of starting a second
    one; dagster_run_id is null while the winning launch is in flight.
    """
    if not body.client_name or not body.slug:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields: client_name, slug",
        )

    mongodb = get_mongodb_service()
    try:
        admission = admit(mongodb, body.client_name, body.slug, requested_by=current_user.requested_by)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PipelineError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    if admission.already_processed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Inference already executed for this project.",
        )

    # One launch per attempt; concurrent requests lose the claim and get
    # the winner's Dagster run id
    claim_id = mongodb.claim_launch(admission.run_id, admission.attempt)
    if claim_id is None:
        current = mongodb.read_run(admission.run_id)
        launched = current.launch.dagster_run_id if current and current.launch else None
        return StartRunResponse(
            run_id=admission.run_id,
            dagster_run_id=launched,
            attempt=admission.attempt,
            reused=True,
        )

    try:
        dagster_run_id = get_dagster_service().launch_inference_run(
            run_id=admission.run_id,
            client_name=body.client_name,
            slug=body.slug,
            requested_by=current_user.requested_by,
        )
    except Exception as exc:
        mongodb.release_launch(admission.run_id, claim_id)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Failed to launch inference job: {exc}",
        ) from exc

    mongodb.record_launch(admission.run_id, claim_id, dagster_run_id)
    return StartRunResponse(
        run_id=admission.run_id,
        dagster_run_id=dagster_run_id,
        attempt=admission.attempt,
        resumed=admission.resumed,
    )


@router.get("/{run_id}", response_model=RunStatusResponse)
async def get_run_status(
    run_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> RunStatusResponse:
    """Return the ledger record of a run and its last published progress."""
    mongodb = get_mongodb_service()

    run = mongodb.read_run(run_id)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Run not found: {run_id}")

    progress = mongodb.get_progress(run_id)
    return RunStatusResponse(
        run=run.model_dump(mode="json"),
        progress=progress.model_dump(mode="json") if progress else None,
    )
