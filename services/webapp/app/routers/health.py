# =============================================================================
# Health Router
# =============================================================================
# Liveness (/health) and readiness (/ready). The webapp is ready only when it
# can both admit runs (MongoDB ledger) and launch them (Dagster GraphQL).
# =============================================================================

from typing import Callable

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from app import __version__
from app.services.dagster_service import get_dagster_service
from app.services.mongodb_service import get_mongodb_service

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str


class ReadyResponse(BaseModel):
    status: str
    services: dict[str, str]


def _check(call: Callable[[], object]) -> str:
    try:
        call()
    except Exception as exc:
        return f"error: {exc}"
    return "ok"


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Process is up. Unauthenticated, touches no dependency."""
    return HealthResponse(status="healthy", version=__version__)


@router.get("/ready", response_model=ReadyResponse)
async def readiness_check(response: Response) -> ReadyResponse:
    """
    Check the run ledger and the job launcher.

    Answers 503 with status "degraded" when either is unreachable, so
    orchestrators stop routing start requests to this instance.
    """
    services = {
        "mongodb": _check(lambda: get_mongodb_service().ping()),
        "dagster": _check(lambda: get_dagster_service().server_version()),
    }
    if all(state == "ok" for state in services.values()):
        return ReadyResponse(status="ready", services=services)

    response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return ReadyResponse(status="degraded", services=services)
