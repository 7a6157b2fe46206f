# =============================================================================
# FastAPI Main Application
# =============================================================================
# Entry point for the inference webapp: starts runs and reports their status.
# =============================================================================

from fastapi import FastAPI

from app import __version__
from app.routers import health, runs

# Application instance
app = FastAPI(
    title="Floor Plan Inference Webapp",
    description="Start floor-plan inference runs and follow their progress.",
    version=__version__,
)

# Include routers
app.include_router(health.router)
app.include_router(runs.router)
