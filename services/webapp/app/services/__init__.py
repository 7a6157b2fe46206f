# =============================================================================
# Services Module
# =============================================================================
# Service wrappers for MongoDB and Dagster.
# =============================================================================

from app.services.mongodb_service import MongoDBService, get_mongodb_service
from app.services.dagster_service import DagsterService, get_dagster_service

__all__ = [
    # MongoDB
    "MongoDBService",
    "get_mongodb_service",
    # Dagster
    "DagsterService",
    "get_dagster_service",
]
