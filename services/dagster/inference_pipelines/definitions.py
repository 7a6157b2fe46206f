"""Dagster Definitions - Repository Configuration.

Defines the inference job, its resources and the failure sensor for the
floor-plan inference pipeline.
"""

import os

from dagster import Definitions, EnvVar

from .jobs import inference_job
from .resources import InferenceResource, MinIOResource, MongoDBResource
from .sensors import inference_run_failure_sensor


# =============================================================================
# Definitions
# =============================================================================

defs = Definitions(
    jobs=[
        inference_job,
    ],
    resources={
        "minio": MinIOResource(
            endpoint=EnvVar("MINIO_ENDPOINT"),
            access_key=EnvVar("MINIO_ROOT_USER"),
            secret_key=EnvVar("MINIO_ROOT_PASSWORD"),
            use_ssl=False,
            uploads_bucket=os.getenv("MINIO_UPLOADS_BUCKET", "uploads"),
            inference_bucket=os.getenv("MINIO_INFERENCE_BUCKET", "inference"),
        ),
        "mongodb": MongoDBResource(
            connection_string=EnvVar("MONGO_CONNECTION_STRING"),
            database=os.getenv("MONGO_DATABASE", "reveal"),
        ),
        "inference": InferenceResource(
            endpoint=EnvVar("AML_ENDPOINT"),
            api_key=EnvVar("AML_API_KEY"),
            deployment=os.getenv("AML_DEPLOYMENT") or None,
            model=os.getenv("AML_MODEL") or None,
            timeout_seconds=float(os.getenv("AML_TIMEOUT_SECONDS", "120")),
            max_attempts=int(os.getenv("AML_MAX_ATTEMPTS", "1")),
        ),
    },
    schedules=[],
    sensors=[
        inference_run_failure_sensor,  # Lifecycle: marks the ledger run Failed
    ],
)
