"""Dagster Resources - External Service Connections."""

from .inference_resource import InferenceResource
from .minio_resource import MinIOResource
from .mongodb_resource import MongoDBResource

__all__ = [
    "InferenceResource",
    "MinIOResource",
    "MongoDBResource",
]
