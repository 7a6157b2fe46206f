# =============================================================================
# MinIO Resource - S3-Compatible Object Storage Operations
# =============================================================================
# Provides blob operations for the inference pipeline:
# - presigned GET URLs for floor plan images (handed to the inference service)
# - raw inference output persisted verbatim to the inference bucket
# - legacy editor JSON (latest.json + history) in the uploads bucket
# =============================================================================

import io
import json
from datetime import timedelta
from typing import Any

from dagster import ConfigurableResource
from minio import Minio
from minio.error import S3Error
from pydantic import Field

from libs.errors import NotFoundError


class MinIOResource(ConfigurableResource):
    """
    Dagster resource for MinIO (S3-compatible object storage) operations.

    Configuration matches MinIOSettings from libs.models.config.

    Attributes:
        endpoint: MinIO server endpoint (host:port)
        access_key: Access key for authentication
        secret_key: Secret key for authentication
        use_ssl: Whether to use SSL/TLS (default: False)
        uploads_bucket: Bucket holding plan images and legacy editor JSON
        inference_bucket: Bucket holding raw inference outputs
    """

    endpoint: str = Field(..., description="MinIO server endpoint (host:port)")
    access_key: str = Field(..., description="Access key for authentication")
    secret_key: str = Field(..., description="Secret key for authentication")
    use_ssl: bool = Field(False, description="Whether to use SSL/TLS")
    uploads_bucket: str = Field("uploads", description="Plan images and legacy editor JSON")
    inference_bucket: str = Field("inference", description="Raw inference outputs")

    def get_client(self) -> Minio:
        """
        Create a MinIO client instance.

        Returns:
            Configured Minio client
        """
        return Minio(
            self.endpoint,
            access_key=self.access_key,
            secret_key=self.secret_key,
            secure=self.use_ssl,
        )

    def issue_read_url(self, key: str, ttl_seconds: int) -> str:
        """
        Generate a time-limited GET URL for a plan image in the uploads bucket.

        Raises:
            NotFoundError: If the object does not exist
            S3Error: For other storage errors
        """
        client = self.get_client()
        try:
            client.stat_object(self.uploads_bucket, key)
        except S3Error as exc:
            if exc.code in ("NoSuchKey", "NoSuchObject"):
                raise NotFoundError(
                    f"Plan image '{key}' not found in bucket '{self.uploads_bucket}'",
                    resource_type="blob",
                    resource_id=key,
                ) from exc
            raise

        return client.presigned_get_object(
            self.uploads_bucket,
            key,
            expires=timedelta(seconds=ttl_seconds),
        )

    def write_raw(self, key: str, payload: Any) -> str:
        """
        Persist a raw inference response verbatim as JSON.

        The object key is deterministic per floor, so a re-attempt overwrites
        the same object.
        """
        return self._put_json(self.inference_bucket, key, payload)

    def write_editor_json(self, key: str, payload: dict[str, Any]) -> str:
        """Write a legacy editor JSON document to the uploads bucket."""
        return self._put_json(self.uploads_bucket, key, payload, indent=2)

    def _put_json(self, bucket: str, key: str, payload: Any, *, indent: int | None = None) -> str:
        body = json.dumps(payload, indent=indent).encode("utf-8")
        self.get_client().put_object(
            bucket,
            key,
            io.BytesIO(body),
            length=len(body),
            content_type="application/json",
        )
        return key
