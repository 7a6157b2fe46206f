# =============================================================================
# Configuration Models Module
# =============================================================================
# Provides Pydantic Settings models for all service configurations:
# - MongoSettings: MongoDB ledger (projects, runs, editor docs, history)
# - MinIOSettings: S3-compatible blob storage for plans and raw outputs
# - InferenceSettings: External inference endpoint and its inner retry loop
# - PipelineSettings: Durable retry policy, merge bounds, optional outputs
# =============================================================================

from enum import Enum
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = [
    "MongoSettings",
    "MinIOSettings",
    "InferenceSettings",
    "PipelineSettings",
    "UnownedFeaturePolicy",
]


# =============================================================================
# MongoDB Settings (Ledger)
# =============================================================================

class MongoSettings(BaseSettings):
    """
    Configuration for MongoDB (ledger for projects, runs and editor documents).

    Maps environment variables with prefix "MONGO_":
    - MONGO_HOST → host
    - MONGO_PORT → port
    - MONGO_INITDB_ROOT_USERNAME → username
    - MONGO_INITDB_ROOT_PASSWORD → password
    - MONGO_DATABASE → database
    - MONGO_AUTH_SOURCE → auth_source
    """

    host: str = Field("mongodb", validation_alias="MONGO_HOST", description="MongoDB host")
    port: int = Field(27017, validation_alias="MONGO_PORT", description="MongoDB port")
    username: str = Field(..., validation_alias="MONGO_INITDB_ROOT_USERNAME", description="MongoDB username")
    password: str = Field(..., validation_alias="MONGO_INITDB_ROOT_PASSWORD", description="MongoDB password")
    database: str = Field("reveal", validation_alias="MONGO_DATABASE", description="Database name")
    auth_source: str = Field("admin", validation_alias="MONGO_AUTH_SOURCE", description="Authentication source")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Ignore unrelated env vars from shared .env files
    )

    @property
    def connection_string(self) -> str:
        """
        Build MongoDB connection URI.

        Format: mongodb://[username]:[password]@[host]:[port]/[database]?authSource=[auth_source]
        """
        return (
            f"mongodb://{self.username}:{self.password}@"
            f"{self.host}:{self.port}/{self.database}?authSource={self.auth_source}"
        )


# =============================================================================
# MinIO Settings (Blob Storage)
# =============================================================================

class MinIOSettings(BaseSettings):
    """
    Configuration for MinIO (S3-compatible object storage).

    - MINIO_ENDPOINT → endpoint
    - MINIO_ROOT_USER → access_key
    - MINIO_ROOT_PASSWORD → secret_key
    - MINIO_USE_SSL → use_ssl
    - MINIO_UPLOADS_BUCKET → uploads_bucket (plan images, legacy editor JSON)
    - MINIO_INFERENCE_BUCKET → inference_bucket (raw inference outputs)
    """

    endpoint: str = Field(..., validation_alias="MINIO_ENDPOINT")
    access_key: str = Field(..., validation_alias="MINIO_ROOT_USER")
    secret_key: str = Field(..., validation_alias="MINIO_ROOT_PASSWORD")
    use_ssl: bool = Field(False, validation_alias="MINIO_USE_SSL")
    uploads_bucket: str = Field("uploads", validation_alias="MINIO_UPLOADS_BUCKET")
    inference_bucket: str = Field("inference", validation_alias="MINIO_INFERENCE_BUCKET")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


# =============================================================================
# Inference Settings (External Model Endpoint)
# =============================================================================

class InferenceSettings(BaseSettings):
    """
    Configuration for the external inference endpoint.

    The inner retry loop (max_attempts) handles socket-level hiccups only and
    defaults to a single attempt; the durable policy in PipelineSettings is
    the primary retry layer.
    """

    endpoint: str = Field(..., validation_alias="AML_ENDPOINT")
    api_key: str = Field(..., validation_alias="AML_API_KEY")
    deployment: Optional[str] = Field(None, validation_alias="AML_DEPLOYMENT")
    model: Optional[str] = Field(None, validation_alias="AML_MODEL", description="Model name recorded in provenance")
    timeout_seconds: float = Field(120.0, gt=0, validation_alias="AML_TIMEOUT_SECONDS")
    max_attempts: int = Field(1, ge=1, le=4, validation_alias="AML_MAX_ATTEMPTS")
    base_delay_seconds: float = Field(1.0, ge=0, validation_alias="AML_BASE_DELAY_SECONDS")
    max_delay_seconds: float = Field(15.0, ge=0, validation_alias="AML_MAX_DELAY_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


# =============================================================================
# Pipeline Settings (Durable Retry, Merge, Optional Outputs)
# =============================================================================

class UnownedFeaturePolicy(str, Enum):
    """What the merge engine does with incoming features of a non machine-owned type."""

    PASS_THROUGH = "pass_through"
    DROP = "drop"
    REJECT = "reject"


class PipelineSettings(BaseSettings):
    """
    Orchestrator settings.

    The inner (per-call) and outer (durable) retry layers compose
    multiplicatively; their product is checked against
    max_total_inference_attempts when the settings are loaded.
    """

    first_retry_interval_seconds: float = Field(2.0, gt=0, validation_alias="INFERENCE_FIRST_RETRY_SECONDS")
    retry_max_attempts: int = Field(4, ge=1, validation_alias="INFERENCE_RETRY_MAX_ATTEMPTS")
    max_retry_interval_seconds: float = Field(30.0, gt=0, validation_alias="INFERENCE_MAX_RETRY_INTERVAL_SECONDS")
    retry_timeout_seconds: float = Field(300.0, gt=0, validation_alias="INFERENCE_RETRY_TIMEOUT_SECONDS")
    inner_max_attempts: int = Field(1, ge=1, validation_alias="AML_MAX_ATTEMPTS")
    max_total_inference_attempts: int = Field(16, ge=1, validation_alias="MAX_TOTAL_INFERENCE_ATTEMPTS")

    merge_max_attempts: int = Field(4, ge=1, validation_alias="MERGE_MAX_ATTEMPTS")
    unowned_feature_policy: UnownedFeaturePolicy = Field(
        UnownedFeaturePolicy.PASS_THROUGH, validation_alias="UNOWNED_FEATURE_POLICY"
    )
    read_url_ttl_seconds: int = Field(300, gt=0, validation_alias="SAS_TTL_SECONDS")
    write_legacy_editor_json: bool = Field(False, validation_alias="WRITE_LEGACY_EDITOR_JSON")
    write_editor_history: bool = Field(True, validation_alias="WRITE_EDITOR_HISTORY")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def check_retry_composition(self) -> "PipelineSettings":
        total = self.inner_max_attempts * self.retry_max_attempts
        if total > self.max_total_inference_attempts:
            raise ValueError(
                f"Inner ({self.inner_max_attempts}) x outer ({self.retry_max_attempts}) inference "
                f"attempts = {total} exceeds MAX_TOTAL_INFERENCE_ATTEMPTS={self.max_total_inference_attempts}"
            )
        if self.max_retry_interval_seconds < self.first_retry_interval_seconds:
            raise ValueError("INFERENCE_MAX_RETRY_INTERVAL_SECONDS must be >= INFERENCE_FIRST_RETRY_SECONDS")
        return self
