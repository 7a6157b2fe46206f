# =============================================================================
# Inference Resource - External Model Endpoint
# =============================================================================
# Calls the floor-plan detection endpoint over HTTPS. The request carries a
# presigned image URL rather than the image itself:
#   POST {endpoint}  {"image_url": "...", "meta": {...}}
# A small inner retry loop covers socket-level failures; the orchestrator's
# durable policy is the primary retry layer.
# =============================================================================

from typing import Any, Optional

import httpx
from dagster import ConfigurableResource
from pydantic import Field

from libs.errors import InputValidationError, TransientError
from libs.retry_policy import call_with_retries

__all__ = ["InferenceResource"]


class InferenceResource(ConfigurableResource):
    """
    Dagster resource for the external inference endpoint.

    Configuration matches InferenceSettings from libs.models.config.

    Attributes:
        endpoint: Scoring URL
        api_key: Bearer token
        deployment: Optional deployment name sent as azureml-model-deployment
        model: Model name recorded on merged features
        timeout_seconds: Per-request timeout
        max_attempts: Inner retry attempts per call (default: 1)
        base_delay_seconds: Inner backoff base
        max_delay_seconds: Inner backoff cap
    """

    endpoint: str = Field(..., description="Inference scoring URL")
    api_key: str = Field(..., description="Bearer token for the endpoint")
    deployment: Optional[str] = Field(None, description="Deployment routing header value")
    model: Optional[str] = Field(None, description="Model name recorded in provenance")
    timeout_seconds: float = Field(120.0, gt=0, description="Per-request timeout")
    max_attempts: int = Field(1, ge=1, le=4, description="Inner retry attempts")
    base_delay_seconds: float = Field(1.0, ge=0, description="Inner backoff base")
    max_delay_seconds: float = Field(15.0, ge=0, description="Inner backoff cap")

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        if self.deployment:
            headers["azureml-model-deployment"] = self.deployment
        return headers

    def _post(self, payload: dict[str, Any]) -> Any:
        response = httpx.post(
            self.endpoint,
            json=payload,
            headers=self._headers(),
            timeout=self.timeout_seconds,
        )
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as exc:
            raise TransientError(
                f"Inference endpoint returned invalid JSON: {exc}",
                status_code=response.status_code,
            ) from exc

    def infer(self, image_url: str, meta: dict[str, Any]) -> Any:
        """
        Run inference on one plan image.

        Args:
            image_url: Presigned URL the endpoint downloads the image from
            meta: Free-form metadata forwarded to the endpoint

        Returns:
            Parsed JSON response

        Raises:
            InputValidationError: If image_url is empty
            httpx.HTTPStatusError: Non-2xx response (after inner retries)
            httpx.TransportError: Connection or timeout failure
        """
        if not image_url:
            raise InputValidationError("infer requires an image_url")

        payload = {"image_url": image_url, "meta": dict(meta)}
        return call_with_retries(
            lambda: self._post(payload),
            max_attempts=self.max_attempts,
            base_delay=self.base_delay_seconds,
            max_delay=self.max_delay_seconds,
            description="inference call",
        )
