# =============================================================================
# Dagster Service - GraphQL API Operations
# =============================================================================
# Launches the inference job through the Dagster GraphQL API.
# =============================================================================

from typing import Optional

import httpx

from app.config import get_settings


LAUNCH_RUN_MUTATION = """
mutation LaunchRun($executionParams: ExecutionParams!) {
    launchRun(executionParams: $executionParams) {
        __typename
        ... on LaunchRunSuccess {
            run {
                runId
            }
        }
        ... on PythonError {
            message
        }
        ... on InvalidSubsetError {
            message
        }
        ... on PipelineNotFoundError {
            message
        }
        ... on RunConfigValidationInvalid {
            errors {
                message
            }
        }
    }
}
"""


VERSION_QUERY = "query Version { version }"


class DagsterService:
    """Service for Dagster GraphQL operations."""

    def __init__(self) -> None:
        settings = get_settings()
        self._graphql_url = settings.dagster_graphql_url
        self._repository_location = settings.dagster_repository_location
        self._repository_name = settings.dagster_repository_name
        self._job_name = settings.dagster_inference_job

    def _execute_query(self, query: str, variables: Optional[dict] = None) -> dict:
        """Execute a GraphQL query."""
        response = httpx.post(
            self._graphql_url,
            json={"query": query, "variables": variables or {}},
            timeout=30.0,
        )
        response.raise_for_status()
        result = response.json()

        if "errors" in result:
            raise RuntimeError(f"GraphQL error: {result['errors']}")

        return result.get("data", {})

    def server_version(self) -> str:
        """Version reported by the Dagster webserver; raises if it is unreachable."""
        return self._execute_query(VERSION_QUERY)["version"]

    def launch_inference_run(
        self,
        *,
        run_id: str,
        client_name: str,
        slug: str,
        requested_by: Optional[str] = None,
    ) -> str:
        """
        Launch the inference job for an admitted run.

        Args:
            run_id: Ledger run id (passed as the inference_run_id tag)
            client_name: Target client
            slug: Target project slug
            requested_by: Requester recorded as the operator tag

        Returns:
            Dagster run id

        Raises:
            RuntimeError: If Dagster rejects the launch
        """
        tags = {
            "inference_run_id": run_id,
            "client_name": client_name,
            "slug": slug,
            "source": "webapp",
        }
        if requested_by:
            tags["operator"] = requested_by

        variables = {
            "executionParams": {
                "selector": {
                    "repositoryLocationName": self._repository_location,
                    "repositoryName": self._repository_name,
                    "jobName": self._job_name,
                },
                "runConfigData": {},
                "executionMetadata": {
                    "tags": [{"key": key, "value": value} for key, value in tags.items()],
                },
            }
        }

        data = self._execute_query(LAUNCH_RUN_MUTATION, variables)
        result = data.get("launchRun", {})

        if result.get("__typename") != "LaunchRunSuccess":
            message = result.get("message")
            if not message and result.get("errors"):
                message = "; ".join(e.get("message", "") for e in result["errors"])
            raise RuntimeError(
                f"Dagster launch failed ({result.get('__typename', 'unknown')}): {message}"
            )

        return result["run"]["runId"]


# Singleton instance
_dagster_service: Optional[DagsterService] = None


def get_dagster_service() -> DagsterService:
    """Get or create the Dagster service singleton."""
    global _dagster_service
    if _dagster_service is None:
        _dagster_service = DagsterService()
    return _dagster_service
