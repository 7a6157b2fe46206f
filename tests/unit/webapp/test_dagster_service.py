"""Unit tests for DagsterService with a mocked GraphQL endpoint."""

from unittest.mock import patch

import httpx
import pytest

from app.config import Settings
from app.services.dagster_service import DagsterService


GRAPHQL_URL = "http://dagster.test/graphql"


@pytest.fixture
def service():
    settings = Settings(dagster_graphql_url=GRAPHQL_URL, dagster_repository_location="inference_pipelines")
    with patch("app.services.dagster_service.get_settings", return_value=settings):
        return DagsterService()


def graphql_response(data: dict) -> httpx.Response:
    return httpx.Response(200, json=data, request=httpx.Request("POST", GRAPHQL_URL))


class TestLaunchInferenceRun:
    def test_sends_run_tags(self, service):
        body = {"data": {"launchRun": {"__typename": "LaunchRunSuccess", "run": {"runId": "abc"}}}}

        with patch("app.services.dagster_service.httpx.post", return_value=graphql_response(body)) as mock_post:
            run_id = service.launch_inference_run(
                run_id="infer::acme::tower-a", client_name="acme", slug="tower-a", requested_by="jdoe"
            )

        assert run_id == "abc"
        params = mock_post.call_args.kwargs["json"]["variables"]["executionParams"]
        assert params["selector"]["jobName"] == "inference_job"
        assert params["selector"]["repositoryLocationName"] == "inference_pipelines"
        tags = {t["key"]: t["value"] for t in params["executionMetadata"]["tags"]}
        assert tags == {
            "inference_run_id": "infer::acme::tower-a",
            "client_name": "acme",
            "slug": "tower-a",
            "source": "webapp",
            "operator": "jdoe",
        }

    def test_no_operator_tag_without_requester(self, service):
        body = {"data": {"launchRun": {"__typename": "LaunchRunSuccess", "run": {"runId": "abc"}}}}

        with patch("app.services.dagster_service.httpx.post", return_value=graphql_response(body)) as mock_post:
            service.launch_inference_run(run_id="r", client_name="acme", slug="tower-a")

        tags = mock_post.call_args.kwargs["json"]["variables"]["executionParams"]["executionMetadata"]["tags"]
        assert "operator" not in {t["key"] for t in tags}

    def test_launch_rejected(self, service):
        body = {"data": {"launchRun": {"__typename": "PipelineNotFoundError", "message": "no such job"}}}

        with patch("app.services.dagster_service.httpx.post", return_value=graphql_response(body)):
            with pytest.raises(RuntimeError, match="no such job"):
                service.launch_inference_run(run_id="r", client_name="acme", slug="tower-a")

    def test_config_errors_joined(self, service):
        body = {
            "data": {
                "launchRun": {
                    "__typename": "RunConfigValidationInvalid",
                    "errors": [{"message": "bad a"}, {"message": "bad b"}],
                }
            }
        }

        with patch("app.services.dagster_service.httpx.post", return_value=graphql_response(body)):
            with pytest.raises(RuntimeError, match="bad a; bad b"):
                service.launch_inference_run(run_id="r", client_name="acme", slug="tower-a")

    def test_graphql_errors(self, service):
        with patch(
            "app.services.dagster_service.httpx.post",
            return_value=graphql_response({"errors": [{"message": "syntax"}]}),
        ):
            with pytest.raises(RuntimeError, match="GraphQL error"):
                service.launch_inference_run(run_id="r", client_name="acme", slug="tower-a")


def test_server_version(service):
    with patch(
        "app.services.dagster_service.httpx.post",
        return_value=graphql_response({"data": {"version": "1.9.0"}}),
    ) as mock_post:
        assert service.server_version() == "1.9.0"

    assert "version" in mock_post.call_args.kwargs["json"]["query"]
