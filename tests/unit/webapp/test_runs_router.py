"""Unit tests for the runs router (start and status endpoints)."""

from unittest.mock import MagicMock, patch

import pytest
from starlette.testclient import TestClient

from app.auth.dependencies import get_auth_provider, get_current_user
from app.auth.providers import AuthenticatedUser, BasicAuthProvider
from app.main import app
from app.services.mongodb_service import MongoDBService
from libs.models import InferenceRun, RunProgress, RunStage, RunStatus
from tests.helpers import CLIENT_NAME, PROJECT_ID, SLUG


RUN_ID = f"infer::{CLIENT_NAME}::{SLUG}"


@pytest.fixture
def mongodb_service(mongomock_client):
    service = MongoDBService(client=mongomock_client)
    service._db.projects.insert_one(
        {"_id": PROJECT_ID, "client_name": CLIENT_NAME, "slug": SLUG, "name": "Tower A"}
    )
    return service


@pytest.fixture
def dagster_service():
    service = MagicMock()
    service.launch_inference_run.return_value = "dagster-run-1"
    return service


@pytest.fixture
def client(mongodb_service, dagster_service):
    app.dependency_overrides[get_current_user] = lambda: AuthenticatedUser(
        username="jdoe", email="jdoe@example.com"
    )
    with patch("app.routers.runs.get_mongodb_service", return_value=mongodb_service), patch(
        "app.routers.runs.get_dagster_service", return_value=dagster_service
    ):
        yield TestClient(app)
    app.dependency_overrides.clear()


def start(client, **body):
    return client.post("/runs", json=body)


class TestStartRun:
    def test_missing_fields(self, client, dagster_service):
        response = start(client, client_name=CLIENT_NAME)

        assert response.status_code == 400
        assert "client_name, slug" in response.json()["detail"]
        dagster_service.launch_inference_run.assert_not_called()

    def test_unknown_project(self, client, dagster_service):
        response = start(client, client_name=CLIENT_NAME, slug="nope")

        assert response.status_code == 404
        dagster_service.launch_inference_run.assert_not_called()

    def test_launches_admitted_run(self, client, mongodb_service, dagster_service):
        response = start(client, client_name=CLIENT_NAME, slug=SLUG)

        assert response.status_code == 202
        assert response.json() == {
            "run_id": RUN_ID,
            "dagster_run_id": "dagster-run-1",
            "attempt": 1,
            "reused": False,
            "resumed": False,
        }
        dagster_service.launch_inference_run.assert_called_once_with(
            run_id=RUN_ID, client_name=CLIENT_NAME, slug=SLUG, requested_by="jdoe@example.com"
        )
        run = mongodb_service.read_run(RUN_ID)
        assert run.status == RunStatus.RUNNING
        assert run.requested_by == "jdoe@example.com"

    def test_completed_run_conflicts(self, client, mongodb_service, dagster_service):
        start(client, client_name=CLIENT_NAME, slug=SLUG)
        mongodb_service._db.inference_runs.update_one(
            {"_id": RUN_ID}, {"$set": {"status": RunStatus.COMPLETED.value}}
        )
        dagster_service.launch_inference_run.reset_mock()

        response = start(client, client_name=CLIENT_NAME, slug=SLUG)

        assert response.status_code == 409
        assert response.json()["detail"] == "Inference already executed for this project."
        dagster_service.launch_inference_run.assert_not_called()

    def test_second_request_reuses_launch(self, client, dagster_service):
        start(client, client_name=CLIENT_NAME, slug=SLUG)

        response = start(client, client_name=CLIENT_NAME, slug=SLUG)

        assert response.status_code == 202
        assert response.json()["reused"] is True
        assert response.json()["dagster_run_id"] == "dagster-run-1"
        dagster_service.launch_inference_run.assert_called_once()

    def test_request_during_pending_launch_does_not_launch(self, client, mongodb_service, dagster_service):
        # Another request holds the claim but has not recorded its Dagster run yet
        mongodb_service.create_run(
            InferenceRun(id=RUN_ID, project_id=PROJECT_ID, client_name=CLIENT_NAME, slug=SLUG)
        )
        assert mongodb_service.claim_launch(RUN_ID, 1) is not None

        response = start(client, client_name=CLIENT_NAME, slug=SLUG)

        assert response.status_code == 202
        assert response.json()["reused"] is True
        assert response.json()["dagster_run_id"] is None
        dagster_service.launch_inference_run.assert_not_called()

    def test_failed_run_readmitted_as_new_attempt(self, client, mongodb_service):
        start(client, client_name=CLIENT_NAME, slug=SLUG)
        mongodb_service._db.inference_runs.update_one(
            {"_id": RUN_ID}, {"$set": {"status": RunStatus.FAILED.value, "error_message": "boom"}}
        )

        response = start(client, client_name=CLIENT_NAME, slug=SLUG)

        assert response.status_code == 202
        assert response.json()["attempt"] == 2
        assert mongodb_service.read_run(RUN_ID).error_message is None

    def test_launch_failure_is_503(self, client, dagster_service):
        dagster_service.launch_inference_run.side_effect = RuntimeError("dagster down")

        response = start(client, client_name=CLIENT_NAME, slug=SLUG)

        assert response.status_code == 503
        assert "dagster down" in response.json()["detail"]

    def test_failed_launch_can_be_retried(self, client, mongodb_service, dagster_service):
        dagster_service.launch_inference_run.side_effect = [RuntimeError("dagster down"), "dagster-run-2"]

        assert start(client, client_name=CLIENT_NAME, slug=SLUG).status_code == 503
        assert mongodb_service.read_run(RUN_ID).launch is None

        response = start(client, client_name=CLIENT_NAME, slug=SLUG)

        assert response.status_code == 202
        assert response.json()["reused"] is False
        assert response.json()["dagster_run_id"] == "dagster-run-2"
        assert mongodb_service.read_run(RUN_ID).launch.dagster_run_id == "dagster-run-2"

    def test_readmitted_run_gets_a_fresh_launch(self, client, mongodb_service, dagster_service):
        start(client, client_name=CLIENT_NAME, slug=SLUG)
        mongodb_service._db.inference_runs.update_one(
            {"_id": RUN_ID}, {"$set": {"status": RunStatus.FAILED.value, "failure_origin": "engine"}}
        )
        dagster_service.launch_inference_run.return_value = "dagster-run-2"

        response = start(client, client_name=CLIENT_NAME, slug=SLUG)

        assert response.json()["reused"] is False
        assert response.json()["dagster_run_id"] == "dagster-run-2"
        assert dagster_service.launch_inference_run.call_count == 2

    def test_host_failure_resumes_same_attempt(self, client, mongodb_service):
        start(client, client_name=CLIENT_NAME, slug=SLUG)
        mongodb_service._db.inference_runs.update_one(
            {"_id": RUN_ID},
            {"$set": {"status": RunStatus.FAILED.value, "failure_origin": "host", "processed_floors": 2}},
        )

        response = start(client, client_name=CLIENT_NAME, slug=SLUG)

        assert response.status_code == 202
        assert response.json()["attempt"] == 1
        assert response.json()["resumed"] is True
        assert response.json()["reused"] is False
        assert mongodb_service.read_run(RUN_ID).processed_floors == 2


class TestGetRunStatus:
    def test_unknown_run(self, client):
        response = client.get("/runs/infer::acme::missing")

        assert response.status_code == 404

    def test_returns_run_and_progress(self, client, mongodb_service):
        start(client, client_name=CLIENT_NAME, slug=SLUG)
        progress = RunProgress(run_id=RUN_ID, stage=RunStage.PROCESSING, processed=1, total=3)
        mongodb_service._db.run_progress.insert_one({"_id": RUN_ID, **progress.model_dump(mode="json")})

        response = client.get(f"/runs/{RUN_ID}")

        assert response.status_code == 200
        body = response.json()
        assert body["run"]["status"] == RunStatus.RUNNING.value
        assert body["progress"]["processed"] == 1
        assert body["progress"]["stage"] == RunStage.PROCESSING.value


def test_requires_credentials():
    app.dependency_overrides[get_auth_provider] = lambda: BasicAuthProvider("admin", "s3cret")
    try:
        client = TestClient(app)
        assert client.post("/runs", json={}).status_code == 401
        assert client.post("/runs", json={}, auth=("admin", "wrong")).status_code == 401
    finally:
        app.dependency_overrides.clear()
