"""
Shared pytest fixtures for the inference pipeline tests.

Provides an in-memory MongoDB ledger (mongomock), a seeded project with
three floors, and fakes for blob storage and the inference endpoint.
"""

from datetime import datetime, timedelta, timezone

import mongomock
import pytest

from services.dagster.inference_pipelines.resources import MongoDBResource
from tests.helpers import (
    CLIENT_NAME,
    FLOOR_IDS,
    PROJECT_ID,
    SLUG,
    FakeBlobStore,
    FakeClock,
)


# =============================================================================
# MongoDB Fixtures
# =============================================================================


@pytest.fixture
def mongomock_client():
    """In-memory MongoDB client for tests."""
    return mongomock.MongoClient()


@pytest.fixture
def mongo_resource(monkeypatch, mongomock_client):
    """MongoDBResource configured to use the mongomock client."""
    monkeypatch.setattr(
        "services.dagster.inference_pipelines.resources.mongodb_resource.MongoClient",
        lambda *args, **kwargs: mongomock_client,
    )
    return MongoDBResource(connection_string="mongodb://localhost:27017", database="reveal_test")


@pytest.fixture
def seeded_db(mongomock_client):
    """Project acme/tower-a with three floors in creation order."""
    db = mongomock_client["reveal_test"]
    db.projects.insert_one(
        {"_id": PROJECT_ID, "client_name": CLIENT_NAME, "slug": SLUG, "name": "Tower A"}
    )
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for index, floor_id in enumerate(FLOOR_IDS):
        db.floors.insert_one(
            {
                "_id": floor_id,
                "project_id": PROJECT_ID,
                "name": f"Level {index + 1}",
                "plan_url": f"projects/{SLUG}/plans/{floor_id}.png",
                "image_width": 2000,
                "image_height": 1400,
                "paper_scale_denominator": 100,
                "created_at": base + timedelta(hours=index),
            }
        )
    return db


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def blob_store():
    return FakeBlobStore()
