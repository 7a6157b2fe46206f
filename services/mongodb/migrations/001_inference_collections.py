"""
Migration 001: Inference Collections

Creates the run ledger with a validator, plus the indexes the inference
pipeline relies on:
- projects: unique (client_name, slug) target lookup
- floors: creation-order enumeration per project
- editor_docs: unique floor_key
- editor_events: per-document audit trail ordering
- run_history / run_retry_state: lookups by run and attempt

Schema constants are FROZEN - do not modify. Create new migration for changes.
"""

from pymongo.database import Database
from pymongo.errors import CollectionInvalid

VERSION = "001"

# =============================================================================
# FROZEN SCHEMA CONSTANTS - DO NOT MODIFY
# =============================================================================

INFERENCE_RUNS_SCHEMA_V001 = {
    "$jsonSchema": {
        "bsonType": "object",
        "required": [
            "_id",
            "client_name",
            "slug",
            "project_id",
            "status",
            "attempt",
            "processed_floors",
            "totals",
            "started_at",
        ],
        "properties": {
            "_id": {"bsonType": "string"},
            "client_name": {"bsonType": "string", "minLength": 1},
            "slug": {"bsonType": "string", "minLength": 1},
            "project_id": {"bsonType": "string"},
            "requested_by": {"bsonType": ["string", "null"]},
            "status": {"enum": ["Running", "Completed", "Failed"]},
            "attempt": {"bsonType": ["int", "long"], "minimum": 1},
            "total_floors": {"bsonType": ["int", "long", "null"], "minimum": 0},
            "processed_floors": {"bsonType": ["int", "long"], "minimum": 0},
            "totals": {
                "bsonType": "object",
                "properties": {
                    "columnsDetected": {"bsonType": ["int", "long"], "minimum": 0},
                    "beamsDetected": {"bsonType": ["int", "long"], "minimum": 0},
                    "polygonsDetected": {"bsonType": ["int", "long"], "minimum": 0},
                },
            },
            "error_message": {"bsonType": ["string", "null"]},
            "raw_outputs_prefix": {"bsonType": ["string", "null"]},
            "started_at": {"bsonType": "date"},
            "completed_at": {"bsonType": ["date", "null"]},
            "updated_at": {"bsonType": ["date", "null"]},
        },
    }
}


def _create_or_update_validator(db: Database, name: str, validator: dict) -> None:
    try:
        db.create_collection(
            name,
            validator=validator,
            validationLevel="strict",
            validationAction="error",
        )
    except CollectionInvalid:
        db.command(
            "collMod",
            name,
            validator=validator,
            validationLevel="strict",
            validationAction="error",
        )


def up(db: Database) -> None:
    """Create the run ledger and the pipeline indexes."""

    # Run ledger
    _create_or_update_validator(db, "inference_runs", INFERENCE_RUNS_SCHEMA_V001)
    db.inference_runs.create_index([("client_name", 1), ("slug", 1)], unique=True)
    db.inference_runs.create_index([("status", 1)])
    db.inference_runs.create_index([("started_at", -1)])

    # Inputs
    db.projects.create_index([("client_name", 1), ("slug", 1)], unique=True)
    db.floors.create_index([("project_id", 1), ("created_at", 1)])

    # Editor documents and their audit trail
    db.editor_docs.create_index([("floor_key", 1)], unique=True)
    db.editor_events.create_index([("document_id", 1), ("timestamp", 1)])
    db.editor_events.create_index([("run_id", 1)])

    # Recorded history
    db.run_history.create_index([("run_id", 1), ("attempt", 1), ("seq", 1)])
    db.run_retry_state.create_index([("run_id", 1), ("attempt", 1)])

    # Progress projection is keyed by run id only
    db.run_progress.create_index([("updated_at", -1)])


def down(db: Database) -> None:
    """
    Rollback migration (best effort).

    Drops the pipeline-owned collections. Projects and floors are inputs
    and are left in place.
    """
    for name in (
        "inference_runs",
        "editor_docs",
        "editor_events",
        "run_history",
        "run_retry_state",
        "run_progress",
    ):
        db.drop_collection(name)
