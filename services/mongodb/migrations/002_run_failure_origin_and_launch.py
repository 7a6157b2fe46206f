"""
Migration 002: Run Failure Origin and Launch Claim

Extends the run ledger validator with:
- failure_origin: "engine" or "host", who marked the run Failed
- launch: the job launch claimed for the current attempt

Schema constants are FROZEN - do not modify. Create new migration for changes.
"""

from pymongo.database import Database

VERSION = "002"

# =============================================================================
# FROZEN SCHEMA CONSTANTS - DO NOT MODIFY
# =============================================================================

INFERENCE_RUNS_SCHEMA_V002 = {
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
            "failure_origin": {"enum": ["engine", "host", None]},
            "launch": {
                "bsonType": ["object", "null"],
                "required": ["claim_id", "claimed_at"],
                "properties": {
                    "claim_id": {"bsonType": "string"},
                    "claimed_at": {"bsonType": "date"},
                    "dagster_run_id": {"bsonType": ["string", "null"]},
                },
            },
            "raw_outputs_prefix": {"bsonType": ["string", "null"]},
            "started_at": {"bsonType": "date"},
            "completed_at": {"bsonType": ["date", "null"]},
            "updated_at": {"bsonType": ["date", "null"]},
        },
    }
}


# Copy of the 001 validator, restored by down()
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


def _set_validator(db: Database, validator: dict) -> None:
    db.command(
        "collMod",
        "inference_runs",
        validator=validator,
        validationLevel="strict",
        validationAction="error",
    )


def up(db: Database) -> None:
    """Validate failure_origin and launch on inference_runs."""
    _set_validator(db, INFERENCE_RUNS_SCHEMA_V002)


def down(db: Database) -> None:
    """Restore the 001 validator."""
    _set_validator(db, INFERENCE_RUNS_SCHEMA_V001)
