# =============================================================================
# MongoDB Schema Migration Runner
# =============================================================================
# Applies the inference pipeline's MongoDB migrations in version order and
# records each applied version in schema_migrations. Safe to run on every
# deployment: applied versions are skipped.
# =============================================================================

import argparse
import importlib.util
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import CollectionInvalid

from libs.models import MongoSettings

logger = logging.getLogger("migrate_db")

MIGRATIONS_COLLECTION = "schema_migrations"
DEFAULT_MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "services" / "mongodb" / "migrations"
CONTAINER_MIGRATIONS_DIR = Path("/app/services/mongodb/migrations")

Migration = Callable[[Database], None]


def discover_migrations(migrations_dir: Path) -> list[tuple[str, Path]]:
    """
    List migration files named NNN_<description>.py, sorted by version.

    Raises:
        ValueError: If the directory is missing or two files share a version
    """
    if not migrations_dir.exists():
        raise ValueError(f"Migrations directory does not exist: {migrations_dir}")

    found: dict[str, Path] = {}
    for file_path in migrations_dir.glob("*.py"):
        name = file_path.name
        if name.startswith("__"):
            continue
        if not name[:3].isdigit():
            logger.warning("Skipping '%s': name does not start with a 3-digit version", name)
            continue

        version = name[:3]
        if version in found:
            raise ValueError(f"Duplicate migration version '{version}' found in '{name}'")
        found[version] = file_path

    return sorted(found.items())


def load_migration_module(file_path: Path) -> tuple[str, Migration]:
    """
    Import a migration file and return its VERSION and up().

    Raises:
        ImportError: If the file cannot be loaded
        ValueError: If VERSION or up() is missing or has the wrong type
    """
    spec = importlib.util.spec_from_file_location(f"migration_{file_path.stem}", file_path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Could not load migration module from {file_path}")

    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    version = getattr(module, "VERSION", None)
    if version is None:
        raise ValueError(f"Migration '{file_path.name}' missing VERSION constant")
    if not isinstance(version, str):
        raise ValueError(
            f"Migration '{file_path.name}' VERSION must be a string, got {type(version).__name__}"
        )

    up = getattr(module, "up", None)
    if up is None:
        raise ValueError(f"Migration '{file_path.name}' missing up() function")
    if not callable(up):
        raise ValueError(f"Migration '{file_path.name}' up must be callable, got {type(up).__name__}")

    return version, up


def ensure_migrations_collection(db: Database) -> None:
    try:
        db.create_collection(MIGRATIONS_COLLECTION)
    except CollectionInvalid:
        pass
    db[MIGRATIONS_COLLECTION].create_index("version", unique=True)


def get_applied_versions(db: Database) -> set[str]:
    return {doc["version"] for doc in db[MIGRATIONS_COLLECTION].find({}, {"version": 1})}


def apply_migration(db: Database, version: str, up: Migration) -> int:
    """
    Run one migration and record it.

    A failing migration is not recorded, so it is retried on the next run.

    Returns:
        Duration in milliseconds
    """
    start = time.monotonic()
    up(db)
    duration_ms = int((time.monotonic() - start) * 1000)
    db[MIGRATIONS_COLLECTION].insert_one(
        {
            "version": version,
            "applied_at": datetime.now(timezone.utc),
            "duration_ms": duration_ms,
        }
    )
    logger.info("Applied migration %s (took %dms)", version, duration_ms)
    return duration_ms


def run_migrations(db: Database, migrations_dir: Path, *, dry_run: bool = False) -> list[str]:
    """
    Apply every pending migration in order.

    Args:
        db: Target database
        migrations_dir: Directory holding NNN_*.py files
        dry_run: Only report what would be applied

    Returns:
        Versions applied (or pending, for a dry run)

    Raises:
        ValueError: If a file's VERSION does not match its filename
    """
    ensure_migrations_collection(db)
    applied = get_applied_versions(db)

    pending = []
    for version, file_path in discover_migrations(migrations_dir):
        if version in applied:
            logger.debug("Skipping migration %s: already applied", version)
            continue

        module_version, up = load_migration_module(file_path)
        if module_version != version:
            raise ValueError(
                f"Migration '{file_path.name}' VERSION '{module_version}' "
                f"does not match filename version '{version}'"
            )

        pending.append(version)
        if dry_run:
            logger.info("Pending migration %s (%s)", version, file_path.name)
            continue

        logger.info("Applying migration %s from %s", version, file_path.name)
        apply_migration(db, version, up)

    return pending


def _resolve_migrations_dir() -> Path:
    if DEFAULT_MIGRATIONS_DIR.exists():
        return DEFAULT_MIGRATIONS_DIR
    return CONTAINER_MIGRATIONS_DIR


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Apply MongoDB migrations for the inference pipeline")
    parser.add_argument("--dry-run", action="store_true", help="List pending migrations without applying them")
    parser.add_argument("--migrations-dir", type=Path, default=None)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    settings = MongoSettings()
    client = MongoClient(settings.connection_string, serverSelectionTimeoutMS=10000)
    try:
        versions = run_migrations(
            client[settings.database],
            args.migrations_dir or _resolve_migrations_dir(),
            dry_run=args.dry_run,
        )
    except Exception:
        logger.exception("Migration failed")
        return 1
    finally:
        client.close()

    if not versions:
        logger.info("Database is up to date")
    return 0


if __name__ == "__main__":
    sys.exit(main())
