"""Apply the SQL files under ``sql/`` in lexical order."""

import logging
from pathlib import Path
from typing import Optional

import psycopg2

from services.catalog_api.db import DatabaseConnection
from services.common.logging_utils import log_exceptions

logger = logging.getLogger("catalog-api.migrations")

MIGRATIONS_DIR = Path(__file__).resolve().parent / "sql"


class MigrationError(RuntimeError):
    """A migration file could not be applied."""


def migration_files(directory: Path = MIGRATIONS_DIR) -> list[Path]:
    return sorted(p for p in directory.glob("*.sql") if p.is_file())


@log_exceptions(logger, "Migration run aborted")
def apply_migrations(
    db: DatabaseConnection,
    only: Optional[str] = None,
    directory: Path = MIGRATIONS_DIR,
) -> list[str]:
    """
    Apply all migrations, or just ``only`` when given.

    Each file is committed on its own; the first failure rolls back that file
    and stops the run. Returns the names of the files applied.
    """
    if only:
        path = directory / only
        if not path.is_file():
            raise MigrationError(f"Migration file not found: {only}")
        files = [path]
    else:
        files = migration_files(directory)

    if not files:
        logger.info("No migration files found in %s", directory)
        return []

    applied = []
    for path in files:
        logger.info("Applying %s", path.name)
        try:
            db.execute_script(path.read_text(encoding="utf-8"))
            db.commit()
        except psycopg2.Error as e:
            db.rollback()
            raise MigrationError(f"Failed to apply {path.name}: {e}") from e
        applied.append(path.name)
    logger.info("Applied %d migration(s)", len(applied))
    return applied
