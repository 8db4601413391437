"""Database schema management.

Schema changes are versioned SQL files in the migrations/ subdirectory.
"""

import logging

from groupdate.db.core import Database
from groupdate.db.migrations import get_current_version, get_migration_history, run_migrations

logger = logging.getLogger(__name__)


async def ensure_schema(db: Database) -> None:
    """Apply pending migrations. Safe to call on every startup."""
    current_version = await get_current_version(db)
    logger.info("Current schema version: %d", current_version)

    applied = await run_migrations(db)

    if applied > 0:
        new_version = await get_current_version(db)
        logger.info("Schema updated from version %d to %d", current_version, new_version)
    else:
        logger.debug("Schema is up to date at version %d", current_version)


async def get_schema_info(db: Database) -> dict:
    return {
        "current_version": await get_current_version(db),
        "migration_history": await get_migration_history(db),
    }
