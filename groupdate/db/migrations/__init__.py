"""Versioned SQL migrations.

Files are named ``NNN_description.sql`` and applied in order, each in its own
transaction together with its ``schema_migrations`` row.
"""

import logging
from pathlib import Path
from typing import Any

from groupdate.db.core import Database

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent

_CREATE_MIGRATIONS_TABLE = """
    CREATE TABLE IF NOT EXISTS schema_migrations (
        version INTEGER PRIMARY KEY,
        applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        description TEXT
    );
"""


async def get_current_version(db: Database) -> int:
    async with db.connection() as conn:
        await conn.execute(_CREATE_MIGRATIONS_TABLE)
        row = await (await conn.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")).fetchone()
        return int(row[0]) if row and row[0] else 0


async def apply_migration(db: Database, version: int, sql: str, description: str = "") -> bool:
    """Apply one migration. Returns False if it was already applied."""
    current = await get_current_version(db)
    if version <= current:
        logger.debug("Migration %d already applied", version)
        return False

    async with db.connection() as conn:
        try:
            async with conn.transaction():
                await conn.execute(sql)
                await conn.execute(
                    "INSERT INTO schema_migrations (version, description) VALUES (%s, %s)",
                    (version, description),
                )
        except Exception as e:
            logger.error("Failed to apply migration %d: %s", version, e)
            raise
    logger.info("Applied migration %d: %s", version, description)
    return True


def list_migration_files() -> list[dict[str, Any]]:
    migrations = []
    for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
        prefix, _, rest = path.stem.partition("_")
        if not prefix.isdigit():
            continue
        migrations.append(
            {
                "version": int(prefix),
                "filename": path.name,
                "description": rest,
                "path": path,
            }
        )
    return migrations


async def get_pending_migrations(db: Database) -> list[dict[str, Any]]:
    current = await get_current_version(db)
    return [m for m in list_migration_files() if m["version"] > current]


async def run_migrations(db: Database) -> int:
    """Run all pending migrations. Returns how many were applied."""
    applied = 0
    for migration in await get_pending_migrations(db):
        if await apply_migration(db, migration["version"], migration["path"].read_text(), migration["description"]):
            applied += 1

    if applied:
        logger.info("Applied %d migrations", applied)
    else:
        logger.debug("No pending migrations")
    return applied


async def get_migration_history(db: Database) -> list[dict[str, Any]]:
    async with db.connection() as conn:
        await conn.execute(_CREATE_MIGRATIONS_TABLE)
        cur = await conn.execute("SELECT version, applied_at, description FROM schema_migrations ORDER BY version")
        return [
            {"version": row[0], "applied_at": row[1], "description": row[2]}
            async for row in cur
        ]
