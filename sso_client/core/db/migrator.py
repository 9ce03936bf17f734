"""Database migration manager."""

import hashlib
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Set, Tuple

import aiosqlite
import structlog

from .exceptions import MigrationError
from .schema import MIGRATIONS, Migration

logger = structlog.get_logger(__name__)


class Migrator:
    """Applies the versioned schema to a database connection."""

    def __init__(self, migrations: Optional[Sequence[Migration]] = None):
        """
        Initialize migrator.

        Args:
            migrations: ``(version, name, sql)`` tuples; defaults to the
                bundled schema
        """
        self.migrations = list(migrations if migrations is not None else MIGRATIONS)

    async def run_migrations(self, db: aiosqlite.Connection) -> int:
        """
        Run all pending migrations.

        Returns:
            Number of migrations applied

        Raises:
            MigrationError: If a migration fails or an applied one was edited
        """
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                checksum TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
            """
        )
        await db.commit()

        applied = await self._get_applied_migrations(db)
        pending = self._get_pending_migrations(applied)

        if not pending:
            logger.debug("no_pending_migrations")
            return 0

        logger.info("migrations_pending", count=len(pending))

        for version, name, sql in pending:
            checksum = self._calculate_checksum(sql)
            try:
                logger.info("migration_applying", version=version, name=name)
                await db.executescript(sql)

                now = datetime.now(timezone.utc).isoformat()
                await db.execute(
                    """
                    INSERT INTO schema_migrations (version, name, checksum, applied_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (version, name, checksum, now),
                )
                await db.commit()
                logger.info("migration_applied", version=version, name=name)

            except aiosqlite.Error as e:
                await db.rollback()
                logger.error(
                    "migration_failed",
                    version=version,
                    name=name,
                    error=str(e),
                )
                raise MigrationError(
                    f"Migration {version}_{name} failed: {e}",
                    version=version,
                    name=name,
                ) from e

        logger.info("migrations_complete", applied=len(pending))
        return len(pending)

    async def _get_applied_migrations(self, db: aiosqlite.Connection) -> List[Tuple[int, str]]:
        cursor = await db.execute(
            "SELECT version, checksum FROM schema_migrations ORDER BY version"
        )
        rows = await cursor.fetchall()
        return [(row[0], row[1]) for row in rows]

    def _get_pending_migrations(self, applied: List[Tuple[int, str]]) -> List[Migration]:
        known = {version: sql for version, _, sql in self.migrations}
        applied_versions: Set[int] = set()
        for version, checksum in applied:
            applied_versions.add(version)
            sql = known.get(version)
            if sql is not None and self._calculate_checksum(sql) != checksum:
                raise MigrationError(
                    f"Applied migration {version} does not match its recorded checksum",
                    version=version,
                )

        pending = [m for m in self.migrations if m[0] not in applied_versions]
        pending.sort(key=lambda m: m[0])
        return pending

    def _calculate_checksum(self, content: str) -> str:
        """Calculate SHA-256 checksum of migration content."""
        return hashlib.sha256(content.encode()).hexdigest()
