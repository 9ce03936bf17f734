"""SQLite repository for SSO users, roles, permissions and credentials."""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import aiosqlite
import structlog

from ..models import (
    ApiTokenRecord,
    PermissionRecord,
    RoleRecord,
    SessionPrincipal,
    TeamPermissionRecord,
    parse_timestamp,
)
from .connection import DatabaseConnection
from .exceptions import (
    DuplicateRecordError,
    QueryError,
    RecordNotFoundError,
    SystemRoleError,
    TokenPairError,
)
from .migrator import Migrator

logger = structlog.get_logger(__name__)

SYSTEM_ROLES = ("admin", "manager", "member")

ROLE_FIELDS = {"display_name", "level", "description"}
PERMISSION_FIELDS = {"display_name", "group", "description"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


class SsoRepository:
    """Repository for the SSO client's local tables."""

    def __init__(
        self,
        db_path: Path,
        enable_wal: bool = True,
        timeout: int = 30,
    ):
        """
        Initialize repository.

        Args:
            db_path: Path to SQLite database file
            enable_wal: Enable Write-Ahead Logging mode
            timeout: Connection timeout in seconds
        """
        self.db_path = db_path
        self._db_connection = DatabaseConnection(db_path, enable_wal, timeout)
        self._connection: Optional[aiosqlite.Connection] = None

    @classmethod
    async def from_config(cls, config: Any, config_dir: Optional[Path] = None) -> "SsoRepository":
        """
        Create, connect and migrate a repository from a DatabaseConfig.

        Args:
            config: DatabaseConfig instance
            config_dir: Directory used to resolve a relative database path
        """
        db_path = Path(config.path)
        if config_dir is not None and not db_path.is_absolute():
            db_path = config_dir / db_path

        repo = cls(
            db_path=db_path,
            enable_wal=config.enable_wal,
            timeout=config.connection_timeout,
        )
        await repo.connect()
        await Migrator().run_migrations(repo._conn)

        logger.info("repository_initialized", db_path=str(db_path))
        return repo

    async def connect(self) -> None:
        """Establish database connection."""
        if self._connection is None:
            self._connection = await self._db_connection.connect()

    async def close(self) -> None:
        """Close database connection."""
        if self._connection is not None:
            await self._db_connection.close()
            self._connection = None

    async def __aenter__(self) -> "SsoRepository":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def _conn(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise QueryError("No active connection")
        return self._connection

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """
        Explicit transaction context manager.

        Writes made inside the block are committed together or not at all.
        Writes issued by other tasks meanwhile wait for the block to finish
        instead of joining it.

        Example:
            async with repository.transaction():
                user = await repository.upsert_user(...)
                await repository.set_console_tokens(user.id, ...)

        Raises:
            TransactionError: Without a connection, or when nested
        """
        async with self._db_connection.transaction():
            yield

    @asynccontextmanager
    async def _write(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run a multi-statement write atomically, joining the caller's transaction."""
        async with self._db_connection.write() as conn:
            yield conn

    async def _execute_write(self, sql: str, params: Any = ()) -> aiosqlite.Cursor:
        return await self._db_connection.execute_write(sql, params)

    # ==================== Users ====================

    def _row_to_principal(self, row: aiosqlite.Row) -> SessionPrincipal:
        return SessionPrincipal(
            id=row["id"],
            console_user_id=row["console_user_id"],
            email=row["email"],
            name=row["name"],
            encrypted_access_token=row["console_access_token"],
            encrypted_refresh_token=row["console_refresh_token"],
            token_expires_at=parse_timestamp(row["console_token_expires_at"]),
        )

    async def get_user(self, user_id: int) -> SessionPrincipal:
        """
        Get a user by local id.

        Raises:
            RecordNotFoundError: If the user does not exist
        """
        cursor = await self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        row = await cursor.fetchone()
        if row is None:
            raise RecordNotFoundError(f"User not found: {user_id}", resource="user", record_id=user_id)
        return self._row_to_principal(row)

    async def get_user_by_console_id(self, console_user_id: int) -> Optional[SessionPrincipal]:
        """Get a user by the provider's user id, or None."""
        cursor = await self._conn.execute(
            "SELECT * FROM users WHERE console_user_id = ?", (console_user_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_principal(row) if row else None

    async def upsert_user(self, console_user_id: int, email: str, name: str) -> SessionPrincipal:
        """
        Create or update the user linked to ``console_user_id``.

        A user that exists by email but has not been linked yet is linked
        instead of duplicated.
        """
        now = _now()
        async with self._write() as conn:
            cursor = await conn.execute(
                "SELECT id FROM users WHERE console_user_id = ?", (console_user_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                cursor = await conn.execute(
                    "SELECT id FROM users WHERE email = ? AND console_user_id IS NULL",
                    (email,),
                )
                row = await cursor.fetchone()

            if row is not None:
                user_id = row["id"]
                await conn.execute(
                    """
                    UPDATE users
                    SET console_user_id = ?, email = ?, name = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (console_user_id, email, name, now, user_id),
                )
                logger.info("user_updated", user_id=user_id, console_user_id=console_user_id)
            else:
                cursor = await conn.execute(
                    """
                    INSERT INTO users (console_user_id, email, name, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (console_user_id, email, name, now, now),
                )
                user_id = cursor.lastrowid
                logger.info("user_created", user_id=user_id, console_user_id=console_user_id)

        return await self.get_user(user_id)

    async def count_users(self) -> int:
        cursor = await self._conn.execute("SELECT COUNT(*) FROM users")
        row = await cursor.fetchone()
        return int(row[0])

    async def set_console_tokens(
        self,
        user_id: int,
        encrypted_access_token: Optional[str],
        encrypted_refresh_token: Optional[str],
        expires_at: Optional[datetime],
    ) -> SessionPrincipal:
        """
        Store (or clear) a user's provider token pair.

        Either all three values are set or all three are None.

        Raises:
            TokenPairError: If the values would leave a partial pair
            RecordNotFoundError: If the user does not exist
        """
        values = (encrypted_access_token, encrypted_refresh_token, expires_at)
        if any(v is None for v in values) and not all(v is None for v in values):
            raise TokenPairError(
                "Access token, refresh token and expiry must be stored together"
            )

        cursor = await self._execute_write(
            """
            UPDATE users
            SET console_access_token = ?, console_refresh_token = ?,
                console_token_expires_at = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                encrypted_access_token,
                encrypted_refresh_token,
                expires_at.isoformat() if expires_at else None,
                _now(),
                user_id,
            ),
        )
        if cursor.rowcount == 0:
            raise RecordNotFoundError(f"User not found: {user_id}", resource="user", record_id=user_id)
        return await self.get_user(user_id)

    async def clear_console_tokens(self, user_id: int) -> SessionPrincipal:
        return await self.set_console_tokens(user_id, None, None, None)

    # ==================== Roles ====================

    def _row_to_role(self, row: aiosqlite.Row) -> RoleRecord:
        data = dict(row)
        return RoleRecord(**data)

    async def list_roles(self) -> List[RoleRecord]:
        """All roles ordered by level (highest first) with permission counts."""
        cursor = await self._conn.execute(
            """
            SELECT r.*, COUNT(rp.permission_id) AS permissions_count
            FROM roles r
            LEFT JOIN role_permissions rp ON rp.role_id = r.id
            GROUP BY r.id
            ORDER BY r.level DESC, r.slug
            """
        )
        rows = await cursor.fetchall()
        return [self._row_to_role(row) for row in rows]

    async def get_role(self, role_id: int, with_permissions: bool = False) -> RoleRecord:
        """
        Get a role by id.

        Raises:
            RecordNotFoundError: If the role does not exist
        """
        cursor = await self._conn.execute("SELECT * FROM roles WHERE id = ?", (role_id,))
        row = await cursor.fetchone()
        if row is None:
            raise RecordNotFoundError(f"Role not found: {role_id}", resource="role", record_id=role_id)
        role = self._row_to_role(row)
        if with_permissions:
            role.permissions = await self.get_role_permissions(role_id)
            role.permissions_count = len(role.permissions)
        return role

    async def get_role_by_slug(self, slug: str) -> Optional[RoleRecord]:
        cursor = await self._conn.execute("SELECT * FROM roles WHERE slug = ?", (slug,))
        row = await cursor.fetchone()
        return self._row_to_role(row) if row else None

    async def create_role(
        self,
        slug: str,
        display_name: str,
        level: int,
        description: Optional[str] = None,
    ) -> RoleRecord:
        """
        Create a role.

        Raises:
            DuplicateRecordError: If the slug is taken
        """
        now = _now()
        try:
            cursor = await self._execute_write(
                """
                INSERT INTO roles (slug, display_name, level, description, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (slug, display_name, level, description, now, now),
            )
        except aiosqlite.IntegrityError as e:
            if "UNIQUE" not in str(e):
                raise QueryError(f"Constraint violation: {e}") from e
            raise DuplicateRecordError(
                f"Role already exists: {slug}", table="roles", key="slug", value=slug
            ) from e
        logger.info("role_created", role_id=cursor.lastrowid, slug=slug)
        return await self.get_role(cursor.lastrowid)

    async def update_role(self, role_id: int, **updates: Any) -> RoleRecord:
        """
        Update a role's display name, level or description.

        The slug is immutable; unknown fields are ignored.
        """
        role = await self.get_role(role_id)
        fields = {k: v for k, v in updates.items() if k in ROLE_FIELDS}
        if fields:
            fields["updated_at"] = _now()
            set_clause = ", ".join(f"{key} = ?" for key in fields)
            await self._execute_write(
                f"UPDATE roles SET {set_clause} WHERE id = ?",
                [*fields.values(), role_id],
            )
            logger.info("role_updated", role_id=role_id, slug=role.slug, fields=sorted(fields))
        return await self.get_role(role_id)

    async def delete_role(self, role_id: int) -> RoleRecord:
        """
        Delete a non-system role.

        Returns:
            The deleted role

        Raises:
            SystemRoleError: If the role is admin, manager or member
        """
        role = await self.get_role(role_id)
        if role.slug in SYSTEM_ROLES:
            raise SystemRoleError("System roles cannot be deleted", slug=role.slug)

        await self._execute_write("DELETE FROM roles WHERE id = ?", (role_id,))
        logger.info("role_deleted", role_id=role_id, slug=role.slug)
        return role

    async def get_role_permissions(self, role_id: int) -> List[PermissionRecord]:
        cursor = await self._conn.execute(
            """
            SELECT p.* FROM permissions p
            JOIN role_permissions rp ON rp.permission_id = p.id
            WHERE rp.role_id = ?
            ORDER BY p."group", p.slug
            """,
            (role_id,),
        )
        rows = await cursor.fetchall()
        return [PermissionRecord(**dict(row)) for row in rows]

    async def get_role_permission_slugs(self, role_slug: str) -> List[str]:
        """Permission slugs granted to a role; empty for unknown roles."""
        cursor = await self._conn.execute(
            """
            SELECT p.slug FROM permissions p
            JOIN role_permissions rp ON rp.permission_id = p.id
            JOIN roles r ON r.id = rp.role_id
            WHERE r.slug = ?
            ORDER BY p.slug
            """,
            (role_slug,),
        )
        rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def get_all_role_permission_slugs(self) -> Dict[str, List[str]]:
        """Map of every role slug to its permission slugs, in one query."""
        cursor = await self._conn.execute(
            """
            SELECT r.slug AS role_slug, p.slug AS permission_slug
            FROM roles r
            LEFT JOIN role_permissions rp ON rp.role_id = r.id
            LEFT JOIN permissions p ON p.id = rp.permission_id
            ORDER BY r.slug, p.slug
            """
        )
        result: Dict[str, List[str]] = {}
        for row in await cursor.fetchall():
            slugs = result.setdefault(row["role_slug"], [])
            if row["permission_slug"] is not None:
                slugs.append(row["permission_slug"])
        return result

    async def sync_role_permissions(
        self, role_id: int, permission_ids: Iterable[int]
    ) -> Tuple[int, int]:
        """
        Replace a role's permissions with ``permission_ids``.

        Returns:
            ``(attached, detached)`` counts
        """
        await self.get_role(role_id)
        wanted = set(permission_ids)

        async with self._write() as conn:
            cursor = await conn.execute(
                "SELECT permission_id FROM role_permissions WHERE role_id = ?", (role_id,)
            )
            current = {row[0] for row in await cursor.fetchall()}
            to_attach = wanted - current
            to_detach = current - wanted

            if to_detach:
                ids = sorted(to_detach)
                await conn.execute(
                    f"DELETE FROM role_permissions WHERE role_id = ? "
                    f"AND permission_id IN ({_placeholders(ids)})",
                    [role_id, *ids],
                )
            for permission_id in sorted(to_attach):
                await conn.execute(
                    "INSERT INTO role_permissions (role_id, permission_id) VALUES (?, ?)",
                    (role_id, permission_id),
                )

        logger.info(
            "role_permissions_synced",
            role_id=role_id,
            attached=len(to_attach),
            detached=len(to_detach),
        )
        return len(to_attach), len(to_detach)

    async def attach_role_permissions(self, role_id: int, permission_ids: Iterable[int]) -> int:
        """Add permissions to a role, keeping existing ones."""
        added = 0
        async with self._write() as conn:
            for permission_id in permission_ids:
                cursor = await conn.execute(
                    "INSERT OR IGNORE INTO role_permissions (role_id, permission_id) VALUES (?, ?)",
                    (role_id, permission_id),
                )
                added += cursor.rowcount
        return added

    # ==================== Permissions ====================

    async def list_permissions(
        self,
        group: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[PermissionRecord]:
        """Permissions ordered by group and slug, with role counts."""
        conditions: List[str] = []
        params: List[Any] = []
        if group is not None:
            conditions.append('p."group" = ?')
            params.append(group)
        if search:
            conditions.append("(p.slug LIKE ? OR p.display_name LIKE ?)")
            params.extend([f"%{search}%", f"%{search}%"])

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        cursor = await self._conn.execute(
            f"""
            SELECT p.*, COUNT(rp.role_id) AS roles_count
            FROM permissions p
            LEFT JOIN role_permissions rp ON rp.permission_id = p.id
            {where}
            GROUP BY p.id
            ORDER BY p."group", p.slug
            """,
            params,
        )
        rows = await cursor.fetchall()
        return [PermissionRecord(**dict(row)) for row in rows]

    async def list_permission_groups(self) -> List[str]:
        cursor = await self._conn.execute(
            'SELECT DISTINCT "group" FROM permissions WHERE "group" IS NOT NULL ORDER BY "group"'
        )
        return [row[0] for row in await cursor.fetchall()]

    async def get_permission(self, permission_id: int) -> PermissionRecord:
        """
        Get a permission by id.

        Raises:
            RecordNotFoundError: If the permission does not exist
        """
        cursor = await self._conn.execute(
            "SELECT * FROM permissions WHERE id = ?", (permission_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            raise RecordNotFoundError(
                f"Permission not found: {permission_id}",
                resource="permission",
                record_id=permission_id,
            )
        return PermissionRecord(**dict(row))

    async def get_permission_by_slug(self, slug: str) -> Optional[PermissionRecord]:
        cursor = await self._conn.execute("SELECT * FROM permissions WHERE slug = ?", (slug,))
        row = await cursor.fetchone()
        return PermissionRecord(**dict(row)) if row else None

    async def get_permission_roles(self, permission_id: int) -> List[RoleRecord]:
        cursor = await self._conn.execute(
            """
            SELECT r.* FROM roles r
            JOIN role_permissions rp ON rp.role_id = r.id
            WHERE rp.permission_id = ?
            ORDER BY r.level DESC
            """,
            (permission_id,),
        )
        return [self._row_to_role(row) for row in await cursor.fetchall()]

    async def create_permission(
        self,
        slug: str,
        display_name: str,
        group: Optional[str] = None,
        description: Optional[str] = None,
    ) -> PermissionRecord:
        """
        Create a permission.

        Raises:
            DuplicateRecordError: If the slug is taken
        """
        now = _now()
        try:
            cursor = await self._execute_write(
                """
                INSERT INTO permissions (slug, display_name, "group", description, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (slug, display_name, group, description, now, now),
            )
        except aiosqlite.IntegrityError as e:
            if "UNIQUE" not in str(e):
                raise QueryError(f"Constraint violation: {e}") from e
            raise DuplicateRecordError(
                f"Permission already exists: {slug}",
                table="permissions",
                key="slug",
                value=slug,
            ) from e
        logger.info("permission_created", permission_id=cursor.lastrowid, slug=slug)
        return await self.get_permission(cursor.lastrowid)

    async def upsert_permission(
        self,
        slug: str,
        display_name: str,
        group: Optional[str] = None,
        description: Optional[str] = None,
        overwrite: bool = False,
    ) -> Tuple[PermissionRecord, bool]:
        """
        Create a permission if missing; with ``overwrite`` refresh its fields.

        Returns:
            ``(permission, created)``
        """
        existing = await self.get_permission_by_slug(slug)
        if existing is None:
            return await self.create_permission(slug, display_name, group, description), True
        if overwrite:
            existing = await self.update_permission(
                existing.id, display_name=display_name, group=group, description=description
            )
        return existing, False

    async def update_permission(self, permission_id: int, **updates: Any) -> PermissionRecord:
        """Update display name, group or description; the slug is immutable."""
        await self.get_permission(permission_id)
        fields = {k: v for k, v in updates.items() if k in PERMISSION_FIELDS}
        if fields:
            fields["updated_at"] = _now()
            set_clause = ", ".join(f'"{key}" = ?' for key in fields)
            await self._execute_write(
                f"UPDATE permissions SET {set_clause} WHERE id = ?",
                [*fields.values(), permission_id],
            )
        return await self.get_permission(permission_id)

    async def delete_permission(self, permission_id: int) -> PermissionRecord:
        """Delete a permission; role and team links cascade."""
        permission = await self.get_permission(permission_id)
        await self._execute_write("DELETE FROM permissions WHERE id = ?", (permission_id,))
        logger.info("permission_deleted", permission_id=permission_id, slug=permission.slug)
        return permission

    async def resolve_permission_ids(self, refs: Iterable[Union[int, str]]) -> List[int]:
        """
        Turn a mix of permission ids and slugs into ids.

        Numeric references are taken as ids; unknown slugs are dropped.
        """
        ids: List[int] = []
        slugs: List[str] = []
        for ref in refs:
            if isinstance(ref, int):
                ids.append(ref)
            elif str(ref).isdigit():
                ids.append(int(ref))
            else:
                slugs.append(str(ref))

        if slugs:
            cursor = await self._conn.execute(
                f"SELECT id FROM permissions WHERE slug IN ({_placeholders(slugs)})",
                slugs,
            )
            ids.extend(row[0] for row in await cursor.fetchall())

        seen = set()
        unique: List[int] = []
        for permission_id in ids:
            if permission_id not in seen:
                seen.add(permission_id)
                unique.append(permission_id)
        return unique

    async def permission_matrix(self) -> Dict[str, Any]:
        """Roles, permissions grouped by group, and role slug to permission slugs."""
        roles = await self.list_roles()
        permissions = await self.list_permissions()
        role_slugs = await self.get_all_role_permission_slugs()

        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for permission in permissions:
            grouped.setdefault(permission.group or "", []).append(
                {
                    "id": permission.id,
                    "slug": permission.slug,
                    "display_name": permission.display_name,
                }
            )

        return {
            "roles": [
                {"id": r.id, "slug": r.slug, "display_name": r.display_name, "level": r.level}
                for r in roles
            ],
            "permissions": grouped,
            "matrix": {r.slug: role_slugs.get(r.slug, []) for r in roles},
        }

    # ==================== Team permissions ====================

    def _row_to_team_permission(self, row: aiosqlite.Row) -> TeamPermissionRecord:
        return TeamPermissionRecord(**dict(row))

    _TEAM_PERMISSION_SELECT = """
        SELECT tp.id, tp.console_team_id, tp.console_org_id, tp.permission_id,
               tp.deleted_at, p.slug AS permission_slug,
               p.display_name AS permission_display_name
        FROM team_permissions tp
        JOIN permissions p ON p.id = tp.permission_id
    """

    async def get_team_permission_slugs(self, team_ids: Sequence[int], org_id: int) -> List[str]:
        """Distinct active permission slugs of any of ``team_ids`` in ``org_id``."""
        if not team_ids:
            return []
        ids = list(team_ids)
        cursor = await self._conn.execute(
            f"""
            SELECT DISTINCT p.slug FROM team_permissions tp
            JOIN permissions p ON p.id = tp.permission_id
            WHERE tp.console_org_id = ?
              AND tp.console_team_id IN ({_placeholders(ids)})
              AND tp.deleted_at IS NULL
            ORDER BY p.slug
            """,
            [org_id, *ids],
        )
        return [row[0] for row in await cursor.fetchall()]

    async def list_team_permissions(
        self,
        org_id: int,
        team_ids: Optional[Sequence[int]] = None,
        include_deleted: bool = False,
    ) -> List[TeamPermissionRecord]:
        """Team permission rows of an org, optionally restricted to some teams."""
        conditions = ["tp.console_org_id = ?"]
        params: List[Any] = [org_id]
        if team_ids is not None:
            if not team_ids:
                return []
            ids = list(team_ids)
            conditions.append(f"tp.console_team_id IN ({_placeholders(ids)})")
            params.extend(ids)
        if not include_deleted:
            conditions.append("tp.deleted_at IS NULL")

        cursor = await self._conn.execute(
            f"{self._TEAM_PERMISSION_SELECT} WHERE {' AND '.join(conditions)} "
            "ORDER BY tp.console_team_id, p.slug",
            params,
        )
        return [self._row_to_team_permission(row) for row in await cursor.fetchall()]

    async def sync_team_permissions(
        self, team_id: int, org_id: int, permission_ids: Iterable[int]
    ) -> Tuple[int, int]:
        """
        Diff-sync a team's permissions.

        Removed rows are soft-deleted; re-added rows are restored rather than
        duplicated.

        Returns:
            ``(attached, detached)`` counts
        """
        wanted = set(permission_ids)
        now = _now()

        async with self._write() as conn:
            cursor = await conn.execute(
                """
                SELECT permission_id FROM team_permissions
                WHERE console_team_id = ? AND console_org_id = ? AND deleted_at IS NULL
                """,
                (team_id, org_id),
            )
            current = {row[0] for row in await cursor.fetchall()}
            to_attach = wanted - current
            to_detach = current - wanted

            if to_detach:
                ids = sorted(to_detach)
                await conn.execute(
                    f"""
                    UPDATE team_permissions SET deleted_at = ?, updated_at = ?
                    WHERE console_team_id = ? AND console_org_id = ?
                      AND permission_id IN ({_placeholders(ids)})
                    """,
                    [now, now, team_id, org_id, *ids],
                )
            for permission_id in sorted(to_attach):
                await conn.execute(
                    """
                    INSERT INTO team_permissions
                        (console_team_id, console_org_id, permission_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT (console_team_id, console_org_id, permission_id)
                    DO UPDATE SET deleted_at = NULL, updated_at = excluded.updated_at
                    """,
                    (team_id, org_id, permission_id, now, now),
                )

        logger.info(
            "team_permissions_synced",
            team_id=team_id,
            org_id=org_id,
            attached=len(to_attach),
            detached=len(to_detach),
        )
        return len(to_attach), len(to_detach)

    async def soft_delete_team_permissions(self, team_id: int, org_id: int) -> int:
        """Soft delete every active permission of a team."""
        now = _now()
        cursor = await self._execute_write(
            """
            UPDATE team_permissions SET deleted_at = ?, updated_at = ?
            WHERE console_team_id = ? AND console_org_id = ? AND deleted_at IS NULL
            """,
            (now, now, team_id, org_id),
        )
        return cursor.rowcount

    async def list_orphaned_team_permissions(
        self, org_id: int, active_team_ids: Sequence[int]
    ) -> List[TeamPermissionRecord]:
        """Rows whose team is not in ``active_team_ids`` or that are already soft-deleted."""
        params: List[Any] = [org_id]
        team_clause = ""
        if active_team_ids:
            ids = list(active_team_ids)
            team_clause = f"tp.console_team_id NOT IN ({_placeholders(ids)}) OR "
            params.extend(ids)
        else:
            team_clause = "1 = 1 OR "

        cursor = await self._conn.execute(
            f"{self._TEAM_PERMISSION_SELECT} "
            f"WHERE tp.console_org_id = ? AND ({team_clause}tp.deleted_at IS NOT NULL) "
            "ORDER BY tp.console_team_id, p.slug",
            params,
        )
        return [self._row_to_team_permission(row) for row in await cursor.fetchall()]

    async def soft_delete_missing_teams(self, org_id: int, active_team_ids: Sequence[int]) -> int:
        """Soft delete active rows of teams that are no longer in ``active_team_ids``."""
        if not active_team_ids:
            return 0
        ids = list(active_team_ids)
        now = _now()
        cursor = await self._execute_write(
            f"""
            UPDATE team_permissions SET deleted_at = ?, updated_at = ?
            WHERE console_org_id = ? AND deleted_at IS NULL
              AND console_team_id NOT IN ({_placeholders(ids)})
            """,
            [now, now, org_id, *ids],
        )
        return cursor.rowcount

    async def restore_team_permissions(self, team_id: int, org_id: int) -> int:
        """Clear the soft delete of a team's rows."""
        cursor = await self._execute_write(
            """
            UPDATE team_permissions SET deleted_at = NULL, updated_at = ?
            WHERE console_team_id = ? AND console_org_id = ? AND deleted_at IS NOT NULL
            """,
            (_now(), team_id, org_id),
        )
        return cursor.rowcount

    async def hard_delete_orphaned_team_permissions(
        self,
        org_id: Optional[int] = None,
        console_team_id: Optional[int] = None,
        older_than_days: Optional[int] = None,
    ) -> int:
        """
        Permanently delete soft-deleted team permission rows.

        Args:
            org_id: Restrict to one organization
            console_team_id: Restrict to one team
            older_than_days: Only rows soft-deleted more than N days ago
        """
        conditions = ["deleted_at IS NOT NULL"]
        params: List[Any] = []
        if org_id is not None:
            conditions.append("console_org_id = ?")
            params.append(org_id)
        if console_team_id is not None:
            conditions.append("console_team_id = ?")
            params.append(console_team_id)
        if older_than_days is not None:
            cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
            conditions.append("deleted_at < ?")
            params.append(cutoff.isoformat())

        cursor = await self._execute_write(
            f"DELETE FROM team_permissions WHERE {' AND '.join(conditions)}", params
        )
        logger.info(
            "team_permissions_hard_deleted",
            org_id=org_id,
            console_team_id=console_team_id,
            older_than_days=older_than_days,
            count=cursor.rowcount,
        )
        return cursor.rowcount

    async def team_permission_stats(self) -> List[Dict[str, int]]:
        """Active and soft-deleted row counts per organization."""
        cursor = await self._conn.execute(
            """
            SELECT console_org_id,
                   SUM(CASE WHEN deleted_at IS NULL THEN 1 ELSE 0 END) AS active,
                   SUM(CASE WHEN deleted_at IS NOT NULL THEN 1 ELSE 0 END) AS orphaned
            FROM team_permissions
            GROUP BY console_org_id
            ORDER BY console_org_id
            """
        )
        return [dict(row) for row in await cursor.fetchall()]

    # ==================== Personal access tokens ====================

    async def create_api_token(self, user_id: int, name: str, token_hash: str) -> ApiTokenRecord:
        cursor = await self._execute_write(
            """
            INSERT INTO personal_access_tokens (user_id, name, token_hash, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (user_id, name, token_hash, _now()),
        )
        return await self.get_api_token(cursor.lastrowid)

    async def get_api_token(self, token_id: int) -> ApiTokenRecord:
        cursor = await self._conn.execute(
            "SELECT id, user_id, name, last_used_at, created_at "
            "FROM personal_access_tokens WHERE id = ?",
            (token_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            raise RecordNotFoundError(
                f"Token not found: {token_id}", resource="token", record_id=token_id
            )
        return ApiTokenRecord(**dict(row))

    async def get_api_token_hash(self, token_id: int) -> Optional[Tuple[int, str]]:
        """``(user_id, token_hash)`` of a token, or None."""
        cursor = await self._conn.execute(
            "SELECT user_id, token_hash FROM personal_access_tokens WHERE id = ?",
            (token_id,),
        )
        row = await cursor.fetchone()
        return (row[0], row[1]) if row else None

    async def touch_api_token(self, token_id: int) -> None:
        await self._execute_write(
            "UPDATE personal_access_tokens SET last_used_at = ? WHERE id = ?",
            (_now(), token_id),
        )

    async def list_api_tokens(self, user_id: int) -> List[ApiTokenRecord]:
        cursor = await self._conn.execute(
            """
            SELECT id, user_id, name, last_used_at, created_at
            FROM personal_access_tokens
            WHERE user_id = ?
            ORDER BY last_used_at IS NULL, last_used_at DESC, id DESC
            """,
            (user_id,),
        )
        return [ApiTokenRecord(**dict(row)) for row in await cursor.fetchall()]

    async def delete_api_token(self, user_id: int, token_id: int) -> bool:
        """Delete one of a user's tokens; False when it is not theirs or missing."""
        cursor = await self._execute_write(
            "DELETE FROM personal_access_tokens WHERE id = ? AND user_id = ?",
            (token_id, user_id),
        )
        return cursor.rowcount > 0

    async def delete_other_api_tokens(self, user_id: int, keep_token_id: Optional[int]) -> int:
        if keep_token_id is None:
            cursor = await self._execute_write(
                "DELETE FROM personal_access_tokens WHERE user_id = ?", (user_id,)
            )
        else:
            cursor = await self._execute_write(
                "DELETE FROM personal_access_tokens WHERE user_id = ? AND id != ?",
                (user_id, keep_token_id),
            )
        return cursor.rowcount

    # ==================== Revoked sessions ====================

    async def revoke_session(
        self, jti: str, user_id: Optional[int], expires_at: Optional[datetime]
    ) -> None:
        await self._execute_write(
            """
            INSERT OR IGNORE INTO revoked_sessions (jti, user_id, expires_at, revoked_at)
            VALUES (?, ?, ?, ?)
            """,
            (jti, user_id, expires_at.isoformat() if expires_at else None, _now()),
        )

    async def is_session_revoked(self, jti: str) -> bool:
        cursor = await self._conn.execute(
            "SELECT 1 FROM revoked_sessions WHERE jti = ?", (jti,)
        )
        return await cursor.fetchone() is not None

    async def purge_expired_revocations(self) -> int:
        """Drop denylist rows whose session would have expired anyway."""
        cursor = await self._execute_write(
            "DELETE FROM revoked_sessions WHERE expires_at IS NOT NULL AND expires_at < ?",
            (_now(),),
        )
        return cursor.rowcount
