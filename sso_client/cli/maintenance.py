"""CLI commands for roles, permissions, orphaned team permissions and caches."""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_ROLES: List[Dict[str, object]] = [
    {
        "slug": "admin",
        "display_name": "Administrator",
        "level": 100,
        "description": "Full access to all features",
    },
    {
        "slug": "manager",
        "display_name": "Manager",
        "level": 50,
        "description": "Can manage most features except system settings",
    },
    {
        "slug": "member",
        "display_name": "Member",
        "level": 10,
        "description": "Basic access for regular users",
    },
]

BASE_PERMISSIONS = [
    ("users.view", "View Users", "users"),
    ("users.create", "Create Users", "users"),
    ("users.update", "Update Users", "users"),
    ("users.delete", "Delete Users", "users"),
    ("roles.view", "View Roles", "roles"),
    ("roles.manage", "Manage Roles", "roles"),
    ("settings.view", "View Settings", "settings"),
    ("settings.update", "Update Settings", "settings"),
]

MANAGER_EXCLUDED = {"users.delete", "roles.manage", "settings.update"}

# (slug, display name, description); the group is the slug without its action
SERVICE_ADMIN_PERMISSIONS = [
    ("service-admin.role.view", "View Roles", "View roles list and details"),
    ("service-admin.role.create", "Create Roles", "Create new roles"),
    ("service-admin.role.edit", "Edit Roles", "Edit existing roles"),
    ("service-admin.role.delete", "Delete Roles", "Delete roles (except system roles)"),
    ("service-admin.role.sync-permissions", "Sync Role Permissions", "Assign/remove permissions to roles"),
    ("service-admin.permission.view", "View Permissions", "View permissions list and details"),
    ("service-admin.permission.create", "Create Permissions", "Create new permissions"),
    ("service-admin.permission.edit", "Edit Permissions", "Edit existing permissions"),
    ("service-admin.permission.delete", "Delete Permissions", "Delete permissions"),
    ("service-admin.permission.matrix", "View Permission Matrix", "View role-permission matrix"),
    ("service-admin.team.view", "View Team Permissions", "View team permissions"),
    ("service-admin.team.edit", "Edit Team Permissions", "Assign/remove permissions to teams"),
    ("service-admin.team.delete", "Delete Team Permissions", "Remove all permissions from a team"),
    ("service-admin.team.cleanup", "Cleanup Orphaned Teams", "View and cleanup orphaned team permissions"),
    ("service-admin.user.view", "View Users", "View users list and details"),
    ("service-admin.user.create", "Create Users", "Create new users"),
    ("service-admin.user.edit", "Edit Users", "Edit existing users"),
    ("service-admin.user.delete", "Delete Users", "Delete users"),
    ("service-admin.user.assign-role", "Assign User Roles", "Assign roles to users"),
]

SERVICE_ADMIN_ROLE_PERMISSIONS: Dict[str, Optional[List[str]]] = {
    "admin": None,  # all
    "manager": [
        "service-admin.role.view",
        "service-admin.permission.view",
        "service-admin.permission.matrix",
        "service-admin.team.view",
        "service-admin.team.edit",
        "service-admin.user.view",
        "service-admin.user.edit",
        "service-admin.user.assign-role",
    ],
    "member": [],
}


async def _ensure_role(repo, data: Dict[str, object]):
    role = await repo.get_role_by_slug(data["slug"])
    if role is None:
        return await repo.create_role(
            data["slug"], data["display_name"], data["level"], data["description"]
        )
    return await repo.update_role(
        role.id,
        display_name=data["display_name"],
        level=data["level"],
        description=data["description"],
    )


async def seed_roles() -> None:
    """
    Create the system roles and base permissions.

    Safe to run repeatedly: roles and permissions are matched by slug and
    each role's permissions are synced to the default set.
    """
    import sso_client

    repo = await sso_client.get_repository()

    roles = {}
    async with repo.transaction():
        for data in DEFAULT_ROLES:
            role = await _ensure_role(repo, data)
            roles[role.slug] = role

        for slug, display_name, group in BASE_PERMISSIONS:
            await repo.upsert_permission(slug, display_name, group, overwrite=True)

        permissions = await repo.list_permissions()
        defaults = {
            "admin": [p.id for p in permissions],
            "manager": [p.id for p in permissions if p.slug not in MANAGER_EXCLUDED],
            "member": [p.id for p in permissions if p.slug.endswith(".view")],
        }
        for slug, ids in defaults.items():
            attached, detached = await repo.sync_role_permissions(roles[slug].id, ids)
            print(f"  {slug}: {attached} attached, {detached} detached")

    print(f"Seeded {len(roles)} roles and {len(BASE_PERMISSIONS)} base permissions")
    logger.info("roles_seeded_via_cli", roles=sorted(roles))


async def sync_permissions(force: bool = False) -> None:
    """
    Sync the service-admin permission catalogue and attach it to the default roles.

    Existing permissions are only rewritten with ``force``. Role permissions
    are only ever added.
    """
    import sso_client
    from sso_client.auth import SsoAuditLogger

    config = sso_client.get_config()
    repo = await sso_client.get_repository()

    print("Syncing SSO admin permissions...")
    created = updated = skipped = 0
    for slug, display_name, description in SERVICE_ADMIN_PERMISSIONS:
        group = slug.rsplit(".", 1)[0]
        _, was_created = await repo.upsert_permission(
            slug, display_name, group, description, overwrite=force
        )
        if was_created:
            created += 1
            print(f"  Created: {slug}")
        elif force:
            updated += 1
            print(f"  Updated: {slug}")
        else:
            skipped += 1
    print(f"Permissions: {created} created, {updated} updated, {skipped} skipped")

    print("Syncing default roles...")
    all_slugs = [slug for slug, _, _ in SERVICE_ADMIN_PERMISSIONS]
    for data in DEFAULT_ROLES:
        role = await repo.get_role_by_slug(data["slug"])
        if role is None:
            role = await repo.create_role(
                data["slug"], data["display_name"], data["level"], data["description"]
            )
        wanted = SERVICE_ADMIN_ROLE_PERMISSIONS[role.slug]
        ids = await repo.resolve_permission_ids(all_slugs if wanted is None else wanted)
        added = await repo.attach_role_permissions(role.id, ids)
        if added:
            print(f"  {role.slug}: Added {added} permission(s)")
        else:
            print(f"  {role.slug}: No new permissions to add")

    SsoAuditLogger(enabled=config.audit_logging).permission_sync(created, updated)


async def cleanup_orphans(force: bool = False, older_than: int = 30, assume_yes: bool = False) -> bool:
    """
    Report or permanently delete soft-deleted team permissions.

    Without ``force`` prints active and orphaned row counts per
    organization. With ``force`` hard-deletes rows soft-deleted more than
    ``older_than`` days ago.

    Returns:
        False if the user aborted the deletion
    """
    import sso_client

    repo = await sso_client.get_repository()

    if not force:
        stats = await repo.team_permission_stats()
        if not stats:
            print("No team permissions found.")
            return True

        print(f"{'Org ID':<10} {'Active':<10} {'Orphaned':<10}")
        print("-" * 30)
        for row in stats:
            print(f"{row['console_org_id']:<10} {row['active']:<10} {row['orphaned']:<10}")
        print("Use --force --older-than 30 to permanently delete old orphaned records.")
        return True

    if not assume_yes:
        answer = input(
            f"This will permanently delete records soft-deleted more than {older_than} days ago. "
            "Continue? [y/N] "
        )
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted.")
            return False

    count = await repo.hard_delete_orphaned_team_permissions(older_than_days=older_than)
    print(f"Permanently deleted {count} permissions (soft deleted > {older_than} days)")
    return True


async def warm_cache() -> int:
    """Load every role's permission slugs into the cache."""
    import sso_client
    from sso_client.auth import RolePermissionCache
    from sso_client.common.cache import get_cache_store

    config = sso_client.get_config()
    repo = await sso_client.get_repository()

    cache = RolePermissionCache(
        repo, get_cache_store(config.cache.max_entries), config.cache.role_permissions_ttl
    )
    count = await cache.warm_up()
    print(f"Warmed permission cache for {count} roles")
    return count


async def _run(args: argparse.Namespace) -> bool:
    import sso_client

    await sso_client.configure(config_path=args.config)
    try:
        if args.command == "seed-roles":
            await seed_roles()
        elif args.command == "sync-permissions":
            await sync_permissions(force=args.force)
        elif args.command == "cleanup-orphans":
            return await cleanup_orphans(
                force=args.force, older_than=args.older_than, assume_yes=args.yes
            )
        elif args.command == "warm-cache":
            await warm_cache()
        return True
    finally:
        await sso_client.reset()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sso-client",
        description="SSO client maintenance commands",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=None,
        help="Path to the YAML configuration (default: ./config.yaml if present)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "seed-roles",
        help="Create the admin, manager and member roles",
        description="Create the system roles and base permissions with their default assignments",
    )

    sync_parser = subparsers.add_parser(
        "sync-permissions",
        help="Sync the service-admin permission catalogue",
        description="Create missing service-admin permissions and attach them to the default roles",
    )
    sync_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite display name, group and description of existing permissions",
    )

    cleanup_parser = subparsers.add_parser(
        "cleanup-orphans",
        help="Report or delete orphaned team permissions",
        description="Report soft-deleted team permissions, or permanently delete old ones with --force",
    )
    cleanup_parser.add_argument(
        "--force",
        action="store_true",
        help="Permanently delete instead of reporting",
    )
    cleanup_parser.add_argument(
        "--older-than",
        type=int,
        default=30,
        metavar="DAYS",
        help="Only delete rows soft-deleted more than DAYS days ago (default: 30)",
    )
    cleanup_parser.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Do not ask for confirmation",
    )

    subparsers.add_parser(
        "warm-cache",
        help="Warm the role permission cache",
        description="Load every role's permissions into the cache in one pass",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point for the maintenance CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "cleanup-orphans" and args.older_than < 1:
        parser.error("--older-than must be at least 1")

    success = asyncio.run(_run(args))
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
