"""Unit tests for the maintenance CLI commands."""

from datetime import datetime, timedelta, timezone

import pytest

import sso_client
from sso_client.cli import maintenance
from sso_client.common.cache import reset_cache_store


@pytest.fixture
def configured(monkeypatch, sso_config, repository):
    """Point the package-level state at the test config and repository."""
    monkeypatch.setattr(sso_client, "_config", sso_config)
    monkeypatch.setattr(sso_client, "_repository", repository)
    reset_cache_store()
    yield repository
    reset_cache_store()


class TestSeedRoles:
    async def test_creates_system_roles(self, configured, capsys):
        await maintenance.seed_roles()

        roles = {r.slug: r for r in await configured.list_roles()}
        assert set(roles) == {"admin", "manager", "member"}
        assert roles["admin"].level == 100

        admin = await configured.get_role_permission_slugs("admin")
        manager = await configured.get_role_permission_slugs("manager")
        member = await configured.get_role_permission_slugs("member")
        assert len(admin) == len(maintenance.BASE_PERMISSIONS)
        assert not set(manager) & maintenance.MANAGER_EXCLUDED
        assert all(slug.endswith(".view") for slug in member)
        assert "Seeded 3 roles" in capsys.readouterr().out

    async def test_idempotent(self, configured):
        await maintenance.seed_roles()
        await maintenance.seed_roles()

        assert len(await configured.list_roles()) == 3
        assert len(await configured.list_permissions()) == len(maintenance.BASE_PERMISSIONS)


class TestSyncPermissions:
    async def test_creates_then_skips(self, configured, capsys):
        await maintenance.sync_permissions()
        first = capsys.readouterr().out
        await maintenance.sync_permissions()
        second = capsys.readouterr().out

        total = len(maintenance.SERVICE_ADMIN_PERMISSIONS)
        assert f"{total} created, 0 updated, 0 skipped" in first
        assert f"0 created, 0 updated, {total} skipped" in second

    async def test_role_assignments(self, configured):
        await maintenance.sync_permissions()

        admin = await configured.get_role_permission_slugs("admin")
        manager = await configured.get_role_permission_slugs("manager")
        member = await configured.get_role_permission_slugs("member")

        assert len(admin) == len(maintenance.SERVICE_ADMIN_PERMISSIONS)
        assert sorted(manager) == sorted(maintenance.SERVICE_ADMIN_ROLE_PERMISSIONS["manager"])
        assert member == []

    async def test_groups_derived_from_slug(self, configured):
        await maintenance.sync_permissions()
        permission = await configured.get_permission_by_slug("service-admin.team.cleanup")
        assert permission.group == "service-admin.team"

    async def test_force_rewrites(self, configured, capsys):
        await maintenance.sync_permissions()
        permission = await configured.get_permission_by_slug("service-admin.role.view")
        await configured.update_permission(permission.id, display_name="Renamed")

        await maintenance.sync_permissions(force=True)

        assert (await configured.get_permission(permission.id)).display_name == "View Roles"
        assert "0 created" in capsys.readouterr().out


class TestCleanupOrphans:
    async def _orphan(self, repository, days_ago: int):
        permission = await repository.create_permission("logs.view", "View logs")
        await repository.sync_team_permissions(10, 1, [permission.id])
        await repository.soft_delete_team_permissions(10, 1)
        stamp = (datetime.now(timezone.utc) - timedelta(days=days_ago)).isoformat()
        await repository._conn.execute("UPDATE team_permissions SET deleted_at = ?", (stamp,))

    async def test_report(self, configured, capsys):
        await self._orphan(configured, 40)

        assert await maintenance.cleanup_orphans()
        out = capsys.readouterr().out
        assert "Orphaned" in out
        assert len(await configured.list_team_permissions(1, include_deleted=True)) == 1

    async def test_report_empty(self, configured, capsys):
        assert await maintenance.cleanup_orphans()
        assert "No team permissions found." in capsys.readouterr().out

    async def test_force_with_confirmation(self, configured, monkeypatch):
        await self._orphan(configured, 40)
        monkeypatch.setattr("builtins.input", lambda prompt: "y")

        assert await maintenance.cleanup_orphans(force=True, older_than=30)
        assert await configured.list_team_permissions(1, include_deleted=True) == []

    async def test_force_aborted(self, configured, monkeypatch):
        await self._orphan(configured, 40)
        monkeypatch.setattr("builtins.input", lambda prompt: "n")

        assert await maintenance.cleanup_orphans(force=True) is False
        assert len(await configured.list_team_permissions(1, include_deleted=True)) == 1

    async def test_recent_orphans_kept(self, configured):
        await self._orphan(configured, 5)

        await maintenance.cleanup_orphans(force=True, older_than=30, assume_yes=True)
        assert len(await configured.list_team_permissions(1, include_deleted=True)) == 1


async def test_warm_cache(configured):
    await maintenance.seed_roles()
    assert await maintenance.warm_cache() == 3


class TestParser:
    def test_cleanup_arguments(self):
        args = maintenance.build_parser().parse_args(
            ["-c", "sso.yaml", "cleanup-orphans", "--force", "--older-than", "60", "-y"]
        )
        assert args.command == "cleanup-orphans"
        assert args.force and args.yes
        assert args.older_than == 60
        assert str(args.config) == "sso.yaml"

    def test_no_command_exits(self):
        with pytest.raises(SystemExit) as exc_info:
            maintenance.main([])
        assert exc_info.value.code == 1

    def test_older_than_must_be_positive(self):
        with pytest.raises(SystemExit) as exc_info:
            maintenance.main(["cleanup-orphans", "--older-than", "0"])
        assert exc_info.value.code == 2
