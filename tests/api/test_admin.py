"""Tests for the organization-scoped SSO admin API."""

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

from sso_client.core.models import Team
from sso_client.web.dependencies import require_permission

ACME = {"X-Org-Id": "acme"}


@pytest.fixture
def permission_ids(admin_client: TestClient) -> dict:
    """Create three permissions through the API; returns slug -> id."""
    ids = {}
    for slug in ("reports.view", "reports.export", "reports.delete"):
        response = admin_client.post(
            "/api/admin/sso/permissions",
            json={"slug": slug, "display_name": slug.title(), "group": "reports"},
            headers=ACME,
        )
        assert response.status_code == 201
        ids[slug] = response.json()["data"]["id"]
    return ids


class TestOrganizationGuards:
    """Authentication, organization and role checks in front of every admin route."""

    def test_requires_authentication(self, test_app: TestClient) -> None:
        response = test_app.get("/api/admin/sso/roles", headers=ACME)
        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHENTICATED"

    def test_missing_organization(self, admin_client: TestClient) -> None:
        response = admin_client.get("/api/admin/sso/roles")
        assert response.status_code == 400
        assert response.json()["error"] == "MISSING_ORGANIZATION"

    def test_access_denied(self, admin_client: TestClient) -> None:
        response = admin_client.get("/api/admin/sso/roles", headers={"X-Org-Id": "globex"})
        assert response.status_code == 403
        assert response.json()["error"] == "ACCESS_DENIED"

    def test_no_service_role(self, test_app: TestClient, login, fake_console, acme_grant) -> None:
        fake_console.access["acme"] = acme_grant.model_copy(update={"service_role": None})
        login()

        response = test_app.get("/api/admin/sso/roles", headers=ACME)

        assert response.status_code == 403
        assert response.json()["error"] == "NO_SERVICE_ROLE"

    def test_insufficient_role(self, test_app: TestClient, login, fake_console, acme_grant) -> None:
        fake_console.access["acme"] = acme_grant.model_copy(update={"service_role": "manager"})
        login()

        response = test_app.get("/api/admin/sso/roles", headers=ACME)

        assert response.status_code == 403
        assert response.json() == {
            "error": "INSUFFICIENT_ROLE",
            "message": "Role 'admin' or higher is required",
            "required_role": "admin",
            "current_role": "manager",
        }

    def test_access_check_cached(self, admin_client: TestClient, fake_console) -> None:
        admin_client.get("/api/admin/sso/roles", headers=ACME)
        admin_client.get("/api/admin/sso/roles", headers=ACME)
        assert fake_console.calls["get_access"] == 1


class TestRoles:
    """Tests for role CRUD."""

    def test_create_and_list(self, admin_client: TestClient) -> None:
        response = admin_client.post(
            "/api/admin/sso/roles",
            json={"slug": "auditor", "display_name": "Auditor", "level": 20},
            headers=ACME,
        )

        assert response.status_code == 201
        assert response.json()["message"] == "Role created successfully"

        roles = admin_client.get("/api/admin/sso/roles", headers=ACME).json()["data"]
        assert [r["slug"] for r in roles] == ["auditor"]

    def test_duplicate_slug(self, admin_client: TestClient) -> None:
        body = {"slug": "auditor", "display_name": "Auditor", "level": 20}
        admin_client.post("/api/admin/sso/roles", json=body, headers=ACME)

        response = admin_client.post("/api/admin/sso/roles", json=body, headers=ACME)

        assert response.status_code == 409
        assert response.json()["error"] == "DUPLICATE_RECORD"

    def test_invalid_level(self, admin_client: TestClient) -> None:
        response = admin_client.post(
            "/api/admin/sso/roles",
            json={"slug": "auditor", "display_name": "Auditor", "level": 101},
            headers=ACME,
        )
        assert response.status_code == 422

    def test_update_ignores_slug(self, admin_client: TestClient) -> None:
        role_id = admin_client.post(
            "/api/admin/sso/roles",
            json={"slug": "auditor", "display_name": "Auditor", "level": 20},
            headers=ACME,
        ).json()["data"]["id"]

        response = admin_client.put(
            f"/api/admin/sso/roles/{role_id}",
            json={"slug": "renamed", "display_name": "Auditors"},
            headers=ACME,
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["slug"] == "auditor"
        assert data["display_name"] == "Auditors"
        assert data["level"] == 20

    def test_delete_system_role(self, admin_client: TestClient, services, run) -> None:
        role = run(services.repository.create_role, "admin", "Administrator", 100)

        response = admin_client.delete(f"/api/admin/sso/roles/{role.id}", headers=ACME)

        assert response.status_code == 422
        assert response.json()["error"] == "CANNOT_DELETE_SYSTEM_ROLE"

    def test_delete_custom_role(self, admin_client: TestClient, services, run) -> None:
        role = run(services.repository.create_role, "auditor", "Auditor", 20)

        assert admin_client.delete(f"/api/admin/sso/roles/{role.id}", headers=ACME).status_code == 204
        assert admin_client.get(f"/api/admin/sso/roles/{role.id}", headers=ACME).status_code == 404

    def test_sync_permissions_clears_cache(
        self, admin_client: TestClient, services, run, permission_ids
    ) -> None:
        role = run(services.repository.create_role, "auditor", "Auditor", 20)
        assert run(services.role_permissions.get, "auditor") == []

        response = admin_client.put(
            f"/api/admin/sso/roles/{role.id}/permissions",
            json={"permissions": ["reports.view", permission_ids["reports.export"], "ghost"]},
            headers=ACME,
        )

        assert response.status_code == 200
        assert response.json() == {
            "message": "Permissions synced successfully",
            "attached": 2,
            "detached": 0,
        }
        assert run(services.role_permissions.get, "auditor") == ["reports.export", "reports.view"]

        listed = admin_client.get(f"/api/admin/sso/roles/{role.id}/permissions", headers=ACME).json()
        assert listed["role"]["slug"] == "auditor"
        assert len(listed["permissions"]) == 2


class TestPermissions:
    def test_list_and_filter(self, admin_client: TestClient, permission_ids) -> None:
        response = admin_client.get(
            "/api/admin/sso/permissions", params={"search": "export"}, headers=ACME
        )

        assert response.status_code == 200
        assert [p["slug"] for p in response.json()["data"]] == ["reports.export"]

    def test_delete_drops_from_roles(self, admin_client: TestClient, services, run, permission_ids) -> None:
        role = run(services.repository.create_role, "auditor", "Auditor", 20)
        run(services.repository.sync_role_permissions, role.id, [permission_ids["reports.view"]])
        assert run(services.role_permissions.get, "auditor") == ["reports.view"]

        response = admin_client.delete(
            f"/api/admin/sso/permissions/{permission_ids['reports.view']}", headers=ACME
        )

        assert response.status_code == 204
        assert run(services.role_permissions.get, "auditor") == []

    def test_matrix(self, admin_client: TestClient, services, run, permission_ids) -> None:
        role = run(services.repository.create_role, "auditor", "Auditor", 20)
        run(services.repository.sync_role_permissions, role.id, [permission_ids["reports.view"]])

        matrix = admin_client.get("/api/admin/sso/permission-matrix", headers=ACME).json()

        assert matrix["matrix"] == {"auditor": ["reports.view"]}


class TestTeamPermissions:
    """Team permission sync, listing and orphan handling."""

    def test_sync_and_get(self, admin_client: TestClient, permission_ids) -> None:
        response = admin_client.put(
            "/api/admin/sso/teams/10/permissions",
            json={"permissions": ["reports.view", "reports.export"]},
            headers=ACME,
        )

        assert response.status_code == 200
        assert response.json() == {
            "message": "Team permissions synced",
            "attached": 2,
            "detached": 0,
            "console_team_id": 10,
        }

        data = admin_client.get("/api/admin/sso/teams/10/permissions", headers=ACME).json()
        assert sorted(p["slug"] for p in data["permissions"]) == ["reports.export", "reports.view"]

    def test_sync_clears_cached_team_permissions(
        self, admin_client: TestClient, services, run, permission_ids
    ) -> None:
        admin_client.put(
            "/api/admin/sso/teams/10/permissions", json={"permissions": ["reports.view"]}, headers=ACME
        )
        assert run(services.team_permissions.get_for_teams, [10, 11], 1) == ["reports.view"]

        admin_client.put(
            "/api/admin/sso/teams/10/permissions", json={"permissions": ["reports.delete"]}, headers=ACME
        )

        assert run(services.team_permissions.get_for_teams, [10, 11], 1) == ["reports.delete"]

    def test_list_user_teams(self, admin_client: TestClient, fake_console, permission_ids) -> None:
        fake_console.teams["acme"] = [Team(id=10, name="Ops", path="/ops"), Team(id=11, name="Dev")]
        admin_client.put(
            "/api/admin/sso/teams/10/permissions", json={"permissions": ["reports.view"]}, headers=ACME
        )

        teams = admin_client.get("/api/admin/sso/teams/permissions", headers=ACME).json()["teams"]

        assert [(t["console_team_id"], len(t["permissions"])) for t in teams] == [(10, 1), (11, 0)]

    def test_orphans_soft_deleted_and_restored(
        self, admin_client: TestClient, fake_console, permission_ids
    ) -> None:
        for team_id in (10, 11):
            admin_client.put(
                f"/api/admin/sso/teams/{team_id}/permissions",
                json={"permissions": ["reports.view"]},
                headers=ACME,
            )
        fake_console.teams["acme"] = [Team(id=10, name="Ops")]

        orphaned = admin_client.get("/api/admin/sso/teams/orphaned", headers=ACME).json()

        assert [t["console_team_id"] for t in orphaned["orphaned_teams"]] == [11]
        assert orphaned["total_orphaned_permissions"] == 1
        assert admin_client.get("/api/admin/sso/teams/11/permissions", headers=ACME).json()["permissions"] == []

        restored = admin_client.post("/api/admin/sso/teams/orphaned/11/restore", headers=ACME).json()
        assert restored["restored_count"] == 1

    def test_cleanup_orphans(self, admin_client: TestClient, permission_ids) -> None:
        admin_client.put(
            "/api/admin/sso/teams/10/permissions", json={"permissions": ["reports.view"]}, headers=ACME
        )
        assert admin_client.delete("/api/admin/sso/teams/10/permissions", headers=ACME).status_code == 204

        response = admin_client.delete("/api/admin/sso/teams/orphaned", headers=ACME)

        assert response.status_code == 200
        assert response.json()["deleted_count"] == 1

    def test_cleanup_rejects_zero_days(self, admin_client: TestClient) -> None:
        response = admin_client.delete(
            "/api/admin/sso/teams/orphaned", params={"older_than_days": 0}, headers=ACME
        )
        assert response.status_code == 422


class TestCatalog:
    """Read-only catalogue for any authenticated user."""

    def test_requires_auth(self, test_app: TestClient) -> None:
        assert test_app.get("/api/sso/roles").status_code == 401

    def test_lists_roles_without_organization(self, test_app: TestClient, login, services, run) -> None:
        run(services.repository.create_role, "auditor", "Auditor", 20)
        login()

        response = test_app.get("/api/sso/roles")

        assert response.status_code == 200
        assert [r["slug"] for r in response.json()["data"]] == ["auditor"]


class TestRequirePermission:
    """The ``require_permission`` dependency on a host application route."""

    @pytest.fixture
    def reports_route(self, admin_client: TestClient) -> TestClient:
        @admin_client.app.get(
            "/reports",
            dependencies=[Depends(require_permission("reports.view|reports.export"))],
        )
        async def reports() -> dict:
            return {"ok": True}

        return admin_client

    def test_denied_without_permission(self, reports_route: TestClient) -> None:
        response = reports_route.get("/reports", headers=ACME)

        assert response.status_code == 403
        assert response.json()["error"] == "PERMISSION_DENIED"
        assert response.json()["required_permissions"] == ["reports.view", "reports.export"]

    def test_granted_by_role(self, reports_route: TestClient, services, run, permission_ids) -> None:
        role = run(services.repository.create_role, "admin", "Administrator", 100)
        run(services.repository.sync_role_permissions, role.id, [permission_ids["reports.export"]])

        assert reports_route.get("/reports", headers=ACME).json() == {"ok": True}

    def test_granted_by_team(
        self, reports_route: TestClient, fake_console, permission_ids
    ) -> None:
        fake_console.teams["acme"] = [Team(id=10, name="Ops")]
        reports_route.put(
            "/api/admin/sso/teams/10/permissions", json={"permissions": ["reports.view"]}, headers=ACME
        )

        assert reports_route.get("/reports", headers=ACME).status_code == 200
