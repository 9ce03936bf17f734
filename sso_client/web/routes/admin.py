"""Organization-scoped admin API for roles, permissions and team permissions.

Every route requires authentication, an ``X-Org-Id`` header and the
``admin`` service role. Every mutation drops the cache entries it affects
before returning.
"""

from typing import Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Response, status

from sso_client.auth import SsoServices
from sso_client.core.models import TeamPermissionRecord

from ..dependencies import OrgContext, get_services, require_role
from ..schemas.admin import (
    CleanupResponse,
    OrphanedTeam,
    OrphanedTeamsResponse,
    PermissionCreate,
    PermissionListResponse,
    PermissionMatrixResponse,
    PermissionResponse,
    PermissionUpdate,
    RestoreResponse,
    RoleCreate,
    RoleListResponse,
    RolePermissionsResponse,
    RoleResponse,
    RoleSummary,
    RoleUpdate,
    SyncPermissionsRequest,
    SyncPermissionsResponse,
    TeamListResponse,
    TeamPermissionItem,
    TeamPermissionsResponse,
    TeamSyncResponse,
    TeamWithPermissions,
)
from ..schemas.common import COMMON_ERROR_RESPONSES, ORG_ERROR_RESPONSES

logger = structlog.get_logger(__name__)

require_admin = require_role("admin")

router = APIRouter(tags=["SSO Admin"], dependencies=[Depends(require_admin)], responses=ORG_ERROR_RESPONSES)

NOT_FOUND = {404: COMMON_ERROR_RESPONSES[404]}


def _items(rows: List[TeamPermissionRecord]) -> List[TeamPermissionItem]:
    return [
        TeamPermissionItem(
            id=row.permission_id,
            slug=row.permission_slug,
            display_name=row.permission_display_name,
        )
        for row in rows
    ]


# ==================== Roles ====================


@router.get("/roles", response_model=RoleListResponse, summary="List roles")
async def list_roles(services: SsoServices = Depends(get_services)) -> RoleListResponse:
    return RoleListResponse(data=await services.repository.list_roles())


@router.post(
    "/roles",
    response_model=RoleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create role",
    responses={409: COMMON_ERROR_RESPONSES[409]},
)
async def create_role(
    body: RoleCreate,
    services: SsoServices = Depends(get_services),
) -> RoleResponse:
    role = await services.repository.create_role(
        body.slug, body.display_name, body.level, body.description
    )
    return RoleResponse(data=role, message="Role created successfully")


@router.get("/roles/{role_id}", response_model=RoleResponse, summary="Get role", responses=NOT_FOUND)
async def get_role(role_id: int, services: SsoServices = Depends(get_services)) -> RoleResponse:
    return RoleResponse(data=await services.repository.get_role(role_id, with_permissions=True))


@router.put("/roles/{role_id}", response_model=RoleResponse, summary="Update role", responses=NOT_FOUND)
async def update_role(
    role_id: int,
    body: RoleUpdate,
    services: SsoServices = Depends(get_services),
) -> RoleResponse:
    """Update display name, level or description. The slug cannot change."""
    role = await services.repository.update_role(role_id, **body.model_dump(exclude_unset=True))
    await services.role_permissions.clear(role.slug)
    return RoleResponse(data=role, message="Role updated successfully")


@router.delete(
    "/roles/{role_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete role",
    responses={**NOT_FOUND, 422: COMMON_ERROR_RESPONSES[422]},
)
async def delete_role(role_id: int, services: SsoServices = Depends(get_services)) -> Response:
    """System roles (admin, manager, member) cannot be deleted."""
    role = await services.repository.delete_role(role_id)
    await services.role_permissions.clear(role.slug)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/roles/{role_id}/permissions",
    response_model=RolePermissionsResponse,
    summary="Get role permissions",
    responses=NOT_FOUND,
)
async def get_role_permissions(
    role_id: int,
    services: SsoServices = Depends(get_services),
) -> RolePermissionsResponse:
    role = await services.repository.get_role(role_id, with_permissions=True)
    return RolePermissionsResponse(
        role=RoleSummary(id=role.id, slug=role.slug, display_name=role.display_name),
        permissions=role.permissions or [],
    )


@router.put(
    "/roles/{role_id}/permissions",
    response_model=SyncPermissionsResponse,
    summary="Sync role permissions",
    responses=NOT_FOUND,
)
async def sync_role_permissions(
    role_id: int,
    body: SyncPermissionsRequest,
    services: SsoServices = Depends(get_services),
) -> SyncPermissionsResponse:
    """Replace the role's permissions; accepts permission ids or slugs."""
    role = await services.repository.get_role(role_id)
    ids = await services.repository.resolve_permission_ids(body.permissions)
    attached, detached = await services.repository.sync_role_permissions(role_id, ids)
    await services.role_permissions.clear(role.slug)
    return SyncPermissionsResponse(
        message="Permissions synced successfully",
        attached=attached,
        detached=detached,
    )


# ==================== Permissions ====================


@router.get("/permissions", response_model=PermissionListResponse, summary="List permissions")
async def list_permissions(
    group: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    services: SsoServices = Depends(get_services),
) -> PermissionListResponse:
    return PermissionListResponse(
        data=await services.repository.list_permissions(group=group, search=search),
        groups=await services.repository.list_permission_groups(),
    )


@router.post(
    "/permissions",
    response_model=PermissionResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Create permission",
    responses={409: COMMON_ERROR_RESPONSES[409]},
)
async def create_permission(
    body: PermissionCreate,
    services: SsoServices = Depends(get_services),
) -> PermissionResponse:
    permission = await services.repository.create_permission(
        body.slug, body.display_name, body.group, body.description
    )
    return PermissionResponse(data=permission, message="Permission created successfully")


@router.get(
    "/permissions/{permission_id}",
    response_model=PermissionResponse,
    response_model_exclude_none=True,
    summary="Get permission",
    responses=NOT_FOUND,
)
async def get_permission(
    permission_id: int,
    services: SsoServices = Depends(get_services),
) -> PermissionResponse:
    permission = await services.repository.get_permission(permission_id)
    roles = await services.repository.get_permission_roles(permission_id)
    return PermissionResponse(
        data=permission,
        roles=[RoleSummary(id=r.id, slug=r.slug, display_name=r.display_name) for r in roles],
    )


@router.put(
    "/permissions/{permission_id}",
    response_model=PermissionResponse,
    response_model_exclude_none=True,
    summary="Update permission",
    responses=NOT_FOUND,
)
async def update_permission(
    permission_id: int,
    body: PermissionUpdate,
    services: SsoServices = Depends(get_services),
) -> PermissionResponse:
    """Update display name, group or description. The slug cannot change."""
    permission = await services.repository.update_permission(
        permission_id, **body.model_dump(exclude_unset=True)
    )
    return PermissionResponse(data=permission, message="Permission updated successfully")


@router.delete(
    "/permissions/{permission_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete permission",
    responses=NOT_FOUND,
)
async def delete_permission(
    permission_id: int,
    services: SsoServices = Depends(get_services),
) -> Response:
    """Delete a permission together with its role and team links."""
    await services.repository.delete_permission(permission_id)
    await services.role_permissions.clear()
    await services.team_permissions.clear_all()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/permission-matrix", response_model=PermissionMatrixResponse, summary="Permission matrix")
async def permission_matrix(services: SsoServices = Depends(get_services)) -> PermissionMatrixResponse:
    return PermissionMatrixResponse(**await services.repository.permission_matrix())


# ==================== Team permissions ====================


@router.get("/teams/permissions", response_model=TeamListResponse, summary="List team permissions")
async def list_team_permissions(
    org: OrgContext = Depends(require_admin),
    services: SsoServices = Depends(get_services),
) -> TeamListResponse:
    """The caller's Console teams in this organization with their stored permissions."""
    teams = await services.access.get_user_teams(org.principal, org.org_slug)
    rows = await services.repository.list_team_permissions(org.org_id, [t.id for t in teams])

    by_team: Dict[int, List[TeamPermissionRecord]] = {}
    for row in rows:
        by_team.setdefault(row.console_team_id, []).append(row)

    return TeamListResponse(
        teams=[
            TeamWithPermissions(
                console_team_id=team.id,
                name=team.name,
                path=team.path,
                permissions=_items(by_team.get(team.id, [])),
            )
            for team in teams
        ]
    )


@router.get(
    "/teams/orphaned",
    response_model=OrphanedTeamsResponse,
    summary="List orphaned team permissions",
)
async def list_orphaned(
    org: OrgContext = Depends(require_admin),
    services: SsoServices = Depends(get_services),
) -> OrphanedTeamsResponse:
    """
    Rows of teams Console no longer reports, or rows already soft-deleted.

    Newly orphaned rows are soft-deleted when Console reported at least one
    team.
    """
    teams = await services.access.get_user_teams(org.principal, org.org_slug)
    active_ids = [t.id for t in teams]
    rows = await services.repository.list_orphaned_team_permissions(org.org_id, active_ids)

    grouped: Dict[int, List[TeamPermissionRecord]] = {}
    for row in rows:
        grouped.setdefault(row.console_team_id, []).append(row)
    orphaned = [
        OrphanedTeam(
            console_team_id=team_id,
            permissions_count=len(items),
            permissions=[i.permission_slug for i in items],
            deleted_at=items[0].deleted_at,
        )
        for team_id, items in grouped.items()
    ]

    if active_ids:
        soft_deleted = await services.repository.soft_delete_missing_teams(org.org_id, active_ids)
        if soft_deleted:
            await services.team_permissions.clear_for_org(org.org_id)
            logger.info("orphaned_team_permissions_soft_deleted", org_id=org.org_id, count=soft_deleted)

    return OrphanedTeamsResponse(
        orphaned_teams=orphaned,
        total_orphaned_permissions=sum(o.permissions_count for o in orphaned),
    )


@router.post(
    "/teams/orphaned/{team_id}/restore",
    response_model=RestoreResponse,
    summary="Restore a team's soft-deleted permissions",
)
async def restore_orphaned(
    team_id: int,
    org: OrgContext = Depends(require_admin),
    services: SsoServices = Depends(get_services),
) -> RestoreResponse:
    count = await services.repository.restore_team_permissions(team_id, org.org_id)
    await services.team_permissions.clear_for_team(team_id, org.org_id)
    return RestoreResponse(
        message="Team permissions restored",
        console_team_id=team_id,
        restored_count=count,
    )


@router.delete(
    "/teams/orphaned",
    response_model=CleanupResponse,
    summary="Permanently delete orphaned team permissions",
)
async def cleanup_orphaned(
    console_team_id: Optional[int] = Query(default=None),
    older_than_days: Optional[int] = Query(default=None, ge=1),
    org: OrgContext = Depends(require_admin),
    services: SsoServices = Depends(get_services),
) -> CleanupResponse:
    count = await services.repository.hard_delete_orphaned_team_permissions(
        org_id=org.org_id,
        console_team_id=console_team_id,
        older_than_days=older_than_days,
    )
    await services.team_permissions.clear_for_org(org.org_id)
    return CleanupResponse(
        message="Orphaned team permissions permanently deleted",
        deleted_count=count,
    )


@router.get(
    "/teams/{team_id}/permissions",
    response_model=TeamPermissionsResponse,
    summary="Get team permissions",
)
async def get_team_permissions(
    team_id: int,
    org: OrgContext = Depends(require_admin),
    services: SsoServices = Depends(get_services),
) -> TeamPermissionsResponse:
    rows = await services.repository.list_team_permissions(org.org_id, [team_id])
    return TeamPermissionsResponse(console_team_id=team_id, permissions=_items(rows))


@router.put(
    "/teams/{team_id}/permissions",
    response_model=TeamSyncResponse,
    summary="Sync team permissions",
)
async def sync_team_permissions(
    team_id: int,
    body: SyncPermissionsRequest,
    org: OrgContext = Depends(require_admin),
    services: SsoServices = Depends(get_services),
) -> TeamSyncResponse:
    """Removed permissions are soft-deleted; re-added ones are restored."""
    ids = await services.repository.resolve_permission_ids(body.permissions)
    attached, detached = await services.repository.sync_team_permissions(team_id, org.org_id, ids)
    await services.team_permissions.clear_for_team(team_id, org.org_id)
    return TeamSyncResponse(
        message="Team permissions synced",
        console_team_id=team_id,
        attached=attached,
        detached=detached,
    )


@router.delete(
    "/teams/{team_id}/permissions",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove all team permissions",
)
async def delete_team_permissions(
    team_id: int,
    org: OrgContext = Depends(require_admin),
    services: SsoServices = Depends(get_services),
) -> Response:
    await services.repository.soft_delete_team_permissions(team_id, org.org_id)
    await services.team_permissions.clear_for_team(team_id, org.org_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
