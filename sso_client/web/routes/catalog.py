"""Read-only role and permission catalogue for any authenticated user."""

from typing import Dict, List, Optional, Union

from fastapi import APIRouter, Depends, Query

from sso_client.auth import SsoServices
from sso_client.core.models import PermissionRecord

from ..dependencies import get_services, require_auth
from ..schemas.admin import (
    GroupedPermissionListResponse,
    PermissionListResponse,
    PermissionMatrixResponse,
    RoleListResponse,
    RoleResponse,
)
from ..schemas.common import AUTH_ERROR_RESPONSES, COMMON_ERROR_RESPONSES

router = APIRouter(tags=["SSO Catalog"], dependencies=[Depends(require_auth)])


def group_permissions(permissions: List[PermissionRecord]) -> Dict[str, List[PermissionRecord]]:
    grouped: Dict[str, List[PermissionRecord]] = {}
    for permission in permissions:
        grouped.setdefault(permission.group or "", []).append(permission)
    return grouped


@router.get("/roles", response_model=RoleListResponse, summary="List roles", responses=AUTH_ERROR_RESPONSES)
async def list_roles(services: SsoServices = Depends(get_services)) -> RoleListResponse:
    return RoleListResponse(data=await services.repository.list_roles())


@router.get(
    "/roles/{role_id}",
    response_model=RoleResponse,
    response_model_exclude_none=True,
    summary="Get role with permissions",
    responses={**AUTH_ERROR_RESPONSES, 404: COMMON_ERROR_RESPONSES[404]},
)
async def get_role(role_id: int, services: SsoServices = Depends(get_services)) -> RoleResponse:
    return RoleResponse(data=await services.repository.get_role(role_id, with_permissions=True))


@router.get(
    "/permissions",
    response_model=Union[PermissionListResponse, GroupedPermissionListResponse],
    summary="List permissions",
    responses=AUTH_ERROR_RESPONSES,
)
async def list_permissions(
    group: Optional[str] = Query(default=None, description="Only permissions of this group"),
    search: Optional[str] = Query(default=None, description="Match slug or display name"),
    grouped: bool = Query(default=False, description="Group the result by permission group"),
    services: SsoServices = Depends(get_services),
) -> Union[PermissionListResponse, GroupedPermissionListResponse]:
    permissions = await services.repository.list_permissions(group=group, search=search)
    groups = await services.repository.list_permission_groups()
    if grouped:
        return GroupedPermissionListResponse(data=group_permissions(permissions), groups=groups)
    return PermissionListResponse(data=permissions, groups=groups)


@router.get(
    "/permission-matrix",
    response_model=PermissionMatrixResponse,
    summary="Role to permission matrix",
    responses=AUTH_ERROR_RESPONSES,
)
async def permission_matrix(services: SsoServices = Depends(get_services)) -> PermissionMatrixResponse:
    return PermissionMatrixResponse(**await services.repository.permission_matrix())
