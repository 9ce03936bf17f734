"""Request and response models for the role, permission and team admin API."""

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field

from sso_client.core.models import PermissionRecord, RoleRecord

SLUG_PATTERN = r"^[a-z0-9][a-z0-9._-]*$"

PermissionRef = Union[int, str]


# ==================== Roles ====================


class RoleCreate(BaseModel):
    slug: str = Field(..., max_length=100, pattern=SLUG_PATTERN)
    display_name: str = Field(..., min_length=1, max_length=100)
    level: int = Field(..., ge=0, le=100)
    description: Optional[str] = None


class RoleUpdate(BaseModel):
    """Role changes; a ``slug`` in the body is ignored."""

    display_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    level: Optional[int] = Field(default=None, ge=0, le=100)
    description: Optional[str] = None

    model_config = {"extra": "ignore"}


class RoleResponse(BaseModel):
    data: RoleRecord
    message: Optional[str] = None


class RoleListResponse(BaseModel):
    data: List[RoleRecord]


class RoleSummary(BaseModel):
    id: int
    slug: str
    display_name: str


class RolePermissionsResponse(BaseModel):
    role: RoleSummary
    permissions: List[PermissionRecord]


class SyncPermissionsRequest(BaseModel):
    """Permissions given by id or by slug; unknown slugs are skipped."""

    permissions: List[PermissionRef]


class SyncPermissionsResponse(BaseModel):
    message: str
    attached: int
    detached: int


# ==================== Permissions ====================


class PermissionCreate(BaseModel):
    slug: str = Field(..., max_length=100, pattern=SLUG_PATTERN)
    display_name: str = Field(..., min_length=1, max_length=100)
    group: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = None


class PermissionUpdate(BaseModel):
    """Permission changes; a ``slug`` in the body is ignored."""

    display_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    group: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = None

    model_config = {"extra": "ignore"}


class PermissionResponse(BaseModel):
    data: PermissionRecord
    roles: Optional[List[RoleSummary]] = None
    message: Optional[str] = None


class PermissionListResponse(BaseModel):
    data: List[PermissionRecord]
    groups: List[str]


class GroupedPermissionListResponse(BaseModel):
    data: Dict[str, List[PermissionRecord]]
    groups: List[str]


class MatrixRole(BaseModel):
    id: int
    slug: str
    display_name: str
    level: int


class MatrixPermission(BaseModel):
    id: int
    slug: str
    display_name: str


class PermissionMatrixResponse(BaseModel):
    roles: List[MatrixRole]
    permissions: Dict[str, List[MatrixPermission]]
    matrix: Dict[str, List[str]]


# ==================== Team permissions ====================


class TeamPermissionItem(BaseModel):
    id: int
    slug: str
    display_name: Optional[str] = None


class TeamWithPermissions(BaseModel):
    console_team_id: int
    name: str
    path: Optional[str] = None
    permissions: List[TeamPermissionItem]


class TeamListResponse(BaseModel):
    teams: List[TeamWithPermissions]


class TeamPermissionsResponse(BaseModel):
    console_team_id: int
    permissions: List[TeamPermissionItem]


class TeamSyncResponse(SyncPermissionsResponse):
    console_team_id: int


class OrphanedTeam(BaseModel):
    console_team_id: int
    permissions_count: int
    permissions: List[str]
    deleted_at: Optional[str] = None


class OrphanedTeamsResponse(BaseModel):
    orphaned_teams: List[OrphanedTeam]
    total_orphaned_permissions: int


class RestoreResponse(BaseModel):
    message: str
    console_team_id: int
    restored_count: int


class CleanupResponse(BaseModel):
    message: str
    deleted_count: int
