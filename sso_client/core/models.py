"""Domain value types shared by the SSO services, repository and web layer."""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, Field


# ==================== Principals and claims ====================


@dataclass(frozen=True)
class SessionPrincipal:
    """
    A local user as seen by the SSO services.

    Holds identity plus the provider-issued token pair exactly as stored:
    the tokens stay encrypted here and are only decrypted by
    ``TokenLifecycleManager``.
    """

    id: int
    console_user_id: Optional[int]
    email: str
    name: str
    encrypted_access_token: Optional[str] = None
    encrypted_refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None

    def has_tokens(self) -> bool:
        return bool(self.encrypted_access_token and self.encrypted_refresh_token)

    def has_valid_tokens(self, now: Optional[datetime] = None) -> bool:
        """Whether a stored token pair exists and has not expired yet."""
        if not self.has_tokens() or self.token_expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.token_expires_at > now

    def without_tokens(self) -> "SessionPrincipal":
        return replace(
            self,
            encrypted_access_token=None,
            encrypted_refresh_token=None,
            token_expires_at=None,
        )


@dataclass(frozen=True)
class Claims:
    """Normalized claim set of a verified Console access token."""

    subject: int
    email: str
    name: str
    audience: Optional[str]


# ==================== Provider payloads ====================


class TokenPair(BaseModel):
    """Token pair returned by Console on code exchange or refresh."""

    access_token: str = Field(..., min_length=1)
    refresh_token: str = Field(..., min_length=1)
    expires_in: int = Field(..., ge=0, description="Access token lifetime in seconds")

    model_config = {"extra": "ignore"}


class AccessGrant(BaseModel):
    """A user's access to one organization, as decided by Console."""

    organization_id: int
    organization_slug: str
    org_role: str
    service_role: Optional[str] = None
    service_role_level: int = 0

    model_config = {"extra": "ignore"}


class Organization(BaseModel):
    """Organization entry from the Console organizations listing."""

    organization_id: int
    organization_slug: str
    organization_name: Optional[str] = None
    org_role: str
    service_role: Optional[str] = None
    service_role_level: int = 0

    model_config = {"extra": "ignore"}


class Team(BaseModel):
    """A team the user belongs to inside an organization."""

    id: int
    name: str
    path: Optional[str] = None
    parent_id: Optional[int] = None
    is_leader: bool = False

    model_config = {"extra": "ignore"}


# ==================== Local RBAC records ====================


class PermissionRecord(BaseModel):
    """A permission row."""

    id: int
    slug: str
    display_name: str
    group: Optional[str] = None
    description: Optional[str] = None
    roles_count: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class RoleRecord(BaseModel):
    """A service role row, optionally with its permissions."""

    id: int
    slug: str
    display_name: str
    level: int
    description: Optional[str] = None
    permissions_count: Optional[int] = None
    permissions: Optional[List[PermissionRecord]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class TeamPermissionRecord(BaseModel):
    """A team-to-permission link, soft-deletable."""

    id: int
    console_team_id: int
    console_org_id: int
    permission_id: int
    permission_slug: str
    permission_display_name: Optional[str] = None
    deleted_at: Optional[str] = None


class ApiTokenRecord(BaseModel):
    """A personal access token issued to a mobile device."""

    id: int
    user_id: int
    name: str
    last_used_at: Optional[str] = None
    created_at: str


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp stored in SQLite into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
