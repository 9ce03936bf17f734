"""Request and response models for the SSO endpoints."""

from typing import List, Optional

from pydantic import BaseModel, Field

from sso_client.core.models import ApiTokenRecord, Organization, SessionPrincipal


class CallbackRequest(BaseModel):
    """Body of the SSO callback."""

    code: str = Field(..., min_length=1, description="Authorization code from Console SSO")
    device_name: Optional[str] = Field(
        default=None,
        max_length=255,
        description="Device name for mobile apps (returns an API token)",
    )


class UserResponse(BaseModel):
    id: int
    console_user_id: Optional[int] = None
    email: str
    name: str

    @classmethod
    def from_principal(cls, principal: SessionPrincipal) -> "UserResponse":
        return cls(
            id=principal.id,
            console_user_id=principal.console_user_id,
            email=principal.email,
            name=principal.name,
        )


class UserWithOrganizationsResponse(BaseModel):
    user: UserResponse
    organizations: List[Organization]


class AuthResponse(UserWithOrganizationsResponse):
    """Successful login; ``token`` is only set for mobile clients."""

    token: Optional[str] = Field(default=None, description="API token (only for mobile apps)")


class GlobalLogoutUrlResponse(BaseModel):
    logout_url: str = Field(description="Console single sign-out URL")


class ApiTokenResponse(BaseModel):
    """A personal access token, without its secret."""

    id: int
    name: str
    last_used_at: Optional[str] = None
    created_at: str
    is_current: bool = False

    @classmethod
    def from_record(cls, record: ApiTokenRecord, current_id: Optional[int]) -> "ApiTokenResponse":
        return cls(
            id=record.id,
            name=record.name,
            last_used_at=record.last_used_at,
            created_at=record.created_at,
            is_current=record.id == current_id,
        )


class ApiTokenListResponse(BaseModel):
    tokens: List[ApiTokenResponse]


class RevokeOthersResponse(BaseModel):
    message: str
    revoked_count: int
