"""Pydantic request and response schemas for the SSO API."""

from .common import (
    AUTH_ERROR_RESPONSES,
    COMMON_ERROR_RESPONSES,
    ORG_ERROR_RESPONSES,
    ErrorResponse,
    HealthCheckResponse,
    MessageResponse,
)
from .sso import (
    ApiTokenListResponse,
    ApiTokenResponse,
    AuthResponse,
    CallbackRequest,
    GlobalLogoutUrlResponse,
    RevokeOthersResponse,
    UserResponse,
    UserWithOrganizationsResponse,
)

__all__ = [
    "AUTH_ERROR_RESPONSES",
    "COMMON_ERROR_RESPONSES",
    "ORG_ERROR_RESPONSES",
    "ErrorResponse",
    "HealthCheckResponse",
    "MessageResponse",
    "ApiTokenListResponse",
    "ApiTokenResponse",
    "AuthResponse",
    "CallbackRequest",
    "GlobalLogoutUrlResponse",
    "RevokeOthersResponse",
    "UserResponse",
    "UserWithOrganizationsResponse",
]
