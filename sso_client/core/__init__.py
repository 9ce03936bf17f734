"""Core domain types and persistence for the SSO client."""

from .models import (
    AccessGrant,
    ApiTokenRecord,
    Claims,
    Organization,
    PermissionRecord,
    RoleRecord,
    SessionPrincipal,
    Team,
    TeamPermissionRecord,
    TokenPair,
)

__all__ = [
    "AccessGrant",
    "ApiTokenRecord",
    "Claims",
    "Organization",
    "PermissionRecord",
    "RoleRecord",
    "SessionPrincipal",
    "Team",
    "TeamPermissionRecord",
    "TokenPair",
]
