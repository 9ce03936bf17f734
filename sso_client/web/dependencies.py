"""FastAPI dependency injection for services, authentication and authorization."""

from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Dict, List, Optional

import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import sso_client
from sso_client.auth import SESSION_COOKIE_NAME, SsoServices
from sso_client.common.config import Config
from sso_client.core.db import RecordNotFoundError
from sso_client.core.models import AccessGrant, SessionPrincipal

from .middleware import SsoHTTPException
from .settings import APISettings, get_settings

logger = structlog.get_logger(__name__)

ORG_HEADER = "X-Org-Id"

# Optional bearer scheme - doesn't require auth header, allows checking if present
optional_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    """The authenticated principal and the credential used for this request."""

    principal: SessionPrincipal
    session: Optional[Dict[str, Any]] = None
    api_token_id: Optional[int] = None


@dataclass(frozen=True)
class OrgContext:
    """An authenticated principal's access to the organization named by ``X-Org-Id``."""

    principal: SessionPrincipal
    grant: AccessGrant

    @property
    def org_id(self) -> int:
        return self.grant.organization_id

    @property
    def org_slug(self) -> str:
        return self.grant.organization_slug


def get_api_settings() -> APISettings:
    """Dependency that provides API settings (cached)."""
    return get_settings()


def get_app_config() -> Config:
    return sso_client.get_config()


def get_services(request: Request) -> SsoServices:
    """The service graph built by the application lifespan."""
    return request.app.state.services


# ==================== Authentication ====================


async def get_auth_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer),
    services: SsoServices = Depends(get_services),
) -> Optional[AuthContext]:
    """
    Resolve the caller from a personal access token or the session cookie.

    A Bearer token takes precedence over the cookie. Invalid, expired or
    revoked credentials resolve to None.
    """
    if credentials is not None:
        result = await services.api_tokens.authenticate(credentials.credentials)
        if result is None:
            return None
        principal, token_id = result
        return AuthContext(principal=principal, api_token_id=token_id)

    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        return None

    payload = await services.sessions.validate(cookie)
    if payload is None:
        return None

    try:
        principal = await services.repository.get_user(int(payload["sub"]))
    except (RecordNotFoundError, KeyError, ValueError):
        logger.warning("session_user_missing", sub=payload.get("sub"))
        return None
    return AuthContext(principal=principal, session=payload)


async def require_auth(
    context: Optional[AuthContext] = Depends(get_auth_context),
) -> AuthContext:
    """
    Dependency that requires an authenticated caller.

    Raises:
        SsoHTTPException(401): ``UNAUTHENTICATED`` when no valid credential was sent
    """
    if context is None:
        raise SsoHTTPException(401, "UNAUTHENTICATED", "Authentication required")
    logger.debug("request_authenticated", user_id=context.principal.id)
    return context


async def get_current_principal(
    context: AuthContext = Depends(require_auth),
) -> SessionPrincipal:
    return context.principal


# ==================== Organization access ====================


async def require_org(
    request: Request,
    context: AuthContext = Depends(require_auth),
    services: SsoServices = Depends(get_services),
) -> OrgContext:
    """
    Dependency that requires access to the organization in ``X-Org-Id``.

    Raises:
        SsoHTTPException(400): ``MISSING_ORGANIZATION`` without the header
        SsoHTTPException(403): ``ACCESS_DENIED`` when Console denies access
    """
    org_slug = request.headers.get(ORG_HEADER)
    if not org_slug:
        raise SsoHTTPException(400, "MISSING_ORGANIZATION", "X-Org-Id header is required")

    grant = await services.access.check_access(context.principal, org_slug)
    if grant is None:
        raise SsoHTTPException(403, "ACCESS_DENIED", "No access to this organization")

    request.state.org = grant
    return OrgContext(principal=context.principal, grant=grant)


def require_role(role: str) -> Callable[..., Coroutine[Any, Any, OrgContext]]:
    """
    Dependency factory requiring ``role`` or a higher-levelled service role.

    Example:
        @router.get("/roles", dependencies=[Depends(require_role("admin"))])
        async def list_roles(): ...
    """

    async def dependency(
        org: OrgContext = Depends(require_org),
        config: Config = Depends(get_app_config),
    ) -> OrgContext:
        current = org.grant.service_role
        if not current:
            raise SsoHTTPException(403, "NO_SERVICE_ROLE", "User does not have a service role")
        if config.role_level(current) < config.role_level(role):
            raise SsoHTTPException(
                403,
                "INSUFFICIENT_ROLE",
                f"Role '{role}' or higher is required",
                required_role=role,
                current_role=current,
            )
        return org

    return dependency


def require_permission(permissions: str) -> Callable[..., Coroutine[Any, Any, OrgContext]]:
    """
    Dependency factory requiring any one of the ``|``-separated permissions.

    The check covers the service role's permissions and the permissions of
    the caller's teams in the organization.
    """
    required: List[str] = [p.strip() for p in permissions.split("|") if p.strip()]

    async def dependency(
        org: OrgContext = Depends(require_org),
        services: SsoServices = Depends(get_services),
    ) -> OrgContext:
        if not await services.permissions.has_any_permission(org.principal, org.grant, required):
            raise SsoHTTPException(
                403,
                "PERMISSION_DENIED",
                "Required permission not granted",
                required_permissions=required,
            )
        return org

    return dependency
