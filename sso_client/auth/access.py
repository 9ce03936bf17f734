"""Organization access and permission resolution."""

from typing import Iterable, List, Optional, Set

import structlog

from ..common.cache import CacheKey, CacheStore
from ..common.config import CacheTTLConfig
from ..core.models import AccessGrant, Organization, SessionPrincipal, Team
from .console_client import ConsoleClient
from .permission_cache import RolePermissionCache, TeamPermissionCache, UserTeamsCache
from .tokens import TokenLifecycleManager

logger = structlog.get_logger(__name__)

ORG_ACCESS_NAMESPACE = "org_access"


def org_access_tag(console_user_id: int) -> str:
    return f"{ORG_ACCESS_NAMESPACE}:user:{console_user_id}"


class AccessResolver:
    """
    Resolves what Console says about a user and an organization.

    ``check_access`` results are cached per (Console user, org slug),
    including a ``None`` (denied) result. ``get_organizations`` always asks
    Console. Team memberships are cached per (local user, org slug).
    """

    def __init__(
        self,
        tokens: TokenLifecycleManager,
        client: ConsoleClient,
        store: CacheStore,
        ttl: Optional[CacheTTLConfig] = None,
        user_teams: Optional[UserTeamsCache] = None,
    ):
        ttl = ttl or CacheTTLConfig()
        self.tokens = tokens
        self.client = client
        self.store = store
        self.org_access_ttl = ttl.org_access_ttl
        self.user_teams = user_teams or UserTeamsCache(store, ttl.user_teams_ttl)

    async def check_access(self, principal: SessionPrincipal, org_slug: str) -> Optional[AccessGrant]:
        """
        The principal's grant in ``org_slug``, or None without access.

        A principal without a usable access token is treated as having no
        access, and that answer is cached like a Console denial.
        """
        if principal.console_user_id is None:
            return None

        key = CacheKey(ORG_ACCESS_NAMESPACE, user_id=principal.console_user_id, org_id=org_slug)

        async def load() -> Optional[AccessGrant]:
            access_token = await self.tokens.get_access_token(principal)
            if not access_token:
                logger.info("org_access_no_token", user_id=principal.id, org_slug=org_slug)
                return None
            return await self.client.get_access(access_token, org_slug)

        return await self.store.remember(
            key,
            self.org_access_ttl,
            load,
            tags=(org_access_tag(principal.console_user_id),),
        )

    async def get_organizations(self, principal: SessionPrincipal) -> List[Organization]:
        access_token = await self.tokens.get_access_token(principal)
        if not access_token:
            return []
        return await self.client.get_organizations(access_token)

    async def get_user_teams(self, principal: SessionPrincipal, org_slug: str) -> List[Team]:
        async def load() -> List[Team]:
            access_token = await self.tokens.get_access_token(principal)
            if not access_token:
                return []
            return await self.client.get_user_teams(access_token, org_slug)

        return await self.user_teams.remember(principal.id, org_slug, load)

    async def clear_cache(self, console_user_id: int, org_slug: Optional[str] = None) -> None:
        """Forget cached access for one organization, or all of them."""
        if org_slug:
            await self.store.forget(
                CacheKey(ORG_ACCESS_NAMESPACE, user_id=console_user_id, org_id=org_slug)
            )
        else:
            await self.store.invalidate_tags(org_access_tag(console_user_id))

    async def clear_teams_cache(self, user_id: int, org_slug: Optional[str] = None) -> None:
        await self.user_teams.clear(user_id, org_slug)


class PermissionResolver:
    """
    Aggregates a principal's permissions within one organization.

    The effective set is the union of the service role's permissions and the
    permissions granted to any of the principal's teams in that organization.
    """

    def __init__(
        self,
        access: AccessResolver,
        roles: RolePermissionCache,
        teams: TeamPermissionCache,
    ):
        self.access = access
        self.roles = roles
        self.teams = teams

    async def get_role_permissions(self, grant: Optional[AccessGrant]) -> List[str]:
        if grant is None or not grant.service_role:
            return []
        return await self.roles.get(grant.service_role)

    async def get_team_permissions(self, principal: SessionPrincipal, grant: AccessGrant) -> List[str]:
        teams = await self.access.get_user_teams(principal, grant.organization_slug)
        if not teams:
            return []
        return await self.teams.get_for_teams([t.id for t in teams], grant.organization_id)

    async def get_all_permissions(
        self,
        principal: SessionPrincipal,
        grant: Optional[AccessGrant],
    ) -> Set[str]:
        if grant is None:
            return set()
        permissions = set(await self.get_role_permissions(grant))
        permissions.update(await self.get_team_permissions(principal, grant))
        return permissions

    async def has_permission(
        self,
        principal: SessionPrincipal,
        grant: Optional[AccessGrant],
        permission: str,
    ) -> bool:
        return permission in await self.get_all_permissions(principal, grant)

    async def has_any_permission(
        self,
        principal: SessionPrincipal,
        grant: Optional[AccessGrant],
        permissions: Iterable[str],
    ) -> bool:
        granted = await self.get_all_permissions(principal, grant)
        return any(p in granted for p in permissions)

    async def has_all_permissions(
        self,
        principal: SessionPrincipal,
        grant: Optional[AccessGrant],
        permissions: Iterable[str],
    ) -> bool:
        granted = await self.get_all_permissions(principal, grant)
        return all(p in granted for p in permissions)
