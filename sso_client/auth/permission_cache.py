"""Caches behind permission resolution.

Three independent caches share the application ``CacheStore``:

* ``RolePermissionCache``: role slug -> permission slugs
* ``TeamPermissionCache``: (org, set of team ids) -> permission slugs
* ``UserTeamsCache``: (user, org slug) -> teams from Console

Every entry is tagged so that a mutation can drop exactly the entries it
affects in the same call.
"""

import hashlib
from typing import Awaitable, Callable, Iterable, List, Optional

import structlog

from ..common.cache import CacheKey, CacheStore
from ..core.db import SsoRepository
from ..core.models import Team

logger = structlog.get_logger(__name__)

ROLE_NAMESPACE = "role_permissions"
TEAM_NAMESPACE = "team_permissions"
USER_TEAMS_NAMESPACE = "user_teams"


def team_set_digest(team_ids: Iterable[int]) -> str:
    """Order-independent digest of a set of team ids."""
    ids = sorted(set(int(t) for t in team_ids))
    return hashlib.sha256(",".join(str(i) for i in ids).encode()).hexdigest()


def role_tag(slug: str) -> str:
    return f"{ROLE_NAMESPACE}:role:{slug}"


def org_tag(org_id: int) -> str:
    return f"{TEAM_NAMESPACE}:org:{org_id}"


def team_tag(team_id: int) -> str:
    return f"{TEAM_NAMESPACE}:team:{team_id}"


def user_teams_tag(user_id: int) -> str:
    return f"{USER_TEAMS_NAMESPACE}:user:{user_id}"


class RolePermissionCache:
    """Permission slugs per service role, backed by the roles tables."""

    def __init__(self, repository: SsoRepository, store: CacheStore, ttl_seconds: int = 3600):
        self.repository = repository
        self.store = store
        self.ttl_seconds = ttl_seconds

    async def get(self, role_slug: str) -> List[str]:
        """Permission slugs of ``role_slug``; empty for an unknown role."""

        async def load() -> List[str]:
            return await self.repository.get_role_permission_slugs(role_slug)

        return await self.store.remember(
            CacheKey(ROLE_NAMESPACE, discriminator=role_slug),
            self.ttl_seconds,
            load,
            tags=(role_tag(role_slug), ROLE_NAMESPACE),
        )

    async def clear(self, role_slug: Optional[str] = None) -> None:
        """Drop one role's entry, or every role entry."""
        if role_slug:
            await self.store.invalidate_tags(role_tag(role_slug))
        else:
            await self.store.invalidate_tags(ROLE_NAMESPACE)

    async def warm_up(self) -> int:
        """
        Load every role's permissions in one query and cache them.

        Returns:
            Number of roles cached
        """
        mapping = await self.repository.get_all_role_permission_slugs()
        for slug, permissions in mapping.items():
            await self.store.set(
                CacheKey(ROLE_NAMESPACE, discriminator=slug),
                permissions,
                self.ttl_seconds,
                tags=(role_tag(slug), ROLE_NAMESPACE),
            )
        logger.info("role_permission_cache_warmed", roles=len(mapping))
        return len(mapping)


class TeamPermissionCache:
    """Permission slugs granted to a set of teams in one organization."""

    def __init__(self, repository: SsoRepository, store: CacheStore, ttl_seconds: int = 3600):
        self.repository = repository
        self.store = store
        self.ttl_seconds = ttl_seconds

    async def get_for_teams(self, team_ids: Iterable[int], org_id: int) -> List[str]:
        """Distinct active permission slugs of any of ``team_ids``."""
        ids = sorted(set(int(t) for t in team_ids))
        if not ids:
            return []

        async def load() -> List[str]:
            return await self.repository.get_team_permission_slugs(ids, org_id)

        return await self.store.remember(
            CacheKey(TEAM_NAMESPACE, org_id=org_id, discriminator=team_set_digest(ids)),
            self.ttl_seconds,
            load,
            tags=(TEAM_NAMESPACE, org_tag(org_id), *(team_tag(t) for t in ids)),
        )

    async def clear_for_team(self, team_id: int, org_id: Optional[int] = None) -> int:
        """Drop every cached team set that contains ``team_id``."""
        removed = await self.store.invalidate_tags(team_tag(team_id))
        logger.debug("team_permission_cache_cleared", team_id=team_id, org_id=org_id, removed=removed)
        return removed

    async def clear_for_org(self, org_id: int) -> int:
        """Drop every cached team set of ``org_id``."""
        return await self.store.invalidate_tags(org_tag(org_id))

    async def clear_all(self) -> int:
        return await self.store.invalidate_tags(TEAM_NAMESPACE)


class UserTeamsCache:
    """Console team memberships per (local user, organization slug)."""

    def __init__(self, store: CacheStore, ttl_seconds: int = 300):
        self.store = store
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(user_id: int, org_slug: str) -> CacheKey:
        return CacheKey(USER_TEAMS_NAMESPACE, user_id=user_id, org_id=org_slug)

    async def get(self, user_id: int, org_slug: str) -> Optional[List[Team]]:
        return await self.store.get(self._key(user_id, org_slug))

    async def remember(
        self,
        user_id: int,
        org_slug: str,
        factory: Callable[[], Awaitable[List[Team]]],
    ) -> List[Team]:
        return await self.store.remember(
            self._key(user_id, org_slug),
            self.ttl_seconds,
            factory,
            tags=(user_teams_tag(user_id),),
        )

    async def clear(self, user_id: int, org_slug: Optional[str] = None) -> None:
        """Drop one organization's entry, or every organization for the user."""
        if org_slug:
            await self.store.forget(self._key(user_id, org_slug))
        else:
            await self.store.invalidate_tags(user_teams_tag(user_id))
