"""Wiring of the SSO services around one config, repository and cache."""

from dataclasses import dataclass
from typing import Optional

import structlog

from ..common.cache import CacheStore
from ..common.config import Config
from ..core.db import SsoRepository
from .access import AccessResolver, PermissionResolver
from .audit import SsoAuditLogger
from .console_client import ConsoleClient
from .crypto import TokenCipher
from .flow import AuthenticationFlow
from .jwks import JwksKeyStore
from .jwt_verifier import JwtVerifier
from .permission_cache import RolePermissionCache, TeamPermissionCache, UserTeamsCache
from .redirect import RedirectValidator
from .session import ApiTokenService, SessionDenylist, SessionManager
from .tokens import TokenLifecycleManager

logger = structlog.get_logger(__name__)


@dataclass
class SsoServices:
    """Every SSO service, constructed once per application."""

    config: Config
    repository: SsoRepository
    cache: CacheStore
    client: ConsoleClient
    audit: SsoAuditLogger
    keys: JwksKeyStore
    verifier: JwtVerifier
    tokens: TokenLifecycleManager
    access: AccessResolver
    role_permissions: RolePermissionCache
    team_permissions: TeamPermissionCache
    permissions: PermissionResolver
    redirects: RedirectValidator
    sessions: SessionManager
    api_tokens: ApiTokenService
    flow: AuthenticationFlow

    @classmethod
    def build(
        cls,
        config: Config,
        repository: SsoRepository,
        cache: CacheStore,
        session_secret: str,
        token_encryption_key: str,
        session_algorithm: str = "HS256",
        session_expires_minutes: int = 1440,
        app_url: Optional[str] = None,
        frontend_url: Optional[str] = None,
        client: Optional[ConsoleClient] = None,
    ) -> "SsoServices":
        """
        Construct the service graph.

        Example:
            >>> services = SsoServices.build(config, repo, CacheStore(), secret, key)
            >>> result = await services.flow.callback(code)
        """
        ttl = config.cache
        client = client or ConsoleClient(config)
        audit = SsoAuditLogger(enabled=config.audit_logging)

        keys = JwksKeyStore(client, cache, ttl_minutes=ttl.jwks_ttl)
        verifier = JwtVerifier(keys, service_slug=config.service.slug)
        tokens = TokenLifecycleManager(repository, client, TokenCipher(token_encryption_key), audit)

        access = AccessResolver(
            tokens,
            client,
            cache,
            ttl,
            user_teams=UserTeamsCache(cache, ttl.user_teams_ttl),
        )
        role_permissions = RolePermissionCache(repository, cache, ttl.role_permissions_ttl)
        team_permissions = TeamPermissionCache(repository, cache, ttl.team_permissions_ttl)
        permissions = PermissionResolver(access, role_permissions, team_permissions)

        redirects = RedirectValidator.from_config(config.security, app_url, frontend_url)
        sessions = SessionManager(
            session_secret,
            SessionDenylist(repository, cache),
            algorithm=session_algorithm,
            expires_minutes=session_expires_minutes,
        )
        api_tokens = ApiTokenService(repository)

        flow = AuthenticationFlow(
            client=client,
            verifier=verifier,
            repository=repository,
            tokens=tokens,
            access=access,
            sessions=sessions,
            api_tokens=api_tokens,
            redirects=redirects,
            audit=audit,
        )

        logger.debug("sso_services_built", service=config.service.slug)
        return cls(
            config=config,
            repository=repository,
            cache=cache,
            client=client,
            audit=audit,
            keys=keys,
            verifier=verifier,
            tokens=tokens,
            access=access,
            role_permissions=role_permissions,
            team_permissions=team_permissions,
            permissions=permissions,
            redirects=redirects,
            sessions=sessions,
            api_tokens=api_tokens,
            flow=flow,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
