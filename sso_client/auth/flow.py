"""SSO login, logout and current-user orchestration."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import structlog

from ..core.db import SsoRepository
from ..core.models import Claims, Organization, SessionPrincipal, TokenPair
from .access import AccessResolver
from .audit import SsoAuditLogger
from .console_client import ConsoleClient
from .exceptions import ConsoleAuthError, ConsoleError, ConsoleServerError
from .jwt_verifier import JwtVerifier
from .redirect import RedirectValidator
from .session import ApiTokenService, IssuedSession, SessionManager
from .tokens import TokenLifecycleManager

logger = structlog.get_logger(__name__)


class LoginState(str, Enum):
    """Steps of one login, in order."""

    CODE_RECEIVED = "code_received"
    TOKENS_EXCHANGED = "tokens_exchanged"
    CLAIMS_VERIFIED = "claims_verified"
    USER_UPSERTED = "user_upserted"
    TOKENS_PERSISTED = "tokens_persisted"
    ORGANIZATIONS_RESOLVED = "organizations_resolved"
    SESSION_ISSUED = "session_issued"


class AuthFlowError(Exception):
    """A login or session step failed with a client-facing error code."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 401,
        state: Optional[LoginState] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.state = state


@dataclass
class LoginResult:
    principal: SessionPrincipal
    organizations: List[Organization]
    state: LoginState
    session: Optional[IssuedSession] = None
    api_token: Optional[str] = None


class AuthenticationFlow:
    """
    Drives a login from an SSO code to an issued credential.

    The local user is only written once the access token has verified, and
    the user row and its encrypted token pair are written in one
    transaction.
    """

    def __init__(
        self,
        client: ConsoleClient,
        verifier: JwtVerifier,
        repository: SsoRepository,
        tokens: TokenLifecycleManager,
        access: AccessResolver,
        sessions: SessionManager,
        api_tokens: ApiTokenService,
        redirects: RedirectValidator,
        audit: Optional[SsoAuditLogger] = None,
    ):
        self.client = client
        self.verifier = verifier
        self.repository = repository
        self.tokens = tokens
        self.access = access
        self.sessions = sessions
        self.api_tokens = api_tokens
        self.redirects = redirects
        self.audit = audit or SsoAuditLogger(enabled=False)

    async def callback(self, code: str, device_name: Optional[str] = None) -> LoginResult:
        """
        Complete a login.

        Args:
            code: One-time code Console redirected back with
            device_name: When given, issue a personal access token for a
                mobile client instead of a web session

        Raises:
            AuthFlowError: ``INVALID_CODE`` or ``INVALID_TOKEN`` (401)
            ConsoleServerError: Console is unavailable
        """
        state = LoginState.CODE_RECEIVED

        pair = await self._exchange(code)
        state = LoginState.TOKENS_EXCHANGED

        claims = await self._verify(pair)
        state = LoginState.CLAIMS_VERIFIED

        async with self.repository.transaction():
            principal = await self.repository.upsert_user(claims.subject, claims.email, claims.name)
            state = LoginState.USER_UPSERTED
            principal = await self.tokens.store_tokens(principal, pair)
        state = LoginState.TOKENS_PERSISTED
        logger.info("sso_user_authenticated", user_id=principal.id, console_user_id=claims.subject)

        organizations = await self.access.get_organizations(principal)
        state = LoginState.ORGANIZATIONS_RESOLVED

        result = LoginResult(principal=principal, organizations=organizations, state=state)
        if device_name:
            result.api_token, _ = await self.api_tokens.issue(principal, device_name)
        else:
            result.session = self.sessions.issue(principal)
        result.state = LoginState.SESSION_ISSUED

        self.audit.auth_attempt(principal.email, True)
        return result

    async def _exchange(self, code: str) -> TokenPair:
        try:
            pair = await self.client.exchange_code(code)
        except ConsoleServerError:
            self.audit.code_exchange(False, "console_unavailable")
            raise
        except ConsoleError as e:
            self.audit.code_exchange(False, e.error_code)
            raise AuthFlowError(
                "Failed to exchange SSO code",
                "INVALID_CODE",
                state=LoginState.CODE_RECEIVED,
            ) from e

        if pair is None:
            self.audit.code_exchange(False, "invalid_code")
            raise AuthFlowError(
                "Failed to exchange SSO code",
                "INVALID_CODE",
                state=LoginState.CODE_RECEIVED,
            )
        self.audit.code_exchange(True)
        return pair

    async def _verify(self, pair: TokenPair) -> Claims:
        try:
            result = await self.verifier.verify_result(pair.access_token)
        except ConsoleAuthError as e:
            self.audit.jwt_verification(False, e.error_code)
            raise AuthFlowError(
                "Failed to verify access token",
                "INVALID_TOKEN",
                state=LoginState.TOKENS_EXCHANGED,
            ) from e

        if not result.ok:
            self.audit.jwt_verification(False, result.error)
            logger.warning("sso_token_verification_failed", reason=result.error, detail=result.detail)
            raise AuthFlowError(
                "Failed to verify access token",
                "INVALID_TOKEN",
                state=LoginState.TOKENS_EXCHANGED,
            )
        self.audit.jwt_verification(True)
        return result.claims

    async def logout(
        self,
        principal: SessionPrincipal,
        session: Optional[Dict[str, Any]] = None,
        api_token_id: Optional[int] = None,
    ) -> None:
        """
        Sign the principal out.

        Console revocation is best effort; local tokens are always cleared
        and the credential used for this request is invalidated.
        """
        await self.tokens.revoke_tokens(principal)

        if api_token_id is not None:
            await self.api_tokens.revoke(principal.id, api_token_id)
        if session is not None:
            await self.sessions.revoke(session)

        if principal.console_user_id is not None:
            await self.access.clear_cache(principal.console_user_id)
        await self.access.clear_teams_cache(principal.id)

        self.audit.logout(principal.id)

    async def current_user(self, principal: Optional[SessionPrincipal]) -> Dict[str, Any]:
        if principal is None:
            raise AuthFlowError("Not authenticated", "UNAUTHENTICATED")
        organizations = await self.access.get_organizations(principal)
        return {"user": principal, "organizations": organizations}

    def global_logout_url(self, redirect_uri: Optional[str], default: str = "/") -> str:
        """Console's sign-out URL, returning to a validated ``redirect_uri``."""
        target = self.redirects.validate(redirect_uri, default)
        if redirect_uri and target != redirect_uri.strip():
            self.audit.security_event(
                "blocked_redirect",
                requested_uri=redirect_uri,
                used_uri=target,
            )
        query = urlencode({"redirect_uri": target})
        return f"{self.client.get_console_url()}/sso/logout?{query}"
