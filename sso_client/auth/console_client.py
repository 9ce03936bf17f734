"""Typed async client for the Console SSO REST API."""

from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from ..common.config import Config
from ..common.http_client import AsyncHTTPClient
from ..common.locale import get_current_locale
from ..core.models import AccessGrant, Organization, Team, TokenPair
from .exceptions import ConsoleServerError, error_for_status

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class ConsoleClient(AsyncHTTPClient):
    """
    One method per Console endpoint.

    Requests go through ``AsyncHTTPClient`` so they share its timeout, fixed
    retry delay and attempt cap. Non-2xx responses are raised as the
    ``ConsoleError`` subclass matching their status, except where an endpoint
    documents a soft failure:

    * ``get_access``: 403 returns None
    * ``get_user_teams``: 403 and 404 return an empty list
    * ``revoke_token``: any failure returns False

    Example:
        >>> async with ConsoleClient(config) as console:
        ...     pair = await console.exchange_code("abc123")
    """

    def __init__(self, config: Config):
        super().__init__(
            retry_config=config.console,
            base_url=config.console.url,
            http_config=config.http,
        )
        self.config = config
        self.logger = logger.bind(component="console_client")

    def get_console_url(self) -> str:
        return self.config.console.url

    def get_service_slug(self) -> str:
        return self.config.service.slug

    # ------------------------------------------------------------------
    # Token endpoints
    # ------------------------------------------------------------------

    async def exchange_code(self, code: str) -> Optional[TokenPair]:
        """
        Exchange a one-time SSO code for a token pair.

        Returns None when Console answers 2xx with a body that is not a
        token pair.
        """
        response = await self._send(
            "POST",
            "/api/sso/token",
            json={"code": code, "service_slug": self.get_service_slug()},
        )
        self._raise_for_status(response)
        return self._parse_token_pair(response, "exchange")

    async def refresh_token(self, refresh_token: str) -> Optional[TokenPair]:
        """Trade a refresh token for a new pair."""
        response = await self._send(
            "POST",
            "/api/sso/refresh",
            json={"refresh_token": refresh_token, "service_slug": self.get_service_slug()},
        )
        self._raise_for_status(response)
        return self._parse_token_pair(response, "refresh")

    async def revoke_token(self, refresh_token: str) -> bool:
        """Revoke a refresh token. Never raises."""
        try:
            response = await self._send(
                "POST",
                "/api/sso/revoke",
                json={"refresh_token": refresh_token},
            )
        except ConsoleServerError as e:
            self.logger.warning("console_revoke_unreachable", error=e.message)
            return False
        return response.is_success

    # ------------------------------------------------------------------
    # Organization endpoints
    # ------------------------------------------------------------------

    async def get_access(self, access_token: str, org_slug: str) -> Optional[AccessGrant]:
        """The user's roles in ``org_slug``, or None when Console denies access."""
        response = await self._send(
            "GET",
            "/api/sso/access",
            access_token=access_token,
            params={"organization_slug": org_slug},
        )
        if response.status_code == 403:
            return None
        self._raise_for_status(response)
        return self._model(AccessGrant, self._json(response))

    async def get_organizations(self, access_token: str) -> List[Organization]:
        """Every organization the user can reach through this service."""
        response = await self._send("GET", "/api/sso/organizations", access_token=access_token)
        self._raise_for_status(response)

        body = self._json(response)
        if isinstance(body, dict):
            body = body.get("organizations") or body.get("data") or []
        return [self._model(Organization, item) for item in body or []]

    async def get_user_teams(self, access_token: str, org_slug: str) -> List[Team]:
        """The user's teams in ``org_slug``; empty when Console denies or has none."""
        response = await self._send(
            "GET",
            "/api/sso/teams",
            access_token=access_token,
            params={"organization_slug": org_slug},
        )
        if response.status_code in (403, 404):
            return []
        self._raise_for_status(response)

        body = self._json(response)
        teams = body.get("teams") if isinstance(body, dict) else body
        return [self._model(Team, item) for item in teams or []]

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    async def get_jwks(self) -> Dict[str, Any]:
        """The published JSON Web Key Set."""
        response = await self._send("GET", "/.well-known/jwks.json")
        self._raise_for_status(response)
        body = self._json(response)
        if not isinstance(body, dict) or not isinstance(body.get("keys"), list):
            raise ConsoleServerError(
                "Console returned an invalid JWKS document",
                response.status_code,
                "invalid_jwks",
            )
        return body

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _headers(self, access_token: Optional[str]) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        locale = self.config.locale
        if locale.enabled:
            headers[locale.header] = get_current_locale(locale.default)
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    async def _send(
        self,
        method: str,
        path: str,
        access_token: Optional[str] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue a request; transport failures surface as ``ConsoleServerError``."""
        try:
            return await self._make_request_with_retry(
                method,
                path,
                headers=self._headers(access_token),
                **kwargs,
            )
        except httpx.RequestError as e:
            self.logger.error(
                "console_unreachable",
                method=method,
                path=path,
                error=repr(e),
            )
            raise ConsoleServerError(f"Console is unreachable: {e}", 0, "unreachable") from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return

        body = self._json(response, strict=False)
        error_code = None
        message = f"Console request failed with HTTP {response.status_code}"
        if isinstance(body, dict):
            error_code = body.get("error") or None
            message = body.get("message") or message

        self.logger.warning(
            "console_request_failed",
            url=str(response.url),
            status_code=response.status_code,
            error_code=error_code,
        )
        raise error_for_status(response.status_code, message, error_code or "UNKNOWN_ERROR")

    def _json(self, response: httpx.Response, strict: bool = True) -> Any:
        try:
            return response.json()
        except ValueError as e:
            if not strict:
                return None
            raise ConsoleServerError(
                "Console returned a malformed response body",
                response.status_code,
                "malformed_response",
            ) from e

    def _parse_token_pair(self, response: httpx.Response, operation: str) -> Optional[TokenPair]:
        body = self._json(response, strict=False)
        try:
            return TokenPair.model_validate(body)
        except ValidationError:
            self.logger.warning("console_token_response_invalid", operation=operation)
            return None

    def _model(self, model: Type[ModelT], data: Any) -> ModelT:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise ConsoleServerError(
                f"Console returned an unexpected {model.__name__} payload",
                200,
                "malformed_response",
            ) from e
