"""SSO routes: callback, logout, current user, global logout and API tokens."""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, Response, status

from sso_client.auth import SESSION_COOKIE_NAME, IssuedSession, SsoServices

from ..dependencies import (
    AuthContext,
    get_api_settings,
    get_auth_context,
    get_services,
    require_auth,
)
from ..middleware import SsoHTTPException
from ..schemas.common import AUTH_ERROR_RESPONSES, COMMON_ERROR_RESPONSES, MessageResponse
from ..schemas.sso import (
    ApiTokenListResponse,
    ApiTokenResponse,
    AuthResponse,
    CallbackRequest,
    GlobalLogoutUrlResponse,
    RevokeOthersResponse,
    UserResponse,
    UserWithOrganizationsResponse,
)
from ..settings import APISettings

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["SSO Auth"])


def set_session_cookie(response: Response, session: IssuedSession, settings: APISettings) -> None:
    """Set the session JWT as an httpOnly cookie (non-secure only in debug mode)."""
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=session.token,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
        max_age=settings.session_expires_minutes * 60,
    )


def clear_session_cookie(response: Response, settings: APISettings) -> None:
    response.delete_cookie(
        key=SESSION_COOKIE_NAME,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
    )


@router.post(
    "/callback",
    response_model=AuthResponse,
    response_model_exclude_none=True,
    summary="SSO callback",
    description="Exchange an authorization code for tokens and authenticate the user.",
    responses={
        401: COMMON_ERROR_RESPONSES[401],
        502: COMMON_ERROR_RESPONSES[502],
    },
)
async def callback(
    body: CallbackRequest,
    response: Response,
    services: SsoServices = Depends(get_services),
    settings: APISettings = Depends(get_api_settings),
) -> AuthResponse:
    """
    Complete an SSO login.

    Web clients get a session cookie; clients that send ``device_name``
    get a personal access token in ``token`` instead.
    """
    result = await services.flow.callback(body.code, body.device_name)
    if result.session is not None:
        set_session_cookie(response, result.session, settings)

    return AuthResponse(
        user=UserResponse.from_principal(result.principal),
        organizations=result.organizations,
        token=result.api_token,
    )


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Logout",
    description="Revoke Console tokens and invalidate the current credential.",
    responses=AUTH_ERROR_RESPONSES,
)
async def logout(
    response: Response,
    context: AuthContext = Depends(require_auth),
    services: SsoServices = Depends(get_services),
    settings: APISettings = Depends(get_api_settings),
) -> MessageResponse:
    await services.flow.logout(
        context.principal,
        session=context.session,
        api_token_id=context.api_token_id,
    )
    clear_session_cookie(response, settings)
    return MessageResponse(message="Logged out successfully")


@router.get(
    "/user",
    response_model=UserWithOrganizationsResponse,
    summary="Get current user",
    description="Authenticated user with the organizations Console reports.",
    responses=AUTH_ERROR_RESPONSES,
)
async def current_user(
    context: Optional[AuthContext] = Depends(get_auth_context),
    services: SsoServices = Depends(get_services),
) -> UserWithOrganizationsResponse:
    result = await services.flow.current_user(context.principal if context else None)
    return UserWithOrganizationsResponse(
        user=UserResponse.from_principal(result["user"]),
        organizations=result["organizations"],
    )


@router.get(
    "/global-logout-url",
    response_model=GlobalLogoutUrlResponse,
    summary="Get global logout URL",
    description="Console single sign-out URL. Unsafe redirect targets are replaced with the app URL.",
)
async def global_logout_url(
    redirect_uri: Optional[str] = Query(default=None, description="Redirect URL after logout"),
    services: SsoServices = Depends(get_services),
    settings: APISettings = Depends(get_api_settings),
) -> GlobalLogoutUrlResponse:
    default = settings.app_url or "/"
    return GlobalLogoutUrlResponse(logout_url=services.flow.global_logout_url(redirect_uri, default))


# ==================== Personal access tokens ====================


@router.get(
    "/tokens",
    response_model=ApiTokenListResponse,
    summary="List API tokens",
    responses=AUTH_ERROR_RESPONSES,
)
async def list_tokens(
    context: AuthContext = Depends(require_auth),
    services: SsoServices = Depends(get_services),
) -> ApiTokenListResponse:
    records = await services.repository.list_api_tokens(context.principal.id)
    return ApiTokenListResponse(
        tokens=[ApiTokenResponse.from_record(r, context.api_token_id) for r in records]
    )


@router.delete(
    "/tokens/{token_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Revoke an API token",
    responses={**AUTH_ERROR_RESPONSES, 404: COMMON_ERROR_RESPONSES[404]},
)
async def revoke_token(
    token_id: int,
    context: AuthContext = Depends(require_auth),
    services: SsoServices = Depends(get_services),
) -> Response:
    if not await services.api_tokens.revoke(context.principal.id, token_id):
        raise SsoHTTPException(404, "TOKEN_NOT_FOUND", "Token not found")
    logger.info("api_token_revoked", user_id=context.principal.id, token_id=token_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/tokens/revoke-others",
    response_model=RevokeOthersResponse,
    summary="Revoke all other API tokens",
    description="Delete every API token of the user except the one used for this request.",
    responses=AUTH_ERROR_RESPONSES,
)
async def revoke_other_tokens(
    context: AuthContext = Depends(require_auth),
    services: SsoServices = Depends(get_services),
) -> RevokeOthersResponse:
    count = await services.api_tokens.revoke_others(context.principal.id, context.api_token_id)
    return RevokeOthersResponse(message=f"Revoked {count} tokens", revoked_count=count)
