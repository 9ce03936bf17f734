"""SSO authentication and authorization services."""

from .access import AccessResolver, PermissionResolver
from .audit import SsoAuditLogger, mask_email
from .console_client import ConsoleClient
from .crypto import TokenCipher
from .exceptions import (
    ConsoleAccessDeniedError,
    ConsoleApiError,
    ConsoleAuthError,
    ConsoleError,
    ConsoleNotFoundError,
    ConsoleServerError,
    error_for_status,
)
from .flow import AuthenticationFlow, AuthFlowError, LoginResult, LoginState
from .jwks import JwksKeyStore, jwk_to_pem
from .jwt_verifier import JwtVerifier, VerificationResult
from .permission_cache import RolePermissionCache, TeamPermissionCache, UserTeamsCache
from .redirect import RedirectValidator
from .services import SsoServices
from .session import (
    SESSION_COOKIE_NAME,
    ApiTokenService,
    IssuedSession,
    SessionDenylist,
    SessionManager,
)
from .tokens import TokenLifecycleManager

__all__ = [
    # Provider
    "ConsoleClient",
    "ConsoleError",
    "ConsoleApiError",
    "ConsoleAuthError",
    "ConsoleAccessDeniedError",
    "ConsoleNotFoundError",
    "ConsoleServerError",
    "error_for_status",
    # Verification
    "JwksKeyStore",
    "jwk_to_pem",
    "JwtVerifier",
    "VerificationResult",
    # Tokens and sessions
    "TokenCipher",
    "TokenLifecycleManager",
    "SessionManager",
    "SessionDenylist",
    "IssuedSession",
    "ApiTokenService",
    "SESSION_COOKIE_NAME",
    # Access
    "AccessResolver",
    "PermissionResolver",
    "RolePermissionCache",
    "TeamPermissionCache",
    "UserTeamsCache",
    # Flow
    "AuthenticationFlow",
    "AuthFlowError",
    "LoginResult",
    "LoginState",
    "RedirectValidator",
    "SsoAuditLogger",
    "mask_email",
    "SsoServices",
]
