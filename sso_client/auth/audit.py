"""Security audit events for the SSO flow."""

from typing import Any, Optional

import structlog

logger = structlog.get_logger("sso_client.audit")


def mask_email(email: Optional[str]) -> str:
    """
    Mask the local part of an email address.

    >>> mask_email("jane.doe@example.com")
    'ja***@example.com'
    """
    if not email or email.count("@") != 1:
        return "***@***"
    local, domain = email.split("@")
    masked = local[:2] + "***" if len(local) > 2 else "***"
    return f"{masked}@{domain}"


class SsoAuditLogger:
    """
    Emits structured audit events with a stable ``sso_`` prefix.

    Request details (``ip``, ``user_agent``, ``request_id``) come from the
    structlog context bound by the request logging middleware.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def auth_attempt(self, email: Optional[str], success: bool, reason: Optional[str] = None) -> None:
        if not self.enabled:
            return
        log = logger.info if success else logger.warning
        log("sso_auth_attempt", email=mask_email(email), success=success, reason=reason)

    def code_exchange(self, success: bool, error: Optional[str] = None) -> None:
        if not self.enabled:
            return
        if success:
            logger.debug("sso_code_exchange", success=True)
        else:
            logger.warning("sso_code_exchange", success=False, error=error)

    def jwt_verification(self, success: bool, reason: Optional[str] = None) -> None:
        if not self.enabled:
            return
        if success:
            logger.debug("sso_jwt_verification", success=True)
        else:
            logger.warning("sso_jwt_verification", success=False, reason=reason)

    def token_refresh(self, user_id: int, success: bool, error: Optional[str] = None) -> None:
        if not self.enabled:
            return
        if success:
            logger.debug("sso_token_refresh", user_id=user_id, success=True)
        else:
            logger.warning("sso_token_refresh", user_id=user_id, success=False, error=error)

    def logout(self, user_id: int, global_logout: bool = False) -> None:
        if not self.enabled:
            return
        logger.info("sso_logout", user_id=user_id, global_logout=global_logout)

    def security_event(self, event: str, **context: Any) -> None:
        if not self.enabled:
            return
        logger.warning("sso_security_event", event=event, **context)

    def permission_sync(self, created: int, updated: int, deleted: int = 0) -> None:
        if not self.enabled:
            return
        logger.info("sso_permissions_synced", created=created, updated=updated, deleted=deleted)
