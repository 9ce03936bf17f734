"""Local credentials issued after a successful SSO login.

Web clients receive a signed session JWT (HS256, carrying a ``jti``) in an
httpOnly cookie. Mobile clients that pass ``device_name`` receive a personal
access token ``{id}|{secret}`` instead, of which only a SHA-256 digest of the
secret is stored.
"""

import hashlib
import hmac
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import structlog
from jose import JWTError, jwt

from ..common.cache import CacheKey, CacheStore
from ..core.db import RecordNotFoundError, SsoRepository
from ..core.models import ApiTokenRecord, SessionPrincipal

logger = structlog.get_logger(__name__)

SESSION_COOKIE_NAME = "sso_session"
SESSION_TOKEN_TYPE = "session"
DENYLIST_NAMESPACE = "session_denylist"


# ============================================================================
# Session denylist
# ============================================================================


class SessionDenylist:
    """Cache in front of the ``revoked_sessions`` table.

    Caches both positive (revoked) and negative (not revoked) answers.
    Positive answers live until the session would have expired; negative
    answers expire after ``negative_ttl_seconds``.
    """

    def __init__(
        self,
        repository: SsoRepository,
        store: CacheStore,
        negative_ttl_seconds: int = 60,
    ):
        self.repository = repository
        self.store = store
        self.negative_ttl = negative_ttl_seconds

    @staticmethod
    def _key(jti: str) -> CacheKey:
        return CacheKey(DENYLIST_NAMESPACE, discriminator=jti)

    async def is_revoked(self, jti: str) -> bool:
        cached = await self.store.get(self._key(jti))
        if cached is not None:
            return cached

        revoked = await self.repository.is_session_revoked(jti)
        ttl = self.negative_ttl if not revoked else 24 * 3600
        await self.store.set(self._key(jti), revoked, ttl)
        return revoked

    async def revoke(self, jti: str, user_id: Optional[int], expires_at: Optional[datetime]) -> None:
        await self.repository.revoke_session(jti, user_id, expires_at)
        ttl = 24 * 3600
        if expires_at is not None:
            ttl = max(1, int((expires_at - datetime.now(timezone.utc)).total_seconds()))
        await self.store.set(self._key(jti), True, ttl)
        logger.info("session_revoked", jti=jti, user_id=user_id)


# ============================================================================
# Session JWT
# ============================================================================


@dataclass(frozen=True)
class IssuedSession:
    token: str
    jti: str
    expires_at: datetime


class SessionManager:
    """Issues, decodes and revokes session JWTs."""

    def __init__(
        self,
        secret_key: str,
        denylist: SessionDenylist,
        algorithm: str = "HS256",
        expires_minutes: int = 1440,
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expires_minutes = expires_minutes
        self.denylist = denylist

    def issue(self, principal: SessionPrincipal) -> IssuedSession:
        """
        Create a session token for ``principal``.

        Example:
            >>> session = manager.issue(principal)
            >>> response.set_cookie(SESSION_COOKIE_NAME, session.token, httponly=True)
        """
        expires_at = datetime.now(timezone.utc) + timedelta(minutes=self.expires_minutes)
        jti = str(uuid.uuid4())
        payload = {
            "sub": str(principal.id),
            "email": principal.email,
            "type": SESSION_TOKEN_TYPE,
            "jti": jti,
            "exp": expires_at,
        }
        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        return IssuedSession(token=token, jti=jti, expires_at=expires_at)

    def decode(self, token: str) -> Optional[Dict[str, Any]]:
        """Signed, unexpired session payload, or None. Does not check revocation."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            logger.debug("session_decode_error", error=str(e))
            return None

        if payload.get("type") != SESSION_TOKEN_TYPE or not payload.get("jti"):
            logger.warning("session_type_mismatch", actual=payload.get("type"))
            return None
        return payload

    async def validate(self, token: str) -> Optional[Dict[str, Any]]:
        """Decoded payload of a session that has not been revoked."""
        payload = self.decode(token)
        if payload is None:
            return None
        if await self.denylist.is_revoked(payload["jti"]):
            logger.debug("session_revoked_rejected", jti=payload["jti"])
            return None
        return payload

    async def revoke(self, payload: Dict[str, Any]) -> None:
        expires_at = None
        if payload.get("exp") is not None:
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        user_id = int(payload["sub"]) if payload.get("sub") else None
        await self.denylist.revoke(payload["jti"], user_id, expires_at)


# ============================================================================
# Personal access tokens
# ============================================================================


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


class ApiTokenService:
    """Personal access tokens for mobile clients."""

    def __init__(self, repository: SsoRepository):
        self.repository = repository

    async def issue(self, principal: SessionPrincipal, name: str) -> Tuple[str, ApiTokenRecord]:
        """
        Create a token named ``name``.

        Returns:
            ``(plain_text_token, record)``; the plain text is never stored
        """
        secret = secrets.token_urlsafe(40)
        record = await self.repository.create_api_token(principal.id, name, hash_secret(secret))
        logger.info("api_token_issued", user_id=principal.id, token_id=record.id)
        return f"{record.id}|{secret}", record

    async def authenticate(self, plain: str) -> Optional[Tuple[SessionPrincipal, int]]:
        """``(principal, token_id)`` for a valid token, otherwise None."""
        token_id_part, sep, secret = plain.partition("|")
        if not sep or not secret or not token_id_part.isdigit():
            return None
        token_id = int(token_id_part)

        stored = await self.repository.get_api_token_hash(token_id)
        if stored is None:
            return None
        user_id, token_hash = stored
        if not hmac.compare_digest(token_hash, hash_secret(secret)):
            logger.warning("api_token_mismatch", token_id=token_id)
            return None

        try:
            principal = await self.repository.get_user(user_id)
        except RecordNotFoundError:
            return None
        await self.repository.touch_api_token(token_id)
        return principal, token_id

    async def revoke(self, user_id: int, token_id: int) -> bool:
        return await self.repository.delete_api_token(user_id, token_id)

    async def revoke_others(self, user_id: int, keep_token_id: Optional[int]) -> int:
        return await self.repository.delete_other_api_tokens(user_id, keep_token_id)
