"""Lifecycle of the Console token pair stored for each user."""

import asyncio
import weakref
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog

from ..core.db import SsoRepository
from ..core.models import SessionPrincipal, TokenPair
from .audit import SsoAuditLogger
from .console_client import ConsoleClient
from .crypto import TokenCipher
from .exceptions import ConsoleError

logger = structlog.get_logger(__name__)

REFRESH_THRESHOLD = timedelta(minutes=5)


class TokenLifecycleManager:
    """
    Owns each user's Console access/refresh token pair.

    Tokens are encrypted with ``TokenCipher`` before they reach the
    repository. Refreshes for the same user are serialized by a per-user
    lock inside this process, and a request that waited on the lock re-reads
    the stored pair before deciding to refresh again. Two processes may still
    refresh the same user at once; Console's refresh-token rotation decides
    which pair stays valid and the loser re-authenticates.
    """

    def __init__(
        self,
        repository: SsoRepository,
        client: ConsoleClient,
        cipher: TokenCipher,
        audit: Optional[SsoAuditLogger] = None,
        refresh_threshold: timedelta = REFRESH_THRESHOLD,
    ):
        self.repository = repository
        self.client = client
        self.cipher = cipher
        self.audit = audit or SsoAuditLogger(enabled=False)
        self.refresh_threshold = refresh_threshold
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: int) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def needs_refresh(self, principal: SessionPrincipal, now: Optional[datetime] = None) -> bool:
        """True when the stored expiry is within the refresh threshold (or past)."""
        if principal.token_expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return principal.token_expires_at - self.refresh_threshold <= now

    async def get_access_token(self, principal: SessionPrincipal) -> Optional[str]:
        """
        Decrypted access token, refreshed first when it is about to expire.

        Returns None when the user has no tokens or the stored token has
        expired and could not be refreshed. The stored pair is re-read after
        the refresh attempt, so a request that waited on another request's
        refresh gets the new token.
        """
        if self.needs_refresh(principal):
            await self.refresh_if_needed(principal)
            principal = await self.repository.get_user(principal.id)

        if not principal.encrypted_access_token:
            return None
        expires_at = principal.token_expires_at
        if expires_at is not None and expires_at <= datetime.now(timezone.utc):
            return None
        return self.cipher.decrypt(principal.encrypted_access_token)

    async def refresh_if_needed(self, principal: SessionPrincipal) -> bool:
        """
        Refresh when the token expires within the threshold.

        Returns False, without any network call, when there is no expiry or
        it is further away than the threshold.
        """
        if not self.needs_refresh(principal):
            return False

        async with self._lock_for(principal.id):
            current = await self.repository.get_user(principal.id)
            if not self.needs_refresh(current):
                logger.debug("token_refresh_skipped_concurrent", user_id=principal.id)
                return False
            return await self._refresh(current)

    async def refresh(self, principal: SessionPrincipal) -> bool:
        """
        Refresh the pair with the stored refresh token.

        Returns False instead of raising when there is no refresh token or
        Console rejects it; the user then has to sign in again.
        """
        async with self._lock_for(principal.id):
            current = await self.repository.get_user(principal.id)
            return await self._refresh(current)

    async def _refresh(self, principal: SessionPrincipal) -> bool:
        refresh_token = self.cipher.decrypt(principal.encrypted_refresh_token)
        if not refresh_token:
            logger.info("token_refresh_unavailable", user_id=principal.id)
            return False

        try:
            pair = await self.client.refresh_token(refresh_token)
        except ConsoleError as e:
            logger.warning(
                "token_refresh_failed",
                user_id=principal.id,
                status_code=e.status_code,
                error_code=e.error_code,
            )
            self.audit.token_refresh(principal.id, False, e.error_code)
            return False

        if pair is None:
            self.audit.token_refresh(principal.id, False, "invalid_response")
            return False

        await self.store_tokens(principal, pair)
        self.audit.token_refresh(principal.id, True)
        logger.info("token_refreshed", user_id=principal.id)
        return True

    async def revoke_tokens(self, principal: SessionPrincipal) -> SessionPrincipal:
        """
        Revoke the refresh token at Console (best effort) and clear local tokens.

        Local tokens are cleared whatever Console answers.
        """
        refresh_token = self.cipher.decrypt(principal.encrypted_refresh_token)
        if refresh_token:
            revoked = await self.client.revoke_token(refresh_token)
            if not revoked:
                logger.warning("token_revoke_failed", user_id=principal.id)

        return await self.repository.clear_console_tokens(principal.id)

    async def store_tokens(self, principal: SessionPrincipal, pair: TokenPair) -> SessionPrincipal:
        """Encrypt and persist a fresh pair; expiry is now + ``expires_in``."""
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=pair.expires_in)
        return await self.repository.set_console_tokens(
            principal.id,
            self.cipher.encrypt(pair.access_token),
            self.cipher.encrypt(pair.refresh_token),
            expires_at,
        )
