"""Unit tests for TokenLifecycleManager and TokenCipher."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from sso_client.auth import ConsoleAuthError, TokenCipher, TokenLifecycleManager
from sso_client.core.db import TokenPairError
from sso_client.core.models import TokenPair


class TestTokenCipher:
    def test_encrypts_at_rest(self, cipher: TokenCipher):
        encrypted = cipher.encrypt("secret-token")
        assert encrypted != "secret-token"
        assert cipher.decrypt(encrypted) == "secret-token"

    def test_foreign_ciphertext_reads_as_missing(self, cipher: TokenCipher):
        other = TokenCipher(TokenCipher.generate_key())
        assert cipher.decrypt(other.encrypt("x")) is None
        assert cipher.decrypt(None) is None


class TestGetAccessToken:
    """Reading the access token, refreshing only near expiry."""

    async def test_fresh_token_needs_no_network(self, token_manager: TokenLifecycleManager, store_user, fake_console):
        principal = await store_user(expires_in=600)

        assert await token_manager.get_access_token(principal) == "access-1"
        assert fake_console.calls["refresh_token"] == 0

    async def test_no_tokens(self, token_manager: TokenLifecycleManager, store_user):
        principal = await store_user(expires_in=None)
        assert await token_manager.get_access_token(principal) is None

    async def test_refreshes_within_threshold(self, token_manager: TokenLifecycleManager, store_user, fake_console):
        principal = await store_user(expires_in=120)
        fake_console.refresh_result = TokenPair(access_token="access-2", refresh_token="refresh-2", expires_in=3600)

        assert await token_manager.get_access_token(principal) == "access-2"
        assert fake_console.calls["refresh_token"] == 1

        stored = await token_manager.repository.get_user(principal.id)
        assert stored.token_expires_at > datetime.now(timezone.utc) + timedelta(minutes=59)
        assert token_manager.cipher.decrypt(stored.encrypted_refresh_token) == "refresh-2"

    async def test_near_expiry_refresh_failure_keeps_current_token(
        self, token_manager: TokenLifecycleManager, store_user, fake_console
    ):
        principal = await store_user(expires_in=120)
        fake_console.refresh_error = ConsoleAuthError("revoked", 401)

        assert await token_manager.get_access_token(principal) == "access-1"

    async def test_expired_and_unrefreshable_returns_none(
        self, token_manager: TokenLifecycleManager, store_user, fake_console
    ):
        principal = await store_user(expires_in=-60)
        fake_console.refresh_error = ConsoleAuthError("revoked", 401)

        assert await token_manager.get_access_token(principal) is None

    async def test_waiter_gets_token_refreshed_by_another_request(
        self, token_manager: TokenLifecycleManager, store_user, fake_console
    ):
        principal = await store_user(expires_in=-60)
        fake_console.refresh_result = TokenPair(access_token="access-2", refresh_token="refresh-2", expires_in=3600)

        tokens = await asyncio.gather(
            token_manager.get_access_token(principal),
            token_manager.get_access_token(principal),
        )

        assert tokens == ["access-2", "access-2"]
        assert fake_console.calls["refresh_token"] == 1


class TestRefresh:
    async def test_refresh_returns_false_on_rejection(
        self, token_manager: TokenLifecycleManager, store_user, fake_console
    ):
        principal = await store_user()
        fake_console.refresh_error = ConsoleAuthError("invalid_grant", 401)

        assert await token_manager.refresh(principal) is False

    async def test_refresh_returns_false_on_invalid_response(
        self, token_manager: TokenLifecycleManager, store_user, fake_console
    ):
        principal = await store_user()
        fake_console.refresh_result = None

        assert await token_manager.refresh(principal) is False

    async def test_refresh_without_refresh_token(self, token_manager: TokenLifecycleManager, store_user, fake_console):
        principal = await store_user(expires_in=None)

        assert await token_manager.refresh(principal) is False
        assert fake_console.calls["refresh_token"] == 0

    async def test_refresh_if_needed_skips_without_expiry(self, token_manager: TokenLifecycleManager, store_user):
        principal = await store_user(expires_in=None)
        assert await token_manager.refresh_if_needed(principal) is False

    async def test_concurrent_refreshes_call_console_once(
        self, token_manager: TokenLifecycleManager, store_user, fake_console
    ):
        principal = await store_user(expires_in=60)
        fake_console.refresh_result = TokenPair(access_token="access-2", refresh_token="refresh-2", expires_in=3600)

        results = await asyncio.gather(
            token_manager.refresh_if_needed(principal),
            token_manager.refresh_if_needed(principal),
            token_manager.refresh_if_needed(principal),
        )

        assert sorted(results) == [False, False, True]
        assert fake_console.calls["refresh_token"] == 1


class TestStoreAndRevoke:
    async def test_store_tokens_sets_expiry(self, token_manager: TokenLifecycleManager, store_user):
        principal = await store_user(expires_in=None)
        before = datetime.now(timezone.utc)

        stored = await token_manager.store_tokens(
            principal, TokenPair(access_token="a", refresh_token="r", expires_in=900)
        )

        assert stored.has_valid_tokens()
        assert before + timedelta(seconds=899) <= stored.token_expires_at
        assert stored.encrypted_access_token != "a"

    async def test_partial_pair_rejected(self, repository, store_user):
        principal = await store_user(expires_in=None)
        with pytest.raises(TokenPairError):
            await repository.set_console_tokens(principal.id, "a", None, None)

    async def test_revoke_clears_local_tokens(self, token_manager: TokenLifecycleManager, store_user, fake_console):
        principal = await store_user()

        cleared = await token_manager.revoke_tokens(principal)

        assert fake_console.revoked == ["refresh-1"]
        assert not cleared.has_tokens()
        assert cleared.token_expires_at is None

    async def test_revoke_clears_even_when_console_fails(
        self, token_manager: TokenLifecycleManager, store_user, fake_console
    ):
        principal = await store_user()

        async def failing_revoke(refresh_token):
            return False

        fake_console.revoke_token = failing_revoke
        cleared = await token_manager.revoke_tokens(principal)
        assert not cleared.has_tokens()
