"""Unit tests for session JWTs, the denylist and personal access tokens."""

import pytest
from jose import jwt

from sso_client.auth import ApiTokenService, SessionDenylist, SessionManager

SECRET = "unit-test-secret"


@pytest.fixture
def denylist(repository, cache_store) -> SessionDenylist:
    return SessionDenylist(repository, cache_store)


@pytest.fixture
def manager(denylist) -> SessionManager:
    return SessionManager(SECRET, denylist, expires_minutes=30)


class TestSessionManager:
    """Issue, validate and revoke session tokens."""

    async def test_issue_and_validate(self, manager: SessionManager, store_user):
        principal = await store_user()
        issued = manager.issue(principal)

        payload = await manager.validate(issued.token)

        assert payload["sub"] == str(principal.id)
        assert payload["jti"] == issued.jti
        assert payload["type"] == "session"

    async def test_each_session_has_unique_jti(self, manager: SessionManager, store_user):
        principal = await store_user()
        assert manager.issue(principal).jti != manager.issue(principal).jti

    async def test_revoked_session_rejected(self, manager: SessionManager, store_user, repository):
        principal = await store_user()
        issued = manager.issue(principal)
        payload = await manager.validate(issued.token)

        await manager.revoke(payload)

        assert await manager.validate(issued.token) is None
        assert await repository.is_session_revoked(issued.jti)

    async def test_negative_answer_is_replaced_on_revoke(self, manager: SessionManager, store_user):
        principal = await store_user()
        issued = manager.issue(principal)
        payload = await manager.validate(issued.token)

        # The "not revoked" answer is now cached; revoking must override it
        await manager.revoke(payload)
        assert await manager.validate(issued.token) is None

    def test_wrong_secret(self, manager: SessionManager, denylist):
        other = SessionManager("another-secret", denylist)
        token = jwt.encode({"sub": "1", "type": "session", "jti": "x"}, "another-secret", algorithm="HS256")
        assert other.decode(token) is not None
        assert manager.decode(token) is None

    def test_wrong_token_type(self, manager: SessionManager):
        token = jwt.encode({"sub": "1", "type": "refresh", "jti": "x"}, SECRET, algorithm="HS256")
        assert manager.decode(token) is None

    def test_missing_jti(self, manager: SessionManager):
        token = jwt.encode({"sub": "1", "type": "session"}, SECRET, algorithm="HS256")
        assert manager.decode(token) is None

    async def test_expired(self, denylist, store_user):
        manager = SessionManager(SECRET, denylist, expires_minutes=-1)
        issued = manager.issue(await store_user())
        assert await manager.validate(issued.token) is None

    def test_garbage(self, manager: SessionManager):
        assert manager.decode("not.a.jwt") is None


class TestApiTokenService:
    """Personal access tokens in ``{id}|{secret}`` form."""

    async def test_issue_and_authenticate(self, repository, store_user):
        service = ApiTokenService(repository)
        principal = await store_user()

        plain, record = await service.issue(principal, "Pixel 9")
        authenticated, token_id = await service.authenticate(plain)

        assert plain.startswith(f"{record.id}|")
        assert authenticated.id == principal.id
        assert token_id == record.id
        assert (await repository.get_api_token(record.id)).last_used_at is not None

    async def test_secret_not_stored_in_plain_text(self, repository, store_user):
        service = ApiTokenService(repository)
        plain, record = await service.issue(await store_user(), "Pixel 9")

        _, stored_hash = await repository.get_api_token_hash(record.id)
        assert plain.split("|", 1)[1] != stored_hash

    @pytest.mark.parametrize("token", ["", "abc", "1|", "|secret", "x|secret", "999|secret"])
    async def test_malformed_or_unknown(self, repository, token):
        assert await ApiTokenService(repository).authenticate(token) is None

    async def test_wrong_secret(self, repository, store_user):
        service = ApiTokenService(repository)
        _, record = await service.issue(await store_user(), "Pixel 9")
        assert await service.authenticate(f"{record.id}|wrong") is None

    async def test_revoke_and_revoke_others(self, repository, store_user):
        service = ApiTokenService(repository)
        principal = await store_user()
        other = await store_user(console_user_id=43, email="bob@example.com", name="Bob")

        keep_plain, keep = await service.issue(principal, "phone")
        _, tablet = await service.issue(principal, "tablet")
        _, laptop = await service.issue(principal, "laptop")
        _, bobs = await service.issue(other, "bob")

        assert await service.revoke(other.id, tablet.id) is False
        assert await service.revoke(principal.id, tablet.id) is True
        assert await service.revoke_others(principal.id, keep.id) == 1

        assert [t.id for t in await repository.list_api_tokens(principal.id)] == [keep.id]
        assert await service.authenticate(keep_plain) is not None
        assert [t.id for t in await repository.list_api_tokens(other.id)] == [bobs.id]
        assert laptop.id not in [t.id for t in await repository.list_api_tokens(principal.id)]
