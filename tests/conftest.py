"""Shared pytest fixtures for all tests."""

import base64
import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
import pytest_asyncio
import respx
from authlib.jose import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from sso_client.auth import (
    ConsoleClient,
    SsoAuditLogger,
    SsoServices,
    TokenCipher,
    TokenLifecycleManager,
)
from sso_client.common.cache import CacheStore
from sso_client.common.config import (
    Config,
    ConsoleConfig,
    DatabaseConfig,
    LoggingConfig,
    SecurityConfig,
)
from sso_client.core.db import SsoRepository
from sso_client.core.models import AccessGrant, Organization, SessionPrincipal, Team, TokenPair

CONSOLE_URL = "https://console.test"
KID = "key-1"
SESSION_SECRET = "test-session-secret-with-enough-entropy"


# ==================== Keys and tokens ====================


def _b64url_uint(value: int) -> str:
    raw = value.to_bytes((value.bit_length() + 7) // 8, "big")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def public_jwk(private_key: rsa.RSAPrivateKey, kid: str = KID) -> Dict[str, str]:
    """RSA public JWK for ``private_key``."""
    numbers = private_key.public_key().public_numbers()
    return {
        "kty": "RSA",
        "kid": kid,
        "use": "sig",
        "alg": "RS256",
        "n": _b64url_uint(numbers.n),
        "e": _b64url_uint(numbers.e),
    }


def private_pem(private_key: rsa.RSAPrivateKey) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    """Signing key published in the test JWKS."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_rsa_key() -> rsa.RSAPrivateKey:
    """A key Console never published."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def make_jwk() -> Callable[..., Dict[str, str]]:
    return public_jwk


@pytest.fixture
def jwks(rsa_key: rsa.RSAPrivateKey) -> Dict[str, Any]:
    return {"keys": [public_jwk(rsa_key)]}


@pytest.fixture
def sign_token(rsa_key: rsa.RSAPrivateKey) -> Callable[..., str]:
    """
    Build RS256 access tokens.

    Example:
        token = sign_token(sub="7", exp_in=-10)
    """

    def _sign(
        key: Optional[rsa.RSAPrivateKey] = None,
        kid: Optional[str] = KID,
        exp_in: Optional[int] = 3600,
        **claims: Any,
    ) -> str:
        now = int(time.time())
        payload: Dict[str, Any] = {
            "sub": "42",
            "email": "jane@example.com",
            "name": "Jane Doe",
            "aud": "test-service",
            "iat": now,
        }
        if exp_in is not None:
            payload["exp"] = now + exp_in
        payload.update(claims)
        header = {"alg": "RS256"}
        if kid is not None:
            header["kid"] = kid
        return jwt.encode(header, payload, private_pem(key or rsa_key)).decode("ascii")

    return _sign


# ==================== Fake provider ====================


class FakeConsoleClient:
    """In-memory stand-in for ``ConsoleClient`` with call counting."""

    def __init__(self, jwks: Optional[Dict[str, Any]] = None, url: str = CONSOLE_URL):
        self.url = url
        self.jwks = jwks or {"keys": []}
        self.pairs: Dict[str, TokenPair] = {}
        self.exchange_error: Optional[Exception] = None
        self.refresh_result: Optional[TokenPair] = None
        self.refresh_error: Optional[Exception] = None
        self.access: Dict[str, Optional[AccessGrant]] = {}
        self.organizations: List[Organization] = []
        self.teams: Dict[str, List[Team]] = {}
        self.revoked: List[str] = []
        self.calls: Dict[str, int] = defaultdict(int)

    def get_console_url(self) -> str:
        return self.url

    def get_service_slug(self) -> str:
        return "test-service"

    async def exchange_code(self, code: str) -> Optional[TokenPair]:
        self.calls["exchange_code"] += 1
        if self.exchange_error is not None:
            raise self.exchange_error
        return self.pairs.get(code)

    async def refresh_token(self, refresh_token: str) -> Optional[TokenPair]:
        self.calls["refresh_token"] += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        return self.refresh_result

    async def revoke_token(self, refresh_token: str) -> bool:
        self.calls["revoke_token"] += 1
        self.revoked.append(refresh_token)
        return True

    async def get_access(self, access_token: str, org_slug: str) -> Optional[AccessGrant]:
        self.calls["get_access"] += 1
        return self.access.get(org_slug)

    async def get_organizations(self, access_token: str) -> List[Organization]:
        self.calls["get_organizations"] += 1
        return list(self.organizations)

    async def get_user_teams(self, access_token: str, org_slug: str) -> List[Team]:
        self.calls["get_user_teams"] += 1
        return list(self.teams.get(org_slug, []))

    async def get_jwks(self) -> Dict[str, Any]:
        self.calls["get_jwks"] += 1
        if isinstance(self.jwks, Exception):
            raise self.jwks
        return self.jwks

    async def aclose(self) -> None:
        pass


@pytest.fixture
def fake_console(jwks: Dict[str, Any]) -> FakeConsoleClient:
    return FakeConsoleClient(jwks=jwks)


@pytest.fixture
def acme_grant() -> AccessGrant:
    return AccessGrant(
        organization_id=1,
        organization_slug="acme",
        org_role="admin",
        service_role="admin",
        service_role_level=100,
    )


# ==================== Configuration and storage ====================


@pytest.fixture
def sso_config(tmp_path: Path) -> Config:
    """Provide a test configuration with fast retries and a temp database."""
    return Config(
        console=ConsoleConfig(url=CONSOLE_URL, timeout=5, retry=2, retry_delay_ms=0),
        security=SecurityConfig(allowed_redirect_hosts=["*.trusted.test"]),
        database=DatabaseConfig(
            path=str(tmp_path / "test_sso.db"),
            enable_wal=False,  # Disable WAL mode in tests to avoid lock issues
        ),
        logging=LoggingConfig(level="WARNING", format="text"),
    )


@pytest_asyncio.fixture
async def repository(sso_config: Config) -> SsoRepository:
    """Provide a test database with migrations applied."""
    repo = await SsoRepository.from_config(sso_config.database)
    yield repo
    await repo.close()


@pytest.fixture
def cache_store() -> CacheStore:
    return CacheStore()


@pytest.fixture
def fernet_key() -> str:
    return TokenCipher.generate_key()


@pytest.fixture
def session_secret() -> str:
    return SESSION_SECRET


@pytest.fixture
def cipher(fernet_key: str) -> TokenCipher:
    return TokenCipher(fernet_key)


@pytest.fixture
def mock_console():
    """Provide a respx router for Console requests."""
    with respx.mock(base_url=CONSOLE_URL, assert_all_called=False) as router:
        yield router


@pytest_asyncio.fixture
async def console_client(sso_config: Config) -> ConsoleClient:
    client = ConsoleClient(sso_config)
    yield client
    await client.aclose()


@pytest.fixture
def token_manager(
    repository: SsoRepository,
    fake_console: FakeConsoleClient,
    cipher: TokenCipher,
) -> TokenLifecycleManager:
    return TokenLifecycleManager(repository, fake_console, cipher, SsoAuditLogger(enabled=False))


@pytest.fixture
def services(
    sso_config: Config,
    repository: SsoRepository,
    cache_store: CacheStore,
    fernet_key: str,
    fake_console: FakeConsoleClient,
) -> SsoServices:
    """Full service graph around the fake provider."""
    return SsoServices.build(
        sso_config,
        repository,
        cache_store,
        session_secret=SESSION_SECRET,
        token_encryption_key=fernet_key,
        app_url="https://app.test",
        client=fake_console,
    )


@pytest.fixture
def store_user(repository: SsoRepository, cipher: TokenCipher):
    """
    Create a local user, optionally with a token pair expiring in ``expires_in`` seconds.

    A negative ``expires_in`` stores an already expired pair; None stores no tokens.

    Example:
        principal = await store_user(console_user_id=7, expires_in=60)
    """

    async def _store(
        console_user_id: int = 42,
        email: str = "jane@example.com",
        name: str = "Jane Doe",
        expires_in: Optional[int] = 3600,
        access_token: str = "access-1",
        refresh_token: str = "refresh-1",
    ) -> SessionPrincipal:
        principal = await repository.upsert_user(console_user_id, email, name)
        if expires_in is None:
            return principal
        return await repository.set_console_tokens(
            principal.id,
            cipher.encrypt(access_token),
            cipher.encrypt(refresh_token),
            datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )

    return _store
