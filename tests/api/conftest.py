"""Shared pytest fixtures for API tests."""

import functools
from pathlib import Path
from typing import Any, Callable, Generator

import pytest
from fastapi.testclient import TestClient

import sso_client
from sso_client.common.cache import reset_cache_store
from sso_client.common.config import Config
from sso_client.core.models import TokenPair
from sso_client.web.main import create_app
from sso_client.web.settings import get_settings


@pytest.fixture
def api_env(
    monkeypatch: pytest.MonkeyPatch,
    fernet_key: str,
    session_secret: str,
    tmp_path: Path,
) -> Generator[None, None, None]:
    """Provide test API settings through the environment."""
    monkeypatch.chdir(tmp_path)  # no stray config.yaml or .env
    monkeypatch.setenv("SSO_CLIENT_API_SESSION_SECRET", session_secret)
    monkeypatch.setenv("SSO_CLIENT_API_TOKEN_ENCRYPTION_KEY", fernet_key)
    monkeypatch.setenv("SSO_CLIENT_API_DEBUG", "true")  # non-secure cookies over http
    monkeypatch.setenv("SSO_CLIENT_API_LOG_REQUESTS", "false")  # Reduce noise in tests
    monkeypatch.setenv("SSO_CLIENT_API_APP_URL", "https://app.test")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_app(api_env, sso_config: Config, fake_console) -> Generator[TestClient, None, None]:
    """
    Provide a FastAPI TestClient around the fake Console.

    The lifespan opens the test database on the client's event loop and
    builds the services with ``fake_console``.
    """
    sso_client._config = sso_config
    sso_client._repository = None
    reset_cache_store()

    app = create_app(client=fake_console)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    # Cleanup
    sso_client._config = None
    sso_client._repository = None
    reset_cache_store()


@pytest.fixture
def run(test_app: TestClient) -> Callable[..., Any]:
    """
    Call a coroutine function on the app's event loop.

    Example:
        role = run(services.repository.create_role, "auditor", "Auditor", 20)
    """

    def _run(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return test_app.portal.call(functools.partial(fn, *args, **kwargs))

    return _run


@pytest.fixture
def services(test_app: TestClient):
    return test_app.app.state.services


@pytest.fixture
def login(test_app: TestClient, fake_console, sign_token) -> Callable[..., Any]:
    """
    Complete a login through ``POST /api/sso/callback``.

    Web logins leave the session cookie in the client's cookie jar.

    Example:
        response = login(device_name="Pixel 9")
    """
    counter = {"n": 0}

    def _login(device_name: str = None, **claims: Any):
        counter["n"] += 1
        code = f"code-{counter['n']}"
        fake_console.pairs[code] = TokenPair(
            access_token=sign_token(**claims),
            refresh_token=f"refresh-{code}",
            expires_in=3600,
        )
        body = {"code": code}
        if device_name:
            body["device_name"] = device_name
        return test_app.post("/api/sso/callback", json=body)

    return _login


@pytest.fixture
def admin_client(test_app: TestClient, login, fake_console, acme_grant) -> TestClient:
    """A client logged in as an admin of organization ``acme``."""
    fake_console.access["acme"] = acme_grant
    assert login().status_code == 200
    return test_app
