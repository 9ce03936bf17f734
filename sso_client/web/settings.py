"""API-specific settings using Pydantic BaseSettings."""

from functools import lru_cache
from typing import List, Optional

from cryptography.fernet import Fernet
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class APISettings(BaseSettings):
    """
    FastAPI application settings.

    Settings can be configured via environment variables with the prefix
    SSO_CLIENT_API_. For example: SSO_CLIENT_API_PORT=8080,
    SSO_CLIENT_API_DEBUG=true

    Attributes:
        host: Server bind address
        port: Server bind port
        debug: Enable debug mode (auto-reload, non-secure cookies)
        allowed_origins: List of allowed CORS origins
        log_requests: Log all requests and responses
        openapi_url: OpenAPI schema URL (set to None to disable)
        app_url: Public origin of this service; its host is an allowed redirect target
        frontend_url: Origin of the SPA; its host is an allowed redirect target
        session_secret: Secret key for signing session JWTs (always required)
        session_algorithm: Session JWT signing algorithm (default: HS256)
        session_expires_minutes: Session lifetime in minutes (default: 1440 = 24h)
        token_encryption_key: Fernet key encrypting stored Console tokens (always required)
        config_path: Optional YAML file loaded at startup
    """

    model_config = SettingsConfigDict(
        env_prefix="SSO_CLIENT_API_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    allowed_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]
    log_requests: bool = True
    openapi_url: Optional[str] = "/openapi.json"

    # Origins
    app_url: Optional[str] = None
    frontend_url: Optional[str] = None

    # Session settings
    session_secret: Optional[str] = None
    session_algorithm: str = "HS256"
    session_expires_minutes: int = 1440
    token_encryption_key: Optional[str] = None

    config_path: Optional[str] = None

    @model_validator(mode="after")
    def validate_secrets(self) -> "APISettings":
        """Both secrets are required and the encryption key must be a Fernet key."""
        if not self.session_secret:
            raise ValueError(
                "SSO_CLIENT_API_SESSION_SECRET must be set. "
                'Generate a secure secret with: python -c "import secrets; print(secrets.token_urlsafe(32))"'
            )
        if not self.token_encryption_key:
            raise ValueError(
                "SSO_CLIENT_API_TOKEN_ENCRYPTION_KEY must be set. Generate one with: "
                'python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"'
            )
        try:
            Fernet(self.token_encryption_key.encode())
        except ValueError as e:
            raise ValueError(f"SSO_CLIENT_API_TOKEN_ENCRYPTION_KEY is not a valid Fernet key: {e}") from e
        return self


@lru_cache
def get_settings() -> APISettings:
    """
    Get cached API settings instance.

    Returns:
        APISettings instance (cached)
    """
    return APISettings()
