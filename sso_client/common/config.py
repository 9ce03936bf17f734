"""Configuration models using Pydantic for validation."""

from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
import yaml
from pydantic import BaseModel, Field, field_validator

logger = structlog.get_logger(__name__)

SYSTEM_ROLE_LEVELS: Dict[str, int] = {
    "admin": 100,
    "manager": 50,
    "member": 10,
}


class ConsoleConfig(BaseModel):
    """Connection settings for the Console identity provider."""

    url: str = Field(
        default="http://auth.test",
        description="Base URL of the Console SSO provider",
    )
    timeout: int = Field(
        default=10,
        ge=1,
        le=300,
        description="Request timeout in seconds",
    )
    retry: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Total attempts per provider request (first try included)",
    )
    retry_delay_ms: int = Field(
        default=100,
        ge=0,
        le=60000,
        description="Fixed delay between attempts in milliseconds",
    )
    retry_status_codes: List[int] = Field(
        default_factory=lambda: [500, 502, 503, 504],
        description="HTTP status codes that trigger another attempt",
    )

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the provider URL so paths can be appended safely."""
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Console URL must be http(s): {v}")
        return v.rstrip("/")

    @field_validator("retry_status_codes")
    @classmethod
    def validate_status_codes(cls, v: List[int]) -> List[int]:
        """Validate that status codes are in valid range."""
        for code in v:
            if not 100 <= code <= 599:
                raise ValueError(f"Invalid HTTP status code: {code}")
        return v


class ServiceConfig(BaseModel):
    """This application's registration in Console."""

    slug: str = Field(
        default="boilerplate",
        min_length=1,
        description="Service slug registered in Console",
    )
    callback_url: str = Field(
        default="/sso/callback",
        description="Frontend path Console redirects to after login",
    )


class CacheTTLConfig(BaseModel):
    """TTL settings for the SSO caches."""

    jwks_ttl: int = Field(
        default=60,
        ge=1,
        description="JWKS cache TTL in minutes",
    )
    org_access_ttl: int = Field(
        default=300,
        ge=1,
        description="Organization access cache TTL in seconds",
    )
    user_teams_ttl: int = Field(
        default=300,
        ge=1,
        description="User teams cache TTL in seconds",
    )
    role_permissions_ttl: int = Field(
        default=3600,
        ge=1,
        description="Role permissions cache TTL in seconds",
    )
    team_permissions_ttl: int = Field(
        default=3600,
        ge=1,
        description="Team permissions cache TTL in seconds",
    )
    max_entries: int = Field(
        default=10000,
        ge=1,
        description="Maximum entries held by the in-memory cache store",
    )


class SecurityConfig(BaseModel):
    """Redirect validation policy."""

    allowed_redirect_hosts: List[str] = Field(
        default_factory=list,
        description="Hosts allowed as redirect targets (supports *.domain wildcards)",
    )
    require_https_redirects: bool = Field(
        default=False,
        description="Reject absolute redirect URLs that are not https",
    )
    max_redirect_url_length: int = Field(
        default=2048,
        ge=1,
        le=65536,
        description="Longest redirect URL accepted",
    )

    @field_validator("allowed_redirect_hosts")
    @classmethod
    def normalize_hosts(cls, v: List[str]) -> List[str]:
        """Lower-case hosts and drop blanks."""
        return [h.strip().lower() for h in v if h and h.strip()]


class LocaleConfig(BaseModel):
    """Locale forwarding to Console."""

    enabled: bool = Field(
        default=True,
        description="Send the request locale to Console",
    )
    header: str = Field(
        default="Accept-Language",
        description="Header used to forward the locale",
    )
    default: str = Field(
        default="en",
        description="Locale used when the request does not carry one",
    )


class RoutesConfig(BaseModel):
    """Route prefixes for the SSO and admin routers."""

    prefix: str = Field(default="/api/sso", description="Prefix for SSO routes")
    admin_prefix: str = Field(
        default="/api/admin/sso",
        description="Prefix for SSO admin routes",
    )

    @field_validator("prefix", "admin_prefix")
    @classmethod
    def normalize_prefix(cls, v: str) -> str:
        """Ensure a single leading slash and no trailing slash."""
        return "/" + v.strip("/")


class DatabaseConfig(BaseModel):
    """SQLite storage for users, roles and permissions."""

    path: str = Field(
        default="sso_client.db",
        description="Path to the SQLite database file",
    )
    enable_wal: bool = Field(
        default=True,
        description="Enable Write-Ahead Logging mode",
    )
    connection_timeout: int = Field(
        default=30,
        ge=1,
        le=300,
        description="Connection timeout in seconds",
    )


class HTTPConfig(BaseModel):
    """Configuration for the outbound HTTP client."""

    max_redirects: int = Field(
        default=5,
        ge=0,
        le=20,
        description="Maximum number of redirects to follow",
    )
    verify_ssl: bool = Field(
        default=True,
        description="Whether to verify SSL certificates",
    )
    max_connections: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Maximum number of connections in the pool",
    )
    max_keepalive_connections: int = Field(
        default=20,
        ge=0,
        le=100,
        description="Maximum number of keep-alive connections",
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(
        default="INFO",
        description="Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    format: str = Field(
        default="json",
        description="Log format: json or text",
    )
    third_party: Dict[str, str] = Field(
        default_factory=dict,
        description="Log levels for third-party libraries (advanced)",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "text"]
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Invalid format: {v}. Must be one of {valid_formats}")
        return v_lower


class Config(BaseModel):
    """Root configuration for the SSO client."""

    console: ConsoleConfig = Field(default_factory=ConsoleConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    cache: CacheTTLConfig = Field(default_factory=CacheTTLConfig)
    role_levels: Dict[str, int] = Field(
        default_factory=lambda: dict(SYSTEM_ROLE_LEVELS),
        description="Role slug to level map; higher levels include lower ones",
    )
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    locale: LocaleConfig = Field(default_factory=LocaleConfig)
    routes: RoutesConfig = Field(default_factory=RoutesConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    http: HTTPConfig = Field(default_factory=HTTPConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    audit_logging: bool = Field(
        default=True,
        description="Emit SSO security audit events",
    )

    @field_validator("role_levels")
    @classmethod
    def validate_role_levels(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Role levels must be within 0..100."""
        for slug, level in v.items():
            if not 0 <= level <= 100:
                raise ValueError(f"Role level for '{slug}' must be between 0 and 100: {level}")
        return v

    def role_level(self, role: Optional[str]) -> int:
        """Level for a role slug; unknown or missing roles rank lowest."""
        if not role:
            return 0
        return self.role_levels.get(role, 0)

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """
        Load configuration from a YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            Validated Config instance

        Raises:
            FileNotFoundError: If the file does not exist
            pydantic.ValidationError: If the content is invalid
        """
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        logger.info("config_loaded", path=str(path))
        return cls.model_validate(data)

    @classmethod
    def from_yaml_string(cls, content: str) -> "Config":
        """Load configuration from a YAML string."""
        data: Any = yaml.safe_load(content) or {}
        return cls.model_validate(data)
