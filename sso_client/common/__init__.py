"""Common utilities and shared components for the SSO client."""

from .cache import CacheEntry, CacheKey, CacheStore, get_cache_store, reset_cache_store
from .config import (
    CacheTTLConfig,
    Config,
    ConsoleConfig,
    DatabaseConfig,
    HTTPConfig,
    LocaleConfig,
    LoggingConfig,
    RoutesConfig,
    SecurityConfig,
    ServiceConfig,
    SYSTEM_ROLE_LEVELS,
)
from .http_client import AsyncHTTPClient
from .locale import get_current_locale, parse_accept_language, set_current_locale
from .logging_config import bind_context, clear_context, get_logger, setup_logging

__all__ = [
    # Config
    "Config",
    "ConsoleConfig",
    "ServiceConfig",
    "CacheTTLConfig",
    "SecurityConfig",
    "LocaleConfig",
    "RoutesConfig",
    "DatabaseConfig",
    "HTTPConfig",
    "LoggingConfig",
    "SYSTEM_ROLE_LEVELS",
    # Cache
    "CacheKey",
    "CacheEntry",
    "CacheStore",
    "get_cache_store",
    "reset_cache_store",
    # HTTP
    "AsyncHTTPClient",
    # Locale
    "get_current_locale",
    "set_current_locale",
    "parse_accept_language",
    # Logging
    "setup_logging",
    "get_logger",
    "bind_context",
    "clear_context",
]
