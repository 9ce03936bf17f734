"""Route modules for the SSO client API."""

from . import admin, catalog, sso

__all__ = [
    "admin",
    "catalog",
    "sso",
]
