"""FastAPI application factory and entry point."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

import structlog
import uvicorn
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi

import sso_client
from sso_client.auth import ConsoleClient, SsoServices
from sso_client.common.cache import get_cache_store
from sso_client.common.config import Config
from sso_client.common.logging_config import setup_logging

from .dependencies import get_app_config
from .middleware import RequestContextMiddleware, RequestLoggingMiddleware, register_exception_handlers
from .schemas.common import HealthCheckResponse
from .settings import get_settings

logger = structlog.get_logger(__name__)


def _lifespan(client: Optional[ConsoleClient]):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Application lifespan context manager.

        Handles startup and shutdown events:
        - Startup: Configure sso_client (logging, database), build the services
        - Shutdown: Close the Console HTTP client and the database

        Note: In test mode, sso_client._config and sso_client._repository are
        pre-configured by test fixtures, so we skip initialization.
        """
        settings = get_settings()
        logger.info("api_starting", host=settings.host, port=settings.port)

        already_configured = sso_client._config is not None and sso_client._repository is not None
        if not already_configured:
            config_path = Path(settings.config_path) if settings.config_path else None
            await sso_client.configure(config_path=config_path)
        else:
            logger.info("api_using_existing_config")

        config = sso_client.get_config()
        repository = await sso_client.get_repository()

        purged = await repository.purge_expired_revocations()
        if purged:
            logger.info("expired_session_revocations_purged", count=purged)

        services = SsoServices.build(
            config,
            repository,
            get_cache_store(config.cache.max_entries),
            session_secret=settings.session_secret,
            token_encryption_key=settings.token_encryption_key,
            session_algorithm=settings.session_algorithm,
            session_expires_minutes=settings.session_expires_minutes,
            app_url=settings.app_url,
            frontend_url=settings.frontend_url,
            client=client,
        )
        app.state.services = services

        logger.info(
            "api_ready",
            version=sso_client.__version__,
            service=config.service.slug,
            debug=settings.debug,
        )

        yield

        logger.info("api_shutting_down")
        await services.aclose()

        if not already_configured and sso_client._repository is not None:
            await sso_client._repository.close()

    return lifespan


def create_app(client: Optional[ConsoleClient] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This factory function creates the app with:
    - OpenAPI metadata (title, version, description)
    - CORS and request context middleware
    - Request logging middleware (if enabled)
    - Exception handlers rendering the ``{"error", "message"}`` envelope
    - Health check endpoint
    - SSO, catalog and admin routers under the configured prefixes

    Args:
        client: Console client to use instead of one built from config

    Example:
        from fastapi.testclient import TestClient
        from sso_client.web import create_app

        with TestClient(create_app()) as client:
            client.get("/health")
    """
    settings = get_settings()

    config = sso_client.get_config()
    setup_logging(config.logging)

    app = FastAPI(
        title="SSO Client API",
        version=sso_client.__version__,
        description="""Single sign-on against Console for this service.

## Authentication

Browser clients receive an httpOnly `sso_session` cookie from `POST /callback`.
Mobile clients pass `device_name` to the callback and send the returned
personal access token as a Bearer token:

```
Authorization: Bearer <id>|<secret>
```

## Organizations

Organization-scoped endpoints read the organization slug from the `X-Org-Id` header.
""",
        openapi_url=settings.openapi_url,
        openapi_tags=[
            {"name": "Health", "description": "Health check and status endpoints"},
            {"name": "SSO Auth", "description": "Login callback, logout, current user and API tokens"},
            {"name": "SSO Catalog", "description": "Read-only roles and permissions"},
            {"name": "SSO Admin", "description": "Role, permission and team permission administration"},
        ],
        lifespan=_lifespan(client),
        debug=settings.debug,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if settings.log_requests:
        app.add_middleware(RequestLoggingMiddleware)

    # Added last so it runs first and request logs carry the request id
    app.add_middleware(RequestContextMiddleware, locale=config.locale)

    register_exception_handlers(app)

    @app.get(
        "/health",
        tags=["Health"],
        summary="Health check",
        response_model=HealthCheckResponse,
        response_description="Health status of the API",
    )
    async def health_check(config: Config = Depends(get_app_config)) -> HealthCheckResponse:
        """Basic health information including the API version."""
        return HealthCheckResponse(
            status="ok",
            version=sso_client.__version__,
            service=config.service.slug,
        )

    from .routes import admin, catalog, sso

    app.include_router(sso.router, prefix=config.routes.prefix)
    app.include_router(catalog.router, prefix=config.routes.prefix)
    app.include_router(admin.router, prefix=config.routes.admin_prefix)

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema
        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
            tags=app.openapi_tags,
        )
        openapi_schema.setdefault("components", {})["securitySchemes"] = {
            "BearerAuth": {
                "type": "http",
                "scheme": "bearer",
                "description": "Personal access token returned by POST /callback with device_name",
            },
            "SessionCookie": {
                "type": "apiKey",
                "in": "cookie",
                "name": "sso_session",
            },
        }
        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi

    logger.info("api_app_created", routes=len(app.routes))

    return app


def run() -> None:
    """
    Run the API server with uvicorn.

    This is the entry point for the sso-client-api script.
    """
    settings = get_settings()

    uvicorn.run(
        "sso_client.web.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
