"""Middleware and exception handlers for the FastAPI application."""

import time
import uuid
from typing import Any, Callable, Dict, Optional

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from sso_client.auth.exceptions import (
    ConsoleAccessDeniedError,
    ConsoleApiError,
    ConsoleAuthError,
    ConsoleError,
    ConsoleNotFoundError,
    ConsoleServerError,
)
from sso_client.auth.flow import AuthFlowError
from sso_client.common.config import LocaleConfig
from sso_client.common.locale import parse_accept_language, set_current_locale
from sso_client.common.logging_config import bind_context, clear_context
from sso_client.core.db.exceptions import (
    DatabaseError,
    DuplicateRecordError,
    RecordNotFoundError,
    SystemRoleError,
)

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class SsoHTTPException(Exception):
    """
    An error rendered with the ``{"error", "message"}`` envelope.

    Extra keyword arguments are merged into the body, e.g.
    ``required_role`` / ``current_role`` for ``INSUFFICIENT_ROLE``.
    """

    def __init__(self, status_code: int, error: str, message: str, **extra: Any):
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.message = message
        self.extra = extra


def error_response(
    status_code: int,
    error: str,
    message: str,
    extra: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    content: Dict[str, Any] = {"error": error, "message": message}
    if extra:
        content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


_CONSOLE_STATUS = (
    (ConsoleAuthError, 401, "UNAUTHENTICATED"),
    (ConsoleAccessDeniedError, 403, "ACCESS_DENIED"),
    (ConsoleNotFoundError, 404, "NOT_FOUND"),
    (ConsoleServerError, 502, "CONSOLE_UNAVAILABLE"),
)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register exception handlers for the FastAPI application.

    Maps exceptions to status codes with a stable ``error`` code:
    - SsoHTTPException, AuthFlowError -> their own status
    - ConsoleAuthError -> 401, ConsoleAccessDeniedError -> 403,
      ConsoleNotFoundError -> 404, ConsoleApiError -> 400,
      ConsoleServerError -> 502
    - RecordNotFoundError -> 404, DuplicateRecordError -> 409,
      SystemRoleError -> 422, other DatabaseError -> 500
    - RequestValidationError -> 422

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(SsoHTTPException)
    async def sso_http_exception_handler(request: Request, exc: SsoHTTPException) -> JSONResponse:
        return error_response(exc.status_code, exc.error, exc.message, exc.extra)

    @app.exception_handler(AuthFlowError)
    async def auth_flow_error_handler(request: Request, exc: AuthFlowError) -> JSONResponse:
        logger.warning(
            "auth_flow_failed",
            error_code=exc.error_code,
            state=exc.state.value if exc.state else None,
            path=str(request.url.path),
        )
        return error_response(exc.status_code, exc.error_code, exc.message)

    @app.exception_handler(ConsoleError)
    async def console_error_handler(request: Request, exc: ConsoleError) -> JSONResponse:
        status_code, error = 400, "CONSOLE_ERROR"
        for cls, mapped_status, mapped_error in _CONSOLE_STATUS:
            if isinstance(exc, cls):
                status_code, error = mapped_status, mapped_error
                break
        else:
            if isinstance(exc, ConsoleApiError) and 400 <= exc.status_code < 500:
                status_code = exc.status_code

        log = logger.error if status_code >= 500 else logger.warning
        log(
            "console_error",
            status_code=exc.status_code,
            error_code=exc.error_code,
            path=str(request.url.path),
        )
        if isinstance(exc, ConsoleServerError):
            return error_response(status_code, error, "Identity provider is unavailable")
        return error_response(status_code, error, exc.message)

    @app.exception_handler(RecordNotFoundError)
    async def not_found_handler(request: Request, exc: RecordNotFoundError) -> JSONResponse:
        logger.warning(
            "record_not_found",
            resource=exc.resource,
            record_id=exc.record_id,
            path=str(request.url.path),
        )
        return error_response(404, "NOT_FOUND", str(exc))

    @app.exception_handler(DuplicateRecordError)
    async def duplicate_record_handler(request: Request, exc: DuplicateRecordError) -> JSONResponse:
        logger.warning(
            "duplicate_record",
            table=exc.table,
            key=exc.key,
            value=exc.value,
            path=str(request.url.path),
        )
        return error_response(409, "DUPLICATE_RECORD", str(exc), {"field": exc.key})

    @app.exception_handler(SystemRoleError)
    async def system_role_handler(request: Request, exc: SystemRoleError) -> JSONResponse:
        logger.warning("system_role_delete_blocked", slug=exc.slug, path=str(request.url.path))
        return error_response(422, "CANNOT_DELETE_SYSTEM_ROLE", "System roles cannot be deleted")

    @app.exception_handler(DatabaseError)
    async def database_error_handler(request: Request, exc: DatabaseError) -> JSONResponse:
        logger.error(
            "database_error",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return error_response(500, "DATABASE_ERROR", "Database error occurred")

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning(
            "validation_error",
            errors=exc.errors(),
            path=str(request.url.path),
        )
        return error_response(
            422,
            "VALIDATION_ERROR",
            "Validation error",
            {
                "errors": [
                    {
                        "loc": list(err["loc"]),
                        "msg": err["msg"],
                        "type": err["type"],
                    }
                    for err in exc.errors()
                ]
            },
        )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds a request id, client details and the request locale to the context."""

    def __init__(self, app: Any, locale: Optional[LocaleConfig] = None):
        super().__init__(app)
        self.locale = locale or LocaleConfig()

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        clear_context()
        bind_context(
            request_id=request_id,
            ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
        if self.locale.enabled:
            set_current_locale(parse_accept_language(request.headers.get(self.locale.header)))

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log all requests and responses."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        """Log request details and response status."""
        start_time = time.perf_counter()

        logger.info(
            "request_started",
            method=request.method,
            path=str(request.url.path),
            query=str(request.url.query) if request.url.query else None,
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            duration = time.perf_counter() - start_time
            logger.error(
                "request_failed",
                method=request.method,
                path=str(request.url.path),
                error=str(exc),
                duration_ms=round(duration * 1000, 2),
            )
            raise

        duration = time.perf_counter() - start_time
        logger.info(
            "request_completed",
            method=request.method,
            path=str(request.url.path),
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
        )

        return response
