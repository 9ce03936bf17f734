"""Errors raised when talking to the Console identity provider."""

from typing import Any, Dict, Optional


class ConsoleError(Exception):
    """
    Base error for Console provider failures.

    Attributes:
        status_code: HTTP status returned by Console (0 when none was received)
        error_code: Provider-supplied machine code, e.g. ``invalid_grant``
        message: Human readable description
    """

    default_error_code = "console_error"

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or self.default_error_code

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status_code": self.status_code,
            "error_code": self.error_code,
            "message": self.message,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(status_code={self.status_code}, "
            f"error_code={self.error_code!r}, message={self.message!r})"
        )


class ConsoleApiError(ConsoleError):
    """Console rejected the request (400 or another unmapped 4xx)."""

    default_error_code = "api_error"


class ConsoleAuthError(ConsoleError):
    """Console did not accept the credentials (401), or a token cannot be verified."""

    default_error_code = "unauthorized"


class ConsoleAccessDeniedError(ConsoleError):
    """The user is not allowed to access the resource (403)."""

    default_error_code = "access_denied"


class ConsoleNotFoundError(ConsoleError):
    """Console has no such resource (404)."""

    default_error_code = "not_found"


class ConsoleServerError(ConsoleError):
    """Console failed (5xx) or could not be reached."""

    default_error_code = "server_error"


def error_for_status(
    status_code: int,
    message: str,
    error_code: Optional[str] = None,
) -> ConsoleError:
    """Build the taxonomy error matching an HTTP status."""
    if status_code == 401:
        return ConsoleAuthError(message, status_code, error_code)
    if status_code == 403:
        return ConsoleAccessDeniedError(message, status_code, error_code)
    if status_code == 404:
        return ConsoleNotFoundError(message, status_code, error_code)
    if status_code >= 500:
        return ConsoleServerError(message, status_code, error_code)
    return ConsoleApiError(message, status_code, error_code)
