"""Common schema types shared by the SSO endpoints."""

from typing import Any, Dict, List

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    error: str = Field(description="Stable machine-readable error code")
    message: str = Field(description="Human readable message")


class ValidationErrorDetail(BaseModel):
    """Validation error detail with field locations."""

    loc: List[Any] = Field(description="Error location path")
    msg: str = Field(description="Error message")
    type: str = Field(description="Error type")


class ValidationErrorResponse(ErrorResponse):
    """Validation error response with multiple field errors."""

    error: str = Field(default="VALIDATION_ERROR")
    message: str = Field(default="Validation error")
    errors: List[ValidationErrorDetail] = Field(description="List of validation errors")


class MessageResponse(BaseModel):
    message: str


class HealthCheckResponse(BaseModel):
    """Health check endpoint response."""

    status: str = Field(description="Health status ('ok' or 'error')")
    version: str = Field(description="API version string")
    service: str = Field(description="Service slug registered at Console")


# ==================== Common Error Responses ====================

# Reusable responses dict for OpenAPI documentation.
# Import and spread into route decorators: responses={**AUTH_ERROR_RESPONSES, ...}
COMMON_ERROR_RESPONSES: Dict[int, Dict[str, Any]] = {
    400: {
        "model": ErrorResponse,
        "description": "Bad Request - Missing organization header or invalid input",
    },
    401: {
        "model": ErrorResponse,
        "description": "Unauthorized - Authentication required or credential invalid",
    },
    403: {
        "model": ErrorResponse,
        "description": "Forbidden - No organization access, role or permission",
    },
    404: {
        "model": ErrorResponse,
        "description": "Not Found - Resource does not exist",
    },
    409: {
        "model": ErrorResponse,
        "description": "Conflict - Resource already exists",
    },
    422: {
        "model": ErrorResponse,
        "description": "Unprocessable - Validation failed or system role protected",
    },
    502: {
        "model": ErrorResponse,
        "description": "Bad Gateway - Identity provider unavailable",
    },
}

# Subset for authenticated routes
AUTH_ERROR_RESPONSES = {
    401: COMMON_ERROR_RESPONSES[401],
}

# Subset for organization-scoped routes
ORG_ERROR_RESPONSES = {
    400: COMMON_ERROR_RESPONSES[400],
    401: COMMON_ERROR_RESPONSES[401],
    403: COMMON_ERROR_RESPONSES[403],
}
