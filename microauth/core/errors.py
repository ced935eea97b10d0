"""
Error taxonomy and the request-boundary handlers that render it.

Services raise the exceptions below; nothing below the API layer builds
HTTP responses. Two external shapes exist:
- OAuth2 endpoints: {"error": ..., "error_description": ...}
- Everything else: {"detail": {"code": ..., "message": ..., "meta": ...}}
"""
from __future__ import annotations
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from microauth.core.logger import get_logger

log = get_logger(__name__)


class ErrorCode(str, Enum):
    UNAUTHORIZED = "unauthorized"              # 401
    FORBIDDEN = "forbidden"                    # 403
    TENANT_REQUIRED = "tenant_required"        # 403
    INSUFFICIENT_SCOPE = "insufficient_scope"  # 403
    NOT_FOUND = "not_found"                    # 404
    CONFLICT = "conflict"                      # 409
    BAD_REQUEST = "bad_request"                # 400
    INTERNAL_ERROR = "internal_error"          # 500


# RFC 6749 §5.2 codes plus the resource-server insufficient_scope
OAUTH_ERROR_STATUS = {
    "invalid_request": 400,
    "invalid_client": 401,
    "invalid_grant": 400,
    "unauthorized_client": 400,
    "unsupported_grant_type": 400,
    "insufficient_scope": 403,
    "server_error": 500,
}


class ServiceError(Exception):
    """Base class for errors converted to HTTP responses at the request boundary."""

    status_code = 500
    code = ErrorCode.INTERNAL_ERROR
    default_message = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[ErrorCode] = None,
        meta: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        self.meta = meta
        self.headers = headers
        super().__init__(self.message)


class ValidationError(ServiceError):
    status_code = 400
    code = ErrorCode.BAD_REQUEST
    default_message = "Invalid request"


class AuthenticationError(ServiceError):
    status_code = 401
    code = ErrorCode.UNAUTHORIZED
    default_message = "Authentication is required"

    def __init__(self, message: Optional[str] = None, **kwargs: Any) -> None:
        kwargs.setdefault("headers", {"WWW-Authenticate": "Bearer"})
        super().__init__(message, **kwargs)


class AuthorizationError(ServiceError):
    status_code = 403
    code = ErrorCode.FORBIDDEN
    default_message = "You do not have permission for this action"


class AccessDeniedError(AuthorizationError):
    """Identity has no active membership in the requested tenant."""

    default_message = "Access denied to the requested tenant"


class TenantRequiredError(AuthorizationError):
    code = ErrorCode.TENANT_REQUIRED
    default_message = "This operation requires a tenant context; switch to a tenant first"


class NotFoundError(ServiceError):
    status_code = 404
    code = ErrorCode.NOT_FOUND
    default_message = "Resource not found"


class ConflictError(ServiceError):
    status_code = 409
    code = ErrorCode.CONFLICT
    default_message = "Resource already exists"


class ServerError(ServiceError):
    pass


class OAuthError(ServiceError):
    """OAuth2 protocol error with a code from OAUTH_ERROR_STATUS."""

    def __init__(self, error: str, description: str, *, headers: Optional[Dict[str, str]] = None) -> None:
        if error not in OAUTH_ERROR_STATUS:
            raise ValueError(f"Unknown OAuth2 error code: {error}")
        self.error = error
        self.status_code = OAUTH_ERROR_STATUS[error]
        if error == "invalid_client" and headers is None:
            headers = {"WWW-Authenticate": 'Basic realm="oauth"'}
        super().__init__(description, headers=headers)

    @property
    def description(self) -> str:
        return self.message


async def _oauth_error_handler(request: Request, exc: OAuthError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "error_description": exc.description},
        headers=exc.headers,
    )


async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """
    Standardized error body.
    Clients should key on `detail.code` for i18n and behavior.
    """
    detail: Dict[str, Any] = {
        "code": exc.code.value,
        "message": exc.message,
    }
    if exc.meta:
        detail["meta"] = exc.meta
    if exc.status_code >= 500:
        log.error("Request failed", extra={"meta": {"path": request.url.path, "error": exc.message}})
    return JSONResponse(status_code=exc.status_code, content={"detail": detail}, headers=exc.headers)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "detail": {
                "code": ErrorCode.BAD_REQUEST.value,
                "message": "Invalid request",
                "meta": {"errors": jsonable_encoder(exc.errors())},
            }
        },
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled error", extra={"meta": {"path": request.url.path}})
    return JSONResponse(
        status_code=500,
        content={"detail": {"code": ErrorCode.INTERNAL_ERROR.value, "message": "Internal server error"}},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the boundary handlers; OAuthError must win over its ServiceError base."""
    app.add_exception_handler(OAuthError, _oauth_error_handler)
    app.add_exception_handler(ServiceError, _service_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
