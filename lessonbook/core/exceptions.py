"""
Domain exceptions for the scheduling engine.

Services raise these; the API layer turns them into JSON responses with a
stable status code and a machine-readable ``code``.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DomainException):
    """Malformed input: bad time format, weekday out of range, missing fields."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str = "Validation failed.",
        errors: Optional[Dict[str, list[str]]] = None,
        code: str = "validation_error",
    ) -> None:
        self.errors = errors or {}
        super().__init__(message, code=code, details={"errors": self.errors})


class BusinessError(DomainException):
    """Request is well-formed but not allowed given the current state."""

    status_code = 422


class ForbiddenError(DomainException):
    """Actor does not own the resource."""

    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "You are not allowed to access this resource.", code: str = "forbidden", **kwargs: Any) -> None:
        super().__init__(message, code=code, **kwargs)


class NotFoundError(DomainException):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str = "Resource not found.", code: str = "not_found", **kwargs: Any) -> None:
        super().__init__(message, code=code, **kwargs)


class UnauthorizedError(DomainException):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Not authenticated.", code: str = "unauthorized", **kwargs: Any) -> None:
        super().__init__(message, code=code, **kwargs)


class DatabaseUnavailableError(DomainException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(
        self,
        message: str = "Database unavailable. Verify DATABASE_URL and Postgres credentials.",
        code: str = "database_unavailable",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, code=code, **kwargs)


def _request_validation_errors(exc: RequestValidationError) -> Dict[str, list[str]]:
    errors: Dict[str, list[str]] = {}
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        key = ".".join(location) or "request"
        errors.setdefault(key, []).append(error.get("msg", "Invalid value."))
    return errors


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = ValidationError(errors=_request_validation_errors(exc))
        return JSONResponse(status_code=error.status_code, content={"detail": error.to_dict()})

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.exception("Database error while handling %s %s", request.method, request.url.path)
        error = DatabaseUnavailableError()
        return JSONResponse(status_code=error.status_code, content={"detail": error.to_dict()})
