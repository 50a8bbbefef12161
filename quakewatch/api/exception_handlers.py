"""Global exception handlers that map domain exceptions to HTTP responses."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from quakewatch.core.csrf import CSRF_HEADER, bearer_user_id
from quakewatch.errors import (
    CSRF_VALIDATION_FAILED,
    DUPLICATE_RESOURCE,
    FORBIDDEN,
    INTERNAL_ERROR,
    INVALID_CREDENTIALS,
    INVALID_CREDENTIALS_MESSAGE,
    INVALID_OR_EXPIRED_TOKEN,
    INVALID_TOKEN,
    NOT_FOUND,
    RATE_LIMITED,
    UNAUTHORIZED,
    VALIDATION_ERROR,
    CSRFValidationError,
    DomainValidationError,
    DuplicateResourceError,
    ForbiddenError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    InvalidTokenError,
    NotFoundError,
    RateLimitedError,
    UnauthorizedError,
)
from quakewatch.schemas.error import ErrorResponse

logger = logging.getLogger(__name__)

BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}


def _error_response(
    status_code: int,
    detail: str,
    code: str,
    headers: dict[str, str] | None = None,
    retry_after: int | None = None,
) -> JSONResponse:
    """Return a standardized error response with detail and machine-readable code."""
    body = ErrorResponse(detail=detail, code=code, retry_after=retry_after)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


def domain_validation_error_handler(
    _request: Request, exc: DomainValidationError
) -> JSONResponse:
    return _error_response(status.HTTP_400_BAD_REQUEST, str(exc), VALIDATION_ERROR)


def request_validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        detail = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        detail = "Validation failed"
    return _error_response(status.HTTP_400_BAD_REQUEST, detail, VALIDATION_ERROR)


def duplicate_resource_error_handler(
    _request: Request, exc: DuplicateResourceError
) -> JSONResponse:
    return _error_response(status.HTTP_409_CONFLICT, str(exc), DUPLICATE_RESOURCE)


def not_found_error_handler(_request: Request, exc: NotFoundError) -> JSONResponse:
    return _error_response(status.HTTP_404_NOT_FOUND, str(exc), NOT_FOUND)


def invalid_credentials_error_handler(
    _request: Request, exc: InvalidCredentialsError
) -> JSONResponse:
    # Deactivated accounts get the same body as wrong passwords.
    return _error_response(
        status.HTTP_401_UNAUTHORIZED,
        INVALID_CREDENTIALS_MESSAGE,
        INVALID_CREDENTIALS,
        headers=BEARER_CHALLENGE,
    )


def invalid_token_error_handler(_request: Request, exc: InvalidTokenError) -> JSONResponse:
    return _error_response(
        status.HTTP_401_UNAUTHORIZED, str(exc), INVALID_TOKEN, headers=BEARER_CHALLENGE
    )


def invalid_or_expired_token_error_handler(
    _request: Request, exc: InvalidOrExpiredTokenError
) -> JSONResponse:
    return _error_response(status.HTTP_400_BAD_REQUEST, str(exc), INVALID_OR_EXPIRED_TOKEN)


def unauthorized_error_handler(_request: Request, exc: UnauthorizedError) -> JSONResponse:
    return _error_response(
        status.HTTP_401_UNAUTHORIZED, str(exc), UNAUTHORIZED, headers=BEARER_CHALLENGE
    )


def forbidden_error_handler(_request: Request, exc: ForbiddenError) -> JSONResponse:
    return _error_response(status.HTTP_403_FORBIDDEN, str(exc), FORBIDDEN)


def csrf_validation_error_handler(
    _request: Request, exc: CSRFValidationError
) -> JSONResponse:
    return _error_response(status.HTTP_403_FORBIDDEN, str(exc), CSRF_VALIDATION_FAILED)


def rate_limited_error_handler(_request: Request, exc: RateLimitedError) -> JSONResponse:
    return _error_response(
        status.HTTP_429_TOO_MANY_REQUESTS,
        str(exc),
        RATE_LIMITED,
        headers={"Retry-After": str(exc.retry_after)},
        retry_after=exc.retry_after,
    )


def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
    )
    # Served outside CSRFTokenMiddleware, so the token is attached here.
    state = request.app.state
    csrf_token = state.csrf.issue(bearer_user_id(request, state.tokens))
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        INTERNAL_ERROR,
        headers={CSRF_HEADER: csrf_token},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register domain exception handlers on the FastAPI app."""
    app.add_exception_handler(DomainValidationError, domain_validation_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(DuplicateResourceError, duplicate_resource_error_handler)
    app.add_exception_handler(NotFoundError, not_found_error_handler)
    app.add_exception_handler(InvalidCredentialsError, invalid_credentials_error_handler)
    app.add_exception_handler(InvalidTokenError, invalid_token_error_handler)
    app.add_exception_handler(InvalidOrExpiredTokenError, invalid_or_expired_token_error_handler)
    app.add_exception_handler(UnauthorizedError, unauthorized_error_handler)
    app.add_exception_handler(ForbiddenError, forbidden_error_handler)
    app.add_exception_handler(CSRFValidationError, csrf_validation_error_handler)
    app.add_exception_handler(RateLimitedError, rate_limited_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
