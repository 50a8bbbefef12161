from typing import AsyncIterator

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from quakewatch.core.csrf import SAFE_METHODS, CsrfGuard, bearer_user_id, submitted_token
from quakewatch.core.rate_limit import RateLimiter
from quakewatch.core.tokens import AccessClaims, TokenService
from quakewatch.domain.permissions import Permission, Role, has_permission
from quakewatch.errors import (
    CSRFValidationError,
    ForbiddenError,
    InvalidTokenError,
    UnauthorizedError,
)
from quakewatch.services.auth import AuthService

bearer_scheme = HTTPBearer(auto_error=False)


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.session_factory() as session:
        yield session


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_token_service(request: Request) -> TokenService:
    return request.app.state.tokens


def get_csrf_guard(request: Request) -> CsrfGuard:
    return request.app.state.csrf


def get_current_claims(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    tokens: TokenService = Depends(get_token_service),
) -> AccessClaims:
    """Authenticate the bearer access token and expose its claims on the request."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise UnauthorizedError("No token provided")

    try:
        claims = tokens.verify_access(credentials.credentials)
    except InvalidTokenError:
        raise UnauthorizedError("Invalid token")

    request.state.claims = claims
    return claims


def authorize(*roles: str):
    """
    Create a dependency that requires the current user to have one of the specified roles.

    Example:
        Depends(authorize("admin"))
        Depends(authorize("admin", "moderator"))
    """
    allowed = frozenset(Role(role).value for role in roles)

    def role_checker(claims: AccessClaims = Depends(get_current_claims)) -> AccessClaims:
        if claims.role not in allowed:
            raise ForbiddenError("Insufficient permissions")
        return claims

    return role_checker


def require_permission(permission: Permission):
    """Create a dependency that requires the current user's role to grant ``permission``."""

    def permission_checker(claims: AccessClaims = Depends(get_current_claims)) -> AccessClaims:
        if not has_permission(claims.role, permission):
            raise ForbiddenError(f"Permission '{permission.value}' required")
        return claims

    return permission_checker


def rate_limit(policy: str):
    """Create a dependency that counts the request against a named rate-limit policy."""

    async def limiter_dependency(request: Request) -> None:
        limiter: RateLimiter = request.app.state.rate_limiters[policy]
        limiter.hit(limiter.key_for(request))

    return limiter_dependency


def get_rate_limiter(policy: str):
    def dependency(request: Request) -> RateLimiter:
        return request.app.state.rate_limiters[policy]

    return dependency


async def verify_csrf(
    request: Request,
    guard: CsrfGuard = Depends(get_csrf_guard),
    tokens: TokenService = Depends(get_token_service),
) -> None:
    """Reject state-changing requests that do not carry a valid CSRF token."""
    if request.method in SAFE_METHODS:
        return

    user_id = bearer_user_id(request, tokens)
    if user_id is not None and request.app.state.settings.csrf_exempt_bearer:
        return

    token = await submitted_token(request)
    if not token:
        raise CSRFValidationError("CSRF token is missing")
    if not guard.verify(token, user_id):
        raise CSRFValidationError("Invalid CSRF token")
