from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from quakewatch.api.deps import (
    get_auth_service,
    get_csrf_guard,
    get_current_claims,
    get_db,
    get_rate_limiter,
    get_token_service,
    rate_limit,
    verify_csrf,
)
from quakewatch.core.csrf import CsrfGuard, bearer_user_id
from quakewatch.core.rate_limit import RateLimiter
from quakewatch.core.tokens import AccessClaims, TokenService
from quakewatch.schemas.user import (
    AuthResult,
    CsrfToken,
    Message,
    PasswordReset,
    PasswordResetRequest,
    RefreshRequest,
    TokenPair,
    User,
    UserLogin,
    UserRegister,
)
from quakewatch.services.auth import AuthService

router = APIRouter(
    prefix="/auth",
    tags=["auth"],
    dependencies=[Depends(rate_limit("general"))],
)


@router.get("/csrf-token", response_model=CsrfToken)
def get_csrf_token(
    request: Request,
    guard: CsrfGuard = Depends(get_csrf_guard),
    tokens: TokenService = Depends(get_token_service),
):
    """Issue a CSRF token in the body, for clients that cannot read response headers."""
    return CsrfToken(csrf_token=guard.issue(bearer_user_id(request, tokens)))


@router.post(
    "/register",
    response_model=AuthResult,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(verify_csrf)],
)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """Create an account and return the user with an access/refresh token pair."""
    return await auth.register(
        db,
        email=user_data.email,
        password=user_data.password,
        first_name=user_data.first_name,
        last_name=user_data.last_name,
    )


@router.post("/login", response_model=AuthResult, dependencies=[Depends(verify_csrf)])
async def login(
    request: Request,
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    limiter: RateLimiter = Depends(get_rate_limiter("login")),
):
    """
    Login endpoint - returns an access/refresh token pair.

    Every attempt is counted on arrival and refunded when it succeeds, so
    only failed attempts use up the login rate limit.
    """
    key = limiter.key_for(request)
    limiter.hit(key)
    result = await auth.login(db, credentials.email, credentials.password)
    limiter.release(key)
    return result


@router.post("/refresh", response_model=TokenPair, dependencies=[Depends(verify_csrf)])
async def refresh(
    body: RefreshRequest,
    db: AsyncSession = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """Exchange a refresh token for a new pair; the presented token stops working."""
    return await auth.refresh(db, body.refresh_token)


@router.post(
    "/logout",
    response_model=Message,
    dependencies=[Depends(rate_limit("user")), Depends(verify_csrf)],
)
async def logout(
    claims: AccessClaims = Depends(get_current_claims),
    db: AsyncSession = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """Revoke the caller's refresh token."""
    await auth.logout(db, claims.sub)
    return Message(message="Logout successful")


@router.get("/profile", response_model=User, dependencies=[Depends(rate_limit("user"))])
async def get_profile(
    claims: AccessClaims = Depends(get_current_claims),
    db: AsyncSession = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """Get current authenticated user information."""
    return await auth.get_profile(db, claims.sub)


@router.post(
    "/forgot-password",
    response_model=Message,
    dependencies=[Depends(rate_limit("password_reset")), Depends(verify_csrf)],
)
async def forgot_password(
    body: PasswordResetRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """Request password reset. The response never reveals whether the email exists."""
    await auth.request_password_reset(db, body.email, background_tasks)
    return Message(
        message="If an account with that email exists, a password reset link has been sent."
    )


@router.post("/reset-password", response_model=Message, dependencies=[Depends(verify_csrf)])
async def reset_password(
    body: PasswordReset,
    db: AsyncSession = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """Reset password using the token from the reset email."""
    await auth.reset_password(db, body.token, body.new_password)
    return Message(message="Password reset successful")
