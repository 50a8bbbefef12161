import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from urllib.parse import urlparse

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from quakewatch.api.exception_handlers import register_exception_handlers
from quakewatch.api.v1.router import api_router
from quakewatch.core.config import Settings, settings
from quakewatch.core.csrf import CSRF_HEADER, CsrfGuard, CSRFTokenMiddleware
from quakewatch.core.logging_config import configure_logging
from quakewatch.core.rate_limit import RateLimiter, client_address, client_identity
from quakewatch.core.reset_tokens import ResetTokenManager
from quakewatch.core.security import PasswordHasher
from quakewatch.core.tokens import TokenService
from quakewatch.db.base import create_engine, create_session_factory
from quakewatch.services.auth import AuthService
from quakewatch.services.email import PasswordResetMailer

logger = logging.getLogger(__name__)


def build_rate_limiters(settings: Settings) -> dict[str, RateLimiter]:
    window = settings.rate_limit_window_minutes * 60
    return {
        "general": RateLimiter(
            "general",
            limit=settings.general_rate_limit,
            window_seconds=window,
            message="Too many requests, please try again later.",
            key_func=client_address,
        ),
        "user": RateLimiter(
            "user",
            limit=settings.user_rate_limit,
            window_seconds=window,
            message="Too many requests, please try again later.",
            key_func=client_identity,
        ),
        "login": RateLimiter(
            "login",
            limit=settings.login_rate_limit,
            window_seconds=window,
            message="Too many login attempts, please try again later.",
            key_func=client_address,
        ),
        "password_reset": RateLimiter(
            "password_reset",
            limit=settings.password_reset_rate_limit,
            window_seconds=settings.password_reset_rate_limit_window_minutes * 60,
            message="Too many password reset attempts, please try again later.",
            key_func=client_address,
        ),
    }


def create_app(settings: Settings = settings, send_reset_email=None) -> FastAPI:
    """Build the application and its process-wide services."""
    configure_logging(settings.log_level)

    engine = create_engine(settings.async_database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting QuakeWatch API")
        yield
        await engine.dispose()
        logger.info("QuakeWatch API shut down")

    app = FastAPI(title="QuakeWatch API", lifespan=lifespan)

    tokens = TokenService(
        access_secret=settings.jwt_access_secret,
        refresh_secret=settings.jwt_refresh_secret,
        algorithm=settings.algorithm,
        access_ttl=timedelta(minutes=settings.access_token_expire_minutes),
        refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
    )
    csrf = CsrfGuard(
        settings.csrf_secret,
        algorithm=settings.algorithm,
        ttl=timedelta(minutes=settings.csrf_token_expire_minutes),
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.tokens = tokens
    app.state.csrf = csrf
    app.state.rate_limiters = build_rate_limiters(settings)
    app.state.auth_service = AuthService(
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        tokens=tokens,
        reset_tokens=ResetTokenManager(
            ttl=timedelta(minutes=settings.password_reset_token_expire_minutes)
        ),
        send_reset_email=send_reset_email or PasswordResetMailer(settings),
    )

    app.add_middleware(CSRFTokenMiddleware, guard=csrf, tokens=tokens)

    if settings.frontend_url:
        parsed = urlparse(settings.frontend_url)
        origin = f"{parsed.scheme}://{parsed.netloc}"
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[origin],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=[CSRF_HEADER],
        )

    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
