"""Auth service: registration, login, token refresh, logout and password reset."""

import logging
from typing import Awaitable, Callable

import aiosmtplib
from fastapi import BackgroundTasks
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

import quakewatch.repositories.user as user_repo
from quakewatch.core.reset_tokens import ResetTokenManager
from quakewatch.core.security import PasswordHasher, validate_password
from quakewatch.core.tokens import TokenService
from quakewatch.db.models.user import User as UserModel
from quakewatch.domain.permissions import Role
from quakewatch.errors import (
    AccountDeactivatedError,
    DomainValidationError,
    DuplicateResourceError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    InvalidTokenError,
    NotFoundError,
)
from quakewatch.schemas.user import AuthResult, TokenPair, User

logger = logging.getLogger(__name__)

ResetEmailSender = Callable[[str, str], Awaitable[None]]


class AuthService:
    """
    Orchestrates credentials, tokens and the user store.

    Built once per process and shared by every request; each call takes the
    request-scoped database session.
    """

    def __init__(
        self,
        hasher: PasswordHasher,
        tokens: TokenService,
        reset_tokens: ResetTokenManager,
        send_reset_email: ResetEmailSender,
    ):
        self.hasher = hasher
        self.tokens = tokens
        self.reset_tokens = reset_tokens
        self.send_reset_email = send_reset_email

    async def register(
        self,
        db: AsyncSession,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
    ) -> AuthResult:
        """
        Create a user account and sign it in.

        Raises:
            DuplicateResourceError: If the email is already registered.
            DomainValidationError: If the password is too weak.
        """
        if await user_repo.get_user_by_email(db, email):
            raise DuplicateResourceError("User already exists with this email")

        is_valid, error_message = validate_password(password)
        if not is_valid:
            raise DomainValidationError(error_message)

        password_hash = await run_in_threadpool(self.hasher.hash, password)
        try:
            user = await user_repo.create_user(
                db,
                email=email,
                first_name=first_name,
                last_name=last_name,
                password_hash=password_hash,
                role=Role.user,
            )
        except IntegrityError:
            # Lost a race with a concurrent registration of the same email.
            await db.rollback()
            raise DuplicateResourceError("User already exists with this email")

        logger.info("Registered user %s", user.id)
        return await self._sign_in(db, user)

    async def login(self, db: AsyncSession, email: str, password: str) -> AuthResult:
        """
        Authenticate by email and password and issue a fresh token pair.

        Any previously stored refresh token is overwritten.

        Raises:
            InvalidCredentialsError: If the email is unknown or the password is wrong.
            AccountDeactivatedError: If the account is deactivated.
        """
        user = await user_repo.get_user_by_email(db, email)
        if user is None:
            await run_in_threadpool(self.hasher.dummy_verify, password)
            logger.info("Login failed: unknown email")
            raise InvalidCredentialsError()

        if not await run_in_threadpool(self.hasher.verify, password, user.password_hash):
            logger.info("Login failed: wrong password for user %s", user.id)
            raise InvalidCredentialsError()

        if not user.is_active:
            logger.info("Login refused: user %s is deactivated", user.id)
            raise AccountDeactivatedError()

        return await self._sign_in(db, user)

    async def refresh(self, db: AsyncSession, refresh_token: str) -> TokenPair:
        """
        Exchange a refresh token for a new access token, rotating the refresh token.

        Raises:
            InvalidTokenError: If the token is invalid, expired, superseded,
                or belongs to a missing or deactivated user.
        """
        claims = self.tokens.verify_refresh(refresh_token)

        user = await user_repo.get_user_by_id(db, claims.sub)
        if user is None or not user.is_active or user.refresh_token != refresh_token:
            logger.warning("Rejected refresh token for user %s", claims.sub)
            raise InvalidTokenError("Invalid refresh token")

        user_id = user_repo.encode_user_id(user.id)
        new_refresh_token = self.tokens.issue_refresh(user_id)
        rotated = await user_repo.rotate_refresh_token(
            db, user_id, expected=refresh_token, replacement=new_refresh_token
        )
        if not rotated:
            logger.warning("Concurrent refresh lost rotation for user %s", user_id)
            raise InvalidTokenError("Invalid refresh token")

        return TokenPair(
            access_token=self.tokens.issue_access(user_id, user.email, user.role.value),
            refresh_token=new_refresh_token,
        )

    async def request_password_reset(
        self, db: AsyncSession, email: str, background_tasks: BackgroundTasks
    ) -> None:
        """
        Issue a reset token for the account, if there is one.

        Always returns normally so callers cannot learn whether the email exists.
        Delivery is queued on ``background_tasks`` and runs after the response
        is sent, so known and unknown emails answer in similar time.
        """
        user = await user_repo.get_user_by_email(db, email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return

        user_id = user_repo.encode_user_id(user.id)
        reset_token = self.reset_tokens.issue()
        await user_repo.set_password_reset_token(
            db, user_id, reset_token.digest, reset_token.expires_at
        )
        logger.info("Password reset token issued for user %s", user_id)
        background_tasks.add_task(self._deliver_reset_email, user.email, reset_token.value)

    async def _deliver_reset_email(self, email: str, reset_token: str) -> None:
        try:
            await self.send_reset_email(email, reset_token)
        except (ValueError, aiosmtplib.SMTPException) as e:
            logger.error("Failed to send password reset email: %s", e)

    async def reset_password(self, db: AsyncSession, token: str, new_password: str) -> None:
        """
        Set a new password using a reset token.

        Clears the reset token and the refresh token, forcing every session to
        sign in again.

        Raises:
            InvalidOrExpiredTokenError: If no user holds the token or it has expired.
            DomainValidationError: If the new password is too weak.
        """
        digest = self.reset_tokens.digest(token)
        user = await user_repo.get_user_by_reset_digest(db, digest)
        if user is None or self.reset_tokens.is_expired(user.password_reset_expires):
            raise InvalidOrExpiredTokenError()

        is_valid, error_message = validate_password(new_password)
        if not is_valid:
            raise DomainValidationError(error_message)

        password_hash = await run_in_threadpool(self.hasher.hash, new_password)
        user_id = user_repo.encode_user_id(user.id)
        if not await user_repo.consume_password_reset(db, user_id, digest, password_hash):
            raise InvalidOrExpiredTokenError()
        logger.info("Password reset completed for user %s", user_id)

    async def logout(self, db: AsyncSession, user_id: str) -> None:
        """Revoke the user's refresh token. Safe to call repeatedly."""
        if await user_repo.clear_refresh_token(db, user_id):
            logger.info("User %s logged out", user_id)

    async def get_profile(self, db: AsyncSession, user_id: str) -> User:
        """
        Return the user without password, refresh or reset fields.

        Raises:
            NotFoundError: If the user no longer exists.
        """
        user = await user_repo.get_user_by_id(db, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return User.model_validate(user)

    async def _sign_in(self, db: AsyncSession, user: UserModel) -> AuthResult:
        user_id = user_repo.encode_user_id(user.id)
        access_token = self.tokens.issue_access(user_id, user.email, user.role.value)
        refresh_token = self.tokens.issue_refresh(user_id)
        await user_repo.set_refresh_token(db, user_id, refresh_token)
        return AuthResult(
            user=User.model_validate(user),
            access_token=access_token,
            refresh_token=refresh_token,
        )
