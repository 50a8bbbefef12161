"""Stateless CSRF protection using short-lived signed tokens.

Every response carries a fresh token in the ``X-CSRF-Token`` header. Clients
echo it back on state-changing requests through the same header, a ``_csrf``
body field or a ``_csrf`` query parameter. Tokens issued for an authenticated
caller are bound to that user's id and rejected for anyone else.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable

import jwt
from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from quakewatch.core.tokens import TokenService
from quakewatch.errors import InvalidTokenError

logger = logging.getLogger(__name__)

CSRF_HEADER = "X-CSRF-Token"
CSRF_FIELD = "_csrf"
CSRF_TOKEN_TYPE = "csrf"
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


class CsrfGuard:
    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        ttl: timedelta = timedelta(hours=1),
    ):
        self._secret = secret
        self._algorithm = algorithm
        self.ttl = ttl

    def issue(self, user_id: str | None = None) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "nonce": secrets.token_hex(16),
            "uid": user_id,
            "type": CSRF_TOKEN_TYPE,
            "iat": now,
            "exp": now + self.ttl,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str | None, user_id: str | None = None) -> bool:
        if not token:
            return False
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["exp", "iat"]},
            )
        except jwt.InvalidTokenError:
            return False

        if payload.get("type") != CSRF_TOKEN_TYPE or not payload.get("nonce"):
            return False

        bound_user = payload.get("uid")
        if bound_user is not None and bound_user != user_id:
            return False
        return True


def bearer_token(request: Request) -> str | None:
    """Return the bearer token from the Authorization header, if any."""
    authorization = request.headers.get("Authorization")
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


def bearer_user_id(request: Request, tokens: TokenService) -> str | None:
    """Return the user id of a valid bearer access token, if any."""
    token = bearer_token(request)
    if token is None:
        return None
    try:
        return tokens.verify_access(token).sub
    except InvalidTokenError:
        return None


async def submitted_token(request: Request) -> str | None:
    """Find the CSRF token a client sent back with the request."""
    token = request.headers.get(CSRF_HEADER)
    if token:
        return token

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get(CSRF_FIELD), str):
            return body[CSRF_FIELD]
    elif content_type.startswith(
        ("application/x-www-form-urlencoded", "multipart/form-data")
    ):
        form = await request.form()
        value = form.get(CSRF_FIELD)
        if isinstance(value, str):
            return value

    return request.query_params.get(CSRF_FIELD)


class CSRFTokenMiddleware(BaseHTTPMiddleware):
    """Attach a fresh CSRF token to every response."""

    def __init__(self, app: FastAPI, guard: CsrfGuard, tokens: TokenService):
        super().__init__(app)
        self.guard = guard
        self.tokens = tokens

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        user_id = bearer_user_id(request, self.tokens)
        response = await call_next(request)
        response.headers[CSRF_HEADER] = self.guard.issue(user_id)
        return response
