"""Access and refresh token issuance and verification.

Access tokens are stateless: signature and expiry are the whole check.
Refresh tokens are signed with a separate secret and are also mirrored on the
user record, so the caller must compare the presented value against the
stored one before trusting it.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from quakewatch.errors import InvalidTokenError

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


@dataclass(frozen=True)
class AccessClaims:
    sub: str
    email: str
    role: str
    iat: int
    exp: int


@dataclass(frozen=True)
class RefreshClaims:
    sub: str
    iat: int
    exp: int


class TokenService:
    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
    ):
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh tokens need distinct signing secrets")
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self._algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def issue_access(self, user_id: str, email: str, role: str) -> str:
        """Create a JWT access token."""
        return self._encode(
            {"sub": user_id, "email": email, "role": role, "type": ACCESS_TOKEN_TYPE},
            self._access_secret,
            self.access_ttl,
        )

    def issue_refresh(self, user_id: str) -> str:
        """Create a JWT refresh token."""
        return self._encode(
            {"sub": user_id, "type": REFRESH_TOKEN_TYPE},
            self._refresh_secret,
            self.refresh_ttl,
        )

    def verify_access(self, token: str) -> AccessClaims:
        payload = self._decode(token, self._access_secret, ACCESS_TOKEN_TYPE)
        email = payload.get("email")
        role = payload.get("role")
        if not isinstance(email, str) or not isinstance(role, str):
            raise InvalidTokenError()
        return AccessClaims(
            sub=payload["sub"],
            email=email,
            role=role,
            iat=payload["iat"],
            exp=payload["exp"],
        )

    def verify_refresh(self, token: str) -> RefreshClaims:
        payload = self._decode(token, self._refresh_secret, REFRESH_TOKEN_TYPE)
        return RefreshClaims(sub=payload["sub"], iat=payload["iat"], exp=payload["exp"])

    def _encode(self, data: dict[str, Any], secret: str, ttl: timedelta) -> str:
        now = datetime.now(timezone.utc)
        to_encode = data.copy()
        # jti keeps two tokens minted in the same second distinct.
        to_encode.update({"iat": now, "exp": now + ttl, "jti": secrets.token_hex(16)})
        return jwt.encode(to_encode, secret, algorithm=self._algorithm)

    def _decode(self, token: str, secret: str, expected_type: str) -> dict[str, Any]:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self._algorithm],
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise InvalidTokenError("Token has expired")
        except jwt.InvalidTokenError:
            raise InvalidTokenError()

        if payload.get("type") != expected_type:
            raise InvalidTokenError("Invalid token type")
        return payload
