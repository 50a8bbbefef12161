import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone


@dataclass(frozen=True)
class ResetToken:
    value: str
    digest: str
    expires_at: datetime


class ResetTokenManager:
    """
    Issue single-use password reset tokens.

    Only the SHA-256 digest is meant to be stored; the raw value goes to the
    user through the delivery channel and is hashed again on lookup.
    """

    def __init__(self, ttl: timedelta = timedelta(hours=1)):
        self.ttl = ttl

    def issue(self, now: datetime | None = None) -> ResetToken:
        now = now or datetime.now(timezone.utc)
        value = secrets.token_hex(32)
        return ResetToken(value=value, digest=self.digest(value), expires_at=now + self.ttl)

    @staticmethod
    def digest(value: str) -> str:
        return hashlib.sha256(value.encode()).hexdigest()

    @staticmethod
    def is_expired(expires_at: datetime | None, now: datetime | None = None) -> bool:
        if expires_at is None:
            return True
        # SQLite hands back naive datetimes; they were written as UTC.
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        now = now or datetime.now(timezone.utc)
        return expires_at <= now
