import re

from passlib.context import CryptContext

BCRYPT_MAX_BYTES = 72


class PasswordHasher:
    """bcrypt password hashing with a configurable cost factor."""

    def __init__(self, rounds: int = 12):
        self._context = CryptContext(
            schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds
        )
        # Verified against when the account does not exist, so unknown emails
        # take as long to reject as wrong passwords.
        self._dummy_hash = self._context.hash("dummy-password-for-timing")

    def hash(self, password: str) -> str:
        """Hash a password."""
        return self._context.hash(password)

    def verify(self, plain_password: str, hashed_password: str | None) -> bool:
        """Verify a plain password against a hashed password."""
        if not hashed_password:
            return False
        try:
            return self._context.verify(plain_password, hashed_password)
        except ValueError:
            # Malformed or unrecognised digest: same outcome as a wrong password.
            return False

    def dummy_verify(self, plain_password: str) -> bool:
        self._context.verify(plain_password, self._dummy_hash)
        return False


def validate_password(password: str) -> tuple[bool, str | None]:
    """
    Validate password meets requirements:
    - Minimum 8 characters
    - At most 72 bytes once UTF-8 encoded
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one number
    - At least one symbol

    Returns: (is_valid, error_message)
    """
    if len(password) < 8:
        return False, "Password must be at least 8 characters long"

    # bcrypt ignores everything past 72 bytes.
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        return False, f"Password must be at most {BCRYPT_MAX_BYTES} bytes long"

    if not re.search(r"[A-Z]", password):
        return False, "Password must contain at least one uppercase letter"

    if not re.search(r"[a-z]", password):
        return False, "Password must contain at least one lowercase letter"

    if not re.search(r"\d", password):
        return False, "Password must contain at least one number"

    if not re.search(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?~`]", password):
        return False, "Password must contain at least one symbol"

    return True, None
