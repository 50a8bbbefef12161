"""Custom domain exceptions for the application."""

# Stable, machine-readable error codes for API consumers.
NOT_FOUND = "NOT_FOUND"
DUPLICATE_RESOURCE = "DUPLICATE_RESOURCE"
VALIDATION_ERROR = "VALIDATION_ERROR"
INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
INVALID_TOKEN = "INVALID_TOKEN"
INVALID_OR_EXPIRED_TOKEN = "INVALID_OR_EXPIRED_TOKEN"
UNAUTHORIZED = "UNAUTHORIZED"
FORBIDDEN = "FORBIDDEN"
CSRF_VALIDATION_FAILED = "CSRF_VALIDATION_FAILED"
RATE_LIMITED = "RATE_LIMITED"
INTERNAL_ERROR = "INTERNAL_ERROR"

# Shared by every login failure so callers cannot tell accounts apart.
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


class DomainError(Exception):
    """Base exception for domain/business logic errors."""

    pass


class NotFoundError(DomainError):
    """Raised when a requested resource does not exist."""

    pass


class DuplicateResourceError(DomainError):
    """Raised when attempting to create or update a resource that would violate a uniqueness constraint."""

    pass


class DomainValidationError(DomainError):
    """Raised when business rules or input validation fail (e.g. weak password)."""

    pass


class InvalidCredentialsError(DomainError):
    """Raised when the email is unknown or the password does not match."""

    def __init__(self, message: str = INVALID_CREDENTIALS_MESSAGE):
        super().__init__(message)


class AccountDeactivatedError(InvalidCredentialsError):
    """Raised when a deactivated account logs in with the right password.

    Reported to the client exactly like InvalidCredentialsError.
    """

    pass


class InvalidTokenError(DomainError):
    """Raised when an access or refresh token fails verification."""

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message)


class InvalidOrExpiredTokenError(DomainError):
    """Raised when a password reset token is unknown or past its expiry."""

    def __init__(self, message: str = "Invalid or expired reset token"):
        super().__init__(message)


class UnauthorizedError(DomainError):
    """Raised when a protected route is called without valid credentials."""

    pass


class ForbiddenError(DomainError):
    """Raised when the caller is authenticated but lacks the required role or permission."""

    pass


class CSRFValidationError(DomainError):
    """Raised when a state-changing request carries no valid CSRF token."""

    pass


class RateLimitedError(DomainError):
    """Raised when a client exceeds a rate-limit window."""

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after
