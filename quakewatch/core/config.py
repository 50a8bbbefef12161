from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def normalize_database_url(url: str) -> str:
    """Normalize a database URL to the async driver used at runtime."""
    if url.startswith("postgresql://") and "+psycopg" not in url:
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


class Settings(BaseSettings):
    database_url: str = Field(alias="DATABASE_URL")

    # JWT Configuration
    jwt_access_secret: str = Field(alias="JWT_ACCESS_SECRET")
    jwt_refresh_secret: str = Field(alias="JWT_REFRESH_SECRET")
    algorithm: str = Field(default="HS256", alias="ALGORITHM")
    access_token_expire_minutes: int = Field(default=15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    refresh_token_expire_days: int = Field(default=7, alias="REFRESH_TOKEN_EXPIRE_DAYS")

    # Password hashing
    bcrypt_rounds: int = Field(default=12, ge=4, le=31, alias="BCRYPT_ROUNDS")

    # Password Reset
    password_reset_token_expire_minutes: int = Field(
        default=60, alias="PASSWORD_RESET_TOKEN_EXPIRE_MINUTES"
    )

    # CSRF
    csrf_secret: str = Field(alias="CSRF_SECRET")
    csrf_token_expire_minutes: int = Field(default=60, alias="CSRF_TOKEN_EXPIRE_MINUTES")
    csrf_exempt_bearer: bool = Field(default=True, alias="CSRF_EXEMPT_BEARER")

    # Rate limiting
    rate_limit_window_minutes: int = Field(default=15, alias="RATE_LIMIT_WINDOW_MINUTES")
    general_rate_limit: int = Field(default=50, alias="GENERAL_RATE_LIMIT")
    user_rate_limit: int = Field(default=100, alias="USER_RATE_LIMIT")
    login_rate_limit: int = Field(default=5, alias="LOGIN_RATE_LIMIT")
    password_reset_rate_limit: int = Field(default=3, alias="PASSWORD_RESET_RATE_LIMIT")
    password_reset_rate_limit_window_minutes: int = Field(
        default=60, alias="PASSWORD_RESET_RATE_LIMIT_WINDOW_MINUTES"
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # First Admin User (seeded by the initial migration when set)
    first_admin_email: str | None = Field(default=None, alias="FIRST_ADMIN_EMAIL")
    first_admin_password: str | None = Field(default=None, alias="FIRST_ADMIN_PASSWORD")

    # SMTP Configuration (optional)
    smtp_host: str | None = Field(default=None, alias="SMTP_HOST")
    smtp_port: int | None = Field(default=None, alias="SMTP_PORT")
    smtp_user: str | None = Field(default=None, alias="SMTP_USER")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    smtp_use_tls: bool = Field(default=True, alias="SMTP_USE_TLS")
    smtp_from_email: str | None = Field(default=None, alias="SMTP_FROM_EMAIL")

    # Frontend URL for password reset links and CORS
    frontend_url: str | None = Field(default=None, alias="FRONTEND_URL")

    @field_validator(
        "smtp_host",
        "smtp_user",
        "smtp_password",
        "smtp_from_email",
        "first_admin_email",
        "first_admin_password",
        mode="before",
    )
    @classmethod
    def empty_str_to_none(cls, v: str | None) -> str | None:
        """Convert empty strings to None for optional string fields."""
        if v == "":
            return None
        return v

    @field_validator("smtp_port", mode="before")
    @classmethod
    def empty_str_to_none_int(cls, v: str | int | None) -> int | None:
        """Convert empty strings to None for optional integer fields."""
        if v == "":
            return None
        if isinstance(v, str):
            try:
                return int(v)
            except ValueError:
                return None
        return v

    @model_validator(mode="after")
    def distinct_signing_secrets(self) -> "Settings":
        # A leaked refresh key must not be able to forge access tokens.
        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ")
        return self

    @property
    def async_database_url(self) -> str:
        return normalize_database_url(self.database_url)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )


settings = Settings()
