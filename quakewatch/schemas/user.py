from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from quakewatch.domain.permissions import Role


class CamelModel(BaseModel):
    """Base schema exposing camelCase field names on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(CamelModel):
    """Public view of a user; never carries password, refresh or reset fields."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: str
    email: str
    first_name: str
    last_name: str
    role: Role
    is_active: bool
    email_verified: bool

    @field_validator("id", mode="before")
    @classmethod
    def opaque_id(cls, v: int | str) -> str:
        return str(v)


class UserRegister(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=72)
    first_name: str = Field(..., min_length=1, max_length=255)
    last_name: str = Field(..., min_length=1, max_length=255)


class UserLogin(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class UserAdminUpdate(CamelModel):
    role: Role | None = None
    is_active: bool | None = None


class RefreshRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1)


class PasswordResetRequest(CamelModel):
    email: EmailStr


class PasswordReset(CamelModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=72)


class TokenPair(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class AuthResult(TokenPair):
    user: User


class Message(CamelModel):
    message: str


class CsrfToken(CamelModel):
    csrf_token: str
