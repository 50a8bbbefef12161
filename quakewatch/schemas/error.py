"""Standardized error response schema."""

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Error body shared by every 4xx and 5xx response."""

    detail: str = Field(..., description="Human-readable error message")
    code: str = Field(..., description="Machine-readable error code")
    retry_after: int | None = Field(
        default=None,
        serialization_alias="retryAfter",
        description="Seconds until a rate-limited client may retry",
    )
