from typing import Generic, TypeVar

from quakewatch.schemas.user import CamelModel

T = TypeVar("T")


class PaginatedResponse(CamelModel, Generic[T]):
    """Generic paginated response schema (``items``, ``total``, ``page``, ``pageSize``)."""

    items: list[T]
    total: int
    page: int
    page_size: int
