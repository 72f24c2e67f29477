"""Response shapes shared by several routers."""

from typing import Generic, TypeVar

from pydantic import BaseModel

ItemT = TypeVar("ItemT")


class PaginatedResponse(BaseModel, Generic[ItemT]):
    """One page of a listing plus the unpaged total.

    ``page`` is 1-based; ``limit`` is the page size actually applied
    after clamping.
    """
    items: list[ItemT]
    total: int
    page: int
    limit: int
