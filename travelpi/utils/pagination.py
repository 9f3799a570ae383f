"""
Pagination utilities for list endpoints
"""
from typing import Generic, List, Tuple, Type, TypeVar
from math import ceil

from pydantic import BaseModel
from sqlalchemy.orm import Query

from travelpi.core.config import settings

T = TypeVar('T')


class PaginatedResponse(BaseModel, Generic[T]):
    """Paginated response model"""
    items: List[T]
    total: int
    page: int
    page_size: int
    total_pages: int
    has_next: bool
    has_prev: bool


def normalize_page_params(page: int, page_size: int) -> Tuple[int, int]:
    """Clamp page to >= 1 and page_size to 1..MAX_PAGE_SIZE"""
    if page_size > settings.MAX_PAGE_SIZE:
        page_size = settings.MAX_PAGE_SIZE
    if page_size < 1:
        page_size = settings.DEFAULT_PAGE_SIZE
    if page < 1:
        page = 1
    return page, page_size


def paginate_query(
    query: Query,
    schema: Type[BaseModel],
    page: int = 1,
    page_size: int = settings.DEFAULT_PAGE_SIZE
) -> PaginatedResponse:
    """
    Paginate a SQLAlchemy query

    Args:
        query: SQLAlchemy query object
        schema: Response schema each row is validated into
        page: Page number (1-indexed)
        page_size: Number of items per page

    Returns:
        PaginatedResponse with schema instances as items
    """
    page, page_size = normalize_page_params(page, page_size)

    total = query.count()
    total_pages = ceil(total / page_size) if total > 0 else 0
    offset = (page - 1) * page_size

    rows = query.offset(offset).limit(page_size).all()

    return PaginatedResponse[schema](
        items=[schema.model_validate(row) for row in rows],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1
    )
