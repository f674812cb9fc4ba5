from typing import Generic, TypeVar

from pydantic import BaseModel, Field, computed_field

T = TypeVar("T")


class PaginationResult(BaseModel, Generic[T]):
    """Page of items returned by list endpoints."""

    items: list[T] = Field(..., description="Items in the current page")
    total: int = Field(..., description="Number of matching items across all pages", ge=0)
    limit: int = Field(..., description="Maximum items per page", ge=1)
    offset: int = Field(..., description="Number of items skipped", ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_more(self) -> bool:
        """Whether more items exist past this page."""
        return self.offset + len(self.items) < self.total
