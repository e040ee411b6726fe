"""
Paged list: one page of a larger ordered result plus count metadata.
"""

import math
from typing import Any, Callable, Generic, Iterable, Optional, Tuple, TypeVar
from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator
from repokit.config import settings

T = TypeVar("T")

Converter = Callable[[Iterable[Any]], Iterable[Any]]


class PagedList(BaseModel, Generic[T]):
    """Immutable page of items; `total_count` covers the whole filtered source."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    page_index: int = Field(ge=0)
    page_size: int = Field(gt=0)
    index_from: int = Field(default=0, ge=0)
    total_count: int = Field(ge=0)
    items: Tuple[T, ...] = ()

    @model_validator(mode="after")
    def _check_page(self) -> "PagedList[T]":
        if self.index_from > self.page_index:
            raise ValueError(
                f"index_from ({self.index_from}) must not be greater than page_index ({self.page_index})"
            )
        if len(self.items) > self.page_size:
            raise ValueError(f"A page holds at most {self.page_size} items, got {len(self.items)}")
        return self

    @computed_field
    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size)

    @computed_field
    @property
    def has_previous_page(self) -> bool:
        return self.page_index - self.index_from > 0

    @computed_field
    @property
    def has_next_page(self) -> bool:
        return self.page_index - self.index_from + 1 < self.total_pages

    @staticmethod
    def check_window(page_index: int, page_size: int, index_from: int = 0) -> None:
        """Reject an invalid page window before any query runs."""
        if page_index < 0:
            raise ValueError(f"page_index must be >= 0, got {page_index}")
        if page_size <= 0:
            raise ValueError(f"page_size must be > 0, got {page_size}")
        if index_from < 0:
            raise ValueError(f"index_from must be >= 0, got {index_from}")
        if index_from > page_index:
            raise ValueError(
                f"index_from ({index_from}) must not be greater than page_index ({page_index})"
            )

    @staticmethod
    def offset_of(page_index: int, page_size: int, index_from: int = 0) -> int:
        return (page_index - index_from) * page_size

    @classmethod
    def create(
        cls,
        source: Iterable[Any],
        page_index: int,
        page_size: int,
        index_from: int = 0,
        converter: Optional[Converter] = None,
    ) -> "PagedList":
        """
        Page an in-memory source.

        The whole source is counted, then only the requested slice is kept.
        `converter` receives that slice, never the full source.
        """
        cls.check_window(page_index, page_size, index_from)
        materialized = list(source)
        offset = cls.offset_of(page_index, page_size, index_from)
        page = materialized[offset:offset + page_size]
        if converter is not None:
            page = list(converter(page))
        return cls(
            page_index=page_index,
            page_size=page_size,
            index_from=index_from,
            total_count=len(materialized),
            items=page,
        )

    @classmethod
    def empty(cls, page_size: Optional[int] = None) -> "PagedList":
        """First page of an empty source."""
        return cls(page_index=0, page_size=settings.DEFAULT_PAGE_SIZE if page_size is None else page_size, total_count=0)

    def convert(self, converter: Converter) -> "PagedList":
        """Same page metadata, items passed through `converter`."""
        return self.__class__(
            page_index=self.page_index,
            page_size=self.page_size,
            index_from=self.index_from,
            total_count=self.total_count,
            items=list(converter(self.items)),
        )


def to_paged_list(
    source: Iterable[Any],
    page_index: int,
    page_size: int,
    index_from: int = 0,
    converter: Optional[Converter] = None,
) -> PagedList:
    """Page any iterable; see PagedList.create."""
    return PagedList.create(source, page_index, page_size, index_from, converter)
