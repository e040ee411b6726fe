"""Blogging module repository implementation."""

from typing import Optional
from repokit.repository import AsyncRepository, PagedList
from .models import Blog


class BlogRepository(AsyncRepository[Blog]):
    """Blog repository."""

    def __init__(self, session, model=Blog):
        super().__init__(session, model)

    async def list_rated(
        self,
        min_rating: int = 0,
        page_index: int = 0,
        page_size: Optional[int] = None,
    ) -> PagedList:
        """Blogs rated at least `min_rating`, best first."""
        return await self.get_paged_list(
            predicate=lambda blog: blog.rating >= min_rating,
            order_by=lambda blog: (blog.rating.desc(), blog.id),
            page_index=page_index,
            page_size=page_size,
        )

    async def url_taken(self, url: str) -> bool:
        return await self.exists(lambda blog: blog.url == url)
