from typing import Optional, Dict, Any
from sqlmodel import col
from repokit.exceptions.handler import BusinessException
from repokit.history import AutoHistory
from repokit.logging.logger import get_logger
from repokit.repository import AsyncUnitOfWork, PagedList
from .models import Blog, Post
from .repository import BlogRepository

logger = get_logger("blog_service")


class BlogService:
    """Blog service: every write goes through one request-scoped unit of work."""

    def __init__(self, uow: AsyncUnitOfWork):
        self.uow = uow

    @property
    def blogs(self) -> BlogRepository:
        return self.uow.get_repository(Blog, BlogRepository)

    async def list_blogs(self, min_rating: int = 0, page_index: int = 0, page_size: Optional[int] = None) -> PagedList:
        return await self.blogs.list_rated(min_rating, page_index, page_size)

    async def get_blog(self, blog_id: int) -> Blog:
        blog = await self.blogs.find(blog_id)
        if blog is None:
            raise BusinessException(f"Blog {blog_id} not found", status_code=404, code=404)
        return blog

    async def create_blog(self, url: str, title: Optional[str] = None, rating: int = 0) -> Blog:
        if await self.blogs.url_taken(url):
            raise BusinessException(f"A blog with url {url!r} already exists", code=409)
        blog = Blog(url=url, title=title, rating=rating)
        self.blogs.insert(blog)
        await self.uow.save_changes()
        logger.info(f"Blog created id={blog.id} url={url}")
        return blog

    async def update_blog(self, blog_id: int, changes: Dict[str, Any]) -> Blog:
        """Apply `changes` and record the previous values in the history table."""
        blog = await self.get_blog(blog_id)
        for key, value in changes.items():
            setattr(blog, key, value)
        await self.uow.save_changes(True)
        return blog

    async def delete_blog(self, blog_id: int) -> int:
        """Delete a blog and its posts; returns the number of written entries."""
        blog = await self.get_blog(blog_id)
        posts = self.uow.get_repository(Post)
        owned = await posts.get_paged_list(
            predicate=Post.blog_id == blog_id,
            page_size=1000,
            disable_tracking=False,
        )
        await posts.delete(*owned.items)
        await self.blogs.delete(blog)
        count = await self.uow.save_changes(True)
        logger.info(f"Blog deleted id={blog_id} entries={count}")
        return count

    async def add_post(self, blog_id: int, title: str, content: Optional[str] = None) -> Post:
        await self.get_blog(blog_id)
        post = Post(blog_id=blog_id, title=title, content=content)
        self.uow.get_repository(Post).insert(post)
        await self.uow.save_changes()
        return post

    async def list_history(self, page_index: int = 0, page_size: Optional[int] = None) -> PagedList:
        return await self.uow.get_repository(AutoHistory).get_paged_list(
            order_by=col(AutoHistory.id).desc(),
            page_index=page_index,
            page_size=page_size,
        )
