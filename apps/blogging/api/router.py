from fastapi import APIRouter, Depends, Query
from typing import Optional
from pydantic import BaseModel, Field
from repokit.dependencies import get_async_unit_of_work, repository_dependency
from repokit.repository import AsyncRepository, AsyncUnitOfWork
from repokit.response import ResponseModel
from ..models import Post
from ..service import BlogService

router = APIRouter()


class BlogCreate(BaseModel):
    url: str = Field(max_length=255)
    title: Optional[str] = Field(default=None, max_length=200)
    rating: int = 0


class BlogUpdate(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    rating: Optional[int] = None


class PostCreate(BaseModel):
    title: str = Field(max_length=200)
    content: Optional[str] = None


def get_blog_service(uow: AsyncUnitOfWork = Depends(get_async_unit_of_work)) -> BlogService:
    """Dependency: create BlogService."""
    return BlogService(uow)


@router.get("/blogs")
async def list_blogs(
    page_index: int = Query(0, ge=0),
    page_size: int = Query(20, gt=0, le=100),
    min_rating: int = 0,
    service: BlogService = Depends(get_blog_service)
):
    """Blogs rated at least min_rating, one page at a time."""
    page = await service.list_blogs(min_rating, page_index, page_size)
    return ResponseModel.paged(page)


@router.post("/blogs")
async def create_blog(payload: BlogCreate, service: BlogService = Depends(get_blog_service)):
    blog = await service.create_blog(payload.url, payload.title, payload.rating)
    return ResponseModel.success(data=blog.model_dump())


@router.get("/blogs/{blog_id}")
async def get_blog(blog_id: int, service: BlogService = Depends(get_blog_service)):
    blog = await service.get_blog(blog_id)
    return ResponseModel.success(data=blog.model_dump())


@router.put("/blogs/{blog_id}")
async def update_blog(blog_id: int, payload: BlogUpdate, service: BlogService = Depends(get_blog_service)):
    """Partial update; previous values are kept in the history table."""
    blog = await service.update_blog(blog_id, payload.model_dump(exclude_unset=True))
    return ResponseModel.success(data=blog.model_dump())


@router.delete("/blogs/{blog_id}")
async def delete_blog(blog_id: int, service: BlogService = Depends(get_blog_service)):
    count = await service.delete_blog(blog_id)
    return ResponseModel.success(data={"deleted": count})


@router.post("/blogs/{blog_id}/posts")
async def add_post(blog_id: int, payload: PostCreate, service: BlogService = Depends(get_blog_service)):
    post = await service.add_post(blog_id, payload.title, payload.content)
    return ResponseModel.success(data=post.model_dump(mode="json"))


@router.get("/blogs/{blog_id}/posts")
async def list_posts(
    blog_id: int,
    page_index: int = Query(0, ge=0),
    page_size: int = Query(20, gt=0, le=100),
    posts: AsyncRepository = Depends(repository_dependency(Post)),
):
    """Posts of a blog, newest first."""
    page = await posts.get_paged_list(
        predicate=Post.blog_id == blog_id,
        order_by=Post.id.desc(),
        page_index=page_index,
        page_size=page_size,
    )
    return ResponseModel.paged(page)


@router.get("/history")
async def list_history(
    page_index: int = Query(0, ge=0),
    page_size: int = Query(20, gt=0, le=100),
    service: BlogService = Depends(get_blog_service)
):
    """Audit rows written by saves with auto history, newest first."""
    page = await service.list_history(page_index, page_size)
    return ResponseModel.paged(page)
