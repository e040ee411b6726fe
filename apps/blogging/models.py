from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, List
from datetime import datetime, timezone


class Blog(SQLModel, table=True):
    """Blog (tables copied with change_table share its columns, so it carries no indexes)."""
    __tablename__ = "blogs"

    id: Optional[int] = Field(default=None, primary_key=True)
    url: str = Field(max_length=255, description="Blog address")
    title: Optional[str] = Field(default=None, max_length=200)
    rating: int = Field(default=0, description="Reader rating")

    posts: List["Post"] = Relationship(back_populates="blog")


class Post(SQLModel, table=True):
    """Post of a blog."""
    __tablename__ = "posts"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(max_length=200)
    content: Optional[str] = Field(default=None)
    blog_id: int = Field(foreign_key="blogs.id", index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    blog: Optional[Blog] = Relationship(back_populates="posts")
    tags: List["PostTag"] = Relationship(back_populates="post")


class PostTag(SQLModel, table=True):
    """Tag of a post; keyed by (post_id, name)."""
    __tablename__ = "post_tags"

    post_id: int = Field(foreign_key="posts.id", primary_key=True)
    name: str = Field(max_length=50, primary_key=True)

    post: Optional[Post] = Relationship(back_populates="tags")
