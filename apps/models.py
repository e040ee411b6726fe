"""
Model registration: import every table model so SQLModel.metadata knows it
before tables are created.
"""
from apps.blogging.models import Blog, Post, PostTag
from repokit.history import AutoHistory

__all__ = ["Blog", "Post", "PostTag", "AutoHistory"]
