# inkpost/models/blog.py
from sqlmodel import SQLModel, Field, Column, Text, JSON
from typing import Optional, List
from datetime import datetime
from enum import Enum

from inkpost.models.user import utcnow


class PostStatus(str, Enum):
    draft = "draft"
    published = "published"


class CommentStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class Post(SQLModel, table=True):
    __tablename__ = "posts"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(max_length=255, index=True)
    slug: str = Field(max_length=255, unique=True, index=True)
    content: str = Field(default="", sa_column=Column(Text))
    excerpt: Optional[str] = Field(default=None, max_length=500)
    # Plain string so workflow states beyond PostStatus can be stored
    status: str = Field(default=PostStatus.draft.value, max_length=30, index=True)
    published_at: Optional[datetime] = Field(default=None, index=True)
    published_tz: Optional[str] = Field(default=None, max_length=64)
    show_attachments: bool = Field(default=True)
    cover_url: Optional[str] = Field(default=None, max_length=500)
    attachments: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    reading_minutes: int = Field(default=0, ge=0)
    # Tag ids mirrored from tags_posts, in association order
    tags: List[int] = Field(default_factory=list, sa_column=Column(JSON))
    author_id: int = Field(foreign_key="profiles.id", index=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)


class Tag(SQLModel, table=True):
    __tablename__ = "tags"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=50, index=True)
    slug: str = Field(max_length=50, unique=True, index=True)
    color: Optional[str] = Field(default=None, max_length=20)
    created_at: datetime = Field(default_factory=utcnow)


class TagPost(SQLModel, table=True):
    __tablename__ = "tags_posts"

    id: Optional[int] = Field(default=None, primary_key=True)
    post_id: int = Field(foreign_key="posts.id", index=True)
    tag_id: int = Field(foreign_key="tags.id", index=True)


class Comment(SQLModel, table=True):
    __tablename__ = "comments"

    id: Optional[int] = Field(default=None, primary_key=True)
    post_id: int = Field(foreign_key="posts.id", index=True)
    author_id: int = Field(foreign_key="profiles.id", index=True)
    content: str = Field(sa_column=Column(Text))
    status: CommentStatus = Field(default=CommentStatus.pending, index=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
