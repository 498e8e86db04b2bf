# inkpost/schemas/blog.py
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from inkpost.models.blog import CommentStatus, PostStatus


def timezone_validator(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    try:
        ZoneInfo(v)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {v}")
    return v


class SortOrder(str, Enum):
    published_at_desc = "published_at_desc"
    published_at_asc = "published_at_asc"
    created_at_desc = "created_at_desc"


class TagMissPolicy(str, Enum):
    """What a tag filter does when no tag has the requested slug."""
    ignore = "ignore"  # drop the filter
    empty = "empty"    # match nothing


class CommentDecision(str, Enum):
    approve = "approve"
    reject = "reject"


# Tag Schemas
class Tag(BaseModel):
    id: int
    name: str
    slug: str
    color: Optional[str] = None

    class Config:
        from_attributes = True


# Author Schema (lightweight profile info)
class Author(BaseModel):
    id: int
    username: str
    avatar_url: Optional[str] = None

    class Config:
        from_attributes = True


# Post Schemas
class PostBase(BaseModel):
    title: str = Field(..., max_length=255)
    content: str = ""
    excerpt: Optional[str] = Field(None, max_length=500)
    status: str = PostStatus.draft.value
    published_at: Optional[datetime] = None
    published_tz: Optional[str] = Field(None, max_length=64)
    show_attachments: bool = True


class PostCreate(PostBase):
    slug: Optional[str] = Field(None, max_length=255)
    tags: List[int] = []

    @field_validator('title')
    def validate_title(cls, v):
        if not v or len(v.strip()) == 0:
            raise ValueError('Title cannot be empty')
        return v

    @field_validator('published_tz')
    def validate_published_tz(cls, v):
        return timezone_validator(v)


class PostUpdate(BaseModel):
    """Partial update; only fields that are explicitly set are applied."""
    title: Optional[str] = Field(None, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    content: Optional[str] = None
    excerpt: Optional[str] = Field(None, max_length=500)
    status: Optional[str] = None
    published_at: Optional[datetime] = None
    published_tz: Optional[str] = Field(None, max_length=64)
    show_attachments: Optional[bool] = None
    cover_url: Optional[str] = Field(None, max_length=500)
    attachments: Optional[List[str]] = None
    tags: Optional[List[int]] = None

    @field_validator('title')
    def validate_title(cls, v):
        if v is not None and len(v.strip()) == 0:
            raise ValueError('Title cannot be empty')
        return v

    @field_validator('published_tz')
    def validate_published_tz(cls, v):
        return timezone_validator(v)


class Post(PostBase):
    id: int
    slug: str
    cover_url: Optional[str] = None
    attachments: List[str] = []
    reading_minutes: int = 0
    tags: List[int] = []
    author_id: int
    author: Optional[Author] = None
    tags_info: List[Tag] = []
    # published_at rendered in published_tz
    published_display: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# Comment Schemas
class CommentCreate(BaseModel):
    content: str = Field(..., max_length=5000)

    @field_validator('content')
    def validate_content(cls, v):
        if not v or len(v.strip()) == 0:
            raise ValueError('Content cannot be empty')
        return v


class Comment(BaseModel):
    id: int
    post_id: int
    author_id: int
    content: str
    status: CommentStatus
    author: Optional[Author] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CommentModeration(BaseModel):
    decision: CommentDecision


# Profile Schemas
class ProfileUpdate(BaseModel):
    username: Optional[str] = Field(None, min_length=2, max_length=50)
    avatar_url: Optional[str] = Field(None, max_length=500)


class Profile(BaseModel):
    id: int
    username: str
    email: str
    avatar_url: Optional[str] = None

    class Config:
        from_attributes = True


class HomePage(BaseModel):
    posts: List[Post] = []
    tags: List[Tag] = []


class DashboardStats(BaseModel):
    total_posts: int
    published_posts: int
    draft_posts: int
    total_reading_minutes: int
    recent_posts: List[Post] = []
