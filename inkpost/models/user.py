# inkpost/models/user.py
from sqlmodel import SQLModel, Field, Column, JSON
from typing import Optional, Dict, Any
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthIdentity(SQLModel, table=True):
    """Credentials owned by the auth subsystem; never exposed through the blog services."""
    __tablename__ = "auth_identities"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True, max_length=255)
    password_hash: str = Field(max_length=255)
    user_metadata: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    last_sign_in_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Profile(SQLModel, table=True):
    """Public profile, one per auth identity (same id)."""
    __tablename__ = "profiles"

    id: int = Field(foreign_key="auth_identities.id", primary_key=True)
    username: str = Field(max_length=50, unique=True, index=True)
    email: str = Field(max_length=255, index=True)
    avatar_url: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
