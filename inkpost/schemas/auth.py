# inkpost/schemas/auth.py
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, Dict, Any
from datetime import datetime

from inkpost.core.formatting import is_strong_password


def password_validator(v: str) -> str:
    if not is_strong_password(v):
        raise ValueError('Password must be at least 6 characters long')
    return v

class TokenData(BaseModel):
    user_id: int
    email: Optional[str] = None
    jti: Optional[str] = None
    session_id: Optional[str] = None
    token_type: str = "access"

class AuthUser(BaseModel):
    """The authenticated identity as seen by clients."""
    id: int
    email: str
    user_metadata: Dict[str, Any] = {}
    last_sign_in_at: Optional[datetime] = None
    created_at: datetime

class AuthSession(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    expires_at: datetime
    session_id: str
    user: AuthUser

class SignInRequest(BaseModel):
    identifier: str = Field(..., min_length=1, description="Email address or username")
    password: str = Field(..., min_length=1)

class SignUpRequest(BaseModel):
    email: EmailStr
    password: str
    username: str = Field(..., min_length=2, max_length=50)

    @field_validator('password')
    def validate_password(cls, v):
        return password_validator(v)

class ChangePassword(BaseModel):
    current_password: str
    new_password: str

    @field_validator('new_password')
    def validate_password(cls, v):
        return password_validator(v)

class RefreshTokenRequest(BaseModel):
    refresh_token: str
