from pydantic_settings import BaseSettings
from typing import Optional, Literal


class Settings(BaseSettings):
    # Gateway endpoint and key (both required, no defaults)
    DATABASE_URL: str
    SECRET_KEY: str

    # Sessions
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 24 * 60  # 24 hour sessions
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30

    # URLs
    FRONTEND_URL: str = "http://localhost:5173"
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # File Storage
    STORAGE_BACKEND: str = "local"  # "local" or "s3"
    UPLOAD_DIR: str = "./uploads"
    S3_BUCKET_PREFIX: Optional[str] = None  # bucket "posts" -> "<prefix>-posts"
    S3_REGION: str = "us-east-1"
    COVER_MAX_MB: int = 5
    ATTACHMENT_MAX_MB: int = 8
    AVATAR_MAX_MB: int = 5

    # Blog behaviour
    TAG_MISS_POLICY: Literal["ignore", "empty"] = "ignore"
    COMMENTS_REQUIRE_APPROVAL: bool = False
    DEFAULT_TIMEZONE: str = "Asia/Shanghai"

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"  # Allow extra fields in .env file


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Load settings once; raises ValidationError when the gateway endpoint or key is missing."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def override_settings(settings: Optional[Settings]) -> None:
    """Replace the cached settings (used by tests and embedding applications)."""
    global _settings
    _settings = settings
