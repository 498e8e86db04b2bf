# inkpost/core/formatting.py
"""
Pure formatting helpers: slugs, reading time, dates, file checks.
"""
import html
import math
import random
import re
import string
import time
import unicodedata
from datetime import datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from pypinyin import Style, lazy_pinyin
from unidecode import unidecode

READING_CHARS_PER_MINUTE = 400

IMAGE_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif")

TAG_COLORS = [
    "#ef4444", "#f97316", "#f59e0b", "#eab308", "#84cc16",
    "#22c55e", "#10b981", "#14b8a6", "#06b6d4", "#0ea5e9",
    "#3b82f6", "#6366f1", "#8b5cf6", "#a855f7", "#d946ef",
    "#ec4899", "#f43f5e",
]

_NON_SLUG_CHARS = re.compile(r"[^\w\s-]", re.ASCII)
_SLUG_SEPARATORS = re.compile(r"[\s_-]+", re.ASCII)
_HTML_TAG = re.compile(r"<[^>]*>")
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_EXTENSION = re.compile(r"[^A-Za-z0-9]")

DateLike = Union[datetime, str]


def slugify(text: str) -> str:
    """Convert text to a URL-friendly slug made of [a-z0-9] and single hyphens."""
    slug = text.lower().strip()
    slug = _NON_SLUG_CHARS.sub("", slug)
    slug = _SLUG_SEPARATORS.sub("-", slug)
    return slug.strip("-")


def slugify_with_pinyin(text: str) -> str:
    """
    Slugify text that may contain non-Latin characters.

    Chinese is transliterated to toneless pinyin, other scripts go through
    unidecode; anything left without an ASCII form is dropped.

        >>> slugify_with_pinyin("你好 World")
        'ni-hao-world'
        >>> slugify_with_pinyin("Café à Paris")
        'cafe-a-paris'
        >>> slugify_with_pinyin("Привет мир")
        'privet-mir'
    """
    if not text:
        return ""
    syllables = lazy_pinyin(text, style=Style.NORMAL, errors="default")
    transliterated = unidecode(" ".join(syllables))
    folded = unicodedata.normalize("NFKD", transliterated).encode("ascii", "ignore").decode("ascii")
    return slugify(folded)


def ensure_slug(slug: Optional[str]) -> str:
    """Normalise a user supplied slug; applying it twice changes nothing."""
    if not slug:
        return ""
    return slugify(slug)


def estimate_reading_minutes(content: Optional[str]) -> int:
    """Minutes to read `content` at 400 visible characters per minute, rounded up."""
    if not content:
        return 0
    text = _HTML_TAG.sub("", content)
    return math.ceil(len(text) / READING_CHARS_PER_MINUTE)


def _to_datetime(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_date(value: Optional[DateLike]) -> str:
    """Long Chinese date, e.g. 2024年1月5日."""
    if not value:
        return ""
    d = _to_datetime(value)
    return f"{d.year}年{d.month}月{d.day}日"


def convert_to_timezone(value: Optional[DateLike], tz: str = "Asia/Shanghai") -> Optional[str]:
    """Render a timestamp in `tz` as YYYY/MM/DD HH:MM (24 hour clock)."""
    if not value:
        return None
    local = _to_datetime(value).astimezone(ZoneInfo(tz))
    return local.strftime("%Y/%m/%d %H:%M")


def is_image_file(file) -> bool:
    return getattr(file, "content_type", None) in IMAGE_TYPES


def check_file_size(file, max_size_mb: float) -> bool:
    return file.size <= max_size_mb * 1024 * 1024


def file_extension(file_name: str, default: str = "bin") -> str:
    """Lowercased extension of a file name reduced to [a-z0-9]."""
    if "." not in file_name:
        return default
    ext = _EXTENSION.sub("", file_name.rsplit(".", 1)[-1]).lower()
    return ext or default


def generate_unique_file_name(original_name: str) -> str:
    """
    Build a storage-safe file name from a timestamp and a random suffix.

    Only the alphanumeric characters of the original extension are kept,
    so path separators in client file names never reach the storage path.
    """
    ext = file_extension(original_name)
    timestamp = int(time.time() * 1000)
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{timestamp}-{suffix}.{ext}"


def truncate_text(text: Optional[str], max_length: int = 200) -> str:
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[:max_length].strip() + "..."


def strip_html(markup: Optional[str]) -> str:
    if not markup:
        return ""
    return html.unescape(_HTML_TAG.sub("", markup))


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL.match(email or ""))


def is_strong_password(password: str) -> bool:
    # At least 6 characters
    return len(password or "") >= 6


def generate_random_color() -> str:
    return random.choice(TAG_COLORS)
