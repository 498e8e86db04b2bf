# Import all models to ensure they are registered with SQLModel
from inkpost.models import blog, user
from inkpost.schemas import auth
from inkpost.core import config, auth as core_auth, deps
from inkpost.database import engine

__all__ = [
    "blog",
    "user",
    "auth",
    "config",
    "core_auth",
    "deps",
    "engine",
]
