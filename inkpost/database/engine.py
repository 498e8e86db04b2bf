from sqlmodel import create_engine, SQLModel
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
import os

# Register every table on SQLModel.metadata
from inkpost.models import blog, user  # noqa: F401


def build_engine(database_url: str) -> Engine:
    echo = True if os.getenv("DEBUG") else False
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    return create_engine(
        database_url,
        echo=echo,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=3600
    )


def create_db_and_tables(engine: Engine):
    SQLModel.metadata.create_all(engine)
