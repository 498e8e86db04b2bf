# inkpost/services/gateway.py
"""
The data gateway: database collections, the auth subsystem and the object
store, bundled so services receive a single explicit collaborator.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from sqlalchemy.engine import Engine
from sqlmodel import Session

from inkpost.core.config import Settings
from inkpost.core.storage import StorageService, create_storage_service
from inkpost.database.engine import build_engine, create_db_and_tables
from inkpost.services.auth_gateway import AuthGateway
from inkpost.services.event_bus import EventBus

logger = logging.getLogger(__name__)


@dataclass
class Gateway:
    settings: Settings
    engine: Engine
    events: EventBus
    auth: AuthGateway
    storage: StorageService

    @contextmanager
    def session(self) -> Iterator[Session]:
        with Session(self.engine) as db:
            yield db


def create_gateway(settings: Settings, engine: Engine = None, storage: StorageService = None) -> Gateway:
    """Wire the gateway collaborators from settings; `engine`/`storage` may be injected."""
    engine = engine or build_engine(settings.DATABASE_URL)
    create_db_and_tables(engine)

    events = EventBus()
    auth = AuthGateway(
        engine,
        events,
        secret_key=settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
        access_token_expire_minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES,
        refresh_token_expire_days=settings.REFRESH_TOKEN_EXPIRE_DAYS,
    )
    storage = storage or create_storage_service(settings)
    logger.info(f"Gateway ready (storage backend: {storage.storage_backend})")
    return Gateway(settings=settings, engine=engine, events=events, auth=auth, storage=storage)
