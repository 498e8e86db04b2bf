import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from inkpost.core.auth import get_password_hash
from inkpost.core.config import Settings
from inkpost.core.storage import FileUpload
from inkpost.main import create_app
from inkpost.models.blog import Tag
from inkpost.models.user import AuthIdentity, Profile
from inkpost.schemas.auth import AuthUser
from inkpost.services.gateway import create_gateway

PASSWORD = "TestPassword123"

# Smallest valid GIF
GIF_BYTES = (
    b"GIF89a\x01\x00\x01\x00\x80\x00\x00\x00\x00\x00\xff\xff\xff!\xf9\x04\x01\x00"
    b"\x00\x00\x00,\x00\x00\x00\x00\x01\x00\x01\x00\x00\x02\x02D\x01\x00;"
)


# Test settings and gateway: in-memory SQLite (StaticPool) and a temporary upload dir
@pytest.fixture(name="settings")
def settings_fixture(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        SECRET_KEY="test-secret-key",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        PUBLIC_BASE_URL="http://testserver",
    )


@pytest.fixture(name="gateway")
def gateway_fixture(settings: Settings):
    gateway = create_gateway(settings)
    yield gateway
    gateway.engine.dispose()


@pytest.fixture(name="session")
def session_fixture(gateway):
    with Session(gateway.engine) as session:
        yield session


@pytest.fixture(name="client")
def client_fixture(settings, gateway):
    app = create_app(settings, gateway)
    client = TestClient(app)
    yield client


def make_user(session: Session, email: str, username: str, password: str = PASSWORD) -> AuthUser:
    identity = AuthIdentity(email=email, password_hash=get_password_hash(password))
    session.add(identity)
    session.flush()
    session.add(Profile(id=identity.id, username=username, email=email))
    session.commit()
    session.refresh(identity)
    return AuthUser(
        id=identity.id,
        email=identity.email,
        user_metadata={"username": username},
        created_at=identity.created_at,
    )


@pytest.fixture(name="author")
def author_fixture(session: Session) -> AuthUser:
    return make_user(session, "author@example.com", "author")


@pytest.fixture(name="reader")
def reader_fixture(session: Session) -> AuthUser:
    return make_user(session, "reader@example.com", "reader")


@pytest.fixture(name="tags")
def tags_fixture(session: Session):
    python = Tag(name="Python", slug="python", color="#3b82f6")
    travel = Tag(name="Travel", slug="travel", color="#22c55e")
    session.add(python)
    session.add(travel)
    session.commit()
    session.refresh(python)
    session.refresh(travel)
    return {"python": python, "travel": travel}


def image_upload(filename: str = "cover.gif", size: int = 0) -> FileUpload:
    content = GIF_BYTES + b"\x00" * size
    return FileUpload(filename=filename, content_type="image/gif", content=content)


def login(client: TestClient, identifier: str = "author", password: str = PASSWORD) -> dict:
    response = client.post("/login", json={"identifier": identifier, "password": password})
    assert response.status_code == 200, response.text
    # Tests authenticate with explicit headers only
    client.cookies.clear()
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture(name="make_image")
def make_image_fixture():
    return image_upload


@pytest.fixture(name="login_as")
def login_as_fixture(client: TestClient):
    def _login(identifier: str = "author", password: str = PASSWORD) -> dict:
        return login(client, identifier, password)
    return _login
