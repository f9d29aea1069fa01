"""Pytest configuration and fixtures."""

import os
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from src.api.dependencies import get_pairing_service
from src.celery_app import app as celery_app
from src.config import get_settings
from src.database import Base, get_db, get_session_factory
from src.main import app
from src.models.user import User
from src.services.devices import DeviceRegistry
from src.services.pairing import PairingService
from src.services.sync_cache import SyncCache, get_sync_cache

# Emails run inline; with no SMTP host configured the task just logs
celery_app.conf.task_always_eager = True

DEFAULT_PASSWORD = "testpass123"  # noqa: S105

DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
PHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
TABLET_UA = (
    "Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
LAPTOP_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.1; rv:121.0) Gecko/20100101 Firefox/121.0"
)


class AuthHeaders(dict):
    """Dict subclass that also stores the signed-in user and device."""

    def __init__(
        self,
        *args,
        user_id: str | None = None,
        device_id: str | None = None,
        access_token: str | None = None,
        refresh_token: str | None = None,
        email: str | None = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.user_id = user_id
        self.device_id = device_id
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.email = email


class FakeRedis:
    """In-memory stand-in for the few Redis commands pairing uses."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self.store[key] = value
        self.ttls[key] = ex
        return True

    def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)
        return len(keys)


# Use test database - PostgreSQL in Docker, SQLite locally
if os.getenv("DATABASE_URL"):
    # Running in Docker - use PostgreSQL test database
    SQLALCHEMY_DATABASE_URL = os.getenv("DATABASE_URL").replace("/device_sync", "/device_sync_test")
else:
    # Running locally - use SQLite
    SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"

connect_args = {"check_same_thread": False} if "sqlite" in SQLALCHEMY_DATABASE_URL else {}
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args=connect_args)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create test database schema once at the start of the test session."""
    if "postgresql" in SQLALCHEMY_DATABASE_URL:
        from sqlalchemy_utils import create_database, database_exists

        if not database_exists(SQLALCHEMY_DATABASE_URL):
            create_database(SQLALCHEMY_DATABASE_URL)

    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(scope="function", autouse=True)
def db():
    """Create a fresh database session for each test with cleanup."""
    session = TestingSessionLocal()

    yield session

    # Clean up all data after test
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture(scope="function")
def client(db, fake_redis):
    """Create a test client with database, cache and pairing store overrides."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    app.dependency_overrides[get_sync_cache] = lambda: SyncCache(None)
    app.dependency_overrides[get_pairing_service] = lambda: PairingService(
        fake_redis, DeviceRegistry(db)
    )
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def register_user(
    client,
    db,
    email: str = "test@example.com",
    username: str = "testuser",
    password: str = DEFAULT_PASSWORD,
    verify: bool = True,
) -> User:
    """Register a user through the API and optionally verify the email."""
    response = client.post(
        "/api/v1/auth/register",
        json={"email": email, "username": username, "password": password, "full_name": "Test"},
    )
    assert response.status_code == 201, response.text

    user = db.query(User).filter(User.email == email.lower()).first()
    if verify:
        response = client.post("/api/v1/auth/verify-email", json={"token": user.verification_token})
        assert response.status_code == 200, response.text
        db.refresh(user)
    return user


def login_device(
    client,
    user_agent: str = DESKTOP_UA,
    identifier: str = "test@example.com",
    password: str = DEFAULT_PASSWORD,
) -> AuthHeaders:
    """Log in from a client identified by its user agent."""
    response = client.post(
        "/api/v1/auth/login",
        json={"identifier": identifier, "password": password},
        headers={"User-Agent": user_agent},
    )
    assert response.status_code == 200, response.text
    data = response.json()
    return AuthHeaders(
        {"Authorization": f"Bearer {data['access_token']}"},
        user_id=data["user"]["id"],
        device_id=data["device"]["id"],
        access_token=data["access_token"],
        refresh_token=data["refresh_token"],
        email=data["user"]["email"],
    )


@pytest.fixture
def verified_user(client, db):
    """A registered user whose email is verified."""
    return register_user(client, db)


@pytest.fixture
def auth_headers(client, verified_user):
    """Sign in the verified user from a desktop browser and return auth headers."""
    return login_device(client, DESKTOP_UA)


def make_expired_access_token(user_id: str, device_id: str) -> str:
    """A correctly signed access token that expired five minutes ago."""
    settings = get_settings()
    now = datetime.now(UTC)
    return jwt.encode(
        {
            "sub": user_id,
            "device_id": device_id,
            "type": "access",
            "iat": now - timedelta(hours=1),
            "exp": now - timedelta(minutes=5),
        },
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
