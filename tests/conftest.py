"""Pytest configuration and fixtures."""

import os
import threading
import uuid

# Set test environment variables BEFORE importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only-32chars")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("ENCRYPTION_KEY", "O_jtZoqbvZFHK_GZ341S6vSMQr1affGksz33yCHiarM=")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RECOVERY_CODE_BCRYPT_ROUNDS", "4")

# Disable rate limiting for tests by monkey-patching BEFORE imports
from slowapi import Limiter
from slowapi.util import get_remote_address

# Create disabled limiters
_disabled_limiter = Limiter(key_func=get_remote_address, enabled=False)

# Patch the rate_limit module before it's imported elsewhere
import app.core.rate_limit as rate_limit_module
rate_limit_module.limiter = _disabled_limiter
rate_limit_module.public_limiter = _disabled_limiter

# Patch PostgreSQL types for SQLite compatibility BEFORE importing models
from sqlalchemy import String, TypeDecorator, JSON
import sqlalchemy.dialects.postgresql as pg_dialect


class SQLiteUUID(TypeDecorator):
    """Platform-independent UUID type that works with SQLite."""
    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            if isinstance(value, uuid.UUID):
                return str(value)
            return str(uuid.UUID(value))
        return value

    def process_result_value(self, value, dialect):
        if value is not None:
            return uuid.UUID(value)
        return value


# Monkey-patch the PostgreSQL UUID class before any models are imported
class MockUUID(SQLiteUUID):
    """Mock PostgreSQL UUID that works with SQLite for testing."""
    def __init__(self, as_uuid=True):
        super().__init__()
        self.as_uuid = as_uuid


class MockJSONB(TypeDecorator):
    """Mock PostgreSQL JSONB that works with SQLite for testing."""
    impl = JSON
    cache_ok = True

    def __init__(self, astext_type=None, none_as_null=False):
        super().__init__()


pg_dialect.UUID = MockUUID
pg_dialect.JSONB = MockJSONB

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.core.database import Base
from app.core.runtime import AuthRuntime
from app.api.deps import get_auth_runtime, get_db
from app.services.notifications import LoggingNotificationSender
from main import app

# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_CODE = "123456"
TEST_PASSWORD = "Vx7#mQ9!rLp2wZ"
NEW_PASSWORD = "Tq4$nW8@kHs3jY"
OTHER_PASSWORD = "Bz5&gR2%cNf6vX"


class FixedCodeGenerator:
    """Always issues the same code so tests can type it back."""

    def __init__(self, code: str = TEST_CODE):
        self.code = code

    def generate(self) -> str:
        return self.code


class RecordingNotificationSender(LoggingNotificationSender):
    """Keeps every message in memory instead of sending it."""

    def __init__(self):
        self.messages = []
        self.codes = []

    def _deliver(self, email: str, subject: str, body: str) -> bool:
        self.messages.append({"email": email, "subject": subject, "body": body})
        return True

    def send_verification_code(self, email: str, code: str, code_type: str) -> bool:
        self.codes.append({"email": email, "code": code, "type": code_type})
        return super().send_verification_code(email, code, code_type)

    def codes_of_type(self, code_type: str) -> list:
        return [c for c in self.codes if c["type"] == code_type]

    def subjects_for(self, email: str) -> list:
        return [m["subject"] for m in self.messages if m["email"] == email]


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def file_session_factory(tmp_path):
    """Sessions on a file-backed database, for tests that race threads."""
    file_engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=file_engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    file_engine.dispose()


def run_in_threads(count: int, target) -> list:
    """Start ``count`` threads on ``target`` behind a barrier; return what they raised."""
    barrier = threading.Barrier(count)
    errors = []

    def run():
        try:
            barrier.wait()
            target()
        except Exception as e:  # collected for the caller's assertions
            errors.append(e)

    threads = [threading.Thread(target=run) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return errors


@pytest.fixture
def notifier():
    return RecordingNotificationSender()


@pytest.fixture
def runtime(notifier):
    """A fresh blacklist, lockout and sign-in state store for each test."""
    return AuthRuntime.from_settings(
        settings,
        code_generator=FixedCodeGenerator(),
        notifier=notifier,
    )


@pytest.fixture(scope="function")
def client(db_session, runtime):
    """Create a test client with database and runtime overrides."""
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_auth_runtime] = lambda: runtime
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def sign_up_data():
    """Sample customer registration data."""
    return {
        "username": "shopper",
        "display_name": "Sam Shopper",
        "email": "shopper@example.com",
        "password": TEST_PASSWORD,
    }


@pytest.fixture
def registered_user(client, sign_up_data):
    """A customer who signed up and confirmed their email address."""
    response = client.post("/api/auth/sign-up", json=sign_up_data)
    assert response.status_code == 201
    response = client.post(
        "/api/auth/email-verification/confirm",
        json={"email": sign_up_data["email"], "code": TEST_CODE},
    )
    assert response.status_code == 200
    return sign_up_data


def sign_in(client, identifier: str, password: str = TEST_PASSWORD, headers: dict = None):
    return client.post(
        "/api/auth/sign-in",
        json={"identifier": identifier, "password": password},
        headers=headers,
    )


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def tokens(client, registered_user):
    """Token pair for the registered user (no MFA)."""
    response = sign_in(client, registered_user["email"])
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "SUCCESS"
    return data


@pytest.fixture
def auth_headers(tokens):
    return bearer(tokens["access_token"])
