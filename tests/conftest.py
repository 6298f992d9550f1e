import os
from datetime import datetime, timedelta

# must be set before any application module reads Config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["SMTP_HOST"] = ""
os.environ["LIMIT_NOTIFY_POLICY"] = "every"

import jwt
import pytest
from fastapi.testclient import TestClient

import evaluator
from config import Config
from database import Base, SessionLocal, engine
from errors import NotificationDeliveryError
from main import app


class RecordingNotifier:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def send(self, notification):
        if any(name in notification.subject for name in self.fail_for):
            raise NotificationDeliveryError(f"smtp down for {notification.subject}")
        self.sent.append(notification)


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    with SessionLocal() as session:
        yield session


@pytest.fixture
def notifier(monkeypatch):
    recording = RecordingNotifier()
    monkeypatch.setattr(evaluator, "get_notifier", lambda: recording)
    return recording


@pytest.fixture
def client():
    return TestClient(app)


def create_access_token(data: dict, expires_minutes: int = 30):
    """Sign a token the way the external auth provider does."""
    to_encode = data.copy()
    expire = datetime.utcnow() + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, Config.JWT_SECRET, algorithm=Config.JWT_ALGORITHM)


def token_headers(user_id, email=None, full_name=None):
    claims = {"sub": user_id}
    if email:
        claims["email"] = email
    if full_name:
        claims["user_metadata"] = {"full_name": full_name}
    return {"Authorization": f"Bearer {create_access_token(claims)}"}


@pytest.fixture
def auth_headers():
    return token_headers("user-1", email="ada@example.com", full_name="Ada Lovelace")


@pytest.fixture
def make_headers():
    return token_headers
