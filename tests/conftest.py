import pytest
import os
import json

import httpx
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import app.models  # noqa: F401
from app.core import http
from app.core.config import settings
from app.core.deps import get_db
from app.core.rate_limit import login_rate_limiter, storefront_rate_limiter
from app.db.base import Base
from app.main import app


@pytest.fixture()
def test_context():
    original_secret = settings.secret_key
    settings.secret_key = "test-secret-key"

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
    settings.secret_key = original_secret
    login_rate_limiter.clear()
    storefront_rate_limiter.clear()


class RecordedRequests(list):
    """Requests seen by the mocked ad/payment APIs, with a settable reply."""

    def __init__(self):
        super().__init__()
        self.responder = lambda request: httpx.Response(200, json={"events_received": 1, "code": 0})

    def bodies(self, host_fragment: str) -> list[dict]:
        return [json.loads(request.content) for request in self if host_fragment in str(request.url)]


@pytest.fixture()
def mock_http(monkeypatch):
    recorded = RecordedRequests()

    def handler(request: httpx.Request) -> httpx.Response:
        recorded.append(request)
        return recorded.responder(request)

    def build_mock_client(timeout: float | None = None) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(handler))

    monkeypatch.setattr(http, "build_http_client", build_mock_client)
    return recorded
