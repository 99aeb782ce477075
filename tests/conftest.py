import os
import tempfile

# Settings are read at import time, so the environment comes first
_DB_DIR = tempfile.mkdtemp(prefix="zta-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_DB_DIR, 'zta.db')}")
os.environ.setdefault("JWT_SECRET", "test-secret-that-is-at-least-32-characters-long")
os.environ.setdefault("HASH_SECRET", "test-hash-secret")
os.environ.setdefault("BLOB_BACKEND", "memory")
os.environ.setdefault("KAFKA_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("WORKER_HEALTHCHECK_FILE_PATH", os.path.join(_DB_DIR, "healthy"))

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from zta import webhooks
from zta.db import engine
from zta.limiter import limiter
from zta.main import app
from zta.storage import InMemoryBlobStore, set_blob_store

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
PASSWORD = "correct-horse-battery"


@pytest.fixture(autouse=True)
def clean_state():
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    blob = InMemoryBlobStore()
    set_blob_store(blob)
    limiter.reset()
    yield blob
    set_blob_store(None)


@pytest.fixture
def blob(clean_state):
    return clean_state


@pytest.fixture
def session():
    with Session(engine) as s:
        yield s


@pytest.fixture
def client():
    with TestClient(app, headers={"User-Agent": CHROME_UA}) as c:
        yield c


@pytest.fixture
def register(client):
    """Registers an account and returns its bearer headers."""
    def _register(email="owner@example.com", password=PASSWORD, plan=None):
        body = {"email": email, "password": password}
        if plan:
            body["plan"] = plan
        response = client.post("/api/auth/register", json=body)
        assert response.status_code == 201, response.text
        return {"Authorization": f"Bearer {response.json()['token']}"}
    return _register


@pytest.fixture
def auth(register):
    return register()


@pytest.fixture
def site(client, auth):
    response = client.post("/api/sites/create", json={"domain": "example.com", "nickname": "Example"}, headers=auth)
    assert response.status_code == 201, response.text
    return response.json()["site"]


@pytest.fixture
def webhook_calls(monkeypatch):
    """Captures outgoing webhook requests instead of sending them."""
    calls = []

    def fake_post(url, content=None, headers=None, timeout=None):
        calls.append({"url": url, "body": content, "headers": headers})
        return httpx.Response(200, request=httpx.Request("POST", url))

    monkeypatch.setattr(webhooks.httpx, "post", fake_post)
    return calls
