"""
Shared fixtures for API tests.

The app runs entirely in mock mode: storages live in the in-memory
Snowflake mock and every bucket is a MockStorageClient. Environment is
set before the app module is imported because it builds an app (and
reads settings) at import time.
"""

import os

os.environ.update({
    "ADMIN_USERNAME": "admin",
    "ADMIN_PASSWORD": "test-password",
    "SESSION_SECRET": "test-session-secret",
    "CREDENTIALS_ENCRYPTION_KEY": "",
    "SNOWFLAKE_MOCK_MODE": "true",
    "STORAGE_MOCK_MODE": "true",
    "SITE_TITLE": "Test CList",
    "SITE_ANNOUNCEMENT": "Welcome",
})

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from clist.api.dependencies import reset_state  # noqa: E402
from clist.config.settings import get_settings  # noqa: E402
from clist.main import create_app  # noqa: E402


STORAGE_PAYLOAD = {
    "name": "Media",
    "endpoint": "https://account.r2.cloudflarestorage.com",
    "region": "auto",
    "accessKeyId": "AKIA",
    "secretAccessKey": "top-secret",
    "bucket": "media",
    "basePath": "",
    "isPublic": True,
}


@pytest.fixture
def app():
    get_settings.cache_clear()
    reset_state()
    app = create_app()
    yield app
    app.dependency_overrides.clear()
    reset_state()
    get_settings.cache_clear()


@pytest.fixture
def client(app):
    """Anonymous visitor."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def admin_client(app):
    """Client holding an admin session cookie."""
    with TestClient(app) as client:
        response = client.post(
            "/api/storages",
            json={"action": "login", "username": "admin", "password": "test-password"},
        )
        assert response.status_code == 200
        yield client


@pytest.fixture
def storage_payload():
    return dict(STORAGE_PAYLOAD)


@pytest.fixture
def create_storage(admin_client):
    """Create a storage as admin and return its JSON view."""
    def _create(**overrides):
        payload = {**STORAGE_PAYLOAD, **overrides}
        response = admin_client.post("/api/storages", json=payload)
        assert response.status_code == 201, response.text
        return response.json()["storage"]
    return _create
