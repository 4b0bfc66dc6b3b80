"""
Shared fixtures. The environment is configured here, before any app module is
imported, because config.py and crypto.py read it at import time.
"""
import os
import tempfile
import threading

from cryptography.fernet import Fernet

_TMP_DIR = tempfile.mkdtemp(prefix="drive-proxy-tests-")

os.environ.update({
    "ENV": "test",
    "GOOGLE_CLIENT_ID": "test-client-id",
    "GOOGLE_CLIENT_SECRET": "test-client-secret",
    "GOOGLE_REDIRECT_URI": "http://testserver/auth/google/callback",
    "GOOGLE_DRIVE_FOLDER_ID": "root-folder",
    "TOKEN_ENCRYPTION_KEY": Fernet.generate_key().decode(),
    "TOKEN_STORAGE": "database",
    "DATABASE_URL": f"sqlite:///{_TMP_DIR}/tokens.db",
    "STREAM_CHUNK_FALLBACK_BYTES": str(64 * 1024),
    "STREAM_BUFFER_BYTES": "4096",
})

import pytest
from fastapi.testclient import TestClient

from auth import get_token_store, require_drive_client
from errors import ProviderError
from main import app as fastapi_app
from services.drive_client import FOLDER_MIME, RemoteFileRef
from token_store import Credential, TokenStore


class MemoryBackend:
    """Token backend that keeps the encrypted value in memory."""

    def __init__(self, value=None):
        self.value = value
        self.writes = 0

    def read(self):
        return self.value

    def write(self, encrypted):
        self.value = encrypted
        self.writes += 1


class FakeUpstream:
    """Stand-in for a streaming requests.Response from Drive."""

    def __init__(self, data: bytes, status_code: int = 200, truncate_at: int | None = None):
        self.data = data
        self.status_code = status_code
        self.truncate_at = truncate_at
        self.closed = False

    def iter_content(self, chunk_size=1):
        body = self.data if self.truncate_at is None else self.data[: self.truncate_at]
        for i in range(0, len(body), chunk_size):
            yield body[i : i + chunk_size]

    def close(self):
        self.closed = True


class FakeDrive:
    """In-memory Drive tree with the DriveClient interface."""

    def __init__(self):
        self.items: dict[str, dict] = {}
        self.failing_content: set[str] = set()
        self.ignore_range = False
        self.truncate: dict[str, int] = {}
        self.opened: list[FakeUpstream] = []
        self.list_calls: list[str] = []
        self._lock = threading.Lock()

    def add_folder(self, folder_id, name, *parents):
        self.items[folder_id] = {"name": name, "mime": FOLDER_MIME, "data": None, "parents": parents}

    def add_file(self, file_id, name, data, *parents, mime="application/octet-stream"):
        self.items[file_id] = {"name": name, "mime": mime, "data": data, "parents": parents}

    def _ref(self, item_id) -> RemoteFileRef:
        item = self.items[item_id]
        return RemoteFileRef(
            id=item_id,
            name=item["name"],
            mime_type=item["mime"],
            size=None if item["data"] is None else len(item["data"]),
            parents=tuple(item["parents"]),
        )

    def get_file(self, file_id):
        if file_id not in self.items:
            raise ProviderError("Google Drive metadata lookup failed with status 404", provider_status=404)
        return self._ref(file_id)

    def list_children(self, folder_id):
        with self._lock:
            self.list_calls.append(folder_id)
        children = [self._ref(i) for i, item in self.items.items() if folder_id in item["parents"]]
        return sorted(children, key=lambda r: (not r.is_folder, r.name))

    def open_content(self, file_id, start=None, end=None):
        if file_id in self.failing_content:
            raise ProviderError("Google Drive content download failed with status 500", transient=True)
        data = self.items[file_id]["data"]
        if start is not None and not self.ignore_range:
            upstream = FakeUpstream(data[start : end + 1], status_code=206)
        else:
            upstream = FakeUpstream(data, truncate_at=self.truncate.get(file_id))
        with self._lock:
            self.opened.append(upstream)
        return upstream


@pytest.fixture
def fake_drive():
    return FakeDrive()


@pytest.fixture
def token_store():
    store = TokenStore(MemoryBackend())
    store.save(Credential(access_token="access-1", refresh_token="refresh-1"))
    return store


@pytest.fixture
def app():
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app, fake_drive):
    """Client whose Drive-backed routes talk to fake_drive, skipping the auth gate."""
    app.dependency_overrides[require_drive_client] = lambda: fake_drive
    return TestClient(app)


@pytest.fixture
def gated_client(app, token_store):
    """Client running the real auth gate against the token_store fixture."""
    app.dependency_overrides[get_token_store] = lambda: token_store
    return TestClient(app)
