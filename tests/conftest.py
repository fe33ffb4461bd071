import io
from typing import Optional
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from invoicehub.config import settings
from invoicehub.context import build_context
from invoicehub.main import app
from invoicehub.middleware.auth import get_current_user
from invoicehub.services.attachment_service import PendingFile
from invoicehub.services.storage import BlobStorage
from invoicehub.services.tree_store import MemoryTreeBackend, split_path

ORG_ID = "org-acme"
ADMIN_ID = "admin-1"
REVIEWER_ID = "reviewer-1"
OUTSIDER_ID = "reviewer-2"


class FlakyTreeBackend(MemoryTreeBackend):
    """Memory tree that records writes and fails those under ``fail_on`` prefixes."""

    def __init__(self):
        super().__init__()
        self.fail_on: list[str] = []
        self.writes: list[str] = []

    def _check(self, path: str):
        normalized = "/".join(split_path(path))
        if any(normalized.startswith(prefix) for prefix in self.fail_on):
            raise ConnectionError(f"store unavailable: {normalized}")

    def set(self, path, value):
        self._check(path)
        self.writes.append(path)
        super().set(path, value)

    def update(self, path, fields):
        for key in fields:
            self._check(f"{path}/{key}")
        self.writes.append(path)
        super().update(path, fields)


def _fake_upload(fileobj, key, content_type, on_bytes=None):
    data = fileobj.read()
    if on_bytes:
        on_bytes(len(data))
    return key


@pytest.fixture
def backend() -> FlakyTreeBackend:
    return FlakyTreeBackend()


@pytest.fixture
def storage() -> MagicMock:
    blob = MagicMock(spec=BlobStorage)
    blob.bucket = "test-bucket"
    blob.presigned_expires_in = 3600
    blob.upload.side_effect = _fake_upload
    blob.get_url.side_effect = lambda key: f"https://blobs.test/{key}"
    blob.get_presigned_url.side_effect = lambda key, expires_in=None: f"https://blobs.test/{key}?sig=1"
    return blob


@pytest.fixture
def ctx(backend, storage):
    return build_context(settings, backend=backend, storage=storage)


@pytest.fixture
def admin_user() -> dict:
    return {
        "user_id": ADMIN_ID,
        "email": "admin@acme.test",
        "display_name": "Ada Admin",
        "organization_id": ORG_ID,
        "role": "admin",
    }


@pytest.fixture
def reviewer_user() -> dict:
    return {
        "user_id": REVIEWER_ID,
        "email": "rita@acme.test",
        "display_name": "Rita Reviewer",
        "organization_id": ORG_ID,
        "role": "reviewer",
    }


@pytest.fixture
def organization(backend):
    """Seed an organization with one admin and one reviewer."""
    backend.set(
        f"organizations/{ORG_ID}",
        {
            "name": "Acme Corp",
            "createdBy": ADMIN_ID,
            "adminIds": [ADMIN_ID],
            "members": {
                ADMIN_ID: {"role": "admin", "joinedAt": "2024-01-01T00:00:00+00:00"},
                REVIEWER_ID: {"role": "reviewer", "joinedAt": "2024-01-02T00:00:00+00:00"},
            },
            "createdAt": "2024-01-01T00:00:00+00:00",
        },
    )
    backend.set(
        f"users/{ADMIN_ID}",
        {"uid": ADMIN_ID, "email": "admin@acme.test", "displayName": "Ada Admin",
         "role": "admin", "organization": ORG_ID},
    )
    backend.set(
        f"users/{REVIEWER_ID}",
        {"uid": REVIEWER_ID, "email": "rita@acme.test", "displayName": "Rita Reviewer",
         "role": "reviewer", "organization": ORG_ID},
    )
    backend.writes.clear()
    return ORG_ID


def make_file(
    name: str = "invoice.pdf",
    content_type: str = "application/pdf",
    size: Optional[int] = None,
    data: bytes = b"%PDF-1.4 test document",
) -> PendingFile:
    return PendingFile(
        name=name,
        content_type=content_type,
        size=len(data) if size is None else size,
        stream=io.BytesIO(data),
    )


@pytest.fixture
def acting(admin_user) -> dict:
    """Mutable holder for the user the test client acts as."""
    return {"user": admin_user}


@pytest_asyncio.fixture
async def client(ctx, acting):
    app.state.context = ctx
    app.dependency_overrides[get_current_user] = lambda: acting["user"]
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
    app.state.context = None
