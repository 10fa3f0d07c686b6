from __future__ import annotations

import os
import tempfile
from pathlib import Path

# Point settings at a throwaway SQLite database before any module builds the engine.
_TEST_ROOT = Path(tempfile.mkdtemp(prefix="rtocomply-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_ROOT / 'test.db'}"
os.environ["FILE_SEARCH_PROVIDER"] = "fake"
os.environ["STORAGE_DIR"] = str(_TEST_ROOT / "documents")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from httpx import ASGITransport, AsyncClient

from rtocomply.apps.api.deps import get_provider, get_storage, get_workflow
from rtocomply.apps.api.main import create_app
from rtocomply.domain.models import Base
from rtocomply.persistence.db import engine
from rtocomply.providers.file_search.fake import FakeFileSearchProvider
from rtocomply.services.storage import DocumentStorage
from rtocomply.services.workflow import WorkflowClient


@pytest.fixture(autouse=True)
async def reset_database() -> None:
    # Rebuild the schema per test so every test starts from empty tables.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def fake_provider() -> FakeFileSearchProvider:
    return FakeFileSearchProvider()


@pytest.fixture
def storage(tmp_path) -> DocumentStorage:
    return DocumentStorage(tmp_path / "documents")


@pytest.fixture
def workflow_client() -> WorkflowClient:
    # Tests that exercise webhooks swap in a client backed by httpx.MockTransport.
    return WorkflowClient()


@pytest.fixture
def app(fake_provider, storage, workflow_client):
    application = create_app()
    application.dependency_overrides[get_provider] = lambda: fake_provider
    application.dependency_overrides[get_storage] = lambda: storage
    application.dependency_overrides[get_workflow] = lambda: workflow_client
    return application


@pytest.fixture
async def client(app) -> AsyncClient:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
