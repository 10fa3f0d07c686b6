from __future__ import annotations

import pytest

from rtocomply.core.config import get_settings
from rtocomply.core.errors import ProviderConfigError
from rtocomply.providers.file_search.factory import get_file_search_provider
from rtocomply.providers.file_search.fake import FakeFileSearchProvider
from rtocomply.providers.file_search.gemini import GeminiFileSearchProvider


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_fake_provider_is_shared_per_process(monkeypatch) -> None:
    monkeypatch.setenv("FILE_SEARCH_PROVIDER", "FAKE")
    first = get_file_search_provider()
    second = get_file_search_provider()
    assert isinstance(first, FakeFileSearchProvider)
    assert first is second


@pytest.mark.asyncio
async def test_gemini_without_api_key_fails_only_when_called(monkeypatch) -> None:
    monkeypatch.setenv("FILE_SEARCH_PROVIDER", "gemini")
    monkeypatch.setenv("GEMINI_API_KEY", "")
    provider = get_file_search_provider()
    assert isinstance(provider, GeminiFileSearchProvider)

    with pytest.raises(ProviderConfigError) as excinfo:
        await provider.get_operation("fileSearchStores/s/operations/op-1")
    assert excinfo.value.message == "Gemini config missing: set GEMINI_API_KEY in .env."
