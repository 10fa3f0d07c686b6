from __future__ import annotations

from functools import lru_cache

from rtocomply.core.config import get_settings
from rtocomply.providers.file_search.base import FileSearchProvider
from rtocomply.providers.file_search.fake import FakeFileSearchProvider
from rtocomply.providers.file_search.gemini import GeminiFileSearchProvider


@lru_cache
def _fake_provider() -> FakeFileSearchProvider:
    # Share one fake per process so scripted state survives across requests.
    return FakeFileSearchProvider()


def get_file_search_provider() -> FileSearchProvider:
    settings = get_settings()
    provider = (settings.file_search_provider or "gemini").lower()

    if provider == "fake":
        return _fake_provider()
    return GeminiFileSearchProvider(settings=settings)
