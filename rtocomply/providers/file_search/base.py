from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class ProviderOperation:
    # Provider-side long-running operation snapshot.
    name: str
    done: bool
    error: str | None = None
    # Indexed document resource name once the operation is done.
    document_name: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GroundingCitation:
    document_name: str
    chunk_text: str | None = None


@dataclass(frozen=True)
class GenerationResult:
    text: str
    citations: list[GroundingCitation] = field(default_factory=list)


class FileSearchProvider(Protocol):
    async def get_or_create_store(self, display_name: str) -> str:
        ...

    async def upload_document(
        self,
        *,
        store_name: str,
        content: bytes,
        file_name: str,
        display_name: str,
        mime_type: str,
        metadata: dict[str, str],
    ) -> ProviderOperation:
        ...

    async def get_operation(self, name: str) -> ProviderOperation:
        ...

    async def generate_content(
        self,
        *,
        prompt: str,
        store_names: list[str],
        metadata_filter: str | None = None,
    ) -> GenerationResult:
        ...
