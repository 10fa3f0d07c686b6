from __future__ import annotations

from rtocomply.core.errors import ProviderError
from rtocomply.providers.file_search.base import GenerationResult, GroundingCitation, ProviderOperation


class FakeFileSearchProvider:
    """In-memory file search provider with scriptable operation outcomes."""

    def __init__(self, answer: str = "This is a fake answer.") -> None:
        # Deterministic state keeps tests stable without external calls.
        self.stores: dict[str, str] = {}
        self.operations: dict[str, ProviderOperation] = {}
        self.uploads: list[dict[str, object]] = []
        self.get_operation_calls: list[str] = []
        self.prompts: list[str] = []
        self.upload_error: str | None = None
        self.operation_error: str | None = None
        self.generate_error: str | None = None
        self._answer = answer
        self._counter = 0

    async def get_or_create_store(self, display_name: str) -> str:
        if display_name not in self.stores:
            self.stores[display_name] = f"fileSearchStores/{display_name}"
        return self.stores[display_name]

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
        if self.upload_error:
            raise ProviderError(self.upload_error)
        self._counter += 1
        name = f"{store_name}/upload/operations/op-{self._counter}"
        self.uploads.append(
            {
                "store_name": store_name,
                "file_name": file_name,
                "display_name": display_name,
                "mime_type": mime_type,
                "metadata": metadata,
                "size": len(content),
            }
        )
        operation = ProviderOperation(name=name, done=False)
        self.operations[name.replace("/upload/operations/", "/operations/")] = operation
        return operation

    def complete(self, name: str, *, document_name: str | None = None, error: str | None = None) -> None:
        # Mark a scripted operation as finished on the provider side.
        key = name.replace("/upload/operations/", "/operations/")
        self.operations[key] = ProviderOperation(
            name=key,
            done=True,
            error=error,
            document_name=document_name or f"{key}/documents/doc",
        )

    async def get_operation(self, name: str) -> ProviderOperation:
        self.get_operation_calls.append(name)
        if self.operation_error:
            raise ProviderError(self.operation_error)
        key = name.replace("/upload/operations/", "/operations/")
        return self.operations.get(key, ProviderOperation(name=key, done=False))

    async def generate_content(
        self,
        *,
        prompt: str,
        store_names: list[str],
        metadata_filter: str | None = None,
    ) -> GenerationResult:
        if self.generate_error:
            raise ProviderError(self.generate_error)
        self.prompts.append(prompt)
        citations = [GroundingCitation(document_name=name, chunk_text=None) for name in store_names]
        return GenerationResult(text=self._answer, citations=citations)
