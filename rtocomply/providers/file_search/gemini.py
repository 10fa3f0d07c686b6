from __future__ import annotations

import json
import logging
from typing import Any
from uuid import uuid4

import httpx

from rtocomply.core.config import Settings, get_settings
from rtocomply.core.errors import ProviderConfigError, ProviderError
from rtocomply.providers.file_search.base import GenerationResult, GroundingCitation, ProviderOperation

logger = logging.getLogger(__name__)


def normalize_operation_name(name: str) -> str:
    # Upload responses return an upload-scoped name that getOperation does not accept.
    return name.replace("/upload/operations/", "/operations/")


def _error_message(response: httpx.Response) -> str:
    # Surface the provider's own message verbatim when it sends JSON errors.
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if payload.get("message"):
            return str(payload["message"])
    return response.text


def _operation_from_payload(payload: dict[str, Any], fallback_name: str) -> ProviderOperation:
    error = payload.get("error")
    error_message = None
    if isinstance(error, dict):
        error_message = str(error.get("message") or error)
    elif error:
        error_message = str(error)
    response = payload.get("response") or {}
    document_name = response.get("documentName")
    if document_name is None and isinstance(response.get("file"), dict):
        document_name = response["file"].get("name")
    return ProviderOperation(
        name=normalize_operation_name(payload.get("name") or fallback_name),
        done=bool(payload.get("done")),
        error=error_message,
        document_name=document_name,
        raw=payload,
    )


def build_multipart_related(metadata: dict[str, Any], content: bytes, file_name: str, mime_type: str) -> tuple[bytes, str]:
    """Build a multipart/related body for the Gemini media upload endpoint.

    httpx only encodes multipart/form-data, so the related parts are assembled
    by hand: a JSON metadata part followed by the raw file part.
    """
    boundary = f"rtocomply-{uuid4().hex}"
    parts = [
        f"--{boundary}\r\n".encode(),
        b"Content-Type: application/json; charset=UTF-8\r\n\r\n",
        json.dumps(metadata).encode("utf-8"),
        b"\r\n",
        f"--{boundary}\r\n".encode(),
        f"Content-Type: {mime_type}\r\n".encode(),
        f'Content-Disposition: form-data; name="file"; filename="{file_name}"\r\n\r\n'.encode(),
        content,
        b"\r\n",
        f"--{boundary}--\r\n".encode(),
    ]
    return b"".join(parts), f"multipart/related; boundary={boundary}"


class GeminiFileSearchProvider:
    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        # Tests inject a MockTransport; production uses the default network transport.
        self._transport = transport

    def _client(self, timeout_ms: int) -> httpx.AsyncClient:
        # Fail on first use so routes that never touch the provider still work without a key.
        if not self._settings.gemini_api_key:
            raise ProviderConfigError("Gemini config missing: set GEMINI_API_KEY in .env.")
        return httpx.AsyncClient(
            timeout=max(1, timeout_ms) / 1000.0,
            transport=self._transport,
            params={"key": self._settings.gemini_api_key},
        )

    async def _request(
        self,
        method: str,
        url: str,
        *,
        timeout_ms: int,
        json_body: dict[str, Any] | None = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            async with self._client(timeout_ms) as client:
                response = await client.request(
                    method, url, json=json_body, content=content, headers=headers, params=params
                )
        except httpx.TimeoutException as exc:
            logger.warning("gemini_timeout method=%s url=%s", method, url)
            raise ProviderError(f"Gemini API timeout after {timeout_ms}ms") from exc
        except httpx.HTTPError as exc:
            logger.warning("gemini_transport_error method=%s url=%s", method, url)
            raise ProviderError(f"Gemini API request failed: {exc}") from exc
        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning("gemini_http_error status=%s url=%s", response.status_code, url)
            raise ProviderError(message, details={"status": response.status_code})
        if not response.content:
            return {}
        return response.json()

    async def list_stores(self) -> list[dict[str, Any]]:
        stores: list[dict[str, Any]] = []
        page_token: str | None = None
        while True:
            params = {"pageSize": 20}
            if page_token:
                params["pageToken"] = page_token
            payload = await self._request(
                "GET",
                f"{self._settings.gemini_base_url}/fileSearchStores",
                timeout_ms=self._settings.gemini_timeout_ms,
                params=params,
            )
            stores.extend(payload.get("fileSearchStores") or [])
            page_token = payload.get("nextPageToken")
            if not page_token:
                return stores

    async def create_store(self, display_name: str) -> str:
        payload = await self._request(
            "POST",
            f"{self._settings.gemini_base_url}/fileSearchStores",
            timeout_ms=self._settings.gemini_timeout_ms,
            json_body={"displayName": display_name},
        )
        logger.info("gemini_store_created name=%s display_name=%s", payload.get("name"), display_name)
        return str(payload["name"])

    async def get_or_create_store(self, display_name: str) -> str:
        for store in await self.list_stores():
            if store.get("displayName") == display_name:
                return str(store["name"])
        return await self.create_store(display_name)

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
        upload_metadata: dict[str, Any] = {"displayName": display_name}
        if metadata:
            upload_metadata["customMetadata"] = [
                {"key": key, "stringValue": value} for key, value in metadata.items()
            ]
        body, content_type = build_multipart_related(upload_metadata, content, file_name, mime_type)
        payload = await self._request(
            "POST",
            f"{self._settings.gemini_upload_base_url}/{store_name}:uploadToFileSearchStore",
            timeout_ms=self._settings.gemini_timeout_ms,
            content=body,
            headers={"Content-Type": content_type},
        )
        operation = _operation_from_payload(payload, fallback_name="")
        if not operation.name:
            raise ProviderError("Gemini upload response did not include an operation name")
        logger.info("gemini_upload_started store=%s operation=%s", store_name, operation.name)
        return operation

    async def get_operation(self, name: str) -> ProviderOperation:
        normalized = normalize_operation_name(name)
        payload = await self._request(
            "GET",
            f"{self._settings.gemini_base_url}/{normalized}",
            timeout_ms=self._settings.gemini_operation_timeout_ms,
        )
        return _operation_from_payload(payload, fallback_name=normalized)

    async def generate_content(
        self,
        *,
        prompt: str,
        store_names: list[str],
        metadata_filter: str | None = None,
    ) -> GenerationResult:
        file_search: dict[str, Any] = {"file_search_store_names": store_names}
        if metadata_filter:
            file_search["metadata_filter"] = metadata_filter
        payload = await self._request(
            "POST",
            f"{self._settings.gemini_base_url}/models/{self._settings.gemini_model}:generateContent",
            timeout_ms=self._settings.gemini_timeout_ms,
            json_body={
                "contents": [{"parts": [{"text": prompt}]}],
                "tools": [{"file_search": file_search}],
                "generationConfig": {"temperature": 0.2},
            },
        )
        candidates = payload.get("candidates") or []
        if not candidates:
            return GenerationResult(text="")
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)
        citations: list[GroundingCitation] = []
        for chunk in (candidate.get("groundingMetadata") or {}).get("groundingChunks") or []:
            # File search grounding arrives as retrievedContext; older payloads used fileSearchChunk.
            context = chunk.get("retrievedContext") or chunk.get("fileSearchChunk")
            if not context:
                continue
            citations.append(
                GroundingCitation(
                    document_name=context.get("title")
                    or context.get("displayName")
                    or context.get("documentName")
                    or "",
                    chunk_text=context.get("text") or context.get("chunkText"),
                )
            )
        return GenerationResult(text=text, citations=citations)
