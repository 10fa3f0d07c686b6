from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from rtocomply.core.config import Settings, get_settings
from rtocomply.core.errors import ProviderConfigError, WorkflowError


logger = logging.getLogger(__name__)


class WorkflowClient:
    """Post payloads to the n8n webhooks that run validation passes.

    Calls are made once per invocation; callers re-trigger on failure.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport = transport

    async def _post(self, integration: str, url: str | None, payload: dict[str, Any]) -> dict[str, Any]:
        if not url:
            raise ProviderConfigError(f"n8n webhook for {integration} is not configured")
        timeout_s = max(1, int(self._settings.n8n_timeout_ms)) / 1000.0
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=timeout_s, transport=self._transport) as client:
                response = await client.post(url, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("workflow_call_failed integration=%s error=%s", integration, exc)
            raise WorkflowError(f"N8n webhook failed: {exc}") from exc
        latency_ms = (time.monotonic() - started) * 1000.0
        if response.status_code >= 400:
            logger.warning(
                "workflow_call_rejected integration=%s status=%s latency_ms=%.1f",
                integration,
                response.status_code,
                latency_ms,
            )
            raise WorkflowError(
                f"N8n webhook failed: {response.status_code} {response.text}",
                details={"status": response.status_code},
            )
        logger.info("workflow_call_ok integration=%s latency_ms=%.1f", integration, latency_ms)
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            return {"message": response.text}
        # n8n "respond to webhook" nodes often wrap the item in a single-element list.
        if isinstance(body, list):
            body = body[0] if body else {}
        return body if isinstance(body, dict) else {"data": body}

    async def trigger_validation(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._post("validation", self._settings.n8n_validation_webhook_url, payload)

    async def revalidate(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._post("revalidate", self._settings.n8n_revalidate_webhook_url, payload)

    async def regenerate_questions(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._post(
            "regenerate_questions", self._settings.n8n_regenerate_questions_webhook_url, payload
        )


def get_workflow_client() -> WorkflowClient:
    return WorkflowClient()
