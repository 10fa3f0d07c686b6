from __future__ import annotations

import json

import httpx
import pytest

from rtocomply.core.config import Settings
from rtocomply.core.errors import ProviderConfigError, WorkflowError
from rtocomply.services.workflow import WorkflowClient


def _client(handler) -> WorkflowClient:
    settings = Settings(
        n8n_validation_webhook_url="http://n8n.test/webhook/validate",
        n8n_revalidate_webhook_url="http://n8n.test/webhook/revalidate",
    )
    return WorkflowClient(settings=settings, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_list_responses_are_unwrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content) == {"validationDetailId": "d1"}
        return httpx.Response(200, json=[{"status": "started"}])

    response = await _client(handler).trigger_validation({"validationDetailId": "d1"})
    assert response == {"status": "started"}


@pytest.mark.asyncio
async def test_rejected_webhook_raises_workflow_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="workflow crashed")

    with pytest.raises(WorkflowError) as excinfo:
        await _client(handler).revalidate({"validation_result": {}})
    assert excinfo.value.message == "N8n webhook failed: 500 workflow crashed"
    assert excinfo.value.status_code == 502


@pytest.mark.asyncio
async def test_transport_failure_raises_workflow_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(WorkflowError):
        await _client(handler).trigger_validation({})


@pytest.mark.asyncio
async def test_unconfigured_webhook_is_a_config_error() -> None:
    client = _client(lambda request: httpx.Response(200, json={}))
    with pytest.raises(ProviderConfigError):
        await client.regenerate_questions({})
