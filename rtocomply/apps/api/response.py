from __future__ import annotations

from dataclasses import asdict, is_dataclass
from typing import Any
from uuid import uuid4

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel


API_VERSION = "v1"


class SuccessEnvelope(BaseModel):
    # Successful responses merge their payload fields next to the success flag.
    model_config = {"extra": "allow"}

    success: bool = True


class ErrorEnvelope(BaseModel):
    # Errors carry the raw message so clients can display it directly.
    success: bool = False
    error: str
    code: str
    details: dict[str, Any] | None = None
    request_id: str | None = None


def get_request_id(request: Request) -> str:
    # Use existing request IDs when provided to preserve traceability.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    header_request_id = request.headers.get("X-Request-Id")
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = str(uuid4())
    request.state.request_id = generated
    return generated


def _to_payload(data: Any) -> dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if is_dataclass(data) and not isinstance(data, type):
        return jsonable_encoder(asdict(data))
    return jsonable_encoder(data)


def success_response(*, request: Request, data: Any = None, **fields: Any) -> dict[str, Any]:
    """Build a ``{success: true, ...payload}`` body.

    ``data`` is flattened into the top level when it is a mapping, model or
    dataclass; extra keyword fields are merged on top.
    """
    payload: dict[str, Any] = {"success": True}
    if data is not None:
        encoded = _to_payload(data)
        if isinstance(encoded, dict):
            payload.update(encoded)
        else:
            payload["data"] = encoded
    if fields:
        payload.update(jsonable_encoder(fields))
    get_request_id(request)
    return payload


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    envelope = ErrorEnvelope(
        error=message,
        code=code,
        details=jsonable_encoder(details) if details else None,
        request_id=get_request_id(request),
    )
    return envelope.model_dump(exclude_none=True)
