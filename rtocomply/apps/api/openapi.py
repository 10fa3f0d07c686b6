from __future__ import annotations

from typing import Any

from rtocomply.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    # Build a consistent error body example for OpenAPI docs.
    payload: dict[str, Any] = {
        "success": False,
        "error": message,
        "code": code,
        "request_id": "req_example",
    }
    if details:
        payload["details"] = details
    return payload


def _response(description: str, example: dict[str, Any]) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _response(
        "Bad request",
        _error_example(code="VALIDATION_ERROR", message="Missing required fields: rto_code"),
    ),
    402: _response(
        "Insufficient credits",
        _error_example(
            code="INSUFFICIENT_CREDITS",
            message="Insufficient AI credits",
            details={"current": 0, "requested": 1, "kind": "ai"},
        ),
    ),
    404: _response("Not found", _error_example(code="NOT_FOUND", message="Operation not found")),
    409: _response("Conflict", _error_example(code="CONFLICT", message="Document is already indexed")),
    500: _response(
        "Internal error", _error_example(code="INTERNAL_ERROR", message="Internal server error")
    ),
    502: _response(
        "Upstream error",
        _error_example(code="UPSTREAM_ERROR", message="Requested entity was not found."),
    ),
}
