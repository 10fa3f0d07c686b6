from __future__ import annotations

from typing import Any


class RtoComplyError(Exception):
    """Base error for rtocomply."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(RtoComplyError):
    """Raised when a referenced row does not exist."""

    status_code = 404
    code = "NOT_FOUND"


class RequestValidationError(RtoComplyError):
    """Raised when request input is missing or malformed."""

    status_code = 400
    code = "VALIDATION_ERROR"


class InsufficientCreditsError(RtoComplyError):
    """Raised when a ledger adjustment would leave a negative balance."""

    status_code = 402
    code = "INSUFFICIENT_CREDITS"


class ConflictError(RtoComplyError):
    """Raised when an operation conflicts with current row state."""

    status_code = 409
    code = "CONFLICT"


class ProviderError(RtoComplyError):
    """Raised when the file search provider returns an error."""

    status_code = 502
    code = "UPSTREAM_ERROR"


class ProviderConfigError(RtoComplyError):
    """Raised when provider configuration is missing."""

    status_code = 503
    code = "PROVIDER_CONFIG_ERROR"


class WorkflowError(RtoComplyError):
    """Raised when an n8n workflow webhook call fails."""

    status_code = 502
    code = "WORKFLOW_ERROR"


class StorageError(RtoComplyError):
    """Raised when document storage cannot read or write a file."""

    status_code = 500
    code = "STORAGE_ERROR"
