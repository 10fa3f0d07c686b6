from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.persistence.db import get_session
from rtocomply.providers.file_search.base import FileSearchProvider
from rtocomply.providers.file_search.factory import get_file_search_provider
from rtocomply.services.credits import CreditLedger, get_credit_ledger
from rtocomply.services.operations import OperationsService
from rtocomply.services.rto_cache import RtoCache
from rtocomply.services.storage import DocumentStorage, get_document_storage
from rtocomply.services.workflow import WorkflowClient, get_workflow_client


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_provider() -> FileSearchProvider:
    # Resolve lazily so a missing API key only fails routes that need the provider.
    return get_file_search_provider()


def get_storage() -> DocumentStorage:
    return get_document_storage()


def get_ledger() -> CreditLedger:
    return get_credit_ledger()


def get_workflow() -> WorkflowClient:
    return get_workflow_client()


def get_operations_service(
    provider: FileSearchProvider = Depends(get_provider),
    storage: DocumentStorage = Depends(get_storage),
) -> OperationsService:
    return OperationsService(provider, storage=storage)


def get_rto_cache(request: Request) -> RtoCache:
    # The cache lives on app state so each app instance owns its own TTL window.
    return request.app.state.rto_cache
