from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from rtocomply.apps.api.deps import get_db, get_operations_service, get_storage
from rtocomply.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from rtocomply.apps.api.requests import RequestModel
from rtocomply.apps.api.response import success_response
from rtocomply.services import documents as documents_service
from rtocomply.services.operations import OperationsService
from rtocomply.services.storage import DocumentStorage


router = APIRouter(prefix="/documents", tags=["documents"], responses=DEFAULT_ERROR_RESPONSES)


class CreateDocumentRequest(RequestModel):
    rto_code: str
    unit_code: str
    document_type: str
    file_name: str
    storage_path: str
    validation_detail_id: str | None = None
    display_name: str | None = None
    metadata: dict[str, Any] | None = None


@router.post("", status_code=201)
async def create_document(
    request: Request,
    body: CreateDocumentRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    created = await documents_service.create_document(
        db,
        rto_code=body.rto_code,
        unit_code=body.unit_code,
        document_type=body.document_type,
        file_name=body.file_name,
        storage_path=body.storage_path,
        validation_detail_id=body.validation_detail_id,
        display_name=body.display_name,
        metadata=body.metadata,
    )
    return success_response(request=request, data=created)


@router.post("/upload", status_code=202)
async def upload_document(
    request: Request,
    rto_code: str = Form(...),
    unit_code: str = Form(...),
    document_type: str = Form(...),
    validation_detail_id: str | None = Form(default=None),
    start_indexing: bool = Form(default=False),
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    storage: DocumentStorage = Depends(get_storage),
    operations: OperationsService = Depends(get_operations_service),
) -> dict:
    content = await file.read()
    created = await documents_service.upload_document(
        db,
        storage=storage,
        operations=operations,
        rto_code=rto_code,
        unit_code=unit_code,
        document_type=document_type,
        file_name=file.filename or "upload.pdf",
        content=content,
        validation_detail_id=validation_detail_id,
        start_indexing=start_indexing,
    )
    return success_response(request=request, data=created)


@router.get("/{document_id}")
async def get_document(
    request: Request,
    document_id: str,
    db: AsyncSession = Depends(get_db),
) -> dict:
    view = await documents_service.get_document(db, document_id)
    return success_response(request=request, document=view)


@router.post("/{document_id}/reindex", status_code=202)
async def reindex_document(
    request: Request,
    document_id: str,
    db: AsyncSession = Depends(get_db),
) -> dict:
    created = await documents_service.reindex_document(db, document_id)
    return success_response(request=request, data=created)
