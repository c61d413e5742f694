from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, Response

from server.dependencies.auth import verify_api_key
from services.documents.DocumentService import ReindexResult
from shared.models.document import Document, DocumentCreate, DocumentPage, DocumentStatus, DocumentUpdate

router = APIRouter(prefix="/admin/documents", tags=["documents"])


@router.get("")
async def list_documents(
    request: Request,
    page: int = Query(default=1, ge=1),
    status: DocumentStatus | None = None,
    search: str | None = None,
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    _: None = Depends(verify_api_key),
) -> DocumentPage:
    """Paginated document listing, most recently updated first."""
    return await request.app.state.document_service.list_documents(
        page=page,
        status=status,
        search=search,
        start_date=start_date,
        end_date=end_date,
    )


@router.post("", status_code=201)
async def create_document(
    request: Request,
    body: DocumentCreate,
    _: None = Depends(verify_api_key),
) -> Document:
    return await request.app.state.document_service.create_document(body)


@router.get("/{document_id}")
async def get_document(
    request: Request,
    document_id: str,
    _: None = Depends(verify_api_key),
) -> Document:
    return await request.app.state.document_service.get_document(document_id)


@router.put("/{document_id}")
async def update_document(
    request: Request,
    document_id: str,
    body: DocumentUpdate,
    _: None = Depends(verify_api_key),
) -> Document:
    return await request.app.state.document_service.update_document(document_id, body)


@router.delete("/{document_id}", status_code=204)
async def delete_document(
    request: Request,
    document_id: str,
    _: None = Depends(verify_api_key),
) -> Response:
    """Retract from every enabled index, then delete. 502 if an index could not be updated."""
    await request.app.state.document_service.delete_document(document_id)
    return Response(status_code=204)


@router.post("/{document_id}/reindex", status_code=202)
async def reindex_document(
    request: Request,
    document_id: str,
    _: None = Depends(verify_api_key),
) -> ReindexResult:
    return await request.app.state.document_service.reindex_document(document_id)
