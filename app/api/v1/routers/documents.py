from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.models.user import User
from app.schemas.common import MessageResponse
from app.schemas.document import (
    DocumentListResponse,
    DocumentOut,
    DocumentType,
    DocumentVerifyRequest,
)
from app.services import documents, loan_applications

router = APIRouter(tags=["documents"])


@router.post(
    "/loans/{loan_id}/documents",
    response_model=DocumentOut,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a supporting document",
)
async def upload_loan_document(
    loan_id: UUID,
    file: UploadFile = File(...),
    document_type: DocumentType = Form(...),
    document_name: str | None = Form(default=None),
    is_required: bool = Form(default=False),
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
    meta: deps.RequestMeta = Depends(deps.get_request_meta),
) -> DocumentOut:
    application = await loan_applications.get_accessible_or_404(
        db, current_user, loan_id, staff_permissions=(PermissionCode.DOCUMENT_MANAGE,)
    )
    document = await documents.upload_document(
        db,
        meta,
        application,
        current_user,
        file,
        document_type=document_type,
        document_name=document_name,
        is_required=is_required,
    )
    await db.commit()
    return DocumentOut.model_validate(document)


@router.get(
    "/loans/{loan_id}/documents",
    response_model=DocumentListResponse,
    summary="List documents attached to a loan",
)
async def list_loan_documents(
    loan_id: UUID,
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> DocumentListResponse:
    application = await loan_applications.get_accessible_or_404(
        db, current_user, loan_id, staff_permissions=documents.READ_PERMISSIONS
    )
    items = await documents.list_documents(db, application.id)
    return DocumentListResponse(
        loan_id=application.id,
        total=len(items),
        items=[DocumentOut.model_validate(item) for item in items],
    )


@router.get("/documents/{document_id}", response_model=DocumentOut, summary="Get document metadata")
async def get_document(
    document_id: UUID,
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> DocumentOut:
    document, _ = await documents.get_accessible_document(db, current_user, document_id)
    return DocumentOut.model_validate(document)


@router.get(
    "/documents/{document_id}/download",
    response_class=FileResponse,
    summary="Download a document file",
)
async def download_document(
    document_id: UUID,
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> FileResponse:
    document, _ = await documents.get_accessible_document(db, current_user, document_id)
    file_path = documents.resolve_file(document)
    return FileResponse(
        path=str(file_path),
        media_type=document.mime_type or "application/octet-stream",
        filename=document.document_name,
    )


@router.post(
    "/documents/{document_id}/verify",
    response_model=DocumentOut,
    summary="Record a verification decision",
)
async def verify_document(
    document_id: UUID,
    payload: DocumentVerifyRequest,
    current_user: User = Depends(deps.require_permission(PermissionCode.DOCUMENT_VERIFY)),
    db: AsyncSession = Depends(get_db),
    meta: deps.RequestMeta = Depends(deps.get_request_meta),
) -> DocumentOut:
    document = await documents.get_document_or_404(db, document_id)
    await documents.verify_document(
        db,
        meta,
        document,
        current_user,
        verification_status=payload.verification_status,
        notes=payload.notes,
    )
    await db.commit()
    return DocumentOut.model_validate(await documents.get_document_or_404(db, document_id))


@router.delete("/documents/{document_id}", response_model=MessageResponse, summary="Delete a document")
async def delete_document(
    document_id: UUID,
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
    meta: deps.RequestMeta = Depends(deps.get_request_meta),
) -> MessageResponse:
    document, application = await documents.get_accessible_document(db, current_user, document_id)
    stored_file = await documents.delete_document(db, meta, document, application, current_user)
    await db.commit()
    documents.discard_files([stored_file])
    return MessageResponse(message="Document deleted")
