from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from uuid import UUID

from fastapi import UploadFile
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import NotFound, PermissionDenied, ValidationFailed
from app.core.permissions import PermissionCode
from app.core.settings import settings
from app.models.document import Document
from app.models.loan_application import LoanApplication
from app.models.user import User
from app.schemas.document import DocumentType, VerificationStatus
from app.services import authz, loan_applications, loan_workflow, local_uploads
from app.services.activity import log_activity, model_snapshot

logger = logging.getLogger(__name__)

# Staff permissions that grant read access to any loan's documents.
READ_PERMISSIONS = (
    PermissionCode.DOCUMENT_MANAGE,
    PermissionCode.DOCUMENT_VERIFY,
    PermissionCode.LOAN_VIEW_ALL,
)


def upload_root() -> Path:
    return Path(settings.local_upload_dir)


async def upload_document(
    db: AsyncSession,
    meta: deps.RequestMeta | None,
    application: LoanApplication,
    current_user: User,
    file: UploadFile,
    *,
    document_type: DocumentType | str,
    document_name: str | None = None,
    is_required: bool = False,
) -> Document:
    try:
        stored = await local_uploads.save_upload(
            file,
            upload_root(),
            local_uploads.loan_documents_subdir(application.id),
            allowed_extensions=settings.allowed_upload_extensions,
            max_size_bytes=settings.max_upload_size_bytes,
        )
    except ValueError as exc:
        raise ValidationFailed(code="invalid_upload", message=str(exc)) from exc

    document = Document(
        loan_id=application.id,
        document_type=document_type.value if isinstance(document_type, DocumentType) else str(document_type),
        document_name=(document_name or stored.original_name)[:255],
        file_path=stored.relative_path,
        file_size=stored.size,
        mime_type=file.content_type,
        checksum=stored.checksum,
        uploaded_by_id=current_user.id,
        is_required=is_required,
        is_received=True,
        extraction_status="PENDING",
        verification_status=VerificationStatus.PENDING.value,
        uploaded_at=datetime.now(timezone.utc),
    )
    db.add(document)
    try:
        await db.flush()
    except Exception:
        local_uploads.discard_upload(upload_root(), stored.relative_path)
        raise
    log_activity(
        db,
        meta,
        user_id=current_user.id,
        action="document.uploaded",
        resource_type="document",
        resource_id=document.id,
        loan_id=application.id,
        description=f"Uploaded {document.document_type} document {document.document_name}",
        new_values={
            "document_type": document.document_type,
            "document_name": document.document_name,
            "file_size": document.file_size,
            "checksum": document.checksum,
        },
    )
    logger.info(
        "Document uploaded document_id=%s loan_id=%s size=%s",
        document.id,
        application.id,
        document.file_size,
    )
    return document


async def list_documents(db: AsyncSession, loan_id: UUID) -> list[Document]:
    stmt = (
        select(Document)
        .where(Document.loan_id == loan_id)
        .order_by(Document.uploaded_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_document_or_404(db: AsyncSession, document_id: UUID) -> Document:
    stmt = select(Document).where(Document.id == document_id)
    document = (await db.execute(stmt)).scalar_one_or_none()
    if document is None:
        raise NotFound(code="not_found", message="Document not found")
    return document


async def get_accessible_document(
    db: AsyncSession, current_user: User, document_id: UUID
) -> tuple[Document, LoanApplication]:
    document = await get_document_or_404(db, document_id)
    application = await loan_applications.get_accessible_or_404(
        db, current_user, document.loan_id, staff_permissions=READ_PERMISSIONS
    )
    return document, application


def resolve_file(document: Document) -> Path:
    try:
        path = local_uploads.resolve_local_path(upload_root(), document.file_path)
    except ValueError as exc:
        raise NotFound(code="file_missing", message="Document file not found") from exc
    if not path.is_file():
        raise NotFound(code="file_missing", message="Document file not found")
    return path


async def verify_document(
    db: AsyncSession,
    meta: deps.RequestMeta | None,
    document: Document,
    current_user: User,
    *,
    verification_status: VerificationStatus | str,
    notes: str | None = None,
) -> Document:
    old_values = model_snapshot(document, exclude={"file_path"})
    document.verification_status = (
        verification_status.value
        if isinstance(verification_status, VerificationStatus)
        else str(verification_status)
    )
    if notes is not None:
        document.verification_notes = notes
    document.verified_by_id = current_user.id
    document.verified_at = datetime.now(timezone.utc)
    db.add(document)
    log_activity(
        db,
        meta,
        user_id=current_user.id,
        action="document.verified",
        resource_type="document",
        resource_id=document.id,
        loan_id=document.loan_id,
        old_values=old_values,
        new_values=model_snapshot(document, exclude={"file_path"}),
    )
    await db.flush()
    return document


async def delete_document(
    db: AsyncSession,
    meta: deps.RequestMeta | None,
    document: Document,
    application: LoanApplication,
    current_user: User,
) -> str | None:
    """Stage the delete and return the stored file path to remove once it is committed."""
    is_manager = await authz.check_permission(current_user, PermissionCode.DOCUMENT_MANAGE, db)
    if not is_manager:
        if application.applicant_user_id != current_user.id:
            raise PermissionDenied(code="forbidden", message="You cannot delete this document")
        if not loan_workflow.is_editable(application.status):
            raise PermissionDenied(
                code="forbidden",
                message=f"Documents cannot be removed once the loan is {application.status}",
                details={"status": application.status},
            )

    log_activity(
        db,
        meta,
        user_id=current_user.id,
        action="document.deleted",
        resource_type="document",
        resource_id=document.id,
        loan_id=application.id,
        old_values=model_snapshot(document, exclude={"file_path"}),
    )
    await db.delete(document)
    await db.flush()
    return document.file_path


def discard_files(relative_paths) -> int:
    """Remove stored files after the rows pointing at them are gone."""
    base_dir = upload_root()
    return sum(1 for path in relative_paths if local_uploads.discard_upload(base_dir, path))
