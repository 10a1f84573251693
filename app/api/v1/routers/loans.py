from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.models.loan_application import LoanApplication
from app.models.user import User
from app.schemas.common import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, MessageResponse, Page
from app.schemas.loan import (
    BorrowerOut,
    LoanApplicationCreate,
    LoanApplicationDetail,
    LoanApplicationOut,
    LoanApplicationStatus,
    LoanApplicationUpdate,
    LoanStatusHistoryOut,
    LoanStatusOut,
    LoanTransitionRequest,
)
from app.services import documents, loan_applications, loan_workflow

router = APIRouter(prefix="/loans", tags=["loans"])


async def _build_detail(db: AsyncSession, application: LoanApplication) -> LoanApplicationDetail:
    history = await loan_applications.list_history(db, application.id)
    borrower = application.__dict__.get("borrower")
    base = LoanApplicationOut.model_validate(application)
    return LoanApplicationDetail(
        **base.model_dump(),
        borrower=BorrowerOut.model_validate(borrower) if borrower is not None else None,
        status_description=loan_workflow.status_description(application.status),
        allowed_transitions=loan_workflow.allowed_transitions(application.status),
        status_history=[LoanStatusHistoryOut.model_validate(item) for item in history],
    )


async def _reload(db: AsyncSession, loan_id: UUID) -> LoanApplication:
    application = await loan_applications.get_application(db, loan_id)
    if application is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Loan application not found")
    return application


@router.post(
    "",
    response_model=LoanApplicationDetail,
    status_code=status.HTTP_201_CREATED,
    summary="Create a loan application",
)
async def create_loan(
    payload: LoanApplicationCreate,
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
    meta: deps.RequestMeta = Depends(deps.get_request_meta),
) -> LoanApplicationDetail:
    application = await loan_applications.create_application(db, meta, current_user, payload)
    loan_id = application.id
    await db.commit()
    return await _build_detail(db, await _reload(db, loan_id))


@router.get("", response_model=Page[LoanApplicationOut], summary="List loan applications")
async def list_loans(
    scope: str = Query(default="mine", pattern="^(mine|all)$"),
    status_filter: list[LoanApplicationStatus] | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> Page[LoanApplicationOut]:
    items, total = await loan_applications.list_applications(
        db,
        current_user,
        scope_all=scope == "all",
        statuses=status_filter,
        page=page,
        page_size=page_size,
    )
    return Page[LoanApplicationOut].build(
        [LoanApplicationOut.model_validate(item) for item in items], total, page, page_size
    )


@router.get("/{loan_id}", response_model=LoanApplicationDetail, summary="Get a loan application")
async def get_loan(
    loan_id: UUID,
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> LoanApplicationDetail:
    application = await loan_applications.get_accessible_or_404(db, current_user, loan_id)
    return await _build_detail(db, application)


@router.put("/{loan_id}", response_model=LoanApplicationDetail, summary="Update a draft application")
async def update_loan(
    loan_id: UUID,
    payload: LoanApplicationUpdate,
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
    meta: deps.RequestMeta = Depends(deps.get_request_meta),
) -> LoanApplicationDetail:
    application = await loan_applications.get_owned_or_404(db, current_user, loan_id)
    await loan_applications.update_application(db, meta, application, current_user, payload)
    await db.commit()
    return await _build_detail(db, await _reload(db, loan_id))


@router.post(
    "/{loan_id}/submit", response_model=LoanApplicationDetail, summary="Submit an application for review"
)
async def submit_loan(
    loan_id: UUID,
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
    meta: deps.RequestMeta = Depends(deps.get_request_meta),
) -> LoanApplicationDetail:
    application = await loan_applications.get_owned_or_404(db, current_user, loan_id)
    await loan_applications.submit_application(db, meta, application, current_user)
    await db.commit()
    return await _build_detail(db, await _reload(db, loan_id))


@router.post(
    "/{loan_id}/transition",
    response_model=LoanApplicationDetail,
    summary="Move an application through the workflow",
)
async def transition_loan(
    loan_id: UUID,
    payload: LoanTransitionRequest,
    current_user: User = Depends(deps.require_permission(PermissionCode.LOAN_MANAGE)),
    db: AsyncSession = Depends(get_db),
    meta: deps.RequestMeta = Depends(deps.get_request_meta),
) -> LoanApplicationDetail:
    application = await _reload(db, loan_id)
    await loan_workflow.transition_application(
        db,
        meta,
        application,
        payload.to_status,
        actor=current_user,
        reason=payload.reason,
    )
    await db.commit()
    return await _build_detail(db, await _reload(db, loan_id))


@router.get("/{loan_id}/status", response_model=LoanStatusOut, summary="Current status and history")
async def get_loan_status(
    loan_id: UUID,
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> LoanStatusOut:
    application = await loan_applications.get_accessible_or_404(db, current_user, loan_id)
    history = await loan_applications.list_history(db, application.id)
    return LoanStatusOut(
        loan_id=application.id,
        current_status=application.status,
        description=loan_workflow.status_description(application.status),
        allowed_transitions=loan_workflow.allowed_transitions(application.status),
        last_updated=application.updated_at,
        history=[LoanStatusHistoryOut.model_validate(item) for item in history],
    )


@router.get(
    "/{loan_id}/history", response_model=list[LoanStatusHistoryOut], summary="Status history"
)
async def get_loan_history(
    loan_id: UUID,
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> list[LoanStatusHistoryOut]:
    application = await loan_applications.get_accessible_or_404(db, current_user, loan_id)
    history = await loan_applications.list_history(db, application.id)
    return [LoanStatusHistoryOut.model_validate(item) for item in history]


@router.delete("/{loan_id}", response_model=MessageResponse, summary="Delete a draft application")
async def delete_loan(
    loan_id: UUID,
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
    meta: deps.RequestMeta = Depends(deps.get_request_meta),
) -> MessageResponse:
    application = await loan_applications.get_owned_or_404(db, current_user, loan_id)
    stored_files = await loan_applications.delete_application(db, meta, application, current_user)
    await db.commit()
    documents.discard_files(stored_files)
    return MessageResponse(message="Loan application deleted")
