from __future__ import annotations

import logging
import secrets
import time
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import Conflict, NotFound, PermissionDenied, ValidationFailed
from app.core.permissions import PermissionCode
from app.models.borrower import Borrower
from app.models.document import Document
from app.models.loan_application import LoanApplication
from app.models.loan_program import LoanProgram
from app.models.loan_status_history import LoanStatusHistory
from app.models.role import Role
from app.models.user import User
from app.schemas.common import page_offset
from app.schemas.loan import (
    LoanApplicationCreate,
    LoanApplicationStatus,
    LoanApplicationUpdate,
)
from app.services import authz, loan_workflow
from app.services.activity import log_activity, model_snapshot

logger = logging.getLogger(__name__)

MIN_LOAN_AMOUNT = Decimal("1000")
MAX_LOAN_AMOUNT = Decimal("1000000")
VALID_TERMS = (12, 24, 36, 48)

_SNAPSHOT_EXCLUDE = {"created_at", "updated_at"}


def _enum_value(value) -> str | None:
    if value is None:
        return None
    return value.value if hasattr(value, "value") else str(value)


def validate_amount(amount: Decimal, program: LoanProgram | None = None) -> None:
    if amount < MIN_LOAN_AMOUNT or amount > MAX_LOAN_AMOUNT:
        raise ValidationFailed(
            code="invalid_amount",
            message="Loan amount must be between $1,000 and $1,000,000",
            details={"amount": str(amount)},
        )
    if program is None:
        return
    if amount < program.min_amount or amount > program.max_amount:
        raise ValidationFailed(
            code="invalid_amount",
            message=(
                f"Loan amount must be between {program.min_amount} and {program.max_amount} "
                f"for program {program.program_code}"
            ),
            details={
                "amount": str(amount),
                "min_amount": str(program.min_amount),
                "max_amount": str(program.max_amount),
            },
        )


def validate_term(term: int) -> None:
    if term not in VALID_TERMS:
        raise ValidationFailed(
            code="invalid_term",
            message="Loan term must be 12, 24, 36, or 48 months",
            details={"term": term},
        )


def validate_income(annual_income: Decimal | None, additional_income: Decimal | None = None) -> None:
    if annual_income is not None and annual_income < 0:
        raise ValidationFailed(code="invalid_income", message="Annual income must be non-negative")
    if additional_income is not None and additional_income < 0:
        raise ValidationFailed(
            code="invalid_income", message="Additional income must be non-negative"
        )


def generate_loan_number() -> str:
    return f"LOAN-{int(time.time() * 1000)}-{secrets.token_hex(2).upper()}"


async def resolve_program(db: AsyncSession, program_id: int | None) -> LoanProgram:
    if program_id is not None:
        stmt = select(LoanProgram).where(LoanProgram.id == program_id, LoanProgram.is_active.is_(True))
        program = (await db.execute(stmt)).scalar_one_or_none()
        if program is None:
            raise ValidationFailed(
                code="invalid_program",
                message="Loan program not found or inactive",
                details={"program_id": program_id},
            )
        return program
    stmt = (
        select(LoanProgram)
        .where(LoanProgram.is_active.is_(True))
        .order_by(LoanProgram.program_name.asc())
        .limit(1)
    )
    program = (await db.execute(stmt)).scalar_one_or_none()
    if program is None:
        raise ValidationFailed(code="no_active_program", message="No active loan programs available")
    return program


async def pick_loan_officer(db: AsyncSession) -> User | None:
    stmt = (
        select(User)
        .join(Role, Role.id == User.role_id)
        .where(Role.name == "LOAN_OFFICER", User.is_active.is_(True))
        .order_by(User.created_at.asc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def upsert_borrower(db: AsyncSession, payload: LoanApplicationCreate) -> Borrower:
    email = str(payload.borrower_email).lower()
    stmt = select(Borrower).where(func.lower(Borrower.email) == email)
    borrower = (await db.execute(stmt)).scalar_one_or_none()
    if borrower is not None:
        return borrower
    borrower = Borrower(
        email=email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        employment_status=_enum_value(payload.employment_status),
        employer_name=payload.employer_name,
        annual_income=payload.annual_income,
        additional_income=payload.additional_income or Decimal("0"),
    )
    db.add(borrower)
    await db.flush()
    return borrower


async def create_application(
    db: AsyncSession,
    meta: deps.RequestMeta | None,
    current_user: User,
    payload: LoanApplicationCreate,
) -> LoanApplication:
    validate_term(payload.term)
    validate_income(payload.annual_income, payload.additional_income)
    program = await resolve_program(db, payload.program_id)
    validate_amount(payload.amount, program)

    borrower = await upsert_borrower(db, payload)
    officer = await pick_loan_officer(db)

    application = LoanApplication(
        loan_number=generate_loan_number(),
        program_id=program.id,
        borrower_id=borrower.id,
        applicant_user_id=current_user.id,
        loan_officer_id=officer.id if officer else None,
        loan_amount=payload.amount,
        loan_term_months=payload.term,
        purpose=payload.purpose,
        status=LoanApplicationStatus.DRAFT.value,
    )
    db.add(application)
    await db.flush()

    loan_workflow.record_history(
        db,
        application,
        from_status=None,
        to_status=application.status,
        changed_by_id=current_user.id,
    )
    log_activity(
        db,
        meta,
        user_id=current_user.id,
        action="loan_application.created",
        resource_type="loan_application",
        resource_id=application.id,
        loan_id=application.id,
        description=f"Loan application {application.loan_number} created",
        new_values=model_snapshot(application, exclude=_SNAPSHOT_EXCLUDE),
    )
    await db.flush()
    logger.info(
        "Loan application created loan_id=%s program_id=%s officer_id=%s",
        application.id,
        program.id,
        application.loan_officer_id,
    )
    return application


async def get_application(db: AsyncSession, loan_id: UUID) -> LoanApplication | None:
    stmt = select(LoanApplication).where(LoanApplication.id == loan_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def can_view_all(db: AsyncSession, current_user: User) -> bool:
    return await authz.check_permission(current_user, PermissionCode.LOAN_VIEW_ALL, db)


def _not_found() -> NotFound:
    return NotFound(code="not_found", message="Loan application not found")


def _not_owner() -> PermissionDenied:
    return PermissionDenied(
        code="forbidden", message="Unauthorized: You do not own this loan application"
    )


async def get_accessible_or_404(
    db: AsyncSession,
    current_user: User,
    loan_id: UUID,
    *,
    staff_permissions: tuple[PermissionCode, ...] = (PermissionCode.LOAN_VIEW_ALL,),
) -> LoanApplication:
    """Return the application if the user owns it or holds one of ``staff_permissions``."""
    application = await get_application(db, loan_id)
    if application is None:
        raise _not_found()
    if application.applicant_user_id == current_user.id:
        return application
    for permission in staff_permissions:
        if await authz.check_permission(current_user, permission, db):
            return application
    raise _not_owner()


async def get_owned_or_404(db: AsyncSession, current_user: User, loan_id: UUID) -> LoanApplication:
    application = await get_application(db, loan_id)
    if application is None:
        raise _not_found()
    if application.applicant_user_id != current_user.id:
        raise _not_owner()
    return application


def _ensure_editable(application: LoanApplication, verb: str) -> None:
    if not loan_workflow.is_editable(application.status):
        raise Conflict(
            code="invalid_status",
            message=f"Cannot {verb} loan in {application.status} status",
            details={"status": application.status},
        )


async def list_applications(
    db: AsyncSession,
    current_user: User,
    *,
    scope_all: bool = False,
    statuses: list[LoanApplicationStatus] | None = None,
    page: int,
    page_size: int,
) -> tuple[list[LoanApplication], int]:
    conditions = []
    if not (scope_all and await can_view_all(db, current_user)):
        conditions.append(LoanApplication.applicant_user_id == current_user.id)
    if statuses:
        conditions.append(LoanApplication.status.in_([_enum_value(s) for s in statuses]))

    count_stmt = select(func.count()).select_from(LoanApplication).where(*conditions)
    total = (await db.execute(count_stmt)).scalar_one()
    stmt = (
        select(LoanApplication)
        .where(*conditions)
        .order_by(LoanApplication.created_at.desc())
        .offset(page_offset(page, page_size))
        .limit(page_size)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all()), int(total or 0)


async def list_history(db: AsyncSession, loan_id: UUID) -> list[LoanStatusHistory]:
    stmt = (
        select(LoanStatusHistory)
        .where(LoanStatusHistory.loan_id == loan_id)
        .order_by(LoanStatusHistory.changed_at.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def update_application(
    db: AsyncSession,
    meta: deps.RequestMeta | None,
    application: LoanApplication,
    current_user: User,
    payload: LoanApplicationUpdate,
) -> LoanApplication:
    _ensure_editable(application, "update")
    if payload.amount is not None:
        program = await db.get(LoanProgram, application.program_id)
        validate_amount(payload.amount, program)
    if payload.term is not None:
        validate_term(payload.term)
    validate_income(payload.annual_income, payload.additional_income)

    old_snapshot = model_snapshot(application, exclude=_SNAPSHOT_EXCLUDE)
    if payload.amount is not None:
        application.loan_amount = payload.amount
    if payload.term is not None:
        application.loan_term_months = payload.term
    if payload.purpose is not None:
        application.purpose = payload.purpose

    borrower_updates = {
        field: value
        for field, value in {
            "employment_status": _enum_value(payload.employment_status),
            "employer_name": payload.employer_name,
            "annual_income": payload.annual_income,
            "additional_income": payload.additional_income,
        }.items()
        if value is not None
    }
    borrower_old: dict | None = None
    if borrower_updates:
        borrower = await db.get(Borrower, application.borrower_id)
        if borrower is not None:
            borrower_old = {field: getattr(borrower, field) for field in borrower_updates}
            for field, value in borrower_updates.items():
                setattr(borrower, field, value)
            db.add(borrower)

    db.add(application)
    new_snapshot = model_snapshot(application, exclude=_SNAPSHOT_EXCLUDE)
    if borrower_old is not None:
        old_snapshot["borrower"] = borrower_old
        new_snapshot["borrower"] = borrower_updates
    log_activity(
        db,
        meta,
        user_id=current_user.id,
        action="loan_application.updated",
        resource_type="loan_application",
        resource_id=application.id,
        loan_id=application.id,
        old_values=old_snapshot,
        new_values=new_snapshot,
    )
    await db.flush()
    return application


async def submit_application(
    db: AsyncSession,
    meta: deps.RequestMeta | None,
    application: LoanApplication,
    current_user: User,
) -> LoanApplication:
    _ensure_editable(application, "submit")
    return await loan_workflow.transition_application(
        db,
        meta,
        application,
        LoanApplicationStatus.SUBMITTED,
        actor=current_user,
    )


async def delete_application(
    db: AsyncSession,
    meta: deps.RequestMeta | None,
    application: LoanApplication,
    current_user: User,
) -> list[str]:
    """Stage the delete and return the stored file paths to remove once it is committed."""
    _ensure_editable(application, "delete")
    doc_stmt = select(Document).where(Document.loan_id == application.id)
    documents = (await db.execute(doc_stmt)).scalars().all()
    stored_files = [document.file_path for document in documents if document.file_path]

    await db.execute(
        delete(Document)
        .where(Document.loan_id == application.id)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        delete(LoanStatusHistory)
        .where(LoanStatusHistory.loan_id == application.id)
        .execution_options(synchronize_session=False)
    )
    log_activity(
        db,
        meta,
        user_id=current_user.id,
        action="loan_application.deleted",
        resource_type="loan_application",
        resource_id=application.id,
        description=f"Loan application {application.loan_number} deleted",
        old_values=model_snapshot(application, exclude=_SNAPSHOT_EXCLUDE),
    )
    await db.delete(application)
    await db.flush()
    logger.info(
        "Loan application deleted loan_id=%s documents_removed=%s", application.id, len(documents)
    )
    return stored_files
