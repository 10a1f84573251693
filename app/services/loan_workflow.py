from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import InvalidTransition, ValidationFailed
from app.models.loan_application import LoanApplication
from app.models.loan_status_history import LoanStatusHistory
from app.models.user import User
from app.schemas.loan import LoanApplicationStatus
from app.services import notifications
from app.services.activity import log_activity

logger = logging.getLogger(__name__)

S = LoanApplicationStatus

TRANSITIONS: dict[str, tuple[str, ...]] = {
    S.LEAD.value: (S.SUBMITTED.value, S.CLOSED.value),
    S.DRAFT.value: (S.SUBMITTED.value, S.CLOSED.value),
    S.SUBMITTED.value: (S.UNDER_REVIEW.value, S.REJECTED.value, S.DRAFT.value),
    S.UNDER_REVIEW.value: (S.APPROVED.value, S.REJECTED.value),
    S.APPROVED.value: (S.FUNDED.value, S.REJECTED.value),
    S.REJECTED.value: (S.CLOSED.value,),
    S.FUNDED.value: (S.CLOSED.value,),
    S.CLOSED.value: (),
}

STATUS_DESCRIPTIONS: dict[str, str] = {
    S.LEAD.value: "Application is being prepared",
    S.DRAFT.value: "Application is being prepared",
    S.SUBMITTED.value: "Application has been submitted for review",
    S.UNDER_REVIEW.value: "Application is under review by underwriters",
    S.APPROVED.value: "Application has been approved",
    S.REJECTED.value: "Application has been rejected",
    S.FUNDED.value: "Loan has been funded",
    S.CLOSED.value: "Application is closed",
}

# Pre-submission states: the applicant may still edit or delete the application.
EDITABLE_STATUSES = frozenset({S.LEAD.value, S.DRAFT.value})

_TIMESTAMP_FIELDS = {
    S.SUBMITTED.value: "submitted_at",
    S.APPROVED.value: "decided_at",
    S.REJECTED.value: "decided_at",
    S.FUNDED.value: "funded_at",
    S.CLOSED.value: "closed_at",
}


def _value(status: LoanApplicationStatus | str) -> str:
    return status.value if isinstance(status, LoanApplicationStatus) else str(status)


def can_transition(current: LoanApplicationStatus | str, target: LoanApplicationStatus | str) -> bool:
    return _value(target) in TRANSITIONS.get(_value(current), ())


def allowed_transitions(status: LoanApplicationStatus | str) -> list[str]:
    return list(TRANSITIONS.get(_value(status), ()))


def status_description(status: LoanApplicationStatus | str) -> str:
    return STATUS_DESCRIPTIONS.get(_value(status), "Unknown status")


def is_editable(status: LoanApplicationStatus | str) -> bool:
    return _value(status) in EDITABLE_STATUSES


def ensure_transition(current: LoanApplicationStatus | str, target: LoanApplicationStatus | str, loan_id) -> None:
    current_value, target_value = _value(current), _value(target)
    if not can_transition(current_value, target_value):
        logger.warning(
            "Invalid workflow transition loan_id=%s from=%s to=%s", loan_id, current_value, target_value
        )
        raise InvalidTransition(
            code="invalid_transition",
            message=f"Cannot transition from {current_value} to {target_value}",
            details={
                "from_status": current_value,
                "to_status": target_value,
                "allowed_transitions": allowed_transitions(current_value),
            },
        )


def record_history(
    db: AsyncSession,
    application: LoanApplication,
    *,
    from_status: str | None,
    to_status: str,
    changed_by_id,
    reason: str | None = None,
) -> LoanStatusHistory:
    entry = LoanStatusHistory(
        loan_id=application.id,
        from_status=from_status,
        to_status=to_status,
        reason=reason,
        changed_by_id=changed_by_id,
        changed_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    return entry


async def transition_application(
    db: AsyncSession,
    meta: deps.RequestMeta | None,
    application: LoanApplication,
    to_status: LoanApplicationStatus | str,
    *,
    actor: User,
    reason: str | None = None,
) -> LoanApplication:
    """
    Move an application to ``to_status``.

    Stages the status update, one history row, one activity row and one applicant
    notification on the session; the caller commits them together.
    """
    target = _value(to_status)
    current = application.status
    ensure_transition(current, target, application.id)
    cleaned_reason = reason.strip() if reason else None
    if target == S.REJECTED.value and not cleaned_reason:
        raise ValidationFailed(
            code="reason_required",
            message="A reason is required to reject an application",
        )

    now = datetime.now(timezone.utc)
    application.status = target
    timestamp_field = _TIMESTAMP_FIELDS.get(target)
    if timestamp_field:
        setattr(application, timestamp_field, now)
    if target in {S.APPROVED.value, S.REJECTED.value}:
        application.decision_reason = cleaned_reason
    db.add(application)

    record_history(
        db,
        application,
        from_status=current,
        to_status=target,
        changed_by_id=actor.id,
        reason=cleaned_reason,
    )
    log_activity(
        db,
        meta,
        user_id=actor.id,
        action="loan_application.status_changed",
        resource_type="loan_application",
        resource_id=application.id,
        loan_id=application.id,
        description=f"Status changed from {current} to {target}",
        old_values={"status": current},
        new_values={"status": target, "reason": cleaned_reason},
    )
    body = f"Your loan application {application.loan_number} is now {target}. {status_description(target)}."
    if cleaned_reason:
        body = f"{body} Reason: {cleaned_reason}"
    notifications.create_notification(
        db,
        user_id=application.applicant_user_id,
        loan_id=application.id,
        notification_type="STATUS_CHANGE",
        subject=f"Loan application {application.loan_number}: {target}",
        body=body,
    )
    await db.flush()
    logger.info(
        "Workflow transition loan_id=%s from=%s to=%s actor_id=%s",
        application.id,
        current,
        target,
        actor.id,
    )
    return application
