import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base


LOAN_STATUSES = (
    "LEAD",
    "DRAFT",
    "SUBMITTED",
    "UNDER_REVIEW",
    "APPROVED",
    "REJECTED",
    "FUNDED",
    "CLOSED",
)


class LoanApplication(Base):
    __tablename__ = "loan_applications"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint(
            "loan_amount >= 1000 AND loan_amount <= 1000000",
            name="ck_loan_app_amount_range",
        ),
        CheckConstraint(
            "loan_term_months IN (12, 24, 36, 48)",
            name="ck_loan_app_term",
        ),
        CheckConstraint("version >= 1", name="ck_loan_app_version_positive"),
        CheckConstraint(
            "status IN ('LEAD', 'DRAFT', 'SUBMITTED', 'UNDER_REVIEW', 'APPROVED', 'REJECTED', 'FUNDED', 'CLOSED')",
            name="ck_loan_app_status",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_number = Column(String(40), nullable=False, unique=True)
    program_id = Column(
        Integer, ForeignKey("loan_programs.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    borrower_id = Column(
        UUID(as_uuid=True), ForeignKey("borrowers.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    applicant_user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    loan_officer_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    loan_amount = Column(Numeric(14, 2), nullable=False)
    loan_term_months = Column(Integer, nullable=False, default=36)
    purpose = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="DRAFT", index=True)
    decision_reason = Column(Text, nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    funded_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    program = relationship("LoanProgram", lazy="joined")
    borrower = relationship("Borrower", lazy="joined")
    status_history = relationship(
        "LoanStatusHistory",
        back_populates="loan",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="LoanStatusHistory.changed_at",
    )
    documents = relationship(
        "Document", back_populates="loan", cascade="all, delete-orphan", passive_deletes=True
    )

    __mapper_args__ = {"version_id_col": version}
