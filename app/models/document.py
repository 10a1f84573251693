import uuid

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base


DOCUMENT_TYPES = (
    "INCOME_STATEMENT",
    "TAX_RETURN",
    "BANK_STATEMENT",
    "IDENTIFICATION",
    "PROOF_OF_ADDRESS",
    "PROPERTY_APPRAISAL",
    "OTHER",
)

VERIFICATION_STATUSES = ("PENDING", "VERIFIED", "REJECTED", "NEEDS_REVIEW")


class Document(Base):
    __tablename__ = "documents"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint(
            "document_type IN ('INCOME_STATEMENT', 'TAX_RETURN', 'BANK_STATEMENT', 'IDENTIFICATION', 'PROOF_OF_ADDRESS', 'PROPERTY_APPRAISAL', 'OTHER')",
            name="ck_document_type",
        ),
        CheckConstraint(
            "verification_status IN ('PENDING', 'VERIFIED', 'REJECTED', 'NEEDS_REVIEW')",
            name="ck_document_verification_status",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    document_type = Column(String(50), nullable=False)
    document_name = Column(String(255), nullable=False)
    file_path = Column(String(1024), nullable=False)
    file_size = Column(BigInteger, nullable=True)
    mime_type = Column(String(100), nullable=True)
    checksum = Column(String(128), nullable=True)
    uploaded_by_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    is_required = Column(Boolean, nullable=False, default=False)
    is_received = Column(Boolean, nullable=False, default=True)
    extraction_status = Column(String(20), nullable=False, default="PENDING")
    verification_status = Column(String(20), nullable=False, default="PENDING", index=True)
    verification_notes = Column(Text, nullable=True)
    verified_by_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    verified_at = Column(DateTime(timezone=True), nullable=True)
    uploaded_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    loan = relationship("LoanApplication", back_populates="documents")
