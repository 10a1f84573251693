import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.models.types import EncryptedString


EMPLOYMENT_STATUSES = ("EMPLOYED", "SELF_EMPLOYED", "UNEMPLOYED", "RETIRED")


class Borrower(Base):
    __tablename__ = "borrowers"
    __table_args__ = (
        CheckConstraint(
            "employment_status IN ('EMPLOYED', 'SELF_EMPLOYED', 'UNEMPLOYED', 'RETIRED')",
            name="ck_borrower_employment_status",
        ),
        CheckConstraint("annual_income >= 0", name="ck_borrower_income_nonneg"),
        CheckConstraint("additional_income >= 0", name="ck_borrower_additional_income_nonneg"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(EncryptedString(length=255), nullable=True)
    employment_status = Column(String(20), nullable=False, default="EMPLOYED")
    employer_name = Column(String(255), nullable=True)
    annual_income = Column(Numeric(14, 2), nullable=False, default=0)
    additional_income = Column(Numeric(14, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
