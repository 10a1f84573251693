from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_serializer, field_validator

from app.schemas.common import EmploymentStatus, normalize_employment_status


class LoanApplicationStatus(str, Enum):
    LEAD = "LEAD"
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    FUNDED = "FUNDED"
    CLOSED = "CLOSED"


class LoanApplicationCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    amount: Decimal
    term: int = 36
    purpose: str = Field(min_length=1, max_length=500)
    employment_status: EmploymentStatus
    employer_name: str | None = Field(default=None, max_length=255)
    annual_income: Decimal
    additional_income: Decimal | None = None
    borrower_email: EmailStr
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=50)
    program_id: int | None = None

    @field_validator("employment_status", mode="before")
    @classmethod
    def normalize_employment(cls, value):
        return normalize_employment_status(value)


class LoanApplicationUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    amount: Decimal | None = None
    term: int | None = None
    purpose: str | None = Field(default=None, min_length=1, max_length=500)
    employment_status: EmploymentStatus | None = None
    employer_name: str | None = Field(default=None, max_length=255)
    annual_income: Decimal | None = None
    additional_income: Decimal | None = None

    @field_validator("employment_status", mode="before")
    @classmethod
    def normalize_employment(cls, value):
        return normalize_employment_status(value)


class LoanTransitionRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    to_status: LoanApplicationStatus
    reason: str | None = Field(default=None, max_length=2000)


class BorrowerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    first_name: str | None = None
    last_name: str | None = None
    employment_status: str
    employer_name: str | None = None
    annual_income: Decimal
    additional_income: Decimal | None = None

    @field_serializer("annual_income", "additional_income")
    def _money(self, value: Decimal | None) -> str | None:
        return str(value) if value is not None else None


class LoanStatusHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    from_status: str | None = None
    to_status: str
    reason: str | None = None
    changed_by_id: UUID | None = None
    changed_at: datetime | None = None


class LoanApplicationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    loan_number: str
    program_id: int
    borrower_id: UUID
    applicant_user_id: UUID
    loan_officer_id: UUID | None = None
    loan_amount: Decimal
    loan_term_months: int
    purpose: str
    status: str
    decision_reason: str | None = None
    submitted_at: datetime | None = None
    decided_at: datetime | None = None
    funded_at: datetime | None = None
    closed_at: datetime | None = None
    version: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_serializer("loan_amount")
    def _money(self, value: Decimal) -> str:
        return str(value)


class LoanApplicationDetail(LoanApplicationOut):
    borrower: BorrowerOut | None = None
    status_description: str
    allowed_transitions: list[str] = []
    status_history: list[LoanStatusHistoryOut] = []


class LoanStatusOut(BaseModel):
    loan_id: UUID
    current_status: str
    description: str
    allowed_transitions: list[str]
    last_updated: datetime | None = None
    history: list[LoanStatusHistoryOut] = []
