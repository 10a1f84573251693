from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class DocumentType(str, Enum):
    INCOME_STATEMENT = "INCOME_STATEMENT"
    TAX_RETURN = "TAX_RETURN"
    BANK_STATEMENT = "BANK_STATEMENT"
    IDENTIFICATION = "IDENTIFICATION"
    PROOF_OF_ADDRESS = "PROOF_OF_ADDRESS"
    PROPERTY_APPRAISAL = "PROPERTY_APPRAISAL"
    OTHER = "OTHER"


class VerificationStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    NEEDS_REVIEW = "NEEDS_REVIEW"


class DocumentVerifyRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    verification_status: VerificationStatus
    notes: str | None = Field(default=None, max_length=2000)


class DocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    loan_id: UUID
    document_type: str
    document_name: str
    file_size: int | None = None
    mime_type: str | None = None
    checksum: str | None = None
    uploaded_by_id: UUID | None = None
    is_required: bool
    is_received: bool
    extraction_status: str
    verification_status: str
    verification_notes: str | None = None
    verified_by_id: UUID | None = None
    verified_at: datetime | None = None
    uploaded_at: datetime | None = None


class DocumentListResponse(BaseModel):
    loan_id: UUID
    total: int
    items: list[DocumentOut]
