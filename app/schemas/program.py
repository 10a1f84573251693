from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, field_serializer


class LoanProgramOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    program_code: str
    program_name: str
    program_category: str
    description: str | None = None
    min_amount: Decimal
    max_amount: Decimal
    min_term_months: int
    max_term_months: int
    base_rate_percent: Decimal | None = None
    requirements: list = []
    is_active: bool
    created_at: datetime | None = None

    @field_serializer("min_amount", "max_amount", "base_rate_percent")
    def _decimal(self, value: Decimal | None) -> str | None:
        return str(value) if value is not None else None


class LoanProgramDetail(LoanProgramOut):
    application_count: int = 0


class LoanProgramStats(BaseModel):
    program_id: int
    program_name: str
    total_applications: int
    status_breakdown: dict[str, int]
