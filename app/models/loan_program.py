from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB

from app.db.base import Base


class LoanProgram(Base):
    __tablename__ = "loan_programs"
    __table_args__ = (
        CheckConstraint("min_amount <= max_amount", name="ck_loan_program_amount_range"),
        CheckConstraint("min_term_months <= max_term_months", name="ck_loan_program_term_range"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    program_code = Column(String(50), nullable=False, unique=True)
    program_name = Column(String(255), nullable=False)
    program_category = Column(String(50), nullable=False, index=True)
    description = Column(Text, nullable=True)
    min_amount = Column(Numeric(14, 2), nullable=False)
    max_amount = Column(Numeric(14, 2), nullable=False)
    min_term_months = Column(Integer, nullable=False)
    max_term_months = Column(Integer, nullable=False)
    base_rate_percent = Column(Numeric(6, 3), nullable=True)
    requirements = Column(JSONB, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
