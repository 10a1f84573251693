from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFound
from app.models.loan_application import LoanApplication
from app.models.loan_program import LoanProgram

DEFAULT_PROGRAMS = [
    {
        "program_code": "PERSONAL_STANDARD",
        "program_name": "Personal Loan",
        "program_category": "PERSONAL",
        "description": "Unsecured personal loan for general purposes",
        "min_amount": Decimal("1000"),
        "max_amount": Decimal("50000"),
        "min_term_months": 12,
        "max_term_months": 48,
        "base_rate_percent": Decimal("8.990"),
        "requirements": ["IDENTIFICATION", "INCOME_STATEMENT", "BANK_STATEMENT"],
    },
    {
        "program_code": "AUTO_STANDARD",
        "program_name": "Auto Loan",
        "program_category": "AUTO",
        "description": "Financing for new and used vehicles",
        "min_amount": Decimal("5000"),
        "max_amount": Decimal("100000"),
        "min_term_months": 24,
        "max_term_months": 48,
        "base_rate_percent": Decimal("6.490"),
        "requirements": ["IDENTIFICATION", "INCOME_STATEMENT", "PROOF_OF_ADDRESS"],
    },
    {
        "program_code": "HOME_IMPROVEMENT",
        "program_name": "Home Improvement Loan",
        "program_category": "HOME",
        "description": "Renovation and repair financing backed by a property appraisal",
        "min_amount": Decimal("10000"),
        "max_amount": Decimal("1000000"),
        "min_term_months": 12,
        "max_term_months": 48,
        "base_rate_percent": Decimal("7.250"),
        "requirements": [
            "IDENTIFICATION",
            "INCOME_STATEMENT",
            "TAX_RETURN",
            "PROPERTY_APPRAISAL",
        ],
    },
]


async def list_active(db: AsyncSession) -> list[LoanProgram]:
    stmt = (
        select(LoanProgram)
        .where(LoanProgram.is_active.is_(True))
        .order_by(LoanProgram.program_name.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_all(db: AsyncSession, *, include_inactive: bool = False) -> list[LoanProgram]:
    stmt = select(LoanProgram)
    if not include_inactive:
        stmt = stmt.where(LoanProgram.is_active.is_(True))
    result = await db.execute(stmt.order_by(LoanProgram.program_name.asc()))
    return list(result.scalars().all())


async def list_by_category(db: AsyncSession, category: str) -> list[LoanProgram]:
    stmt = (
        select(LoanProgram)
        .where(
            func.upper(LoanProgram.program_category) == category.strip().upper(),
            LoanProgram.is_active.is_(True),
        )
        .order_by(LoanProgram.program_name.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_program_or_404(db: AsyncSession, program_id: int) -> LoanProgram:
    program = await db.get(LoanProgram, program_id)
    if program is None:
        raise NotFound(code="not_found", message="Loan program not found")
    return program


async def count_applications(db: AsyncSession, program_id: int) -> int:
    stmt = select(func.count()).select_from(LoanApplication).where(
        LoanApplication.program_id == program_id
    )
    return int((await db.execute(stmt)).scalar_one() or 0)


async def status_breakdown(db: AsyncSession, program_id: int) -> dict[str, int]:
    stmt = (
        select(LoanApplication.status, func.count())
        .where(LoanApplication.program_id == program_id)
        .group_by(LoanApplication.status)
    )
    rows = (await db.execute(stmt)).all()
    return {status: int(count) for status, count in rows}


async def seed_default_programs(db: AsyncSession) -> int:
    """Insert the default catalogue, skipping codes that already exist."""
    existing = set((await db.execute(select(LoanProgram.program_code))).scalars().all())
    created = 0
    for definition in DEFAULT_PROGRAMS:
        if definition["program_code"] in existing:
            continue
        db.add(LoanProgram(is_active=True, **definition))
        created += 1
    if created:
        await db.flush()
    return created
