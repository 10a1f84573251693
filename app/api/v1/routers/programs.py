from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.schemas.program import LoanProgramDetail, LoanProgramOut, LoanProgramStats
from app.services import programs

router = APIRouter(prefix="/programs", tags=["programs"])


@router.get("", response_model=list[LoanProgramOut], summary="List active loan programs")
async def list_programs(db: AsyncSession = Depends(get_db)) -> list[LoanProgramOut]:
    items = await programs.list_active(db)
    return [LoanProgramOut.model_validate(item) for item in items]


@router.get("/category", response_model=list[LoanProgramOut], summary="List programs in a category")
async def list_programs_by_category(
    category: str = Query(min_length=1, max_length=50),
    db: AsyncSession = Depends(get_db),
) -> list[LoanProgramOut]:
    items = await programs.list_by_category(db, category)
    return [LoanProgramOut.model_validate(item) for item in items]


@router.get("/all", response_model=list[LoanProgramOut], summary="List every loan program")
async def list_all_programs(
    include_inactive: bool = Query(default=False),
    _: object = Depends(deps.require_permission(PermissionCode.PROGRAM_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> list[LoanProgramOut]:
    items = await programs.list_all(db, include_inactive=include_inactive)
    return [LoanProgramOut.model_validate(item) for item in items]


@router.get("/{program_id}", response_model=LoanProgramDetail, summary="Get a loan program")
async def get_program(program_id: int, db: AsyncSession = Depends(get_db)) -> LoanProgramDetail:
    program = await programs.get_program_or_404(db, program_id)
    count = await programs.count_applications(db, program.id)
    return LoanProgramDetail(
        **LoanProgramOut.model_validate(program).model_dump(),
        application_count=count,
    )


@router.get("/{program_id}/stats", response_model=LoanProgramStats, summary="Application counts by status")
async def get_program_stats(program_id: int, db: AsyncSession = Depends(get_db)) -> LoanProgramStats:
    program = await programs.get_program_or_404(db, program_id)
    breakdown = await programs.status_breakdown(db, program.id)
    return LoanProgramStats(
        program_id=program.id,
        program_name=program.program_name,
        total_applications=sum(breakdown.values()),
        status_breakdown=breakdown,
    )
