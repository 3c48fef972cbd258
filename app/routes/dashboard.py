"""
Irshad Backend: Dashboard Routes
=================================

What:  GET /api/dashboard/{program}: profile counts by status and the
       program's subscription totals.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.models.enums import Program
from app.schemas.dashboard import ProgramOverview
from app.services.dashboard_service import dashboard_service

router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])


@router.get("/{program}", response_model=ProgramOverview, summary="Program overview")
async def program_overview(program: Program, db: AsyncSession = Depends(get_db_session)):
    return await dashboard_service.get_program_overview(db, program)
