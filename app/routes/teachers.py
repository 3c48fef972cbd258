"""
Irshad Backend: Teacher Routes
===============================

What:  Teacher records, program/shift authorization, student assignments,
       and the geofenced check-in flow with its admin tooling and reports.

Route Inventory:
    GET   /api/teachers?program=                    with active class counts
    GET   /api/teachers/today-status?date=         Dugsi teachers + that day's check-ins
    POST  /api/teachers
    POST  /api/teachers/{id}/deactivate
    PUT   /api/teachers/{id}/programs
    POST  /api/teachers/{id}/assignments
    GET   /api/teachers/{id}/check-in-window?shift=
    GET   /api/teachers/check-ins?date=&shift=&teacher_id=
    GET   /api/teachers/check-ins/history          filtered, paginated
    POST  /api/teachers/check-ins                     clock in (geofenced)
    POST  /api/teachers/check-ins/{id}/clock-out
    POST  /api/teachers/check-ins/admin               manual clock in
    POST  /api/teachers/check-ins/auto-clock-out      close stale check-ins
    GET   /api/teachers/check-ins/late-report
    GET   /api/teachers/check-ins/no-shows?shift=
"""

import logging
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.exceptions import ValidationError
from app.models.enums import Program, Shift
from app.schemas.common import CountResponse, ErrorResponse
from app.schemas.teacher import (
    AdminClockInInput,
    CheckInDetail,
    CheckInHistoryFilters,
    CheckInHistoryPage,
    CheckInResponse,
    CheckInWindowStatus,
    ClockInInput,
    ClockOutInput,
    LateReportEntry,
    NoShowTeacher,
    TeacherAssignmentInput,
    TeacherAssignmentResponse,
    TeacherCreateInput,
    TeacherListEntry,
    TeacherProgramInput,
    TeacherResponse,
    TeacherTodayStatus,
)
from app.services.teacher_service import get_check_in_window_status, teacher_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/teachers", tags=["Teachers"])

CHECK_IN_ERRORS = {
    400: {"description": "Outside the check-in window or not authorized for the shift", "model": ErrorResponse},
    404: {"description": "Teacher or check-in not found", "model": ErrorResponse},
    409: {"description": "Already checked in / out", "model": ErrorResponse},
}


# ── Check-ins ─────────────────────────────────────────────────────────────
# Declared before /{teacher_id} routes so "check-ins" is never parsed as an id.

@router.post(
    "/check-ins",
    response_model=CheckInResponse,
    status_code=status.HTTP_201_CREATED,
    responses=CHECK_IN_ERRORS,
    summary="Clock in for a shift",
)
async def clock_in(data: ClockInInput, db: AsyncSession = Depends(get_db_session)):
    return await teacher_service.clock_in(db, data.teacher_id, data.shift, data.lat, data.lng)


@router.post(
    "/check-ins/admin",
    response_model=CheckInResponse,
    status_code=status.HTTP_201_CREATED,
    responses=CHECK_IN_ERRORS,
)
async def admin_clock_in(data: AdminClockInInput, db: AsyncSession = Depends(get_db_session)):
    return await teacher_service.admin_clock_in(db, data.teacher_id, data.shift, data.reason)


@router.post("/check-ins/auto-clock-out", response_model=CountResponse)
async def auto_clock_out(db: AsyncSession = Depends(get_db_session)) -> CountResponse:
    return CountResponse(count=await teacher_service.auto_clock_out_stale_check_ins(db))


@router.get("/check-ins", response_model=List[CheckInDetail], summary="Check-ins for one day")
async def checkins_for_date(
    day: Optional[date] = Query(default=None, alias="date"),
    shift: Optional[Shift] = Query(default=None),
    teacher_id: Optional[UUID] = Query(default=None),
    db: AsyncSession = Depends(get_db_session),
):
    return await teacher_service.get_checkins_for_date(db, day, shift, teacher_id)


@router.get("/check-ins/history", response_model=CheckInHistoryPage)
async def checkin_history(
    date_from: Optional[date] = Query(default=None),
    date_to: Optional[date] = Query(default=None),
    shift: Optional[Shift] = Query(default=None),
    teacher_id: Optional[UUID] = Query(default=None),
    is_late: Optional[bool] = Query(default=None),
    clock_in_valid: Optional[bool] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db_session),
) -> CheckInHistoryPage:
    if date_from and date_to and date_to < date_from:
        raise ValidationError(message="date_to must not be before date_from", field="date_to")
    filters = CheckInHistoryFilters(
        date_from=date_from,
        date_to=date_to,
        shift=shift,
        teacher_id=teacher_id,
        is_late=is_late,
        clock_in_valid=clock_in_valid,
    )
    return await teacher_service.get_checkin_history(db, filters, page=page, limit=limit)


@router.get("/check-ins/late-report", response_model=List[LateReportEntry])
async def late_report(
    date_from: date = Query(),
    date_to: date = Query(),
    db: AsyncSession = Depends(get_db_session),
):
    if date_to < date_from:
        raise ValidationError(message="date_to must not be before date_from", field="date_to")
    return await teacher_service.get_late_report(db, date_from, date_to)


@router.get("/check-ins/no-shows", response_model=List[NoShowTeacher])
async def no_shows(shift: Shift = Query(), db: AsyncSession = Depends(get_db_session)):
    return await teacher_service.get_no_show_teachers(db, shift)


@router.post("/check-ins/{check_in_id}/clock-out", response_model=CheckInResponse, responses=CHECK_IN_ERRORS)
async def clock_out(
    check_in_id: UUID, data: ClockOutInput, db: AsyncSession = Depends(get_db_session)
):
    return await teacher_service.clock_out(db, check_in_id, data.lat, data.lng)


# ── Teachers ──────────────────────────────────────────────────────────────

@router.get("", response_model=List[TeacherListEntry])
async def list_teachers(
    program: Optional[Program] = Query(default=None),
    db: AsyncSession = Depends(get_db_session),
):
    return await teacher_service.list_teachers(db, program)


@router.get("/today-status", response_model=List[TeacherTodayStatus], summary="Dugsi teachers with today's check-ins")
async def today_status(
    day: Optional[date] = Query(default=None, alias="date"),
    db: AsyncSession = Depends(get_db_session),
):
    return await teacher_service.get_teachers_with_today_status(db, day)


@router.post(
    "",
    response_model=TeacherResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"description": "Person not found", "model": ErrorResponse},
        409: {"description": "Person is already a teacher", "model": ErrorResponse},
    },
)
async def create_teacher(data: TeacherCreateInput, db: AsyncSession = Depends(get_db_session)):
    teacher = await teacher_service.create_teacher(db, data.person_id)
    return teacher_service.to_response(teacher)


@router.put("/{teacher_id}/programs", response_model=TeacherResponse)
async def set_program(
    teacher_id: UUID, data: TeacherProgramInput, db: AsyncSession = Depends(get_db_session)
):
    await teacher_service.set_teacher_program(db, teacher_id, data)
    teacher = await teacher_service.get_teacher(db, teacher_id)
    return teacher_service.to_response(teacher)


@router.post(
    "/{teacher_id}/assignments",
    response_model=TeacherAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Student already assigned for this shift", "model": ErrorResponse}},
)
async def assign_student(
    teacher_id: UUID, data: TeacherAssignmentInput, db: AsyncSession = Depends(get_db_session)
):
    return await teacher_service.assign_student(db, teacher_id, data.program_profile_id, data.shift)


@router.get("/{teacher_id}/check-in-window", response_model=CheckInWindowStatus)
async def check_in_window(teacher_id: UUID, shift: Shift = Query()) -> CheckInWindowStatus:
    return get_check_in_window_status(shift)


@router.post(
    "/{teacher_id}/deactivate",
    response_model=TeacherResponse,
    responses={
        404: {"description": "Teacher or Dugsi program not found", "model": ErrorResponse},
        409: {"description": "Teacher still assigned to active classes", "model": ErrorResponse},
    },
)
async def deactivate_teacher(teacher_id: UUID, db: AsyncSession = Depends(get_db_session)):
    teacher = await teacher_service.deactivate_teacher(db, teacher_id)
    return teacher_service.to_response(teacher)
