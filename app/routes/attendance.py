"""
Irshad Backend: Attendance Routes
==================================

What:  Weekend Dugsi attendance sessions and per-student records.

Route Inventory:
    GET    /api/attendance/sessions                 paginated, filterable
    POST   /api/attendance/sessions                 create (weekends only)
    POST   /api/attendance/sessions/{id}/records    mark / update records
    POST   /api/attendance/sessions/{id}/close
    DELETE /api/attendance/sessions/{id}
    GET    /api/attendance/stats
    GET    /api/attendance/classes/{id}/students    roster for marking
"""

import logging
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.schemas.attendance import (
    AttendanceStats,
    EnrolledStudent,
    MarkAttendanceInput,
    PaginatedSessions,
    SessionCreateInput,
    SessionResponse,
)
from app.schemas.common import CountResponse, ErrorResponse
from app.services.attendance_service import attendance_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/attendance", tags=["Attendance"])


@router.get("/sessions", response_model=PaginatedSessions, summary="List attendance sessions")
async def list_sessions(
    class_id: Optional[UUID] = Query(default=None),
    date_from: Optional[date] = Query(default=None),
    date_to: Optional[date] = Query(default=None),
    page: int = Query(default=1, ge=1, description="Page number (1-indexed)"),
    limit: int = Query(default=20, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db_session),
) -> PaginatedSessions:
    return await attendance_service.list_sessions(
        db, class_id=class_id, date_from=date_from, date_to=date_to, page=page, limit=limit
    )


@router.post(
    "/sessions",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Not a weekend, unknown class or class without a teacher", "model": ErrorResponse},
        409: {"description": "Session already exists for that class and date", "model": ErrorResponse},
    },
)
async def create_session(data: SessionCreateInput, db: AsyncSession = Depends(get_db_session)):
    return await attendance_service.create_session(db, data.class_id, data.date, data.notes)


@router.post(
    "/sessions/{session_id}/records",
    response_model=CountResponse,
    responses={
        400: {"description": "Session closed or invalid ayat range", "model": ErrorResponse},
        404: {"description": "Session not found", "model": ErrorResponse},
    },
)
async def mark_attendance(
    session_id: UUID, data: MarkAttendanceInput, db: AsyncSession = Depends(get_db_session)
) -> CountResponse:
    count = await attendance_service.mark_attendance(db, session_id, data.records)
    return CountResponse(count=count)


@router.post("/sessions/{session_id}/close", response_model=SessionResponse)
async def close_session(session_id: UUID, db: AsyncSession = Depends(get_db_session)):
    return await attendance_service.close_session(db, session_id)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(session_id: UUID, db: AsyncSession = Depends(get_db_session)) -> None:
    await attendance_service.delete_session(db, session_id)


@router.get("/stats", response_model=AttendanceStats)
async def attendance_stats(
    class_id: Optional[UUID] = Query(default=None),
    date_from: Optional[date] = Query(default=None),
    date_to: Optional[date] = Query(default=None),
    db: AsyncSession = Depends(get_db_session),
) -> AttendanceStats:
    return await attendance_service.get_attendance_stats(
        db, class_id=class_id, date_from=date_from, date_to=date_to
    )


@router.get("/classes/{class_id}/students", response_model=List[EnrolledStudent])
async def class_students(class_id: UUID, db: AsyncSession = Depends(get_db_session)):
    return await attendance_service.get_enrolled_students(db, class_id)
