"""
Irshad Backend: Attendance Service
===================================

What:  Dugsi weekend attendance: sessions per (class, date), per-student
       records with Quran lesson progress, and summary statistics.
Who:   /api/attendance routes.

Session lifetime:

    Sat session ──┐
                  ├──▶ editable until the end of that weekend's Sunday
    Sun session ──┘    (or until an admin closes it explicitly)

    is_session_effectively_closed() is the single source of truth for
    "can records still be changed".
"""

import logging
import math
import uuid
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import atomic
from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.common import utcnow
from app.models.dugsi import (
    DugsiAttendanceRecord,
    DugsiAttendanceSession,
    DugsiClass,
    DugsiClassEnrollment,
    DugsiClassTeacher,
)
from app.models.enums import DugsiAttendanceStatus
from app.models.person import Person
from app.models.program import ProgramProfile
from app.schemas.attendance import (
    AttendanceRecordInput,
    AttendanceStats,
    EnrolledStudent,
    PaginatedSessions,
    SessionResponse,
)

logger = logging.getLogger(__name__)

SATURDAY, SUNDAY = 5, 6


def weekend_sunday(session_date: date) -> date:
    """The Sunday that closes the weekend a session belongs to."""
    return session_date + timedelta(days=1) if session_date.weekday() == SATURDAY else session_date


def is_session_effectively_closed(
    session_date: date, is_closed: bool, now: Optional[datetime] = None
) -> bool:
    if is_closed:
        return True
    now = now or utcnow()
    local_today = now.astimezone(ZoneInfo(settings.timezone)).date()
    return local_today > weekend_sunday(session_date)


class AttendanceService:

    async def _get_session(self, db: AsyncSession, session_id: uuid.UUID) -> DugsiAttendanceSession:
        session = await db.get(DugsiAttendanceSession, session_id)
        if session is None:
            raise NotFoundError(resource="attendance session", resource_id=str(session_id))
        return session

    def _to_response(self, session: DugsiAttendanceSession, now: Optional[datetime] = None) -> SessionResponse:
        return SessionResponse(
            id=session.id,
            date=session.date,
            class_id=session.class_id,
            class_name=session.dugsi_class.name if session.dugsi_class else None,
            shift=session.dugsi_class.shift if session.dugsi_class else None,
            teacher_id=session.teacher_id,
            notes=session.notes,
            is_closed=session.is_closed,
            is_effectively_closed=is_session_effectively_closed(session.date, session.is_closed, now),
            record_count=len(session.records or []),
        )

    # ── Sessions ──────────────────────────────────────────────────────────

    async def create_session(
        self,
        db: AsyncSession,
        class_id: uuid.UUID,
        session_date: date,
        notes: Optional[str] = None,
    ) -> SessionResponse:
        if session_date.weekday() not in (SATURDAY, SUNDAY):
            raise ValidationError(
                message="Dugsi sessions can only be created on weekends (Saturday or Sunday)",
                field="date",
                code="INVALID_DAY",
            )

        dugsi_class = await db.get(DugsiClass, class_id)
        if dugsi_class is None:
            raise ValidationError(message="Class not found", field="class_id", code="CLASS_NOT_FOUND")

        result = await db.execute(
            select(DugsiClassTeacher.teacher_id)
            .where(DugsiClassTeacher.class_id == class_id, DugsiClassTeacher.is_active.is_(True))
            .order_by(DugsiClassTeacher.created_at)
            .limit(1)
        )
        teacher_id = result.scalars().first()
        if teacher_id is None:
            raise ValidationError(
                message="No active teacher assigned to this class",
                field="class_id",
                code="NO_TEACHER_ASSIGNED",
            )

        session = DugsiAttendanceSession(
            class_id=class_id,
            date=session_date,
            teacher_id=teacher_id,
            notes=notes,
            is_closed=False,
        )
        session.records = []
        try:
            async with atomic(db):
                db.add(session)
                await db.flush()
        except IntegrityError:
            raise ConflictError(
                message="A session already exists for this class on this date",
                code="DUPLICATE_SESSION",
                context={"class_id": str(class_id), "date": session_date.isoformat()},
            )

        logger.info("Attendance session %s created (class=%s, date=%s)", session.id, class_id, session_date)
        session.dugsi_class = dugsi_class
        return self._to_response(session)

    async def mark_attendance(
        self,
        db: AsyncSession,
        session_id: uuid.UUID,
        records: Sequence[AttendanceRecordInput],
    ) -> int:
        """Upsert one record per student; returns how many were written."""
        session = await self._get_session(db, session_id)
        if is_session_effectively_closed(session.date, session.is_closed):
            raise ValidationError(message="Cannot modify a closed session", code="SESSION_CLOSED")

        for record in records:
            if (
                record.ayat_from is not None
                and record.ayat_to is not None
                and record.ayat_to < record.ayat_from
            ):
                raise ValidationError(
                    message="ayat_to must be greater than or equal to ayat_from",
                    field="ayat_to",
                )

        existing: Dict[uuid.UUID, DugsiAttendanceRecord] = {
            r.program_profile_id: r for r in session.records
        }
        now = utcnow()
        async with atomic(db):
            for record in records:
                row = existing.get(record.program_profile_id)
                if row is None:
                    row = DugsiAttendanceRecord(
                        session_id=session.id,
                        program_profile_id=record.program_profile_id,
                    )
                    session.records.append(row)
                    existing[record.program_profile_id] = row
                row.status = record.status
                row.lesson_completed = record.lesson_completed
                row.surah_name = record.surah_name
                row.ayat_from = record.ayat_from
                row.ayat_to = record.ayat_to
                row.lesson_notes = record.lesson_notes
                row.notes = record.notes
                row.marked_at = now
            await db.flush()

        logger.info("Marked attendance for %d students (session=%s)", len(records), session_id)
        return len(records)

    async def close_session(self, db: AsyncSession, session_id: uuid.UUID) -> SessionResponse:
        session = await self._get_session(db, session_id)
        session.is_closed = True
        await db.flush()
        logger.info("Attendance session %s closed", session_id)
        return self._to_response(session)

    async def delete_session(self, db: AsyncSession, session_id: uuid.UUID) -> None:
        session = await self._get_session(db, session_id)
        await db.delete(session)
        await db.flush()
        logger.info("Attendance session %s deleted (class=%s, date=%s)", session_id, session.class_id, session.date)

    async def list_sessions(
        self,
        db: AsyncSession,
        class_id: Optional[uuid.UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        page: int = 1,
        limit: int = 20,
    ) -> PaginatedSessions:
        conditions = []
        if class_id is not None:
            conditions.append(DugsiAttendanceSession.class_id == class_id)
        if date_from is not None:
            conditions.append(DugsiAttendanceSession.date >= date_from)
        if date_to is not None:
            conditions.append(DugsiAttendanceSession.date <= date_to)

        total = (
            await db.execute(select(func.count(DugsiAttendanceSession.id)).where(*conditions))
        ).scalar() or 0

        result = await db.execute(
            select(DugsiAttendanceSession)
            .where(*conditions)
            .order_by(DugsiAttendanceSession.date.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        now = utcnow()
        return PaginatedSessions(
            data=[self._to_response(s, now) for s in result.scalars().all()],
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if limit else 0,
        )

    # ── Roster and stats ──────────────────────────────────────────────────

    async def get_enrolled_students(self, db: AsyncSession, class_id: uuid.UUID) -> List[EnrolledStudent]:
        result = await db.execute(
            select(ProgramProfile.id, Person.name, ProgramProfile.family_reference_id)
            .join(DugsiClassEnrollment, DugsiClassEnrollment.program_profile_id == ProgramProfile.id)
            .join(Person, Person.id == ProgramProfile.person_id)
            .where(
                DugsiClassEnrollment.class_id == class_id,
                DugsiClassEnrollment.is_active.is_(True),
            )
            .order_by(Person.name)
        )
        return [
            EnrolledStudent(program_profile_id=pid, name=name, family_reference_id=ref)
            for pid, name, ref in result.all()
        ]

    async def get_attendance_stats(
        self,
        db: AsyncSession,
        class_id: Optional[uuid.UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> AttendanceStats:
        conditions = []
        if class_id is not None:
            conditions.append(DugsiAttendanceSession.class_id == class_id)
        if date_from is not None:
            conditions.append(DugsiAttendanceSession.date >= date_from)
        if date_to is not None:
            conditions.append(DugsiAttendanceSession.date <= date_to)

        total_sessions = (
            await db.execute(select(func.count(DugsiAttendanceSession.id)).where(*conditions))
        ).scalar() or 0

        result = await db.execute(
            select(DugsiAttendanceRecord.status, func.count(DugsiAttendanceRecord.id))
            .join(DugsiAttendanceSession, DugsiAttendanceSession.id == DugsiAttendanceRecord.session_id)
            .where(*conditions)
            .group_by(DugsiAttendanceRecord.status)
        )
        by_status = {status: 0 for status in DugsiAttendanceStatus}
        for status, count in result.all():
            by_status[DugsiAttendanceStatus(status)] = count

        total_records = sum(by_status.values())
        attended = by_status[DugsiAttendanceStatus.PRESENT] + by_status[DugsiAttendanceStatus.LATE]
        rate = round(attended / total_records * 100, 1) if total_records else 0.0

        return AttendanceStats(
            total_sessions=total_sessions,
            total_records=total_records,
            by_status=by_status,
            attendance_rate=rate,
        )


# Singleton instance
attendance_service = AttendanceService()
