"""
Irshad Backend: Teacher Service
================================

What:  Teacher records (create, list, deactivate), program/shift
       authorization, student assignments, and Dugsi teacher check-in
       (clock in, clock out, lateness, history and daily reports).
Who:   /api/teachers routes and the attendance service (class teachers).

Check-in window (shift start S, local time in settings.timezone):

    S - checkin_minutes_before        S + grace         S + checkin_minutes_after
    ├──────────── on time ────────────┤──── late ───────┤
    │◀──────────────────── can check in ───────────────▶│

A clock-in outside the geofence is still recorded, with clock_in_valid=False.
"""

import logging
import math
import uuid
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import atomic
from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.common import utcnow
from app.models.dugsi import DugsiClass, DugsiClassTeacher
from app.models.enums import Program, Shift
from app.models.person import Person
from app.models.program import ProgramProfile
from app.models.teacher import DugsiTeacherCheckIn, Teacher, TeacherAssignment, TeacherProgram
from app.schemas.teacher import (
    CheckInDetail,
    CheckInHistoryFilters,
    CheckInHistoryPage,
    CheckInResponse,
    CheckInWindowStatus,
    LateReportEntry,
    NoShowTeacher,
    TeacherListEntry,
    TeacherProgramInput,
    TeacherResponse,
    TeacherTodayStatus,
)

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371e3

Point = Tuple[float, float]


# ══════════════════════════════════════════════════════════════════════════
# Geofence and shift timing
# ══════════════════════════════════════════════════════════════════════════

def haversine_distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def is_within_geofence(point: Point, center: Point, radius_m: float) -> bool:
    return haversine_distance_m(point[0], point[1], center[0], center[1]) <= radius_m


def _local_tz() -> ZoneInfo:
    return ZoneInfo(settings.timezone)


def get_shift_start(shift: Shift, day: date) -> datetime:
    """Shift start on `day` as an aware datetime in the configured timezone."""
    raw = settings.morning_shift_start if Shift(shift) == Shift.MORNING else settings.evening_shift_start
    hour, minute = (int(part) for part in raw.split(":"))
    return datetime.combine(day, time(hour, minute), tzinfo=_local_tz())


def is_late_for_shift(shift: Shift, clock_in: datetime) -> bool:
    local = clock_in.astimezone(_local_tz())
    grace_end = get_shift_start(shift, local.date()) + timedelta(
        minutes=settings.late_grace_period_minutes
    )
    return clock_in > grace_end


def get_check_in_window_status(shift: Shift, now: Optional[datetime] = None) -> CheckInWindowStatus:
    now = now or utcnow()
    start = get_shift_start(shift, now.astimezone(_local_tz()).date())
    opens = start - timedelta(minutes=settings.checkin_minutes_before)
    closes = start + timedelta(minutes=settings.checkin_minutes_after)

    if now < opens:
        return CheckInWindowStatus(can_check_in=False, reason="too_early", window_opens_at=opens)
    if now > closes:
        return CheckInWindowStatus(can_check_in=False, reason="too_late", window_closed_at=closes)
    return CheckInWindowStatus(can_check_in=True)


def _center() -> Optional[Point]:
    if settings.center_latitude == 0 and settings.center_longitude == 0:
        return None
    return settings.center_latitude, settings.center_longitude


def _duplicate_check_in() -> ConflictError:
    return ConflictError(message="Already clocked in for this shift today", code="DUPLICATE_CHECKIN")


class TeacherService:

    # ══════════════════════════════════════════════════════════════════════
    # Teacher records
    # ══════════════════════════════════════════════════════════════════════

    async def get_teacher(self, db: AsyncSession, teacher_id: uuid.UUID) -> Teacher:
        teacher = await db.get(Teacher, teacher_id)
        if teacher is None:
            raise NotFoundError(resource="teacher", resource_id=str(teacher_id))
        return teacher

    def to_response(self, teacher: Teacher) -> TeacherResponse:
        return TeacherResponse(
            id=teacher.id,
            person_id=teacher.person_id,
            name=teacher.person.name,
            programs=[
                TeacherProgramInput(program=p.program, shifts=p.shifts or [], is_active=p.is_active)
                for p in teacher.programs
            ],
        )

    async def create_teacher(self, db: AsyncSession, person_id: uuid.UUID) -> Teacher:
        person = await db.get(Person, person_id)
        if person is None:
            raise NotFoundError(resource="person", resource_id=str(person_id))

        existing = await db.execute(select(Teacher.id).where(Teacher.person_id == person_id))
        if existing.scalars().first() is not None:
            raise ConflictError(message="This person is already a teacher", code="DUPLICATE_TEACHER")

        teacher = Teacher(person_id=person_id)
        teacher.person = person
        teacher.programs = []
        db.add(teacher)
        await db.flush()
        logger.info("Created teacher %s for person %s", teacher.id, person_id)
        return teacher

    async def set_teacher_program(
        self, db: AsyncSession, teacher_id: uuid.UUID, data: TeacherProgramInput
    ) -> TeacherProgram:
        teacher = await self.get_teacher(db, teacher_id)
        shifts = [Shift(s).value for s in dict.fromkeys(data.shifts)]

        program = next((p for p in teacher.programs if p.program == data.program), None)
        if program is None:
            program = TeacherProgram(teacher_id=teacher.id, program=data.program)
            teacher.programs.append(program)
        program.shifts = shifts
        program.is_active = data.is_active
        await db.flush()
        logger.info("Teacher %s program %s shifts=%s", teacher_id, data.program.value, shifts)
        return program

    async def list_teachers(
        self, db: AsyncSession, program: Optional[Program] = None
    ) -> List[TeacherListEntry]:
        query = select(Teacher).join(Person, Person.id == Teacher.person_id).order_by(Person.name)
        if program is not None:
            query = query.where(
                Teacher.id.in_(
                    select(TeacherProgram.teacher_id).where(
                        TeacherProgram.program == program,
                        TeacherProgram.is_active.is_(True),
                    )
                )
            )
        result = await db.execute(query)
        teachers = list(result.scalars().unique().all())

        counts = await db.execute(
            select(DugsiClassTeacher.teacher_id, func.count(DugsiClassTeacher.id))
            .join(DugsiClass, DugsiClass.id == DugsiClassTeacher.class_id)
            .where(DugsiClassTeacher.is_active.is_(True), DugsiClass.is_active.is_(True))
            .group_by(DugsiClassTeacher.teacher_id)
        )
        class_counts = {teacher_id: count for teacher_id, count in counts.all()}
        return [
            TeacherListEntry(
                **self.to_response(t).model_dump(), class_count=class_counts.get(t.id, 0)
            )
            for t in teachers
        ]

    async def deactivate_teacher(self, db: AsyncSession, teacher_id: uuid.UUID) -> Teacher:
        """
        Take a teacher off the Dugsi rota.

        Raises:
            ConflictError(HAS_CLASSES): the teacher still teaches an active class
        """
        teacher = await self.get_teacher(db, teacher_id)
        result = await db.execute(
            select(DugsiClass.name)
            .join(DugsiClassTeacher, DugsiClassTeacher.class_id == DugsiClass.id)
            .where(
                DugsiClassTeacher.teacher_id == teacher_id,
                DugsiClassTeacher.is_active.is_(True),
                DugsiClass.is_active.is_(True),
            )
            .order_by(DugsiClass.name)
        )
        class_names = list(result.scalars().all())
        if class_names:
            raise ConflictError(
                message=(
                    "Remove the teacher from their classes first: " + ", ".join(class_names)
                ),
                code="HAS_CLASSES",
                context={"classes": class_names},
            )

        program = next((p for p in teacher.programs if p.program == Program.DUGSI_PROGRAM), None)
        if program is None:
            raise NotFoundError(resource="Dugsi teacher program", resource_id=str(teacher_id))
        program.shifts = []
        program.is_active = False
        await db.flush()
        logger.info("Deactivated Dugsi teacher %s", teacher_id)
        return teacher

    async def assign_student(
        self,
        db: AsyncSession,
        teacher_id: uuid.UUID,
        program_profile_id: uuid.UUID,
        shift: Shift,
    ) -> TeacherAssignment:
        await self.get_teacher(db, teacher_id)
        profile = await db.get(ProgramProfile, program_profile_id)
        if profile is None:
            raise NotFoundError(resource="program profile", resource_id=str(program_profile_id))
        if profile.program != Program.DUGSI_PROGRAM:
            raise ValidationError(
                message="Teacher assignments are only available for Dugsi students",
                field="program_profile_id",
                code="NOT_DUGSI_PROFILE",
            )

        result = await db.execute(
            select(TeacherAssignment).where(
                TeacherAssignment.teacher_id == teacher_id,
                TeacherAssignment.program_profile_id == program_profile_id,
                TeacherAssignment.shift == shift,
            )
        )
        assignment = result.scalar_one_or_none()
        if assignment is not None and assignment.is_active:
            raise ConflictError(
                message="Student is already assigned to this teacher for this shift",
                code="DUPLICATE_ASSIGNMENT",
            )
        if assignment is None:
            assignment = TeacherAssignment(
                teacher_id=teacher_id, program_profile_id=program_profile_id, shift=shift
            )
            db.add(assignment)
        assignment.is_active = True
        assignment.start_date = utcnow()
        assignment.end_date = None
        await db.flush()
        return assignment

    async def get_teacher_shifts(self, db: AsyncSession, teacher_id: uuid.UUID) -> List[Shift]:
        teacher = await db.get(Teacher, teacher_id)
        if teacher is None:
            return []
        program = self._active_dugsi_program(teacher)
        return [Shift(s) for s in program.shifts] if program else []

    @staticmethod
    def _active_dugsi_program(teacher: Teacher) -> Optional[TeacherProgram]:
        return next(
            (p for p in teacher.programs if p.program == Program.DUGSI_PROGRAM and p.is_active),
            None,
        )

    # ══════════════════════════════════════════════════════════════════════
    # Check-in
    # ══════════════════════════════════════════════════════════════════════

    async def _authorized_teacher(self, db: AsyncSession, teacher_id: uuid.UUID, shift: Shift) -> Teacher:
        teacher = await self.get_teacher(db, teacher_id)
        program = self._active_dugsi_program(teacher)
        if program is None:
            raise ValidationError(
                message="Teacher is not authorized for Dugsi program", code="NOT_ENROLLED_IN_DUGSI"
            )
        if not program.shifts:
            raise ValidationError(
                message="Teacher has no assigned shifts for Dugsi program", code="INVALID_SHIFT"
            )
        if Shift(shift).value not in program.shifts:
            raise ValidationError(
                message=f"Teacher is not assigned to the {Shift(shift).value.lower()} shift",
                code="INVALID_SHIFT",
            )
        return teacher

    async def _ensure_no_check_in(
        self, db: AsyncSession, teacher_id: uuid.UUID, day: date, shift: Shift
    ) -> None:
        result = await db.execute(
            select(DugsiTeacherCheckIn.id).where(
                DugsiTeacherCheckIn.teacher_id == teacher_id,
                DugsiTeacherCheckIn.date == day,
                DugsiTeacherCheckIn.shift == shift,
            )
        )
        if result.scalars().first() is not None:
            raise _duplicate_check_in()

    async def _insert_check_in(self, db: AsyncSession, check_in: DugsiTeacherCheckIn) -> None:
        # uq_checkin_teacher_date_shift catches a concurrent clock-in that passed the check
        try:
            async with atomic(db):
                db.add(check_in)
                await db.flush()
        except IntegrityError:
            raise _duplicate_check_in()

    async def clock_in(
        self,
        db: AsyncSession,
        teacher_id: uuid.UUID,
        shift: Shift,
        lat: float,
        lng: float,
        now: Optional[datetime] = None,
    ) -> DugsiTeacherCheckIn:
        now = now or utcnow()
        await self._authorized_teacher(db, teacher_id, shift)

        window = get_check_in_window_status(shift, now)
        if not window.can_check_in:
            if window.reason == "too_early":
                raise ValidationError(
                    message=f"Check-in window opens at {window.window_opens_at:%H:%M}",
                    code="CHECKIN_TOO_EARLY",
                )
            raise ValidationError(
                message="Check-in window has closed for this shift", code="CHECKIN_TOO_LATE"
            )

        today = now.astimezone(_local_tz()).date()
        await self._ensure_no_check_in(db, teacher_id, today, shift)

        center = _center()
        if center is None:
            logger.warning("Center coordinates are not configured; clock-in marked invalid")
        clock_in_valid = center is not None and is_within_geofence(
            (lat, lng), center, settings.geofence_radius_meters
        )
        is_late = is_late_for_shift(shift, now)

        check_in = DugsiTeacherCheckIn(
            teacher_id=teacher_id,
            date=today,
            shift=shift,
            clock_in_time=now,
            clock_in_lat=lat,
            clock_in_lng=lng,
            clock_in_valid=clock_in_valid,
            is_late=is_late,
        )
        await self._insert_check_in(db, check_in)
        logger.info(
            "Teacher %s clocked in (%s, valid=%s, late=%s)", teacher_id, shift, clock_in_valid, is_late
        )
        return check_in

    async def clock_out(
        self,
        db: AsyncSession,
        check_in_id: uuid.UUID,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
    ) -> DugsiTeacherCheckIn:
        check_in = await db.get(DugsiTeacherCheckIn, check_in_id)
        if check_in is None:
            raise NotFoundError(resource="check-in record", resource_id=str(check_in_id))
        if check_in.clock_out_time is not None:
            raise ConflictError(message="Already clocked out", code="ALREADY_CLOCKED_OUT")

        check_in.clock_out_time = utcnow()
        if lat is not None:
            check_in.clock_out_lat = lat
        if lng is not None:
            check_in.clock_out_lng = lng
        await db.flush()
        logger.info("Teacher %s clocked out (check-in %s)", check_in.teacher_id, check_in_id)
        return check_in

    async def admin_clock_in(
        self, db: AsyncSession, teacher_id: uuid.UUID, shift: Shift, reason: str
    ) -> DugsiTeacherCheckIn:
        """Manual check-in by an admin: no window or geofence checks."""
        reason = (reason or "").strip()
        if len(reason) < 3:
            raise ValidationError(
                message="A reason is required for manual check-in", field="reason"
            )
        await self._authorized_teacher(db, teacher_id, shift)

        now = utcnow()
        today = now.astimezone(_local_tz()).date()
        await self._ensure_no_check_in(db, teacher_id, today, shift)

        check_in = DugsiTeacherCheckIn(
            teacher_id=teacher_id,
            date=today,
            shift=shift,
            clock_in_time=now,
            clock_in_valid=False,
            is_late=is_late_for_shift(shift, now),
            notes=f"Manual check-in: {reason}",
        )
        await self._insert_check_in(db, check_in)
        logger.info("Admin manual check-in for teacher %s (%s): %s", teacher_id, shift, reason)
        return check_in

    async def auto_clock_out_stale_check_ins(
        self, db: AsyncSession, now: Optional[datetime] = None
    ) -> int:
        now = now or utcnow()
        max_shift = timedelta(hours=settings.max_shift_hours)
        result = await db.execute(
            select(DugsiTeacherCheckIn).where(
                DugsiTeacherCheckIn.clock_out_time.is_(None),
                DugsiTeacherCheckIn.clock_in_time < now - max_shift,
            )
        )
        stale = list(result.scalars().all())
        for check_in in stale:
            check_in.clock_out_time = check_in.clock_in_time + max_shift
            check_in.notes = "Auto clock-out: exceeded maximum shift duration"
        await db.flush()
        if stale:
            logger.info("Auto clock-out completed for %d check-in(s)", len(stale))
        return len(stale)

    # ══════════════════════════════════════════════════════════════════════
    # Reports
    # ══════════════════════════════════════════════════════════════════════

    async def get_late_report(
        self, db: AsyncSession, date_from: date, date_to: date
    ) -> List[LateReportEntry]:
        result = await db.execute(
            select(DugsiTeacherCheckIn)
            .where(
                DugsiTeacherCheckIn.is_late.is_(True),
                DugsiTeacherCheckIn.date >= date_from,
                DugsiTeacherCheckIn.date <= date_to,
            )
            .order_by(DugsiTeacherCheckIn.date.desc(), DugsiTeacherCheckIn.clock_in_time)
        )
        entries = []
        for check_in in result.scalars().all():
            start = get_shift_start(check_in.shift, check_in.date)
            entries.append(
                LateReportEntry(
                    check_in_id=check_in.id,
                    teacher_id=check_in.teacher_id,
                    teacher_name=check_in.teacher.person.name,
                    date=check_in.date,
                    shift=check_in.shift,
                    clock_in_time=check_in.clock_in_time,
                    minutes_late=max(0, int((check_in.clock_in_time - start).total_seconds() // 60)),
                )
            )
        return entries

    async def get_no_show_teachers(
        self, db: AsyncSession, shift: Shift, now: Optional[datetime] = None
    ) -> List[NoShowTeacher]:
        """Teachers working `shift` with no check-in once the no-show threshold passed."""
        now = now or utcnow()
        today = now.astimezone(_local_tz()).date()
        start = get_shift_start(shift, today)
        if now < start + timedelta(minutes=settings.no_show_threshold_minutes):
            return []

        result = await db.execute(
            select(Teacher)
            .join(TeacherProgram, TeacherProgram.teacher_id == Teacher.id)
            .where(TeacherProgram.program == Program.DUGSI_PROGRAM, TeacherProgram.is_active.is_(True))
        )
        teachers = [
            t for t in result.scalars().unique().all()
            if Shift(shift).value in (self._active_dugsi_program(t).shifts or [])
        ]
        checked_in = await db.execute(
            select(DugsiTeacherCheckIn.teacher_id).where(
                DugsiTeacherCheckIn.date == today,
                DugsiTeacherCheckIn.shift == shift,
            )
        )
        checked_in_ids = set(checked_in.scalars().all())
        return [
            NoShowTeacher(teacher_id=t.id, teacher_name=t.person.name, shift=shift, shift_start_time=start)
            for t in teachers
            if t.id not in checked_in_ids
        ]

    @staticmethod
    def _detail(check_in: DugsiTeacherCheckIn) -> CheckInDetail:
        return CheckInDetail(
            **CheckInResponse.model_validate(check_in).model_dump(),
            teacher_name=check_in.teacher.person.name,
        )

    async def get_checkins_for_date(
        self,
        db: AsyncSession,
        day: Optional[date] = None,
        shift: Optional[Shift] = None,
        teacher_id: Optional[uuid.UUID] = None,
    ) -> List[CheckInDetail]:
        day = day or utcnow().astimezone(_local_tz()).date()
        query = select(DugsiTeacherCheckIn).where(DugsiTeacherCheckIn.date == day)
        if shift is not None:
            query = query.where(DugsiTeacherCheckIn.shift == shift)
        if teacher_id is not None:
            query = query.where(DugsiTeacherCheckIn.teacher_id == teacher_id)
        result = await db.execute(
            query.order_by(DugsiTeacherCheckIn.shift, DugsiTeacherCheckIn.clock_in_time)
        )
        return [self._detail(c) for c in result.scalars().all()]

    async def get_checkin_history(
        self,
        db: AsyncSession,
        filters: CheckInHistoryFilters,
        page: int = 1,
        limit: int = 50,
    ) -> CheckInHistoryPage:
        conditions = []
        if filters.date_from is not None:
            conditions.append(DugsiTeacherCheckIn.date >= filters.date_from)
        if filters.date_to is not None:
            conditions.append(DugsiTeacherCheckIn.date <= filters.date_to)
        if filters.shift is not None:
            conditions.append(DugsiTeacherCheckIn.shift == filters.shift)
        if filters.teacher_id is not None:
            conditions.append(DugsiTeacherCheckIn.teacher_id == filters.teacher_id)
        if filters.is_late is not None:
            conditions.append(DugsiTeacherCheckIn.is_late.is_(filters.is_late))
        if filters.clock_in_valid is not None:
            conditions.append(DugsiTeacherCheckIn.clock_in_valid.is_(filters.clock_in_valid))

        total_result = await db.execute(
            select(func.count(DugsiTeacherCheckIn.id)).where(*conditions)
        )
        total = total_result.scalar() or 0

        result = await db.execute(
            select(DugsiTeacherCheckIn)
            .where(*conditions)
            .order_by(
                DugsiTeacherCheckIn.date.desc(),
                DugsiTeacherCheckIn.shift,
                DugsiTeacherCheckIn.clock_in_time,
            )
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return CheckInHistoryPage(
            data=[self._detail(c) for c in result.scalars().all()],
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if total else 0,
        )

    async def get_teachers_with_today_status(
        self, db: AsyncSession, day: Optional[date] = None
    ) -> List[TeacherTodayStatus]:
        day = day or utcnow().astimezone(_local_tz()).date()
        result = await db.execute(
            select(Teacher)
            .join(TeacherProgram, TeacherProgram.teacher_id == Teacher.id)
            .join(Person, Person.id == Teacher.person_id)
            .where(TeacherProgram.program == Program.DUGSI_PROGRAM, TeacherProgram.is_active.is_(True))
            .order_by(Person.name)
        )
        teachers = list(result.scalars().unique().all())

        check_ins = await db.execute(
            select(DugsiTeacherCheckIn).where(DugsiTeacherCheckIn.date == day)
        )
        by_teacher = {}
        for check_in in check_ins.scalars().all():
            by_teacher[(check_in.teacher_id, Shift(check_in.shift))] = check_in

        statuses = []
        for teacher in teachers:
            morning = by_teacher.get((teacher.id, Shift.MORNING))
            evening = by_teacher.get((teacher.id, Shift.EVENING))
            statuses.append(
                TeacherTodayStatus(
                    teacher_id=teacher.id,
                    teacher_name=teacher.person.name,
                    shifts=[Shift(s) for s in self._active_dugsi_program(teacher).shifts or []],
                    morning_check_in=CheckInResponse.model_validate(morning) if morning else None,
                    evening_check_in=CheckInResponse.model_validate(evening) if evening else None,
                )
            )
        return statuses


# Singleton instance
teacher_service = TeacherService()
