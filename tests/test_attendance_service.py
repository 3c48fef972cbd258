"""
Irshad Backend: Attendance Service Tests
=========================================

What:  Tests for Dugsi weekend sessions and attendance marking.
How:   Mock DB session; transient ORM objects stand in for loaded rows.

What we test:
    ✅ Sessions stay editable through the weekend's Sunday (local time)
    ✅ Weekday dates are rejected with INVALID_DAY
    ✅ A class without an active teacher cannot get a session
    ✅ Closed sessions reject marking with SESSION_CLOSED
    ✅ Marking upserts one record per student
"""

import uuid
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from app.exceptions import NotFoundError, ValidationError
from app.models.dugsi import DugsiAttendanceRecord, DugsiAttendanceSession, DugsiClass
from app.models.enums import DugsiAttendanceStatus, Shift
from app.schemas.attendance import AttendanceRecordInput
from app.services.attendance_service import (
    AttendanceService,
    is_session_effectively_closed,
    weekend_sunday,
)

SATURDAY = date(2026, 10, 17)
SUNDAY = date(2026, 10, 18)
MONDAY = date(2026, 10, 19)


def _open_session(**kwargs) -> DugsiAttendanceSession:
    session = DugsiAttendanceSession(
        id=uuid.uuid4(),
        class_id=uuid.uuid4(),
        teacher_id=uuid.uuid4(),
        date=kwargs.pop("date", date.today() + timedelta(days=7)),
        is_closed=kwargs.pop("is_closed", False),
        **kwargs,
    )
    session.records = []
    return session


class TestSessionLifetime:

    def test_weekend_sunday(self):
        assert weekend_sunday(SATURDAY) == SUNDAY
        assert weekend_sunday(SUNDAY) == SUNDAY

    def test_explicitly_closed(self):
        assert is_session_effectively_closed(date.today() + timedelta(days=7), True) is True

    def test_open_until_end_of_local_sunday(self):
        # 03:00 UTC Monday is still Sunday evening in Chicago
        late_sunday = datetime(2026, 10, 19, 3, 0, tzinfo=timezone.utc)
        assert is_session_effectively_closed(SATURDAY, False, now=late_sunday) is False

    def test_closed_on_monday(self):
        monday_noon = datetime(2026, 10, 19, 17, 0, tzinfo=timezone.utc)
        assert is_session_effectively_closed(SATURDAY, False, now=monday_noon) is True
        assert is_session_effectively_closed(SUNDAY, False, now=monday_noon) is True


class TestCreateSession:
    """Tests for AttendanceService.create_session()."""

    def setup_method(self):
        self.service = AttendanceService()

    @pytest.mark.asyncio
    async def test_weekday_rejected(self, mock_db_session):
        with pytest.raises(ValidationError) as exc_info:
            await self.service.create_session(mock_db_session, uuid.uuid4(), MONDAY)
        assert exc_info.value.code == "INVALID_DAY"
        mock_db_session.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_class(self, mock_db_session):
        with pytest.raises(ValidationError) as exc_info:
            await self.service.create_session(mock_db_session, uuid.uuid4(), SATURDAY)
        assert exc_info.value.code == "CLASS_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_class_without_teacher(self, mock_db_session, make_result):
        mock_db_session.get = AsyncMock(return_value=DugsiClass(name="Juz Amma", shift=Shift.MORNING))
        mock_db_session.execute.return_value = make_result(scalars=[])

        with pytest.raises(ValidationError) as exc_info:
            await self.service.create_session(mock_db_session, uuid.uuid4(), SATURDAY)
        assert exc_info.value.code == "NO_TEACHER_ASSIGNED"

    @pytest.mark.asyncio
    async def test_creates_session_with_first_active_teacher(self, mock_db_session, make_result):
        class_id, teacher_id = uuid.uuid4(), uuid.uuid4()
        mock_db_session.get = AsyncMock(return_value=DugsiClass(name="Juz Amma", shift=Shift.MORNING))
        mock_db_session.execute.return_value = make_result(scalars=[teacher_id])

        def _assign_id(obj):
            obj.id = uuid.uuid4()

        mock_db_session.add.side_effect = _assign_id

        result = await self.service.create_session(mock_db_session, class_id, SUNDAY, notes="Eid week")

        assert result.teacher_id == teacher_id
        assert result.class_id == class_id
        assert result.class_name == "Juz Amma"
        assert result.shift == Shift.MORNING
        assert result.is_closed is False
        assert result.record_count == 0


class TestMarkAttendance:

    def setup_method(self):
        self.service = AttendanceService()

    @pytest.mark.asyncio
    async def test_missing_session(self, mock_db_session):
        with pytest.raises(NotFoundError):
            await self.service.mark_attendance(mock_db_session, uuid.uuid4(), [])

    @pytest.mark.asyncio
    async def test_closed_session_rejected(self, mock_db_session):
        mock_db_session.get = AsyncMock(return_value=_open_session(is_closed=True))
        record = AttendanceRecordInput(program_profile_id=uuid.uuid4(), status=DugsiAttendanceStatus.PRESENT)

        with pytest.raises(ValidationError) as exc_info:
            await self.service.mark_attendance(mock_db_session, uuid.uuid4(), [record])
        assert exc_info.value.code == "SESSION_CLOSED"

    @pytest.mark.asyncio
    async def test_past_weekend_is_closed(self, mock_db_session):
        mock_db_session.get = AsyncMock(return_value=_open_session(date=date(2024, 1, 6)))
        record = AttendanceRecordInput(program_profile_id=uuid.uuid4(), status=DugsiAttendanceStatus.ABSENT)

        with pytest.raises(ValidationError):
            await self.service.mark_attendance(mock_db_session, uuid.uuid4(), [record])

    @pytest.mark.asyncio
    async def test_upserts_records(self, mock_db_session):
        session = _open_session()
        existing_profile, new_profile = uuid.uuid4(), uuid.uuid4()
        existing = DugsiAttendanceRecord(
            program_profile_id=existing_profile, status=DugsiAttendanceStatus.ABSENT
        )
        session.records.append(existing)
        mock_db_session.get = AsyncMock(return_value=session)

        written = await self.service.mark_attendance(
            mock_db_session,
            session.id,
            [
                AttendanceRecordInput(
                    program_profile_id=existing_profile,
                    status=DugsiAttendanceStatus.LATE,
                    lesson_completed=True,
                    surah_name="Al-Mulk",
                    ayat_from=1,
                    ayat_to=10,
                ),
                AttendanceRecordInput(program_profile_id=new_profile, status=DugsiAttendanceStatus.PRESENT),
            ],
        )

        assert written == 2
        assert len(session.records) == 2
        assert existing.status == DugsiAttendanceStatus.LATE
        assert existing.surah_name == "Al-Mulk"
        assert existing.marked_at is not None
        added = next(r for r in session.records if r.program_profile_id == new_profile)
        assert added.status == DugsiAttendanceStatus.PRESENT


class TestAttendanceRecordInput:

    def test_ayat_range_must_be_ordered(self):
        from pydantic import ValidationError as PydanticValidationError

        with pytest.raises(PydanticValidationError):
            AttendanceRecordInput(
                program_profile_id=uuid.uuid4(),
                status=DugsiAttendanceStatus.PRESENT,
                ayat_from=10,
                ayat_to=3,
            )
