"""
Irshad Backend: Teacher Check-in Tests
=======================================

What:  Tests for the geofence math, shift timing and the clock-in/out flow.
How:   Shift times come from settings (08:30 morning, America/Chicago);
       `now` is passed explicitly so the tests do not depend on the clock.

October 17, 2026 is a Saturday on Central Daylight Time (UTC-5):

    07:30 local (12:30Z)  window opens
    08:30 local (13:30Z)  shift start, late after this (no grace)
    10:30 local (15:30Z)  window closes

What we test:
    ✅ Haversine distance and geofence radius
    ✅ Check-in window: too early / open / too late
    ✅ Clock-in authorization (program, shift), duplicates, geofence validity
    ✅ A concurrent duplicate caught by the unique constraint is a 409
    ✅ Clock-out only once, admin check-in requires a reason
"""

import uuid
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import IntegrityError

from app.config import settings
from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.enums import Program, Shift
from app.models.teacher import DugsiTeacherCheckIn, Teacher, TeacherProgram
from app.services.teacher_service import (
    TeacherService,
    get_check_in_window_status,
    get_shift_start,
    haversine_distance_m,
    is_late_for_shift,
    is_within_geofence,
)

SHIFT_DAY = date(2026, 10, 17)
CENTER = (44.9778, -93.2650)


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 10, 17, hour, minute, tzinfo=timezone.utc)


def _teacher(shifts=("MORNING",), program=Program.DUGSI_PROGRAM, active=True) -> Teacher:
    teacher = Teacher(id=uuid.uuid4(), person_id=uuid.uuid4())
    teacher.programs = [TeacherProgram(program=program, shifts=list(shifts), is_active=active)]
    return teacher


class TestGeofence:

    def test_same_point_is_zero(self):
        assert haversine_distance_m(*CENTER, *CENTER) == pytest.approx(0.0)

    def test_one_degree_of_longitude_at_equator(self):
        assert haversine_distance_m(0, 0, 0, 1) == pytest.approx(111195, rel=1e-3)

    def test_within_radius(self):
        # ~0.0003 degrees of latitude is about 33 m
        assert is_within_geofence((CENTER[0] + 0.0003, CENTER[1]), CENTER, 50) is True
        assert is_within_geofence((CENTER[0] + 0.01, CENTER[1]), CENTER, 50) is False


class TestShiftTiming:

    def test_shift_start_is_local(self):
        start = get_shift_start(Shift.MORNING, SHIFT_DAY)
        assert start.astimezone(timezone.utc) == _at(13, 30)

    def test_lateness(self):
        assert is_late_for_shift(Shift.MORNING, _at(13, 30)) is False
        assert is_late_for_shift(Shift.MORNING, _at(13, 31)) is True

    def test_window_too_early(self):
        status = get_check_in_window_status(Shift.MORNING, _at(12, 0))
        assert status.can_check_in is False
        assert status.reason == "too_early"
        assert status.window_opens_at.astimezone(timezone.utc) == _at(12, 30)

    def test_window_open(self):
        assert get_check_in_window_status(Shift.MORNING, _at(13, 0)).can_check_in is True

    def test_window_too_late(self):
        status = get_check_in_window_status(Shift.MORNING, _at(16, 0))
        assert status.can_check_in is False
        assert status.reason == "too_late"


class TestClockIn:
    """Tests for TeacherService.clock_in()."""

    def setup_method(self):
        self.service = TeacherService()

    @pytest.mark.asyncio
    async def test_unknown_teacher(self, mock_db_session):
        with pytest.raises(NotFoundError):
            await self.service.clock_in(mock_db_session, uuid.uuid4(), Shift.MORNING, *CENTER, now=_at(13))

    @pytest.mark.asyncio
    async def test_teacher_without_dugsi_program(self, mock_db_session):
        mock_db_session.get = AsyncMock(return_value=_teacher(program=Program.MAHAD_PROGRAM))
        with pytest.raises(ValidationError) as exc_info:
            await self.service.clock_in(mock_db_session, uuid.uuid4(), Shift.MORNING, *CENTER, now=_at(13))
        assert exc_info.value.code == "NOT_ENROLLED_IN_DUGSI"

    @pytest.mark.asyncio
    async def test_wrong_shift(self, mock_db_session):
        mock_db_session.get = AsyncMock(return_value=_teacher(shifts=("EVENING",)))
        with pytest.raises(ValidationError) as exc_info:
            await self.service.clock_in(mock_db_session, uuid.uuid4(), Shift.MORNING, *CENTER, now=_at(13))
        assert exc_info.value.code == "INVALID_SHIFT"

    @pytest.mark.asyncio
    async def test_outside_window(self, mock_db_session):
        mock_db_session.get = AsyncMock(return_value=_teacher())
        with pytest.raises(ValidationError) as exc_info:
            await self.service.clock_in(mock_db_session, uuid.uuid4(), Shift.MORNING, *CENTER, now=_at(11))
        assert exc_info.value.code == "CHECKIN_TOO_EARLY"

    @pytest.mark.asyncio
    async def test_duplicate_check_in(self, mock_db_session, make_result):
        mock_db_session.get = AsyncMock(return_value=_teacher())
        mock_db_session.execute.return_value = make_result(scalars=[uuid.uuid4()])

        with pytest.raises(ConflictError) as exc_info:
            await self.service.clock_in(mock_db_session, uuid.uuid4(), Shift.MORNING, *CENTER, now=_at(13))
        assert exc_info.value.code == "DUPLICATE_CHECKIN"

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_is_a_conflict(self, mock_db_session, make_result):
        mock_db_session.get = AsyncMock(return_value=_teacher())
        mock_db_session.execute.return_value = make_result(scalars=[])
        mock_db_session.flush.side_effect = IntegrityError(
            "INSERT", {}, Exception("uq_checkin_teacher_date_shift")
        )

        with pytest.raises(ConflictError) as exc_info:
            await self.service.clock_in(mock_db_session, uuid.uuid4(), Shift.MORNING, *CENTER, now=_at(13))
        assert exc_info.value.code == "DUPLICATE_CHECKIN"
        mock_db_session.begin_nested.assert_called_once()

    @pytest.mark.asyncio
    async def test_valid_on_time_check_in(self, mock_db_session, make_result):
        mock_db_session.get = AsyncMock(return_value=_teacher())
        mock_db_session.execute.return_value = make_result(scalars=[])
        teacher_id = uuid.uuid4()

        with patch.object(settings, "center_latitude", CENTER[0]), \
             patch.object(settings, "center_longitude", CENTER[1]):
            check_in = await self.service.clock_in(
                mock_db_session, teacher_id, Shift.MORNING, *CENTER, now=_at(13, 15)
            )

        assert check_in.teacher_id == teacher_id
        assert check_in.date == SHIFT_DAY
        assert check_in.clock_in_valid is True
        assert check_in.is_late is False
        mock_db_session.add.assert_called_once_with(check_in)

    @pytest.mark.asyncio
    async def test_late_check_in_outside_geofence_is_recorded(self, mock_db_session, make_result):
        mock_db_session.get = AsyncMock(return_value=_teacher())
        mock_db_session.execute.return_value = make_result(scalars=[])

        with patch.object(settings, "center_latitude", CENTER[0]), \
             patch.object(settings, "center_longitude", CENTER[1]):
            check_in = await self.service.clock_in(
                mock_db_session, uuid.uuid4(), Shift.MORNING, CENTER[0] + 0.05, CENTER[1], now=_at(14)
            )

        assert check_in.clock_in_valid is False
        assert check_in.is_late is True

    @pytest.mark.asyncio
    async def test_unconfigured_center_marks_invalid(self, mock_db_session, make_result):
        mock_db_session.get = AsyncMock(return_value=_teacher())
        mock_db_session.execute.return_value = make_result(scalars=[])

        with patch.object(settings, "center_latitude", 0.0), \
             patch.object(settings, "center_longitude", 0.0):
            check_in = await self.service.clock_in(
                mock_db_session, uuid.uuid4(), Shift.MORNING, 0.0, 0.0, now=_at(13)
            )

        assert check_in.clock_in_valid is False


class TestClockOutAndAdmin:

    def setup_method(self):
        self.service = TeacherService()

    @pytest.mark.asyncio
    async def test_clock_out_twice(self, mock_db_session):
        check_in = DugsiTeacherCheckIn(
            teacher_id=uuid.uuid4(),
            date=SHIFT_DAY,
            shift=Shift.MORNING,
            clock_in_time=_at(13),
            clock_out_time=_at(17),
        )
        mock_db_session.get = AsyncMock(return_value=check_in)

        with pytest.raises(ConflictError) as exc_info:
            await self.service.clock_out(mock_db_session, uuid.uuid4())
        assert exc_info.value.code == "ALREADY_CLOCKED_OUT"

    @pytest.mark.asyncio
    async def test_clock_out_records_location(self, mock_db_session):
        check_in = DugsiTeacherCheckIn(
            teacher_id=uuid.uuid4(), date=SHIFT_DAY, shift=Shift.MORNING, clock_in_time=_at(13)
        )
        mock_db_session.get = AsyncMock(return_value=check_in)

        await self.service.clock_out(mock_db_session, uuid.uuid4(), lat=CENTER[0], lng=CENTER[1])

        assert check_in.clock_out_time is not None
        assert check_in.clock_out_lat == CENTER[0]

    @pytest.mark.asyncio
    async def test_admin_check_in_requires_reason(self, mock_db_session):
        with pytest.raises(ValidationError):
            await self.service.admin_clock_in(mock_db_session, uuid.uuid4(), Shift.MORNING, "  ")

    @pytest.mark.asyncio
    async def test_admin_check_in_concurrent_duplicate(self, mock_db_session, make_result):
        mock_db_session.get = AsyncMock(return_value=_teacher())
        mock_db_session.execute.return_value = make_result(scalars=[])
        mock_db_session.flush.side_effect = IntegrityError(
            "INSERT", {}, Exception("uq_checkin_teacher_date_shift")
        )

        with pytest.raises(ConflictError) as exc_info:
            await self.service.admin_clock_in(
                mock_db_session, uuid.uuid4(), Shift.MORNING, "phone died"
            )
        assert exc_info.value.code == "DUPLICATE_CHECKIN"

    @pytest.mark.asyncio
    async def test_auto_clock_out_caps_shift(self, mock_db_session, make_result):
        stale = DugsiTeacherCheckIn(
            teacher_id=uuid.uuid4(), date=SHIFT_DAY, shift=Shift.MORNING, clock_in_time=_at(13)
        )
        mock_db_session.execute.return_value = make_result(scalars=[stale])

        count = await self.service.auto_clock_out_stale_check_ins(
            mock_db_session, now=_at(13) + timedelta(hours=12)
        )

        assert count == 1
        assert stale.clock_out_time == _at(13) + timedelta(hours=settings.max_shift_hours)
        assert stale.notes.startswith("Auto clock-out")

    @pytest.mark.asyncio
    async def test_no_shows_empty_before_threshold(self, mock_db_session):
        result = await self.service.get_no_show_teachers(mock_db_session, Shift.MORNING, now=_at(13, 35))
        assert result == []
        mock_db_session.execute.assert_not_awaited()
