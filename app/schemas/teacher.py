"""
Irshad Backend: Teacher Schemas
================================

What:  Teacher records, program/shift assignments, the Dugsi check-in
       (clock in / clock out) request and response bodies, and the
       check-in history and daily status views.
"""

import uuid
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from app.models.enums import Program, Shift


class TeacherCreateInput(BaseModel):
    person_id: uuid.UUID


class TeacherProgramInput(BaseModel):
    program: Program
    shifts: List[Shift] = Field(default_factory=list)
    is_active: bool = True


class TeacherAssignmentInput(BaseModel):
    program_profile_id: uuid.UUID
    shift: Shift


class TeacherResponse(BaseModel):
    id: uuid.UUID
    person_id: uuid.UUID
    name: str
    programs: List[TeacherProgramInput] = Field(default_factory=list)


class TeacherAssignmentResponse(BaseModel):
    id: uuid.UUID
    teacher_id: uuid.UUID
    program_profile_id: uuid.UUID
    shift: Shift
    is_active: bool

    model_config = {"from_attributes": True}


# ── Check-in ──────────────────────────────────────────────────────────────

class CheckInWindowStatus(BaseModel):
    can_check_in: bool
    reason: Optional[Literal["too_early", "too_late"]] = None
    window_opens_at: Optional[datetime] = None
    window_closed_at: Optional[datetime] = None


class ClockInInput(BaseModel):
    teacher_id: uuid.UUID
    shift: Shift
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class ClockOutInput(BaseModel):
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)


class AdminClockInInput(BaseModel):
    teacher_id: uuid.UUID
    shift: Shift
    reason: str

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        reason = v.strip()
        if len(reason) < 3:
            raise ValueError("A reason is required for manual check-in")
        return reason


class CheckInResponse(BaseModel):
    id: uuid.UUID
    teacher_id: uuid.UUID
    date: date
    shift: Shift
    clock_in_time: datetime
    clock_in_valid: bool
    clock_out_time: Optional[datetime] = None
    is_late: bool
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class LateReportEntry(BaseModel):
    check_in_id: uuid.UUID
    teacher_id: uuid.UUID
    teacher_name: str
    date: date
    shift: Shift
    clock_in_time: datetime
    minutes_late: int


class NoShowTeacher(BaseModel):
    teacher_id: uuid.UUID
    teacher_name: str
    shift: Shift
    shift_start_time: datetime


class CheckInDetail(CheckInResponse):
    teacher_name: str


class CheckInHistoryFilters(BaseModel):
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    shift: Optional[Shift] = None
    teacher_id: Optional[uuid.UUID] = None
    is_late: Optional[bool] = None
    clock_in_valid: Optional[bool] = None


class CheckInHistoryPage(BaseModel):
    data: List[CheckInDetail]
    total: int
    page: int
    limit: int
    total_pages: int


class TeacherTodayStatus(BaseModel):
    """A Dugsi teacher and what they have clocked so far on one day."""
    teacher_id: uuid.UUID
    teacher_name: str
    shifts: List[Shift]
    morning_check_in: Optional[CheckInResponse] = None
    evening_check_in: Optional[CheckInResponse] = None


class TeacherListEntry(TeacherResponse):
    class_count: int = 0
