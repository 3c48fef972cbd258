"""
Irshad Backend: Attendance Schemas
===================================

What:  Request/response models for Dugsi weekend attendance sessions and
       their per-student records.
"""

import uuid
from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from app.models.enums import DugsiAttendanceStatus, Shift


class SessionCreateInput(BaseModel):
    class_id: uuid.UUID
    date: date
    notes: Optional[str] = Field(default=None, max_length=1000)


class AttendanceRecordInput(BaseModel):
    program_profile_id: uuid.UUID
    status: DugsiAttendanceStatus
    lesson_completed: bool = False
    surah_name: Optional[str] = Field(default=None, max_length=100)
    ayat_from: Optional[int] = Field(default=None, ge=1)
    ayat_to: Optional[int] = Field(default=None, ge=1)
    lesson_notes: Optional[str] = Field(default=None, max_length=1000)
    notes: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def check_ayat_range(self) -> "AttendanceRecordInput":
        if self.ayat_from is not None and self.ayat_to is not None and self.ayat_to < self.ayat_from:
            raise ValueError("ayat_to must be greater than or equal to ayat_from")
        return self


class MarkAttendanceInput(BaseModel):
    records: List[AttendanceRecordInput] = Field(min_length=1)


class AttendanceRecordResponse(BaseModel):
    id: uuid.UUID
    program_profile_id: uuid.UUID
    status: DugsiAttendanceStatus
    lesson_completed: bool
    surah_name: Optional[str] = None
    ayat_from: Optional[int] = None
    ayat_to: Optional[int] = None
    lesson_notes: Optional[str] = None
    notes: Optional[str] = None
    marked_at: datetime

    model_config = {"from_attributes": True}


class SessionResponse(BaseModel):
    id: uuid.UUID
    date: date
    class_id: uuid.UUID
    class_name: Optional[str] = None
    shift: Optional[Shift] = None
    teacher_id: uuid.UUID
    notes: Optional[str] = None
    is_closed: bool
    is_effectively_closed: bool
    record_count: int = 0


class PaginatedSessions(BaseModel):
    data: List[SessionResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class EnrolledStudent(BaseModel):
    program_profile_id: uuid.UUID
    name: str
    family_reference_id: Optional[str] = None


class AttendanceStats(BaseModel):
    total_sessions: int
    total_records: int
    by_status: Dict[DugsiAttendanceStatus, int]
    attendance_rate: float = Field(description="(present + late) / records × 100, one decimal")
