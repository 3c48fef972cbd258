"""
Irshad Backend: Batch Schemas
==============================

What:  Mahad cohort CRUD, student assignment/transfer bodies and results.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.enums import EnrollmentStatus
from app.schemas.registration import clean_name


class BatchCreateInput(BaseModel):
    name: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return clean_name(v, "Batch name")

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class BatchUpdateInput(BatchCreateInput):
    name: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return clean_name(v, "Batch name") if v is not None else None


class BatchResponse(BaseModel):
    id: uuid.UUID
    name: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    student_count: int = 0


class BatchStudent(BaseModel):
    program_profile_id: uuid.UUID
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    status: EnrollmentStatus


class AssignStudentsInput(BaseModel):
    profile_ids: List[uuid.UUID] = Field(min_length=1, max_length=500)


class TransferStudentsInput(AssignStudentsInput):
    from_batch_id: uuid.UUID
    to_batch_id: uuid.UUID

    @model_validator(mode="after")
    def check_distinct(self):
        if self.from_batch_id == self.to_batch_id:
            raise ValueError("Source and destination batch must differ")
        return self


class AssignmentResult(BaseModel):
    success: bool
    assigned_count: int
    failed_assignments: List[uuid.UUID] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class BatchSummary(BaseModel):
    total_batches: int
    total_students: int
    active_batches: int
    average_students_per_batch: float
