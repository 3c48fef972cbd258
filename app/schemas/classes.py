"""
Irshad Backend: Dugsi Class Schemas
====================================

What:  Class CRUD, teacher links, single and bulk student placement, and
       the unassigned-student list.
"""

import uuid
from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.models.enums import Shift
from app.schemas.registration import clean_name


class ClassCreateInput(BaseModel):
    name: str
    shift: Shift
    description: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return clean_name(v, "Class name")


class ClassUpdateInput(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return clean_name(v, "Class name") if v is not None else v


class ClassTeacherInput(BaseModel):
    teacher_id: uuid.UUID


class ClassStudentInput(BaseModel):
    program_profile_id: uuid.UUID


class BulkEnrollInput(BaseModel):
    program_profile_ids: List[uuid.UUID] = Field(min_length=1, max_length=200)


class BulkEnrollResult(BaseModel):
    enrolled: int = Field(description="Children placed in this class, moves included")
    moved: int = Field(description="Of those, children taken out of another active class")
    skipped: int = Field(description="Already in this class")


class ClassResponse(BaseModel):
    id: uuid.UUID
    name: str
    shift: Shift
    description: Optional[str] = None
    is_active: bool
    teacher_ids: List[uuid.UUID] = Field(default_factory=list)


class ClassEnrollmentResponse(BaseModel):
    id: uuid.UUID
    class_id: uuid.UUID
    program_profile_id: uuid.UUID
    is_active: bool

    model_config = {"from_attributes": True}


class ClassDeletePreview(BaseModel):
    class_id: uuid.UUID
    name: str
    teacher_count: int
    student_count: int


class UnassignedStudent(BaseModel):
    """An active Dugsi child not sitting in any class."""
    id: uuid.UUID
    name: str
    date_of_birth: Optional[date] = None
    age: Optional[int] = None
    family_reference_id: Optional[str] = None
