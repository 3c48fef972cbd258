"""
Irshad Backend: Dugsi Family Schemas
=====================================

What:  Request and response models for the /api/dugsi/students endpoints:
       student detail, family edits, registration listing and deletion.
"""

import uuid
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from app.models.enums import EnrollmentStatus, Gender, GradeLevel, Shift, SubscriptionStatus
from app.schemas.registration import check_birth_date, clean_name, clean_phone, lower_email


# ── Responses ─────────────────────────────────────────────────────────────

class ParentSummary(BaseModel):
    id: uuid.UUID
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    is_primary_payer: bool = False


class DugsiStudentResponse(BaseModel):
    id: uuid.UUID
    person_id: uuid.UUID
    name: str
    date_of_birth: Optional[date] = None
    status: EnrollmentStatus
    gender: Optional[Gender] = None
    grade_level: Optional[GradeLevel] = None
    school_name: Optional[str] = None
    health_info: Optional[str] = None
    family_reference_id: Optional[str] = None
    monthly_rate: int
    created_at: Optional[datetime] = None
    parents: List[ParentSummary] = Field(default_factory=list)
    class_shift: Optional[Shift] = None


class StudentBillingStatusResponse(BaseModel):
    has_subscription: bool
    subscription_status: Optional[SubscriptionStatus] = None
    amount: int = 0
    paid_until: Optional[datetime] = None


class EnrollmentResponse(BaseModel):
    id: uuid.UUID
    status: EnrollmentStatus
    batch_id: Optional[uuid.UUID] = None
    start_date: datetime
    end_date: Optional[datetime] = None
    reason: Optional[str] = None
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class DeleteFamilyPreview(BaseModel):
    count: int
    students: List[str]


# ── Requests ──────────────────────────────────────────────────────────────

class ParentUpdateInput(BaseModel):
    """PUT /api/dugsi/students/{id}/parents/{n}"""
    first_name: str
    last_name: str
    phone: str

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return clean_name(v)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        return clean_phone(v)


class SecondParentInput(ParentUpdateInput):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return lower_email(v)


class ChildUpdateInput(BaseModel):
    """PATCH /api/dugsi/students/{id}; at least one field is required."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    grade_level: Optional[GradeLevel] = None
    school_name: Optional[str] = Field(default=None, max_length=255)
    health_info: Optional[str] = Field(default=None, max_length=5000)

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return clean_name(v) if v is not None else None

    @field_validator("date_of_birth")
    @classmethod
    def validate_birth_date(cls, v: Optional[date]) -> Optional[date]:
        return check_birth_date(v)

    @model_validator(mode="after")
    def check_names_together(self) -> "ChildUpdateInput":
        if (self.first_name is None) != (self.last_name is None):
            raise ValueError("first_name and last_name must be updated together")
        return self
