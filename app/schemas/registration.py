"""
Irshad Backend: Registration Schemas
=====================================

What:  Request bodies for Dugsi family registration and Mahad student
       registration, with the input rules both forms share.
How:   Field validators normalize while they validate: names are trimmed,
       emails lower-cased (EmailStr), phones reduced to 10 digits. The
       services therefore receive values in their stored form.

Validation rules:
    - Names: 1-255 characters after trimming, no HTML tags
    - Date of birth: strictly in the past
    - Phone: must match PHONE_PATTERN and normalize to 10 digits
    - health_info: at most 5000 characters
    - Family registration: 1-10 children
"""

import uuid
from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.models.enums import (
    EducationLevel,
    Gender,
    GradeLevel,
    GraduationStatus,
    PaymentFrequency,
    StudentBillingType,
)
from app.services.contact import PHONE_PATTERN, contains_html, normalize_phone


# ══════════════════════════════════════════════════════════════════════════
# Shared field rules
# ══════════════════════════════════════════════════════════════════════════

def clean_name(value: str, field_label: str = "Name") -> str:
    name = value.strip()
    if not name:
        raise ValueError(f"{field_label} is required")
    if len(name) > 255:
        raise ValueError(f"{field_label} is too long")
    if contains_html(name):
        raise ValueError(f"{field_label} cannot contain HTML tags")
    return name


def clean_phone(value: str) -> str:
    if not PHONE_PATTERN.match(value.strip()):
        raise ValueError("Phone must be in format XXX-XXX-XXXX")
    normalized = normalize_phone(value)
    if normalized is None:
        raise ValueError("Invalid phone number - cannot be normalized")
    return normalized


def check_birth_date(value: Optional[date]) -> Optional[date]:
    if value is not None and value >= date.today():
        raise ValueError("Date of birth must be in the past")
    return value


def lower_email(value: Optional[str]) -> Optional[str]:
    return value.lower() if value else value


# ══════════════════════════════════════════════════════════════════════════
# Dugsi family registration
# ══════════════════════════════════════════════════════════════════════════


class ChildInput(BaseModel):
    first_name: str
    last_name: str
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    grade_level: Optional[GradeLevel] = None
    school_name: Optional[str] = Field(default=None, max_length=255)
    health_info: Optional[str] = Field(default=None, max_length=5000)

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return clean_name(v)

    @field_validator("date_of_birth")
    @classmethod
    def validate_birth_date(cls, v: Optional[date]) -> Optional[date]:
        return check_birth_date(v)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class FamilyRegistrationInput(BaseModel):
    """
    POST /api/dugsi/registrations

    Parent 2 is optional as a whole: it is only used when all four of its
    fields are present.
    """
    children: List[ChildInput] = Field(min_length=1, max_length=10)

    parent1_first_name: str
    parent1_last_name: str
    parent1_email: EmailStr
    parent1_phone: str

    parent2_first_name: Optional[str] = None
    parent2_last_name: Optional[str] = None
    parent2_email: Optional[EmailStr] = None
    parent2_phone: Optional[str] = None

    primary_payer: Literal["parent1", "parent2"] = "parent1"
    family_reference_id: Optional[uuid.UUID] = Field(
        default=None, description="Shared household id; generated when omitted"
    )

    @field_validator("parent1_first_name", "parent1_last_name")
    @classmethod
    def validate_parent1_name(cls, v: str) -> str:
        return clean_name(v, "Parent 1 name")

    @field_validator("parent2_first_name", "parent2_last_name")
    @classmethod
    def validate_parent2_name(cls, v: Optional[str]) -> Optional[str]:
        return clean_name(v, "Parent 2 name") if v else None

    @field_validator("parent1_phone")
    @classmethod
    def validate_parent1_phone(cls, v: str) -> str:
        return clean_phone(v)

    @field_validator("parent2_phone")
    @classmethod
    def validate_parent2_phone(cls, v: Optional[str]) -> Optional[str]:
        return clean_phone(v) if v else None

    @field_validator("parent1_email", "parent2_email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return lower_email(v)

    @property
    def has_parent2(self) -> bool:
        return all(
            (self.parent2_first_name, self.parent2_last_name, self.parent2_email, self.parent2_phone)
        )


class RegisteredProfile(BaseModel):
    id: uuid.UUID
    name: str
    person_id: uuid.UUID


class FamilyRegistrationResult(BaseModel):
    family_reference_id: str
    billing_account_id: uuid.UUID
    primary_contact_point_id: Optional[uuid.UUID] = None
    profiles: List[RegisteredProfile]


# ══════════════════════════════════════════════════════════════════════════
# Mahad registration
# ══════════════════════════════════════════════════════════════════════════


class MahadRegistrationInput(BaseModel):
    """POST /api/mahad/registrations"""
    first_name: str
    last_name: str
    email: EmailStr
    phone: str
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    education_level: Optional[EducationLevel] = None
    grade_level: Optional[GradeLevel] = None
    school_name: Optional[str] = Field(default=None, max_length=255)

    graduation_status: Optional[GraduationStatus] = None
    payment_frequency: Optional[PaymentFrequency] = None
    billing_type: Optional[StudentBillingType] = None
    payment_notes: Optional[str] = Field(default=None, max_length=500)
    batch_id: Optional[uuid.UUID] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return clean_name(v)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        return clean_phone(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return lower_email(v)

    @field_validator("date_of_birth")
    @classmethod
    def validate_birth_date(cls, v: Optional[date]) -> Optional[date]:
        return check_birth_date(v)


class MahadRegistrationResult(BaseModel):
    profile_id: uuid.UUID
    person_id: uuid.UUID
    name: str
    monthly_rate: int = Field(description="Amount per billing interval in cents")
    enrollment_id: uuid.UUID
    batch_id: Optional[uuid.UUID] = None
