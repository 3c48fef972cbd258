"""
Irshad Backend: Program Profiles, Enrollments and Cohorts
==========================================================

What:  ORM models for `program_profiles`, `enrollments`, `batches` and
       `student_payments`.

ProgramProfile is a Person's membership in one program (unique per
person/program). Enrollment rows record the history of that membership;
the "active" enrollment is the one that is not WITHDRAWN and has no
end_date. Mahad enrollments may point at a Batch (cohort); Dugsi
enrollments never do.

Money columns are integer cents throughout.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.common import TimestampMixin, UUIDPrimaryKeyMixin, pg_enum, utcnow
from app.models.enums import (
    EducationLevel,
    EnrollmentStatus,
    Gender,
    GradeLevel,
    GraduationStatus,
    PaymentFrequency,
    Program,
    StudentBillingType,
)
from app.models.person import Person


class Batch(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A Mahad cohort."""

    __tablename__ = "batches"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    start_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    end_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))


class ProgramProfile(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "program_profiles"

    person_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id", ondelete="CASCADE"), nullable=False
    )
    program: Mapped[Program] = mapped_column(pg_enum(Program, "program"), nullable=False)
    status: Mapped[EnrollmentStatus] = mapped_column(
        pg_enum(EnrollmentStatus, "enrollment_status"),
        nullable=False,
        default=EnrollmentStatus.REGISTERED,
    )

    # ── Rates (cents) ─────────────────────────────────────────────────────
    monthly_rate: Mapped[int] = mapped_column(Integer, nullable=False, default=150)
    custom_rate: Mapped[bool] = mapped_column(nullable=False, default=False)

    # ── Student details ───────────────────────────────────────────────────
    gender: Mapped[Optional[Gender]] = mapped_column(pg_enum(Gender, "gender"))
    education_level: Mapped[Optional[EducationLevel]] = mapped_column(
        pg_enum(EducationLevel, "education_level")
    )
    grade_level: Mapped[Optional[GradeLevel]] = mapped_column(pg_enum(GradeLevel, "grade_level"))
    school_name: Mapped[Optional[str]] = mapped_column(String(255))
    health_info: Mapped[Optional[str]] = mapped_column(Text)

    # Dugsi children of one household share this value
    family_reference_id: Mapped[Optional[str]] = mapped_column(String(64))
    # Named `metadata` in the table; the attribute name avoids Base.metadata
    profile_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSONB)

    # ── Mahad billing inputs ──────────────────────────────────────────────
    graduation_status: Mapped[Optional[GraduationStatus]] = mapped_column(
        pg_enum(GraduationStatus, "graduation_status")
    )
    payment_frequency: Mapped[Optional[PaymentFrequency]] = mapped_column(
        pg_enum(PaymentFrequency, "payment_frequency")
    )
    billing_type: Mapped[Optional[StudentBillingType]] = mapped_column(
        pg_enum(StudentBillingType, "student_billing_type")
    )
    payment_notes: Mapped[Optional[str]] = mapped_column(Text)

    person: Mapped[Person] = relationship(lazy="selectin")
    enrollments: Mapped[List["Enrollment"]] = relationship(
        back_populates="program_profile",
        cascade="all, delete-orphan",
        order_by="Enrollment.start_date.desc()",
    )

    __table_args__ = (
        UniqueConstraint("person_id", "program", name="uq_profile_person_program"),
        Index("idx_program_profiles_family", "family_reference_id"),
        Index("idx_program_profiles_program_status", "program", "status"),
    )

    def __repr__(self) -> str:
        return f"<ProgramProfile(id={self.id}, program='{self.program}', status='{self.status}')>"


class Enrollment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "enrollments"

    program_profile_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("program_profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("batches.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[EnrollmentStatus] = mapped_column(
        pg_enum(EnrollmentStatus, "enrollment_status"),
        nullable=False,
        default=EnrollmentStatus.REGISTERED,
    )
    start_date: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    end_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    reason: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    program_profile: Mapped[ProgramProfile] = relationship(back_populates="enrollments")
    batch: Mapped[Optional[Batch]] = relationship(lazy="selectin")

    __table_args__ = (
        Index("idx_enrollments_profile_status", "program_profile_id", "status"),
        Index("idx_enrollments_batch", "batch_id"),
    )


class StudentPayment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """One paid invoice attributed to one profile (via its billing assignment)."""

    __tablename__ = "student_payments"

    program_profile_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("program_profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_paid: Mapped[int] = mapped_column(Integer, nullable=False)
    paid_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    stripe_invoice_id: Mapped[Optional[str]] = mapped_column(String(255))

    __table_args__ = (
        UniqueConstraint(
            "program_profile_id", "stripe_invoice_id", name="uq_student_payment_invoice"
        ),
    )
