"""
Irshad Backend: Teachers
=========================

What:  ORM models for `teachers`, `teacher_programs`,
       `teacher_assignments` and `dugsi_teacher_check_ins`.

A Teacher wraps a Person. TeacherProgram says which programs (and, for
Dugsi, which shifts) the teacher works; clock-in is only allowed for a
shift listed there.
"""

import datetime as dt
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    Float,
    ForeignKey,
    Index,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.common import TimestampMixin, UUIDPrimaryKeyMixin, pg_enum, utcnow
from app.models.enums import Program, Shift
from app.models.person import Person


class Teacher(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "teachers"

    person_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("people.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    person: Mapped[Person] = relationship(lazy="selectin")
    programs: Mapped[List["TeacherProgram"]] = relationship(
        back_populates="teacher", lazy="selectin", cascade="all, delete-orphan"
    )


class TeacherProgram(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "teacher_programs"

    teacher_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("teachers.id", ondelete="CASCADE"), nullable=False
    )
    program: Mapped[Program] = mapped_column(pg_enum(Program, "program"), nullable=False)
    # List of Shift values, e.g. ["MORNING"]
    shifts: Mapped[List[str]] = mapped_column(JSONB, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    teacher: Mapped[Teacher] = relationship(back_populates="programs")

    __table_args__ = (
        UniqueConstraint("teacher_id", "program", name="uq_teacher_program"),
    )


class TeacherAssignment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "teacher_assignments"

    teacher_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("teachers.id", ondelete="CASCADE"), nullable=False
    )
    program_profile_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("program_profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    shift: Mapped[Shift] = mapped_column(pg_enum(Shift, "shift"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    start_date: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    end_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))

    __table_args__ = (
        UniqueConstraint(
            "teacher_id", "program_profile_id", "shift", name="uq_teacher_assignment_shift"
        ),
    )


class DugsiTeacherCheckIn(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "dugsi_teacher_check_ins"

    teacher_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("teachers.id", ondelete="CASCADE"), nullable=False
    )
    # Local calendar day of the shift
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    shift: Mapped[Shift] = mapped_column(pg_enum(Shift, "shift"), nullable=False)

    clock_in_time: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    clock_in_lat: Mapped[Optional[float]] = mapped_column(Float)
    clock_in_lng: Mapped[Optional[float]] = mapped_column(Float)
    # False when outside the geofence or recorded manually by an admin
    clock_in_valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    clock_out_time: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    clock_out_lat: Mapped[Optional[float]] = mapped_column(Float)
    clock_out_lng: Mapped[Optional[float]] = mapped_column(Float)

    is_late: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    teacher: Mapped[Teacher] = relationship(lazy="selectin")

    __table_args__ = (
        UniqueConstraint("teacher_id", "date", "shift", name="uq_checkin_teacher_date_shift"),
        Index("idx_checkins_date", "date"),
    )
