"""
Irshad Backend: Dugsi Classes and Attendance
=============================================

What:  ORM models for `dugsi_classes`, `dugsi_class_teachers`,
       `dugsi_class_enrollments`, `dugsi_attendance_sessions` and
       `dugsi_attendance_records`.

Dugsi meets on weekends. One attendance session exists per (class, date);
it stays editable until the end of that weekend's Sunday or until an admin
closes it explicitly (see services/attendance_service.py).
"""

import datetime as dt
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.common import TimestampMixin, UUIDPrimaryKeyMixin, pg_enum, utcnow
from app.models.enums import DugsiAttendanceStatus, Shift
from app.models.program import ProgramProfile
from app.models.teacher import Teacher


class DugsiClass(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "dugsi_classes"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    shift: Mapped[Shift] = mapped_column(pg_enum(Shift, "shift"), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    teachers: Mapped[List["DugsiClassTeacher"]] = relationship(
        back_populates="dugsi_class", lazy="selectin"
    )


class DugsiClassTeacher(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "dugsi_class_teachers"

    class_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("dugsi_classes.id", ondelete="CASCADE"), nullable=False
    )
    teacher_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("teachers.id", ondelete="CASCADE"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    dugsi_class: Mapped[DugsiClass] = relationship(back_populates="teachers")

    __table_args__ = (
        UniqueConstraint("class_id", "teacher_id", name="uq_class_teacher"),
    )


class DugsiClassEnrollment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A child belongs to at most one class (unique program_profile_id)."""

    __tablename__ = "dugsi_class_enrollments"

    class_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("dugsi_classes.id", ondelete="CASCADE"), nullable=False
    )
    program_profile_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("program_profiles.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    start_date: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    end_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))

    program_profile: Mapped[ProgramProfile] = relationship(lazy="selectin")

    __table_args__ = (Index("idx_class_enrollments_class_active", "class_id", "is_active"),)


class DugsiAttendanceSession(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "dugsi_attendance_sessions"

    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    class_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("dugsi_classes.id", ondelete="CASCADE"), nullable=False
    )
    teacher_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("teachers.id", ondelete="RESTRICT"), nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)
    is_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    dugsi_class: Mapped[DugsiClass] = relationship(lazy="selectin")
    teacher: Mapped[Teacher] = relationship(lazy="selectin")
    records: Mapped[List["DugsiAttendanceRecord"]] = relationship(
        back_populates="session", cascade="all, delete-orphan", lazy="selectin"
    )

    __table_args__ = (
        UniqueConstraint("date", "class_id", name="uq_attendance_session_date_class"),
        Index("idx_attendance_sessions_date", "date"),
    )


class DugsiAttendanceRecord(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "dugsi_attendance_records"

    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("dugsi_attendance_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    program_profile_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("program_profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[DugsiAttendanceStatus] = mapped_column(
        pg_enum(DugsiAttendanceStatus, "dugsi_attendance_status"), nullable=False
    )

    # ── Quran lesson progress ─────────────────────────────────────────────
    lesson_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    surah_name: Mapped[Optional[str]] = mapped_column(String(100))
    ayat_from: Mapped[Optional[int]] = mapped_column(Integer)
    ayat_to: Mapped[Optional[int]] = mapped_column(Integer)
    lesson_notes: Mapped[Optional[str]] = mapped_column(Text)

    notes: Mapped[Optional[str]] = mapped_column(Text)
    marked_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    session: Mapped[DugsiAttendanceSession] = relationship(back_populates="records")

    __table_args__ = (
        UniqueConstraint("session_id", "program_profile_id", name="uq_attendance_record"),
    )
