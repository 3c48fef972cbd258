"""
Irshad Backend: People and Relationships
=========================================

What:  ORM models for `people`, `contact_points`, `guardian_relationships`
       and `sibling_relationships`.
Who:   Registration, family, billing matcher and search services.

A Person is program-agnostic: the same row can be a Mahad student, a Dugsi
parent and a teacher. Program membership lives in ProgramProfile
(models/program.py).

Contact values are stored normalized (lower-cased email, 10-digit phone) so
matching a Stripe checkout email or WhatsApp number is an equality lookup.
"""

import uuid
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.common import TimestampMixin, UUIDPrimaryKeyMixin, pg_enum
from app.models.enums import ContactType, ContactVerificationStatus, GuardianRole


class Person(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "people"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    contact_points: Mapped[List["ContactPoint"]] = relationship(
        back_populates="person",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (Index("idx_people_name_lower", text("lower(name)")),)

    def primary_contact(self, contact_type: ContactType) -> Optional["ContactPoint"]:
        """Active contact of a type, preferring the one flagged primary."""
        candidates = [
            cp for cp in self.contact_points
            if cp.type == contact_type and cp.is_active
        ]
        candidates.sort(key=lambda cp: not cp.is_primary)
        return candidates[0] if candidates else None

    @property
    def email(self) -> Optional[str]:
        cp = self.primary_contact(ContactType.EMAIL)
        return cp.value if cp else None

    @property
    def phone(self) -> Optional[str]:
        cp = self.primary_contact(ContactType.PHONE) or self.primary_contact(ContactType.WHATSAPP)
        return cp.value if cp else None

    def __repr__(self) -> str:
        return f"<Person(id={self.id}, name='{self.name}')>"


class ContactPoint(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "contact_points"

    person_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[ContactType] = mapped_column(pg_enum(ContactType, "contact_type"), nullable=False)
    # Normalized value: lower-cased email or 10-digit phone
    value: Mapped[str] = mapped_column(String(255), nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verification_status: Mapped[ContactVerificationStatus] = mapped_column(
        pg_enum(ContactVerificationStatus, "contact_verification_status"),
        nullable=False,
        default=ContactVerificationStatus.UNVERIFIED,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    person: Mapped[Person] = relationship(back_populates="contact_points")

    __table_args__ = (
        UniqueConstraint("person_id", "type", "value", name="uq_contact_person_type_value"),
        Index("idx_contact_points_type_value", "type", "value"),
    )


class GuardianRelationship(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """
    Links a guardian Person to a dependent Person.

    At most one row per (guardian, dependent, role); the service layer
    additionally refuses a second *active* row for the same pair.
    """

    __tablename__ = "guardian_relationships"

    guardian_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id", ondelete="CASCADE"), nullable=False
    )
    dependent_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[GuardianRole] = mapped_column(
        pg_enum(GuardianRole, "guardian_role"), nullable=False, default=GuardianRole.PARENT
    )
    start_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    end_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_primary_payer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    guardian: Mapped[Person] = relationship(foreign_keys=[guardian_id], lazy="selectin")
    dependent: Mapped[Person] = relationship(foreign_keys=[dependent_id], lazy="selectin")

    __table_args__ = (
        UniqueConstraint("guardian_id", "dependent_id", "role", name="uq_guardian_dependent_role"),
        Index("idx_guardian_relationships_dependent", "dependent_id", "is_active"),
    )


class SiblingRelationship(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Undirected sibling pair, stored with person1_id < person2_id."""

    __tablename__ = "sibling_relationships"

    person1_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id", ondelete="CASCADE"), nullable=False
    )
    person2_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id", ondelete="CASCADE"), nullable=False
    )
    detection_method: Mapped[str] = mapped_column(String(50), nullable=False, default="manual")
    confidence: Mapped[Optional[float]] = mapped_column(Float)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("person1_id", "person2_id", name="uq_sibling_pair"),
        CheckConstraint("person1_id < person2_id", name="ck_sibling_pair_ordered"),
    )
