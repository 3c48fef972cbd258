"""
Irshad Backend: Registration Service
=====================================

What:  Creates people, contact points, program profiles, enrollments and
       guardian links, for both the Dugsi family form and the Mahad
       student form.
Who:   /api/dugsi/registrations, /api/mahad/registrations, and the
       family service (adding a parent or a child later).

Family Registration (one transaction):
    ┌──────────────┐   ┌─────────────────┐   ┌──────────────────────────┐   ┌──────────┐
    │ find/create  │──▶│ DUGSI billing   │──▶│ per child: person,       │──▶│ sibling  │
    │ parent(s)    │   │ account (p1)    │   │ profile+enrollment, links│   │ pairs    │
    └──────────────┘   └─────────────────┘   └──────────────────────────┘   └──────────┘

Re-submitting the same form is safe: parents are matched by email/phone,
children by name + date of birth among the parents' dependents, and
existing profiles and relationships are reused or reactivated.
"""

import logging
import uuid
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import atomic
from app.exceptions import (
    ConflictError,
    DatabaseError,
    IrshadError,
    NotFoundError,
    ValidationError,
)
from app.models.common import utcnow
from app.models.enums import (
    ContactType,
    EnrollmentStatus,
    GuardianRole,
    Program,
    StripeAccountType,
)
from app.models.person import ContactPoint, GuardianRelationship, Person, SiblingRelationship
from app.models.program import Batch, Enrollment, ProgramProfile
from app.schemas.registration import (
    FamilyRegistrationInput,
    FamilyRegistrationResult,
    MahadRegistrationInput,
    MahadRegistrationResult,
    RegisteredProfile,
)
from app.services.billing_service import billing_service
from app.services.contact import normalize_email, normalize_phone
from app.services.tuition import calculate_mahad_rate

logger = logging.getLogger(__name__)


class RegistrationService:
    """
    Stateless registration workflows.

    The building blocks (create_person_with_contact, link_guardian_to_dependent,
    ...) flush but do not open their own transaction; the two registration
    workflows wrap them in atomic(db).
    """

    # ══════════════════════════════════════════════════════════════════════
    # People and contacts
    # ══════════════════════════════════════════════════════════════════════

    def _add_contact(
        self,
        person: Person,
        contact_type: ContactType,
        value: str,
        is_primary: bool,
    ) -> ContactPoint:
        contact = ContactPoint(
            person_id=person.id,
            type=contact_type,
            value=value,
            is_primary=is_primary,
            is_active=True,
        )
        person.contact_points.append(contact)
        return contact

    async def create_person_with_contact(
        self,
        db: AsyncSession,
        name: str,
        date_of_birth: Optional[date] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Person:
        person = Person(id=uuid.uuid4(), name=name.strip(), date_of_birth=date_of_birth)
        person.contact_points = []

        normalized_email = normalize_email(email)
        if normalized_email:
            self._add_contact(person, ContactType.EMAIL, normalized_email, is_primary=True)
        if phone:
            normalized_phone = normalize_phone(phone)
            if normalized_phone is None:
                raise ValidationError(
                    message="Invalid phone number - cannot be normalized",
                    field="phone",
                )
            self._add_contact(person, ContactType.PHONE, normalized_phone, is_primary=True)

        db.add(person)
        await db.flush()
        logger.info("Created person %s with %d contact point(s)", person.id, len(person.contact_points))
        return person

    async def find_person_by_contact(
        self,
        db: AsyncSession,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Optional[Person]:
        """Email match wins over phone match."""
        normalized_email = normalize_email(email)
        if normalized_email:
            result = await db.execute(
                select(Person)
                .join(ContactPoint, ContactPoint.person_id == Person.id)
                .where(
                    ContactPoint.type == ContactType.EMAIL,
                    ContactPoint.value == normalized_email,
                )
                .limit(1)
            )
            person = result.scalars().first()
            if person is not None:
                return person

        normalized_phone = normalize_phone(phone)
        if normalized_phone:
            result = await db.execute(
                select(Person)
                .join(ContactPoint, ContactPoint.person_id == Person.id)
                .where(
                    ContactPoint.type.in_([ContactType.PHONE, ContactType.WHATSAPP]),
                    ContactPoint.value == normalized_phone,
                )
                .limit(1)
            )
            return result.scalars().first()
        return None

    async def find_or_create_person_with_contact(
        self,
        db: AsyncSession,
        name: str,
        date_of_birth: Optional[date] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Tuple[Person, bool]:
        """
        Returns:
            (person, created). An existing person gains whichever of the
            given contacts they did not have yet.
        """
        person = await self.find_person_by_contact(db, email=email, phone=phone)
        if person is None:
            person = await self.create_person_with_contact(db, name, date_of_birth, email, phone)
            return person, True

        existing = {(cp.type, cp.value) for cp in person.contact_points}
        normalized_email = normalize_email(email)
        if normalized_email and (ContactType.EMAIL, normalized_email) not in existing:
            self._add_contact(
                person, ContactType.EMAIL, normalized_email,
                is_primary=person.primary_contact(ContactType.EMAIL) is None,
            )
        normalized_phone = normalize_phone(phone)
        if normalized_phone and not any(
            value == normalized_phone
            for kind, value in existing
            if kind in (ContactType.PHONE, ContactType.WHATSAPP)
        ):
            self._add_contact(
                person, ContactType.PHONE, normalized_phone,
                is_primary=person.primary_contact(ContactType.PHONE) is None,
            )
        await db.flush()
        return person, False

    # ══════════════════════════════════════════════════════════════════════
    # Profiles and enrollments
    # ══════════════════════════════════════════════════════════════════════

    async def validate_enrollment(
        self,
        db: AsyncSession,
        program_profile_id: Optional[uuid.UUID] = None,
        program: Optional[Program] = None,
        batch_id: Optional[uuid.UUID] = None,
        status: Optional[EnrollmentStatus] = None,
    ) -> Program:
        """
        Check the program/batch rules for a new enrollment.

        Dugsi is organized by class, never by batch. A Mahad enrollment
        without a batch is allowed (the student is placed later) but logged.
        """
        if program_profile_id is not None:
            profile = await db.get(ProgramProfile, program_profile_id)
            if profile is None:
                raise NotFoundError(resource="program profile", resource_id=str(program_profile_id))
            program = profile.program

        if program is None:
            raise ValidationError(message="Program is required", field="program")

        if program == Program.DUGSI_PROGRAM and batch_id is not None:
            raise ValidationError(
                message="Dugsi enrollments cannot be assigned to a batch",
                field="batch_id",
                code="DUGSI_BATCH_NOT_ALLOWED",
            )
        if program == Program.MAHAD_PROGRAM and batch_id is None:
            logger.warning(
                "Mahad enrollment created without a batch (profile=%s, status=%s)",
                program_profile_id, status,
            )
        if batch_id is not None and await db.get(Batch, batch_id) is None:
            raise NotFoundError(resource="batch", resource_id=str(batch_id))
        return program

    async def get_active_enrollment(
        self, db: AsyncSession, program_profile_id: uuid.UUID
    ) -> Optional[Enrollment]:
        result = await db.execute(
            select(Enrollment)
            .where(
                Enrollment.program_profile_id == program_profile_id,
                Enrollment.status != EnrollmentStatus.WITHDRAWN,
                Enrollment.end_date.is_(None),
            )
            .order_by(Enrollment.start_date.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def get_profile(
        self, db: AsyncSession, person_id: uuid.UUID, program: Program
    ) -> Optional[ProgramProfile]:
        result = await db.execute(
            select(ProgramProfile).where(
                ProgramProfile.person_id == person_id,
                ProgramProfile.program == program,
            )
        )
        return result.scalar_one_or_none()

    async def create_program_profile_with_enrollment(
        self,
        db: AsyncSession,
        person_id: uuid.UUID,
        program: Program,
        status: EnrollmentStatus = EnrollmentStatus.REGISTERED,
        batch_id: Optional[uuid.UUID] = None,
        enrollment_reason: Optional[str] = None,
        enrollment_notes: Optional[str] = None,
        **profile_fields,
    ) -> Tuple[ProgramProfile, Enrollment]:
        """
        Create (or reopen) a person's profile in a program with a fresh enrollment.

        Raises:
            ConflictError: the person already has an active enrollment there
        """
        await self.validate_enrollment(db, program=program, batch_id=batch_id, status=status)

        profile = await self.get_profile(db, person_id, program)
        if profile is not None:
            if await self.get_active_enrollment(db, profile.id) is not None:
                raise ConflictError(
                    message=f"Person already has an active enrollment in {program.value}",
                    code="ALREADY_ENROLLED",
                    context={"program_profile_id": str(profile.id)},
                )
            profile.status = status
            for field, value in profile_fields.items():
                if value is not None:
                    setattr(profile, field, value)
        else:
            profile = ProgramProfile(
                id=uuid.uuid4(),
                person_id=person_id,
                program=program,
                status=status,
                **profile_fields,
            )
            db.add(profile)
        await db.flush()

        enrollment = Enrollment(
            id=uuid.uuid4(),
            program_profile_id=profile.id,
            batch_id=batch_id,
            status=status,
            start_date=utcnow(),
            reason=enrollment_reason,
            notes=enrollment_notes,
        )
        db.add(enrollment)
        await db.flush()
        return profile, enrollment

    # ══════════════════════════════════════════════════════════════════════
    # Relationships
    # ══════════════════════════════════════════════════════════════════════

    async def link_guardian_to_dependent(
        self,
        db: AsyncSession,
        guardian_id: uuid.UUID,
        dependent_id: uuid.UUID,
        role: GuardianRole = GuardianRole.PARENT,
        is_primary_payer: bool = False,
        notes: Optional[str] = None,
    ) -> GuardianRelationship:
        result = await db.execute(
            select(GuardianRelationship).where(
                GuardianRelationship.guardian_id == guardian_id,
                GuardianRelationship.dependent_id == dependent_id,
                GuardianRelationship.role == role,
            )
        )
        relationship = result.scalar_one_or_none()
        if relationship is not None:
            if not relationship.is_active:
                relationship.is_active = True
                relationship.start_date = utcnow()
                relationship.end_date = None
            relationship.is_primary_payer = is_primary_payer
            if notes is not None:
                relationship.notes = notes
            await db.flush()
            return relationship

        if guardian_id == dependent_id:
            raise ValidationError(
                message="A person cannot be their own guardian",
                field="guardian_id",
                code="SELF_GUARDIAN",
            )
        for person_id, label in ((guardian_id, "guardian"), (dependent_id, "dependent")):
            if await db.get(Person, person_id) is None:
                raise NotFoundError(resource=label, resource_id=str(person_id))

        active = await db.execute(
            select(GuardianRelationship.id).where(
                GuardianRelationship.guardian_id == guardian_id,
                GuardianRelationship.dependent_id == dependent_id,
                GuardianRelationship.is_active.is_(True),
            )
        )
        if active.scalars().first() is not None:
            raise ConflictError(
                message="An active guardian relationship already exists for this pair",
                code="DUPLICATE_RELATIONSHIP",
            )

        relationship = GuardianRelationship(
            guardian_id=guardian_id,
            dependent_id=dependent_id,
            role=role,
            start_date=utcnow(),
            is_active=True,
            is_primary_payer=is_primary_payer,
            notes=notes,
        )
        db.add(relationship)
        await db.flush()
        return relationship

    async def ensure_sibling_relationships(
        self, db: AsyncSession, person_ids: Sequence[uuid.UUID]
    ) -> int:
        """Create or reactivate a sibling row for every pair; returns rows touched."""
        ids = sorted(set(person_ids), key=str)
        if len(ids) < 2:
            return 0
        pairs = [(a, b) for i, a in enumerate(ids) for b in ids[i + 1:]]

        result = await db.execute(
            select(SiblingRelationship).where(
                SiblingRelationship.person1_id.in_(ids),
                SiblingRelationship.person2_id.in_(ids),
            )
        )
        existing: Dict[Tuple[str, str], SiblingRelationship] = {
            (str(r.person1_id), str(r.person2_id)): r for r in result.scalars().all()
        }

        touched = 0
        for person1_id, person2_id in pairs:
            row = existing.get((str(person1_id), str(person2_id)))
            if row is None:
                db.add(
                    SiblingRelationship(
                        person1_id=person1_id,
                        person2_id=person2_id,
                        detection_method="manual",
                        confidence=1.0,
                        is_active=True,
                    )
                )
                touched += 1
            elif not row.is_active:
                row.is_active = True
                touched += 1
        await db.flush()
        return touched

    async def get_guardian_dependents(
        self, db: AsyncSession, guardian_ids: Sequence[uuid.UUID]
    ) -> List[Person]:
        if not guardian_ids:
            return []
        result = await db.execute(
            select(Person)
            .join(GuardianRelationship, GuardianRelationship.dependent_id == Person.id)
            .where(
                GuardianRelationship.guardian_id.in_(list(guardian_ids)),
                GuardianRelationship.is_active.is_(True),
            )
            .distinct()
        )
        return list(result.scalars().all())

    # ══════════════════════════════════════════════════════════════════════
    # Workflows
    # ══════════════════════════════════════════════════════════════════════

    async def create_family_registration(
        self, db: AsyncSession, data: FamilyRegistrationInput
    ) -> FamilyRegistrationResult:
        family_reference_id = str(data.family_reference_id or uuid.uuid4())
        try:
            async with atomic(db):
                parent1, _ = await self.find_or_create_person_with_contact(
                    db,
                    name=f"{data.parent1_first_name} {data.parent1_last_name}",
                    email=data.parent1_email,
                    phone=data.parent1_phone,
                )
                parents = [parent1]
                if data.has_parent2:
                    parent2, _ = await self.find_or_create_person_with_contact(
                        db,
                        name=f"{data.parent2_first_name} {data.parent2_last_name}",
                        email=data.parent2_email,
                        phone=data.parent2_phone,
                    )
                    if parent2.id != parent1.id:
                        parents.append(parent2)

                payer = parents[1] if data.primary_payer == "parent2" and len(parents) > 1 else parent1

                email_contact = parent1.primary_contact(ContactType.EMAIL)
                account = await billing_service.create_or_update_billing_account(
                    db,
                    person_id=parent1.id,
                    account_type=StripeAccountType.DUGSI,
                    primary_contact_point_id=email_contact.id if email_contact else None,
                )

                known_children = await self.get_guardian_dependents(db, [p.id for p in parents])
                profiles: List[RegisteredProfile] = []
                child_ids: List[uuid.UUID] = []

                for child in data.children:
                    child_person = next(
                        (
                            p for p in known_children
                            if p.name.lower() == child.full_name.lower()
                            and p.date_of_birth == child.date_of_birth
                        ),
                        None,
                    )
                    if child_person is None:
                        child_person = await self.create_person_with_contact(
                            db, child.full_name, child.date_of_birth
                        )

                    profile = await self.get_profile(db, child_person.id, Program.DUGSI_PROGRAM)
                    if profile is None:
                        profile, _ = await self.create_program_profile_with_enrollment(
                            db,
                            person_id=child_person.id,
                            program=Program.DUGSI_PROGRAM,
                            status=EnrollmentStatus.REGISTERED,
                            family_reference_id=family_reference_id,
                            gender=child.gender,
                            grade_level=child.grade_level,
                            school_name=child.school_name,
                            health_info=child.health_info,
                        )

                    for parent in parents:
                        await self.link_guardian_to_dependent(
                            db,
                            guardian_id=parent.id,
                            dependent_id=child_person.id,
                            is_primary_payer=parent.id == payer.id,
                        )

                    child_ids.append(child_person.id)
                    profiles.append(
                        RegisteredProfile(id=profile.id, name=child_person.name, person_id=child_person.id)
                    )

                await self.ensure_sibling_relationships(db, child_ids)

            logger.info(
                "Registered Dugsi family %s: %d child(ren), %d parent(s)",
                family_reference_id, len(profiles), len(parents),
            )
            return FamilyRegistrationResult(
                family_reference_id=family_reference_id,
                billing_account_id=account.id,
                primary_contact_point_id=account.primary_contact_point_id,
                profiles=profiles,
            )

        except IrshadError:
            raise
        except Exception as e:
            logger.error("Family registration failed: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not complete the registration. Please try again.",
                context={"original_error": type(e).__name__},
            )

    async def create_mahad_registration(
        self, db: AsyncSession, data: MahadRegistrationInput
    ) -> MahadRegistrationResult:
        monthly_rate = calculate_mahad_rate(
            data.graduation_status, data.payment_frequency, data.billing_type
        )
        try:
            async with atomic(db):
                person, _ = await self.find_or_create_person_with_contact(
                    db,
                    name=f"{data.first_name} {data.last_name}",
                    date_of_birth=data.date_of_birth,
                    email=data.email,
                    phone=data.phone,
                )
                if person.date_of_birth is None and data.date_of_birth is not None:
                    person.date_of_birth = data.date_of_birth

                profile, enrollment = await self.create_program_profile_with_enrollment(
                    db,
                    person_id=person.id,
                    program=Program.MAHAD_PROGRAM,
                    status=EnrollmentStatus.REGISTERED,
                    batch_id=data.batch_id,
                    monthly_rate=monthly_rate,
                    gender=data.gender,
                    education_level=data.education_level,
                    grade_level=data.grade_level,
                    school_name=data.school_name,
                    graduation_status=data.graduation_status,
                    payment_frequency=data.payment_frequency,
                    billing_type=data.billing_type,
                    payment_notes=data.payment_notes,
                )

            logger.info("Registered Mahad student %s (rate=%d)", profile.id, monthly_rate)
            return MahadRegistrationResult(
                profile_id=profile.id,
                person_id=person.id,
                name=person.name,
                monthly_rate=monthly_rate,
                enrollment_id=enrollment.id,
                batch_id=data.batch_id,
            )

        except IrshadError:
            raise
        except Exception as e:
            logger.error("Mahad registration failed: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not complete the registration. Please try again.",
                context={"original_error": type(e).__name__},
            )


# Singleton instance
registration_service = RegistrationService()
