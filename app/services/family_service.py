"""
Irshad Backend: Dugsi Family Service
=====================================

What:  Reads and edits Dugsi students and their families after
       registration: parent and child edits, family listings, billing and
       enrollment status, search and family deletion.
Who:   /api/dugsi/students and /api/dugsi/registrations routes; the
       withdrawal service reuses the family lookups.

Family model:
    Children of one household share ProgramProfile.family_reference_id.
    Parents are the child's active GuardianRelationship rows, ordered by
    creation time, so "parent 1" is whoever was linked first.
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import atomic
from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.billing import BillingAssignment, Subscription
from app.models.dugsi import DugsiClass, DugsiClassEnrollment
from app.models.enums import ContactType, EnrollmentStatus, Program, Shift
from app.models.person import ContactPoint, GuardianRelationship, Person
from app.models.program import Enrollment, ProgramProfile
from app.schemas.family import (
    ChildUpdateInput,
    DeleteFamilyPreview,
    DugsiStudentResponse,
    EnrollmentResponse,
    ParentSummary,
    ParentUpdateInput,
    SecondParentInput,
    StudentBillingStatusResponse,
)
from app.schemas.registration import ChildInput, RegisteredProfile
from app.services.contact import normalize_email, normalize_phone
from app.services.registration_service import registration_service

logger = logging.getLogger(__name__)


class FamilyService:

    # ══════════════════════════════════════════════════════════════════════
    # Lookups
    # ══════════════════════════════════════════════════════════════════════

    async def get_dugsi_profile(self, db: AsyncSession, student_id: uuid.UUID) -> ProgramProfile:
        profile = await db.get(ProgramProfile, student_id)
        if profile is None or profile.program != Program.DUGSI_PROGRAM:
            raise NotFoundError(resource="student", resource_id=str(student_id))
        return profile

    async def get_active_guardians(
        self, db: AsyncSession, person_id: uuid.UUID
    ) -> List[GuardianRelationship]:
        result = await db.execute(
            select(GuardianRelationship)
            .where(
                GuardianRelationship.dependent_id == person_id,
                GuardianRelationship.is_active.is_(True),
            )
            .order_by(GuardianRelationship.created_at)
        )
        return list(result.scalars().all())

    async def get_family_profiles(
        self, db: AsyncSession, profile: ProgramProfile
    ) -> List[ProgramProfile]:
        """All Dugsi profiles sharing the family reference, or just this one."""
        if not profile.family_reference_id:
            return [profile]
        result = await db.execute(
            select(ProgramProfile)
            .where(
                ProgramProfile.program == Program.DUGSI_PROGRAM,
                ProgramProfile.family_reference_id == profile.family_reference_id,
            )
            .order_by(ProgramProfile.created_at)
        )
        return list(result.scalars().all())

    async def get_billable_family_profiles(
        self, db: AsyncSession, family_reference_id: str
    ) -> List[ProgramProfile]:
        """Registered or enrolled Dugsi children of the family, oldest record first."""
        result = await db.execute(
            select(ProgramProfile)
            .where(
                ProgramProfile.program == Program.DUGSI_PROGRAM,
                ProgramProfile.family_reference_id == family_reference_id,
                ProgramProfile.status.in_(
                    (EnrollmentStatus.REGISTERED, EnrollmentStatus.ENROLLED)
                ),
            )
            .order_by(ProgramProfile.created_at)
        )
        return list(result.scalars().all())

    async def get_primary_payer(
        self, db: AsyncSession, profile: ProgramProfile
    ) -> Optional[GuardianRelationship]:
        guardians = await self.get_active_guardians(db, profile.person_id)
        return next((g for g in guardians if g.is_primary_payer), None)

    async def _to_response(self, db: AsyncSession, profile: ProgramProfile) -> DugsiStudentResponse:
        guardians = await self.get_active_guardians(db, profile.person_id)
        class_shift = await db.execute(
            select(DugsiClass.shift)
            .join(DugsiClassEnrollment, DugsiClassEnrollment.class_id == DugsiClass.id)
            .where(
                DugsiClassEnrollment.program_profile_id == profile.id,
                DugsiClassEnrollment.is_active.is_(True),
            )
        )
        person = profile.person
        return DugsiStudentResponse(
            id=profile.id,
            person_id=person.id,
            name=person.name,
            date_of_birth=person.date_of_birth,
            status=profile.status,
            gender=profile.gender,
            grade_level=profile.grade_level,
            school_name=profile.school_name,
            health_info=profile.health_info,
            family_reference_id=profile.family_reference_id,
            monthly_rate=profile.monthly_rate,
            created_at=profile.created_at,
            parents=[
                ParentSummary(
                    id=g.guardian.id,
                    name=g.guardian.name,
                    email=g.guardian.email,
                    phone=g.guardian.phone,
                    is_primary_payer=g.is_primary_payer,
                )
                for g in guardians
            ],
            class_shift=class_shift.scalar_one_or_none(),
        )

    # ══════════════════════════════════════════════════════════════════════
    # Student queries
    # ══════════════════════════════════════════════════════════════════════

    async def get_dugsi_student(self, db: AsyncSession, student_id: uuid.UUID) -> DugsiStudentResponse:
        profile = await self.get_dugsi_profile(db, student_id)
        return await self._to_response(db, profile)

    async def get_family_students(
        self, db: AsyncSession, family_reference_id: str
    ) -> List[DugsiStudentResponse]:
        result = await db.execute(
            select(ProgramProfile)
            .where(
                ProgramProfile.program == Program.DUGSI_PROGRAM,
                ProgramProfile.family_reference_id == family_reference_id,
            )
            .order_by(ProgramProfile.created_at)
        )
        return [await self._to_response(db, p) for p in result.scalars().all()]

    async def get_family_members(
        self, db: AsyncSession, student_id: uuid.UUID
    ) -> List[DugsiStudentResponse]:
        profile = await self.get_dugsi_profile(db, student_id)
        return [await self._to_response(db, p) for p in await self.get_family_profiles(db, profile)]

    async def get_student_billing_status(
        self, db: AsyncSession, student_id: uuid.UUID
    ) -> StudentBillingStatusResponse:
        await self.get_dugsi_profile(db, student_id)
        result = await db.execute(
            select(BillingAssignment, Subscription)
            .join(Subscription, Subscription.id == BillingAssignment.subscription_id)
            .where(
                BillingAssignment.program_profile_id == student_id,
                BillingAssignment.is_active.is_(True),
            )
            .order_by(BillingAssignment.created_at.desc())
            .limit(1)
        )
        row = result.first()
        if row is None:
            return StudentBillingStatusResponse(has_subscription=False)
        assignment, subscription = row
        return StudentBillingStatusResponse(
            has_subscription=True,
            subscription_status=subscription.status,
            amount=assignment.amount,
            paid_until=subscription.paid_until,
        )

    async def get_enrollment_status(
        self, db: AsyncSession, student_id: uuid.UUID
    ) -> Optional[EnrollmentResponse]:
        """Latest enrollment of the student, or None if they never had one."""
        await self.get_dugsi_profile(db, student_id)
        result = await db.execute(
            select(Enrollment)
            .where(Enrollment.program_profile_id == student_id)
            .order_by(Enrollment.start_date.desc())
            .limit(1)
        )
        enrollment = result.scalars().first()
        return EnrollmentResponse.model_validate(enrollment) if enrollment else None

    # ══════════════════════════════════════════════════════════════════════
    # Family edits
    # ══════════════════════════════════════════════════════════════════════

    async def update_parent_info(
        self,
        db: AsyncSession,
        student_id: uuid.UUID,
        parent_number: int,
        data: ParentUpdateInput,
    ) -> Person:
        if parent_number not in (1, 2):
            raise ValidationError(message="Parent number must be 1 or 2", field="parent_number")

        profile = await self.get_dugsi_profile(db, student_id)
        guardians = await self.get_active_guardians(db, profile.person_id)
        if len(guardians) < parent_number:
            raise NotFoundError(resource=f"parent {parent_number}", resource_id=str(student_id))

        parent = guardians[parent_number - 1].guardian
        parent.name = f"{data.first_name} {data.last_name}"

        phone = parent.primary_contact(ContactType.PHONE)
        if phone is None:
            parent.contact_points.append(
                ContactPoint(
                    person_id=parent.id,
                    type=ContactType.PHONE,
                    value=data.phone,
                    is_primary=True,
                    is_active=True,
                )
            )
        else:
            phone.value = data.phone
        await db.flush()

        logger.info("Updated parent %d of student %s", parent_number, student_id)
        return parent

    async def add_second_parent(
        self, db: AsyncSession, student_id: uuid.UUID, data: SecondParentInput
    ) -> Person:
        profile = await self.get_dugsi_profile(db, student_id)
        guardians = await self.get_active_guardians(db, profile.person_id)
        if len(guardians) >= 2:
            raise ConflictError(
                message="This family already has two parents",
                code="PARENT_LIMIT_REACHED",
            )

        async with atomic(db):
            parent, _ = await registration_service.find_or_create_person_with_contact(
                db,
                name=f"{data.first_name} {data.last_name}",
                email=data.email,
                phone=data.phone,
            )
            for child in await self.get_family_profiles(db, profile):
                await registration_service.link_guardian_to_dependent(
                    db, guardian_id=parent.id, dependent_id=child.person_id
                )

        logger.info("Added second parent %s to family of student %s", parent.id, student_id)
        return parent

    async def update_child_info(
        self, db: AsyncSession, student_id: uuid.UUID, data: ChildUpdateInput
    ) -> DugsiStudentResponse:
        profile = await self.get_dugsi_profile(db, student_id)
        fields = data.model_dump(exclude_unset=True)

        person = profile.person
        if fields.get("first_name") and fields.get("last_name"):
            person.name = f"{fields['first_name']} {fields['last_name']}"
        if "date_of_birth" in fields:
            person.date_of_birth = fields["date_of_birth"]
        for name in ("gender", "grade_level", "school_name", "health_info"):
            if name in fields:
                setattr(profile, name, fields[name])

        await db.flush()
        return await self._to_response(db, profile)

    async def update_dugsi_student(
        self, db: AsyncSession, student_id: uuid.UUID, data: ChildUpdateInput
    ) -> DugsiStudentResponse:
        if not data.model_fields_set:
            raise ValidationError(message="At least one field must be provided", code="NO_FIELDS")
        return await self.update_child_info(db, student_id, data)

    async def add_child_to_family(
        self, db: AsyncSession, existing_student_id: uuid.UUID, child: ChildInput
    ) -> RegisteredProfile:
        sibling = await self.get_dugsi_profile(db, existing_student_id)
        if not sibling.family_reference_id:
            raise ValidationError(
                message="Student has no family reference",
                field="family_reference_id",
                code="NO_FAMILY_REFERENCE",
            )
        guardians = await self.get_active_guardians(db, sibling.person_id)
        if not guardians:
            raise ValidationError(message="Student has no guardians", code="NO_GUARDIANS")

        async with atomic(db):
            person = await registration_service.create_person_with_contact(
                db, child.full_name, child.date_of_birth
            )
            for g in guardians:
                await registration_service.link_guardian_to_dependent(
                    db,
                    guardian_id=g.guardian_id,
                    dependent_id=person.id,
                    is_primary_payer=g.is_primary_payer,
                )
            profile, _ = await registration_service.create_program_profile_with_enrollment(
                db,
                person_id=person.id,
                program=Program.DUGSI_PROGRAM,
                status=EnrollmentStatus.REGISTERED,
                family_reference_id=sibling.family_reference_id,
                gender=child.gender,
                grade_level=child.grade_level,
                school_name=child.school_name,
                health_info=child.health_info,
            )
            family = await self.get_family_profiles(db, sibling)
            await registration_service.ensure_sibling_relationships(
                db, [p.person_id for p in family] + [person.id]
            )

        logger.info("Added child %s to family %s", profile.id, sibling.family_reference_id)
        return RegisteredProfile(id=profile.id, name=person.name, person_id=person.id)

    # ══════════════════════════════════════════════════════════════════════
    # Registrations
    # ══════════════════════════════════════════════════════════════════════

    async def list_registrations(
        self,
        db: AsyncSession,
        status: Optional[EnrollmentStatus] = None,
        shift: Optional[Shift] = None,
    ) -> List[DugsiStudentResponse]:
        query = select(ProgramProfile).where(ProgramProfile.program == Program.DUGSI_PROGRAM)
        if status is not None:
            query = query.where(ProgramProfile.status == status)
        if shift is not None:
            query = (
                query.join(
                    DugsiClassEnrollment,
                    DugsiClassEnrollment.program_profile_id == ProgramProfile.id,
                )
                .join(DugsiClass, DugsiClass.id == DugsiClassEnrollment.class_id)
                .where(DugsiClassEnrollment.is_active.is_(True), DugsiClass.shift == shift)
            )
        result = await db.execute(query.order_by(ProgramProfile.created_at.desc()))
        return [await self._to_response(db, p) for p in result.scalars().all()]

    async def search_registrations_by_contact(
        self,
        db: AsyncSession,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> List[DugsiStudentResponse]:
        """Students whose own contact, or any active guardian's, matches."""
        conditions = []
        normalized_email = normalize_email(email)
        if normalized_email:
            conditions.append(
                (ContactPoint.type == ContactType.EMAIL) & (ContactPoint.value == normalized_email)
            )
        normalized_phone = normalize_phone(phone)
        if normalized_phone:
            conditions.append(
                ContactPoint.type.in_([ContactType.PHONE, ContactType.WHATSAPP])
                & (ContactPoint.value == normalized_phone)
            )
        if not conditions:
            raise ValidationError(message="Email or phone is required", code="MISSING_CONTACT")

        matching_people = select(ContactPoint.person_id).where(or_(*conditions))
        dependents = select(GuardianRelationship.dependent_id).where(
            GuardianRelationship.guardian_id.in_(matching_people),
            GuardianRelationship.is_active.is_(True),
        )
        result = await db.execute(
            select(ProgramProfile)
            .where(
                ProgramProfile.program == Program.DUGSI_PROGRAM,
                or_(
                    ProgramProfile.person_id.in_(matching_people),
                    ProgramProfile.person_id.in_(dependents),
                ),
            )
            .order_by(ProgramProfile.created_at)
        )
        return [await self._to_response(db, p) for p in result.scalars().all()]

    async def get_delete_family_preview(
        self, db: AsyncSession, student_id: uuid.UUID
    ) -> DeleteFamilyPreview:
        profile = await self.get_dugsi_profile(db, student_id)
        family = await self.get_family_profiles(db, profile)
        return DeleteFamilyPreview(count=len(family), students=[p.person.name for p in family])

    async def delete_family(self, db: AsyncSession, student_id: uuid.UUID) -> int:
        """Delete every profile in the student's family; returns the count."""
        profile = await self.get_dugsi_profile(db, student_id)
        family = await self.get_family_profiles(db, profile)
        async with atomic(db):
            for member in family:
                await db.delete(member)
            await db.flush()

        logger.warning(
            "Deleted %d Dugsi profile(s) (family=%s)", len(family), profile.family_reference_id
        )
        return len(family)


# Singleton instance
family_service = FamilyService()
