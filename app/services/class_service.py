"""
Irshad Backend: Dugsi Class Service
====================================

What:  Class roster management: classes (create, edit, soft delete),
       their teachers, and which class each Dugsi child sits in (at most
       one at a time, placed singly or in bulk).
Who:   /api/classes routes; attendance sessions take their teacher from here.
"""

import logging
import uuid
from datetime import date
from typing import List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import atomic
from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.common import utcnow
from app.models.dugsi import DugsiClass, DugsiClassEnrollment, DugsiClassTeacher
from app.models.enums import EnrollmentStatus, Program
from app.models.person import Person
from app.models.program import ProgramProfile
from app.models.teacher import Teacher
from app.schemas.classes import (
    BulkEnrollResult,
    ClassCreateInput,
    ClassDeletePreview,
    ClassResponse,
    ClassUpdateInput,
    UnassignedStudent,
)

logger = logging.getLogger(__name__)

ACTIVE_STUDENT_STATUSES = (EnrollmentStatus.REGISTERED, EnrollmentStatus.ENROLLED)


def age_on(date_of_birth: Optional[date], today: date) -> Optional[int]:
    if date_of_birth is None:
        return None
    had_birthday = (today.month, today.day) >= (date_of_birth.month, date_of_birth.day)
    return today.year - date_of_birth.year - (0 if had_birthday else 1)


def _to_response(dugsi_class: DugsiClass) -> ClassResponse:
    return ClassResponse(
        id=dugsi_class.id,
        name=dugsi_class.name,
        shift=dugsi_class.shift,
        description=dugsi_class.description,
        is_active=dugsi_class.is_active,
        teacher_ids=[t.teacher_id for t in (dugsi_class.teachers or []) if t.is_active],
    )


class ClassService:

    async def _get_class(self, db: AsyncSession, class_id: uuid.UUID) -> DugsiClass:
        dugsi_class = await db.get(DugsiClass, class_id)
        if dugsi_class is None:
            raise NotFoundError(resource="class", resource_id=str(class_id))
        return dugsi_class

    async def _get_active_class(self, db: AsyncSession, class_id: uuid.UUID) -> DugsiClass:
        dugsi_class = await db.get(DugsiClass, class_id)
        if dugsi_class is None or not dugsi_class.is_active:
            raise NotFoundError(resource="class", resource_id=str(class_id))
        return dugsi_class

    async def update_class(
        self, db: AsyncSession, class_id: uuid.UUID, data: ClassUpdateInput
    ) -> ClassResponse:
        dugsi_class = await self._get_active_class(db, class_id)
        if data.name is not None and data.name != dugsi_class.name:
            existing = await db.execute(
                select(DugsiClass.id).where(DugsiClass.name == data.name, DugsiClass.id != class_id)
            )
            if existing.scalars().first() is not None:
                raise ConflictError(
                    message=f"A class named '{data.name}' already exists", code="DUPLICATE_CLASS"
                )
            dugsi_class.name = data.name
        if data.description is not None:
            dugsi_class.description = data.description
        await db.flush()
        return _to_response(dugsi_class)

    async def get_class_delete_preview(
        self, db: AsyncSession, class_id: uuid.UUID
    ) -> ClassDeletePreview:
        dugsi_class = await self._get_active_class(db, class_id)
        teachers = await db.execute(
            select(func.count(DugsiClassTeacher.id)).where(
                DugsiClassTeacher.class_id == class_id,
                DugsiClassTeacher.is_active.is_(True),
            )
        )
        students = await db.execute(
            select(func.count(DugsiClassEnrollment.id)).where(
                DugsiClassEnrollment.class_id == class_id,
                DugsiClassEnrollment.is_active.is_(True),
            )
        )
        return ClassDeletePreview(
            class_id=dugsi_class.id,
            name=dugsi_class.name,
            teacher_count=teachers.scalar() or 0,
            student_count=students.scalar() or 0,
        )

    async def delete_class(self, db: AsyncSession, class_id: uuid.UUID) -> None:
        """Soft delete; the roster and teacher links stay for history."""
        dugsi_class = await self._get_active_class(db, class_id)
        dugsi_class.is_active = False
        await db.flush()
        logger.info("Deactivated class %s (%s)", dugsi_class.name, class_id)

    async def create_class(self, db: AsyncSession, data: ClassCreateInput) -> ClassResponse:
        existing = await db.execute(select(DugsiClass.id).where(DugsiClass.name == data.name))
        if existing.scalars().first() is not None:
            raise ConflictError(message=f"A class named '{data.name}' already exists", code="DUPLICATE_CLASS")

        dugsi_class = DugsiClass(
            name=data.name, shift=data.shift, description=data.description, is_active=True
        )
        dugsi_class.teachers = []
        db.add(dugsi_class)
        await db.flush()
        logger.info("Created class %s (%s)", dugsi_class.name, dugsi_class.shift.value)
        return _to_response(dugsi_class)

    async def list_classes(self, db: AsyncSession, active_only: bool = True) -> List[ClassResponse]:
        query = select(DugsiClass).order_by(DugsiClass.shift, DugsiClass.name)
        if active_only:
            query = query.where(DugsiClass.is_active.is_(True))
        result = await db.execute(query)
        return [_to_response(c) for c in result.scalars().all()]

    async def assign_teacher_to_class(
        self, db: AsyncSession, class_id: uuid.UUID, teacher_id: uuid.UUID
    ) -> DugsiClassTeacher:
        await self._get_class(db, class_id)
        if await db.get(Teacher, teacher_id) is None:
            raise NotFoundError(resource="teacher", resource_id=str(teacher_id))

        result = await db.execute(
            select(DugsiClassTeacher).where(
                DugsiClassTeacher.class_id == class_id,
                DugsiClassTeacher.teacher_id == teacher_id,
            )
        )
        link = result.scalar_one_or_none()
        if link is None:
            link = DugsiClassTeacher(class_id=class_id, teacher_id=teacher_id, is_active=True)
            db.add(link)
        else:
            link.is_active = True
        await db.flush()
        logger.info("Teacher %s assigned to class %s", teacher_id, class_id)
        return link

    async def remove_teacher_from_class(
        self, db: AsyncSession, class_id: uuid.UUID, teacher_id: uuid.UUID
    ) -> None:
        result = await db.execute(
            select(DugsiClassTeacher).where(
                DugsiClassTeacher.class_id == class_id,
                DugsiClassTeacher.teacher_id == teacher_id,
                DugsiClassTeacher.is_active.is_(True),
            )
        )
        link = result.scalar_one_or_none()
        if link is None:
            raise NotFoundError(resource="class teacher", resource_id=str(teacher_id))
        link.is_active = False
        await db.flush()
        logger.info("Teacher %s removed from class %s", teacher_id, class_id)

    async def enroll_student_in_class(
        self, db: AsyncSession, class_id: uuid.UUID, program_profile_id: uuid.UUID
    ) -> DugsiClassEnrollment:
        """Place a child in a class, moving them out of any previous one."""
        await self._get_class(db, class_id)
        profile = await db.get(ProgramProfile, program_profile_id)
        if profile is None:
            raise NotFoundError(resource="program profile", resource_id=str(program_profile_id))
        if profile.program != Program.DUGSI_PROGRAM:
            raise ValidationError(
                message="Only Dugsi students can be enrolled in a class",
                field="program_profile_id",
                code="NOT_DUGSI_PROFILE",
            )

        result = await db.execute(
            select(DugsiClassEnrollment).where(
                DugsiClassEnrollment.program_profile_id == program_profile_id
            )
        )
        enrollment = result.scalar_one_or_none()
        if enrollment is None:
            enrollment = DugsiClassEnrollment(
                class_id=class_id, program_profile_id=program_profile_id, is_active=True
            )
            db.add(enrollment)
        else:
            enrollment.class_id = class_id
            enrollment.is_active = True
            enrollment.start_date = utcnow()
            enrollment.end_date = None
        await db.flush()
        logger.info("Student %s enrolled in class %s", program_profile_id, class_id)
        return enrollment

    async def remove_student_from_class(
        self, db: AsyncSession, program_profile_id: uuid.UUID
    ) -> None:
        result = await db.execute(
            select(DugsiClassEnrollment).where(
                DugsiClassEnrollment.program_profile_id == program_profile_id,
                DugsiClassEnrollment.is_active.is_(True),
            )
        )
        enrollment = result.scalar_one_or_none()
        if enrollment is None:
            raise NotFoundError(resource="class enrollment", resource_id=str(program_profile_id))
        enrollment.is_active = False
        enrollment.end_date = utcnow()
        await db.flush()
        logger.info("Student %s removed from class %s", program_profile_id, enrollment.class_id)

    async def bulk_enroll_students(
        self, db: AsyncSession, class_id: uuid.UUID, program_profile_ids: Sequence[uuid.UUID]
    ) -> BulkEnrollResult:
        """
        Place several children in one class.

        Children already active in this class are skipped; children active
        elsewhere are moved and counted in both `enrolled` and `moved`.
        """
        await self._get_active_class(db, class_id)
        unique_ids = list(dict.fromkeys(program_profile_ids))

        found = await db.execute(
            select(ProgramProfile.id).where(
                ProgramProfile.id.in_(unique_ids),
                ProgramProfile.program == Program.DUGSI_PROGRAM,
            )
        )
        dugsi_ids = set(found.scalars().all())
        missing = [str(i) for i in unique_ids if i not in dugsi_ids]
        if missing:
            raise ValidationError(
                message=f"Not Dugsi students: {', '.join(missing)}",
                field="program_profile_ids",
                code="NOT_DUGSI_PROFILE",
            )

        result = await db.execute(
            select(DugsiClassEnrollment).where(
                DugsiClassEnrollment.program_profile_id.in_(unique_ids)
            )
        )
        existing = {e.program_profile_id: e for e in result.scalars().all()}

        enrolled = moved = skipped = 0
        async with atomic(db):
            for profile_id in unique_ids:
                enrollment = existing.get(profile_id)
                if enrollment is None:
                    db.add(
                        DugsiClassEnrollment(
                            class_id=class_id, program_profile_id=profile_id, is_active=True
                        )
                    )
                    enrolled += 1
                    continue
                if enrollment.class_id == class_id and enrollment.is_active:
                    skipped += 1
                    continue
                if enrollment.is_active:
                    moved += 1
                if enrollment.class_id != class_id:
                    enrollment.start_date = utcnow()
                enrollment.class_id = class_id
                enrollment.is_active = True
                enrollment.end_date = None
                enrolled += 1
            await db.flush()

        logger.info(
            "Bulk enrollment into class %s: %d enrolled (%d moved), %d skipped",
            class_id, enrolled, moved, skipped,
        )
        return BulkEnrollResult(enrolled=enrolled, moved=moved, skipped=skipped)

    async def get_unassigned_students(self, db: AsyncSession) -> List[UnassignedStudent]:
        in_class = (
            select(DugsiClassEnrollment.id)
            .where(
                DugsiClassEnrollment.program_profile_id == ProgramProfile.id,
                DugsiClassEnrollment.is_active.is_(True),
            )
            .exists()
        )
        result = await db.execute(
            select(ProgramProfile)
            .join(Person, Person.id == ProgramProfile.person_id)
            .where(
                ProgramProfile.program == Program.DUGSI_PROGRAM,
                ProgramProfile.status.in_(ACTIVE_STUDENT_STATUSES),
                ~in_class,
            )
            .order_by(Person.name)
        )
        today = date.today()
        return [
            UnassignedStudent(
                id=profile.id,
                name=profile.person.name,
                date_of_birth=profile.person.date_of_birth,
                age=age_on(profile.person.date_of_birth, today),
                family_reference_id=profile.family_reference_id,
            )
            for profile in result.scalars().all()
        ]


# Singleton instance
class_service = ClassService()
