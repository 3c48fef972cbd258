"""
Irshad Backend: Batch Service
==============================

What:  Mahad cohorts: CRUD, per-batch rosters, assigning and transferring
       students, and the summary shown on the Mahad dashboard.
Who:   /api/mahad/batches routes.

A student's batch is the batch_id of their *active* enrollment (status not
WITHDRAWN and no end_date). Assigning moves that enrollment; a student
with no active enrollment gets a new ENROLLED one.
"""

import logging
import uuid
from typing import Dict, List, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import atomic
from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.common import utcnow
from app.models.enums import EnrollmentStatus, Program
from app.models.person import Person
from app.models.program import Batch, Enrollment, ProgramProfile
from app.schemas.batch import (
    AssignmentResult,
    BatchCreateInput,
    BatchResponse,
    BatchStudent,
    BatchSummary,
    BatchUpdateInput,
)
from app.services.registration_service import registration_service

logger = logging.getLogger(__name__)


def _active_enrollment_filter():
    return (
        Enrollment.status != EnrollmentStatus.WITHDRAWN,
        Enrollment.end_date.is_(None),
    )


class BatchService:

    async def _get_batch(self, db: AsyncSession, batch_id: uuid.UUID) -> Batch:
        batch = await db.get(Batch, batch_id)
        if batch is None:
            raise NotFoundError(resource="batch", resource_id=str(batch_id))
        return batch

    async def _student_counts(self, db: AsyncSession) -> Dict[uuid.UUID, int]:
        result = await db.execute(
            select(Enrollment.batch_id, func.count(func.distinct(Enrollment.program_profile_id)))
            .join(ProgramProfile, ProgramProfile.id == Enrollment.program_profile_id)
            .where(
                Enrollment.batch_id.is_not(None),
                ProgramProfile.program == Program.MAHAD_PROGRAM,
                *_active_enrollment_filter(),
            )
            .group_by(Enrollment.batch_id)
        )
        return {batch_id: count for batch_id, count in result.all()}

    async def _ensure_unique_name(self, db: AsyncSession, name: str) -> None:
        existing = await db.execute(select(Batch.id).where(func.lower(Batch.name) == name.lower()))
        if existing.scalars().first() is not None:
            raise ConflictError(message=f"A batch named '{name}' already exists", code="DUPLICATE_BATCH")

    # ── CRUD ──────────────────────────────────────────────────────────────

    async def create_batch(self, db: AsyncSession, data: BatchCreateInput) -> BatchResponse:
        await self._ensure_unique_name(db, data.name)
        batch = Batch(name=data.name, start_date=data.start_date, end_date=data.end_date)
        db.add(batch)
        await db.flush()
        logger.info("Created batch %s (%s)", batch.id, batch.name)
        return BatchResponse(id=batch.id, name=batch.name, start_date=batch.start_date, end_date=batch.end_date)

    async def update_batch(
        self, db: AsyncSession, batch_id: uuid.UUID, data: BatchUpdateInput
    ) -> BatchResponse:
        batch = await self._get_batch(db, batch_id)
        fields = data.model_dump(exclude_unset=True)
        if fields.get("name") and fields["name"].lower() != batch.name.lower():
            await self._ensure_unique_name(db, fields["name"])
        for name, value in fields.items():
            if name == "name" and value is None:
                continue
            setattr(batch, name, value)
        await db.flush()
        counts = await self._student_counts(db)
        return BatchResponse(
            id=batch.id,
            name=batch.name,
            start_date=batch.start_date,
            end_date=batch.end_date,
            student_count=counts.get(batch.id, 0),
        )

    async def delete_batch(self, db: AsyncSession, batch_id: uuid.UUID) -> None:
        batch = await self._get_batch(db, batch_id)
        counts = await self._student_counts(db)
        if counts.get(batch.id, 0) > 0:
            raise ValidationError(
                message=f"Cannot delete batch with {counts[batch.id]} active student(s)",
                code="BATCH_HAS_STUDENTS",
            )
        await db.delete(batch)
        await db.flush()
        logger.info("Deleted batch %s (%s)", batch_id, batch.name)

    async def list_batches(self, db: AsyncSession) -> List[BatchResponse]:
        result = await db.execute(select(Batch).order_by(Batch.start_date.desc().nulls_last(), Batch.name))
        counts = await self._student_counts(db)
        return [
            BatchResponse(
                id=b.id,
                name=b.name,
                start_date=b.start_date,
                end_date=b.end_date,
                student_count=counts.get(b.id, 0),
            )
            for b in result.scalars().all()
        ]

    async def get_batch_students(self, db: AsyncSession, batch_id: uuid.UUID) -> List[BatchStudent]:
        await self._get_batch(db, batch_id)
        result = await db.execute(
            select(ProgramProfile)
            .join(Enrollment, Enrollment.program_profile_id == ProgramProfile.id)
            .join(Person, Person.id == ProgramProfile.person_id)
            .where(Enrollment.batch_id == batch_id, *_active_enrollment_filter())
            .order_by(Person.name)
        )
        return [
            BatchStudent(
                program_profile_id=p.id,
                name=p.person.name,
                email=p.person.email,
                phone=p.person.phone,
                status=p.status,
            )
            for p in result.scalars().unique().all()
        ]

    # ── Assignment ────────────────────────────────────────────────────────

    async def assign_students_to_batch(
        self, db: AsyncSession, batch_id: uuid.UUID, profile_ids: Sequence[uuid.UUID]
    ) -> AssignmentResult:
        await self._get_batch(db, batch_id)
        failed: List[uuid.UUID] = []
        errors: List[str] = []
        assigned = 0

        async with atomic(db):
            for profile_id in profile_ids:
                profile = await db.get(ProgramProfile, profile_id)
                if profile is None or profile.program != Program.MAHAD_PROGRAM:
                    failed.append(profile_id)
                    errors.append(f"{profile_id}: not a Mahad student")
                    continue

                enrollment = await registration_service.get_active_enrollment(db, profile_id)
                if enrollment is not None:
                    enrollment.batch_id = batch_id
                else:
                    db.add(
                        Enrollment(
                            program_profile_id=profile_id,
                            batch_id=batch_id,
                            status=EnrollmentStatus.ENROLLED,
                            start_date=utcnow(),
                        )
                    )
                    profile.status = EnrollmentStatus.ENROLLED
                assigned += 1
            await db.flush()

        logger.info("Assigned %d student(s) to batch %s (%d failed)", assigned, batch_id, len(failed))
        return AssignmentResult(
            success=not failed,
            assigned_count=assigned,
            failed_assignments=failed,
            errors=errors,
        )

    async def transfer_students(
        self,
        db: AsyncSession,
        from_batch_id: uuid.UUID,
        to_batch_id: uuid.UUID,
        profile_ids: Sequence[uuid.UUID],
    ) -> AssignmentResult:
        await self._get_batch(db, from_batch_id)
        await self._get_batch(db, to_batch_id)

        result = await db.execute(
            select(Enrollment).where(
                Enrollment.batch_id == from_batch_id,
                Enrollment.program_profile_id.in_(list(profile_ids)),
                *_active_enrollment_filter(),
            )
        )
        enrollments = {e.program_profile_id: e for e in result.scalars().all()}

        failed = [pid for pid in profile_ids if pid not in enrollments]
        async with atomic(db):
            for enrollment in enrollments.values():
                enrollment.batch_id = to_batch_id
            await db.flush()

        logger.info(
            "Transferred %d student(s) from batch %s to %s", len(enrollments), from_batch_id, to_batch_id
        )
        return AssignmentResult(
            success=not failed,
            assigned_count=len(enrollments),
            failed_assignments=failed,
            errors=[f"{pid}: not actively enrolled in the source batch" for pid in failed],
        )

    async def get_batch_summary(self, db: AsyncSession) -> BatchSummary:
        total_batches = (await db.execute(select(func.count(Batch.id)))).scalar() or 0
        counts = await self._student_counts(db)
        total_students = sum(counts.values())
        active_batches = len([c for c in counts.values() if c > 0])
        return BatchSummary(
            total_batches=total_batches,
            total_students=total_students,
            active_batches=active_batches,
            average_students_per_batch=round(total_students / total_batches, 1) if total_batches else 0.0,
        )


# Singleton instance
batch_service = BatchService()
