"""
Irshad Backend: Dugsi Class Routes
===================================

What:  Weekend classes, their teachers and their student rosters.

Route Inventory:
    GET    /api/classes
    POST   /api/classes
    GET    /api/classes/unassigned-students       active children in no class
    DELETE /api/classes/students/{profile_id}     take a child out of their class
    PATCH  /api/classes/{id}
    GET    /api/classes/{id}/delete-preview
    DELETE /api/classes/{id}                      soft delete
    POST   /api/classes/{id}/teachers
    DELETE /api/classes/{id}/teachers/{teacher_id}
    POST   /api/classes/{id}/students
    POST   /api/classes/{id}/students/bulk
"""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.schemas.classes import (
    BulkEnrollInput,
    BulkEnrollResult,
    ClassCreateInput,
    ClassDeletePreview,
    ClassEnrollmentResponse,
    ClassResponse,
    ClassStudentInput,
    ClassTeacherInput,
    ClassUpdateInput,
    UnassignedStudent,
)
from app.schemas.common import ErrorResponse, MessageResponse
from app.services.class_service import class_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/classes", tags=["Classes"])


@router.get("", response_model=List[ClassResponse])
async def list_classes(
    active_only: bool = Query(default=True),
    db: AsyncSession = Depends(get_db_session),
):
    return await class_service.list_classes(db, active_only=active_only)


@router.post(
    "",
    response_model=ClassResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "A class with this name already exists", "model": ErrorResponse}},
)
async def create_class(data: ClassCreateInput, db: AsyncSession = Depends(get_db_session)):
    return await class_service.create_class(db, data)


@router.get("/unassigned-students", response_model=List[UnassignedStudent])
async def unassigned_students(db: AsyncSession = Depends(get_db_session)):
    return await class_service.get_unassigned_students(db)


@router.delete(
    "/students/{program_profile_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"description": "Student is not in a class", "model": ErrorResponse}},
)
async def remove_student(program_profile_id: UUID, db: AsyncSession = Depends(get_db_session)) -> None:
    await class_service.remove_student_from_class(db, program_profile_id)


@router.patch(
    "/{class_id}",
    response_model=ClassResponse,
    responses={
        404: {"description": "Class not found or inactive", "model": ErrorResponse},
        409: {"description": "A class with this name already exists", "model": ErrorResponse},
    },
)
async def update_class(
    class_id: UUID, data: ClassUpdateInput, db: AsyncSession = Depends(get_db_session)
):
    return await class_service.update_class(db, class_id, data)


@router.get("/{class_id}/delete-preview", response_model=ClassDeletePreview)
async def delete_preview(class_id: UUID, db: AsyncSession = Depends(get_db_session)):
    return await class_service.get_class_delete_preview(db, class_id)


@router.delete(
    "/{class_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"description": "Class not found or inactive", "model": ErrorResponse}},
)
async def delete_class(class_id: UUID, db: AsyncSession = Depends(get_db_session)) -> None:
    await class_service.delete_class(db, class_id)


@router.post("/{class_id}/teachers", response_model=MessageResponse)
async def assign_teacher(
    class_id: UUID, data: ClassTeacherInput, db: AsyncSession = Depends(get_db_session)
) -> MessageResponse:
    await class_service.assign_teacher_to_class(db, class_id, data.teacher_id)
    return MessageResponse(message="Teacher assigned to class")


@router.delete("/{class_id}/teachers/{teacher_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_teacher(
    class_id: UUID, teacher_id: UUID, db: AsyncSession = Depends(get_db_session)
) -> None:
    await class_service.remove_teacher_from_class(db, class_id, teacher_id)


@router.post(
    "/{class_id}/students",
    response_model=ClassEnrollmentResponse,
    responses={400: {"description": "Not a Dugsi student", "model": ErrorResponse}},
)
async def enroll_student(
    class_id: UUID, data: ClassStudentInput, db: AsyncSession = Depends(get_db_session)
):
    return await class_service.enroll_student_in_class(db, class_id, data.program_profile_id)


@router.post(
    "/{class_id}/students/bulk",
    response_model=BulkEnrollResult,
    responses={
        400: {"description": "Some ids are not Dugsi students", "model": ErrorResponse},
        404: {"description": "Class not found or inactive", "model": ErrorResponse},
    },
)
async def bulk_enroll(
    class_id: UUID, data: BulkEnrollInput, db: AsyncSession = Depends(get_db_session)
) -> BulkEnrollResult:
    return await class_service.bulk_enroll_students(db, class_id, data.program_profile_ids)
