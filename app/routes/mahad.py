"""
Irshad Backend: Mahad Routes
=============================

What:  Mahad student registration, batch (cohort) management and the
       per-student tuition calculator.

Route Inventory:
    POST   /api/mahad/registrations
    POST   /api/mahad/checkout                 Stripe Checkout for a registered student
    GET    /api/mahad/batches
    POST   /api/mahad/batches
    GET    /api/mahad/batches/summary
    POST   /api/mahad/batches/transfer
    PATCH  /api/mahad/batches/{id}
    DELETE /api/mahad/batches/{id}
    GET    /api/mahad/batches/{id}/students
    POST   /api/mahad/batches/{id}/assign
    GET    /api/mahad/tuition
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.models.enums import GraduationStatus, PaymentFrequency, StudentBillingType
from app.schemas.batch import (
    AssignStudentsInput,
    AssignmentResult,
    BatchCreateInput,
    BatchResponse,
    BatchStudent,
    BatchSummary,
    BatchUpdateInput,
    TransferStudentsInput,
)
from app.schemas.checkout import MahadCheckoutInput, MahadCheckoutResponse
from app.schemas.common import ErrorResponse
from app.schemas.registration import MahadRegistrationInput, MahadRegistrationResult
from app.services.batch_service import batch_service
from app.services.checkout_service import checkout_service
from app.services.registration_service import registration_service
from app.services.tuition import (
    calculate_mahad_rate,
    format_rate,
    get_stripe_interval,
    should_create_subscription,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mahad", tags=["Mahad"])


@router.post(
    "/registrations",
    response_model=MahadRegistrationResult,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Invalid input", "model": ErrorResponse},
        404: {"description": "Batch not found", "model": ErrorResponse},
        409: {"description": "Already enrolled in Mahad", "model": ErrorResponse},
    },
    summary="Register a Mahad student",
)
async def register_student(
    data: MahadRegistrationInput, db: AsyncSession = Depends(get_db_session)
) -> MahadRegistrationResult:
    return await registration_service.create_mahad_registration(db, data)


@router.post(
    "/checkout",
    response_model=MahadCheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Exempt student or invalid rate", "model": ErrorResponse},
        404: {"description": "Student profile not found", "model": ErrorResponse},
        503: {"description": "Stripe unavailable or not configured", "model": ErrorResponse},
    },
    summary="Create a Stripe Checkout session for a Mahad student",
)
async def create_checkout(
    data: MahadCheckoutInput, db: AsyncSession = Depends(get_db_session)
) -> MahadCheckoutResponse:
    return await checkout_service.create_mahad_checkout_session(db, data)


# ── Batches ───────────────────────────────────────────────────────────────
# Static paths are declared before /batches/{batch_id} so they are not
# captured as ids.

@router.get("/batches", response_model=List[BatchResponse], summary="List batches with student counts")
async def list_batches(db: AsyncSession = Depends(get_db_session)):
    return await batch_service.list_batches(db)


@router.post(
    "/batches",
    response_model=BatchResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Duplicate batch name", "model": ErrorResponse}},
)
async def create_batch(data: BatchCreateInput, db: AsyncSession = Depends(get_db_session)):
    return await batch_service.create_batch(db, data)


@router.get("/batches/summary", response_model=BatchSummary)
async def batch_summary(db: AsyncSession = Depends(get_db_session)):
    return await batch_service.get_batch_summary(db)


@router.post("/batches/transfer", response_model=AssignmentResult)
async def transfer_students(data: TransferStudentsInput, db: AsyncSession = Depends(get_db_session)):
    return await batch_service.transfer_students(
        db, data.from_batch_id, data.to_batch_id, data.profile_ids
    )


@router.patch("/batches/{batch_id}", response_model=BatchResponse)
async def update_batch(
    batch_id: UUID, data: BatchUpdateInput, db: AsyncSession = Depends(get_db_session)
):
    return await batch_service.update_batch(db, batch_id, data)


@router.delete(
    "/batches/{batch_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={400: {"description": "Batch still has students", "model": ErrorResponse}},
)
async def delete_batch(batch_id: UUID, db: AsyncSession = Depends(get_db_session)) -> None:
    await batch_service.delete_batch(db, batch_id)


@router.get("/batches/{batch_id}/students", response_model=List[BatchStudent])
async def batch_students(batch_id: UUID, db: AsyncSession = Depends(get_db_session)):
    return await batch_service.get_batch_students(db, batch_id)


@router.post("/batches/{batch_id}/assign", response_model=AssignmentResult)
async def assign_students(
    batch_id: UUID, data: AssignStudentsInput, db: AsyncSession = Depends(get_db_session)
):
    return await batch_service.assign_students_to_batch(db, batch_id, data.profile_ids)


# ── Tuition ───────────────────────────────────────────────────────────────

@router.get("/tuition", summary="Rate per billing interval for a Mahad student")
async def mahad_tuition(
    graduation_status: Optional[GraduationStatus] = Query(default=None),
    payment_frequency: Optional[PaymentFrequency] = Query(default=None),
    billing_type: Optional[StudentBillingType] = Query(default=None),
):
    rate = calculate_mahad_rate(graduation_status, payment_frequency, billing_type)
    interval, interval_count = get_stripe_interval(payment_frequency)
    return {
        "rate": rate,
        "formatted_rate": format_rate(rate),
        "interval": interval,
        "interval_count": interval_count,
        "should_create_subscription": should_create_subscription(billing_type),
    }
