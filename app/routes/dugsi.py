"""
Irshad Backend: Dugsi Routes
=============================

What:  Family registration, student/family management, withdrawals,
       family billing pause/resume and the tuition calculator.

Route Inventory:
    POST   /api/dugsi/registrations                   register a family
    GET    /api/dugsi/registrations                   list (status, shift)
    GET    /api/dugsi/registrations/search            by email / phone
    GET    /api/dugsi/students/{id}                   student detail
    PATCH  /api/dugsi/students/{id}                   edit child
    GET    /api/dugsi/students/{id}/family            siblings
    GET    /api/dugsi/students/{id}/billing           billing status
    GET    /api/dugsi/students/{id}/enrollment        latest enrollment
    PUT    /api/dugsi/students/{id}/parents/{n}       edit parent 1 or 2
    POST   /api/dugsi/students/{id}/parents           add second parent
    POST   /api/dugsi/students/{id}/children          add sibling
    GET    /api/dugsi/students/{id}/family-delete     delete preview
    DELETE /api/dugsi/students/{id}/family-delete     delete family
    GET    /api/dugsi/students/{id}/withdraw-preview
    POST   /api/dugsi/students/{id}/withdraw
    POST   /api/dugsi/students/{id}/withdraw-all
    POST   /api/dugsi/students/{id}/re-enroll
    GET    /api/dugsi/families/{ref}/students
    POST   /api/dugsi/families/{ref}/pause|resume
    POST   /api/dugsi/families/{ref}/checkout          payment link
    GET    /api/dugsi/tuition?child_count=

Routes stay thin: parse, call one service, shape the response.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.models.enums import EnrollmentStatus, Shift
from app.schemas.checkout import DugsiCheckoutInput, DugsiCheckoutResponse
from app.schemas.common import CountResponse, ErrorResponse, MessageResponse
from app.schemas.family import (
    ChildUpdateInput,
    DeleteFamilyPreview,
    DugsiStudentResponse,
    EnrollmentResponse,
    ParentUpdateInput,
    SecondParentInput,
    StudentBillingStatusResponse,
)
from app.schemas.registration import (
    ChildInput,
    FamilyRegistrationInput,
    FamilyRegistrationResult,
    RegisteredProfile,
)
from app.schemas.withdrawal import (
    BillingAdjustmentInput,
    PauseResult,
    ReEnrollInput,
    WithdrawAllInput,
    WithdrawChildInput,
    WithdrawPreview,
    WithdrawResult,
    WithdrawalReason,
)
from app.services.checkout_service import checkout_service
from app.services.family_service import family_service
from app.services.registration_service import registration_service
from app.services.tuition import format_rate, get_rate_breakdown, get_rate_tier_description
from app.services.withdrawal_service import withdrawal_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dugsi", tags=["Dugsi"])

ERRORS = {
    400: {"description": "Invalid input", "model": ErrorResponse},
    404: {"description": "Student not found", "model": ErrorResponse},
}


class WithdrawBody(BaseModel):
    reason: WithdrawalReason
    reason_note: Optional[str] = Field(default=None, max_length=500)
    billing_adjustment: BillingAdjustmentInput = Field(default_factory=BillingAdjustmentInput)


class ReEnrollBody(BaseModel):
    billing_adjustment: BillingAdjustmentInput = Field(default_factory=BillingAdjustmentInput)


# ── Registrations ─────────────────────────────────────────────────────────

@router.post(
    "/registrations",
    response_model=FamilyRegistrationResult,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
    summary="Register a Dugsi family",
)
async def register_family(
    data: FamilyRegistrationInput, db: AsyncSession = Depends(get_db_session)
) -> FamilyRegistrationResult:
    return await registration_service.create_family_registration(db, data)


@router.get("/registrations", response_model=List[DugsiStudentResponse], summary="List Dugsi registrations")
async def list_registrations(
    response: Response,
    status_filter: Optional[EnrollmentStatus] = Query(default=None, alias="status"),
    shift: Optional[Shift] = Query(default=None),
    db: AsyncSession = Depends(get_db_session),
) -> List[DugsiStudentResponse]:
    students = await family_service.list_registrations(db, status=status_filter, shift=shift)
    response.headers["X-Total-Count"] = str(len(students))
    return students


@router.get(
    "/registrations/search",
    response_model=List[DugsiStudentResponse],
    responses=ERRORS,
    summary="Find students by their own or a parent's email/phone",
)
async def search_registrations(
    email: Optional[str] = Query(default=None),
    phone: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db_session),
) -> List[DugsiStudentResponse]:
    return await family_service.search_registrations_by_contact(db, email=email, phone=phone)


# ── Students ──────────────────────────────────────────────────────────────

@router.get("/students/{student_id}", response_model=DugsiStudentResponse, responses=ERRORS)
async def get_student(student_id: UUID, db: AsyncSession = Depends(get_db_session)):
    return await family_service.get_dugsi_student(db, student_id)


@router.patch("/students/{student_id}", response_model=DugsiStudentResponse, responses=ERRORS)
async def update_student(
    student_id: UUID, data: ChildUpdateInput, db: AsyncSession = Depends(get_db_session)
):
    return await family_service.update_dugsi_student(db, student_id, data)


@router.get("/students/{student_id}/family", response_model=List[DugsiStudentResponse], responses=ERRORS)
async def get_family(student_id: UUID, db: AsyncSession = Depends(get_db_session)):
    return await family_service.get_family_members(db, student_id)


@router.get(
    "/students/{student_id}/billing", response_model=StudentBillingStatusResponse, responses=ERRORS
)
async def get_student_billing(student_id: UUID, db: AsyncSession = Depends(get_db_session)):
    return await family_service.get_student_billing_status(db, student_id)


@router.get(
    "/students/{student_id}/enrollment", response_model=Optional[EnrollmentResponse], responses=ERRORS
)
async def get_student_enrollment(student_id: UUID, db: AsyncSession = Depends(get_db_session)):
    return await family_service.get_enrollment_status(db, student_id)


@router.put("/students/{student_id}/parents/{parent_number}", response_model=MessageResponse, responses=ERRORS)
async def update_parent(
    student_id: UUID,
    data: ParentUpdateInput,
    parent_number: int = Path(ge=1, le=2),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await family_service.update_parent_info(db, student_id, parent_number, data)
    return MessageResponse(message=f"Parent {parent_number} updated")


@router.post(
    "/students/{student_id}/parents",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses={**ERRORS, 409: {"description": "Family already has two parents", "model": ErrorResponse}},
)
async def add_second_parent(
    student_id: UUID, data: SecondParentInput, db: AsyncSession = Depends(get_db_session)
) -> MessageResponse:
    parent = await family_service.add_second_parent(db, student_id, data)
    return MessageResponse(message=f"{parent.name} added as second parent")


@router.post(
    "/students/{student_id}/children",
    response_model=RegisteredProfile,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
async def add_child(student_id: UUID, child: ChildInput, db: AsyncSession = Depends(get_db_session)):
    return await family_service.add_child_to_family(db, student_id, child)


@router.get("/students/{student_id}/family-delete", response_model=DeleteFamilyPreview, responses=ERRORS)
async def preview_delete_family(student_id: UUID, db: AsyncSession = Depends(get_db_session)):
    return await family_service.get_delete_family_preview(db, student_id)


@router.delete("/students/{student_id}/family-delete", response_model=CountResponse, responses=ERRORS)
async def delete_family(student_id: UUID, db: AsyncSession = Depends(get_db_session)) -> CountResponse:
    return CountResponse(count=await family_service.delete_family(db, student_id))


# ── Withdrawals ───────────────────────────────────────────────────────────

@router.get("/students/{student_id}/withdraw-preview", response_model=WithdrawPreview, responses=ERRORS)
async def withdraw_preview(student_id: UUID, db: AsyncSession = Depends(get_db_session)):
    return await withdrawal_service.get_withdraw_preview(db, student_id)


@router.post("/students/{student_id}/withdraw", response_model=WithdrawResult, responses=ERRORS)
async def withdraw_child(
    student_id: UUID, body: WithdrawBody, db: AsyncSession = Depends(get_db_session)
) -> WithdrawResult:
    return await withdrawal_service.withdraw_child(
        db, WithdrawChildInput(student_id=student_id, **body.model_dump())
    )


@router.post("/students/{student_id}/withdraw-all", response_model=WithdrawResult, responses=ERRORS)
async def withdraw_all(
    student_id: UUID, body: WithdrawBody, db: AsyncSession = Depends(get_db_session)
) -> WithdrawResult:
    fields = body.model_dump(exclude_unset=True)
    return await withdrawal_service.withdraw_all_children(
        db, WithdrawAllInput(student_id=student_id, **fields)
    )


@router.post("/students/{student_id}/re-enroll", response_model=WithdrawResult, responses=ERRORS)
async def re_enroll(
    student_id: UUID, body: ReEnrollBody, db: AsyncSession = Depends(get_db_session)
) -> WithdrawResult:
    return await withdrawal_service.re_enroll_child(
        db, ReEnrollInput(student_id=student_id, **body.model_dump())
    )


@router.get("/families/{family_reference_id}/students", response_model=List[DugsiStudentResponse])
async def get_family_students(family_reference_id: str, db: AsyncSession = Depends(get_db_session)):
    return await family_service.get_family_students(db, family_reference_id)


@router.post("/families/{family_reference_id}/pause", response_model=PauseResult, responses=ERRORS)
async def pause_family(family_reference_id: str, db: AsyncSession = Depends(get_db_session)):
    return await withdrawal_service.pause_family_billing(db, family_reference_id)


@router.post("/families/{family_reference_id}/resume", response_model=PauseResult, responses=ERRORS)
async def resume_family(family_reference_id: str, db: AsyncSession = Depends(get_db_session)):
    return await withdrawal_service.resume_family_billing(db, family_reference_id)


@router.post(
    "/families/{family_reference_id}/checkout",
    response_model=DugsiCheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "No primary payer, no payer email, or invalid override / start date", "model": ErrorResponse},
        404: {"description": "No registered or enrolled children in the family", "model": ErrorResponse},
        503: {"description": "Stripe unavailable or not configured", "model": ErrorResponse},
    },
    summary="Create a payment link for a family",
)
async def create_family_checkout(
    family_reference_id: str,
    data: DugsiCheckoutInput,
    db: AsyncSession = Depends(get_db_session),
) -> DugsiCheckoutResponse:
    return await checkout_service.create_dugsi_checkout_session(db, family_reference_id, data)


# ── Tuition ───────────────────────────────────────────────────────────────

@router.get("/tuition", summary="Family rate for a number of children")
async def dugsi_tuition(child_count: int = Query(ge=0, le=10)):
    breakdown = get_rate_breakdown(child_count)
    return {
        "child_count": breakdown.child_count,
        "total": breakdown.total,
        "formatted_total": format_rate(breakdown.total),
        "lines": [
            {"child_number": line.child_number, "rate": line.rate, "tier": line.tier}
            for line in breakdown.lines
        ],
        "description": get_rate_tier_description(child_count),
    }
