"""
Irshad Backend: Billing Routes
===============================

What:  Read-side billing lookups and the admin billing tools: linking
       Stripe subscriptions to profiles by hand (used when the webhook
       matcher could not resolve the payer), family consolidation,
       invoice backfill and bank account verification.

Route Inventory:
    GET   /api/billing/status?email=&account_type=
    POST  /api/billing/profiles/status
    POST  /api/billing/subscriptions/{stripe_subscription_id}/link
    GET   /api/billing/subscriptions/{id}/consolidate?family_reference_id=
    POST  /api/billing/subscriptions/{id}/consolidate
    POST  /api/billing/invoices/sync?account_type=
    POST  /api/billing/invoices/mark-paid           cash / check payments
    GET   /api/billing/invoices/{id}?account_type=
    POST  /api/billing/invoices/{id}/resend
    GET   /api/billing/orphans?account_type=          live subscriptions with no profile
    POST  /api/billing/orphans/{id}/link
    POST  /api/billing/payments/verify-bank-account  micro-deposit code
    GET   /api/billing/payments/{id}/status
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.exceptions import NotFoundError
from app.models.enums import StripeAccountType
from app.schemas.billing import (
    BillingStatusResponse,
    ConsolidateInput,
    ConsolidateResult,
    ConsolidationPreview,
    InvoiceDetails,
    InvoiceSyncResult,
    LinkOrphanInput,
    LinkOrphanResult,
    LinkSubscriptionRequest,
    MarkInvoicePaidInput,
    OrphanedSubscription,
    PaymentStatusResponse,
    ProfileStatusRequest,
    ProfileStatusResponse,
    StudentPaymentResponse,
    VerifyBankAccountInput,
)
from app.schemas.common import CountResponse, ErrorResponse, MessageResponse
from app.services.billing_service import billing_service
from app.services.consolidation_service import consolidation_service
from app.services.invoice_service import invoice_service
from app.services.orphan_service import orphan_service
from app.services.payment_service import payment_service
from app.services.subscription_service import subscription_service, validate_stripe_subscription_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/billing", tags=["Billing"])

STRIPE_ERRORS = {
    400: {"description": "Invalid input or rejected by Stripe", "model": ErrorResponse},
    404: {"description": "Not found", "model": ErrorResponse},
    503: {"description": "Stripe unavailable", "model": ErrorResponse},
}


@router.get("/status", response_model=BillingStatusResponse, summary="Billing status for an email")
async def billing_status(
    email: str = Query(min_length=3),
    account_type: StripeAccountType = Query(),
    db: AsyncSession = Depends(get_db_session),
) -> BillingStatusResponse:
    return await billing_service.get_billing_status_by_email(db, email, account_type)


@router.post("/profiles/status", response_model=ProfileStatusResponse)
async def profiles_billing_status(
    data: ProfileStatusRequest, db: AsyncSession = Depends(get_db_session)
) -> ProfileStatusResponse:
    statuses = await billing_service.get_billing_status_for_profiles(db, data.profile_ids)
    return ProfileStatusResponse(statuses=statuses)


@router.post(
    "/subscriptions/{stripe_subscription_id}/link",
    response_model=CountResponse,
    responses={
        400: {"description": "Invalid subscription id", "model": ErrorResponse},
        404: {"description": "Subscription not found", "model": ErrorResponse},
    },
    summary="Split a subscription across program profiles",
)
async def link_subscription(
    stripe_subscription_id: str,
    data: LinkSubscriptionRequest,
    db: AsyncSession = Depends(get_db_session),
) -> CountResponse:
    stripe_subscription_id = validate_stripe_subscription_id(stripe_subscription_id)
    subscription = await subscription_service.get_by_stripe_id(db, stripe_subscription_id)
    if subscription is None:
        raise NotFoundError(resource="subscription", resource_id=stripe_subscription_id)

    linked = await billing_service.link_subscription_to_profiles(
        db, subscription.id, data.profile_ids, data.total_amount, notes=data.notes
    )
    return CountResponse(count=linked)


# ── Invoices ──────────────────────────────────────────────────────────────

@router.post("/invoices/sync", response_model=InvoiceSyncResult, summary="Backfill payments from Stripe invoices")
async def sync_invoices(
    account_type: StripeAccountType = Query(),
    db: AsyncSession = Depends(get_db_session),
) -> InvoiceSyncResult:
    return await invoice_service.sync_invoices(db, account_type)


@router.post(
    "/invoices/mark-paid",
    response_model=StudentPaymentResponse,
    responses={404: {"description": "Program profile not found", "model": ErrorResponse}},
)
async def mark_invoice_paid(data: MarkInvoicePaidInput, db: AsyncSession = Depends(get_db_session)):
    return await invoice_service.mark_invoice_paid(db, data)


@router.get("/invoices/{invoice_id}", response_model=InvoiceDetails, responses=STRIPE_ERRORS)
async def invoice_details(invoice_id: str, account_type: StripeAccountType = Query()) -> InvoiceDetails:
    return await invoice_service.get_invoice_details(account_type, invoice_id)


@router.post("/invoices/{invoice_id}/resend", response_model=MessageResponse, responses=STRIPE_ERRORS)
async def resend_invoice(invoice_id: str, account_type: StripeAccountType = Query()) -> MessageResponse:
    await invoice_service.resend_invoice(account_type, invoice_id)
    return MessageResponse(success=True, message="Invoice resent successfully")


# ── Consolidation ─────────────────────────────────────────────────────────

@router.get(
    "/subscriptions/{stripe_subscription_id}/consolidate",
    response_model=ConsolidationPreview,
    responses=STRIPE_ERRORS,
    summary="Preview linking a Dugsi subscription to a family",
)
async def consolidation_preview(
    stripe_subscription_id: str,
    family_reference_id: str = Query(min_length=1),
    db: AsyncSession = Depends(get_db_session),
) -> ConsolidationPreview:
    return await consolidation_service.preview(db, stripe_subscription_id, family_reference_id)


@router.post(
    "/subscriptions/{stripe_subscription_id}/consolidate",
    response_model=ConsolidateResult,
    responses={
        **STRIPE_ERRORS,
        409: {"description": "Linked to another family", "model": ErrorResponse},
    },
)
async def consolidate_subscription(
    stripe_subscription_id: str,
    data: ConsolidateInput,
    db: AsyncSession = Depends(get_db_session),
) -> ConsolidateResult:
    return await consolidation_service.consolidate(db, stripe_subscription_id, data)


# ── Orphaned subscriptions ────────────────────────────────────────────────

@router.get("/orphans", response_model=List[OrphanedSubscription], responses=STRIPE_ERRORS)
async def orphaned_subscriptions(
    account_type: StripeAccountType = Query(),
    db: AsyncSession = Depends(get_db_session),
):
    return await orphan_service.list_orphaned_subscriptions(db, account_type)


@router.post(
    "/orphans/{stripe_subscription_id}/link",
    response_model=LinkOrphanResult,
    status_code=status.HTTP_201_CREATED,
    responses=STRIPE_ERRORS,
)
async def link_orphaned_subscription(
    stripe_subscription_id: str,
    data: LinkOrphanInput,
    db: AsyncSession = Depends(get_db_session),
) -> LinkOrphanResult:
    return await orphan_service.link_orphaned_subscription(db, stripe_subscription_id, data)


# ── Bank account verification ─────────────────────────────────────────────

@router.post("/payments/verify-bank-account", response_model=PaymentStatusResponse, responses=STRIPE_ERRORS)
async def verify_bank_account(data: VerifyBankAccountInput) -> PaymentStatusResponse:
    return await payment_service.verify_bank_account(
        data.payment_intent_id, data.descriptor_code, data.account_type
    )


@router.get("/payments/{payment_intent_id}/status", response_model=PaymentStatusResponse, responses=STRIPE_ERRORS)
async def payment_status(
    payment_intent_id: str,
    account_type: StripeAccountType = Query(default=StripeAccountType.DUGSI),
) -> PaymentStatusResponse:
    return await payment_service.get_payment_status(payment_intent_id, account_type)
