"""
Irshad Backend: Billing Schemas
================================

What:  Response models for billing accounts and subscriptions, and the
       request bodies of the /api/billing endpoints.
"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from app.models.enums import StripeAccountType, SubscriptionStatus


class BillingAccountResponse(BaseModel):
    id: uuid.UUID
    person_id: uuid.UUID
    account_type: StripeAccountType
    stripe_customer_id_mahad: Optional[str] = None
    stripe_customer_id_dugsi: Optional[str] = None
    payment_method_captured: bool
    payment_method_captured_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SubscriptionResponse(BaseModel):
    id: uuid.UUID
    stripe_subscription_id: str
    status: SubscriptionStatus
    amount: int = Field(description="Amount per interval in cents")
    currency: str
    interval: str
    interval_count: int
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    paid_until: Optional[datetime] = None
    last_payment_date: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BillingStatusResponse(BaseModel):
    """GET /api/billing/status: everything billing knows about one email."""
    email: str
    person_id: Optional[uuid.UUID] = None
    name: Optional[str] = None
    account_type: StripeAccountType
    billing_account: Optional[BillingAccountResponse] = None
    subscriptions: List[SubscriptionResponse] = Field(default_factory=list)


class ProfileBillingStatus(BaseModel):
    subscription_status: Optional[SubscriptionStatus] = None
    amount: int = 0
    paid_until: Optional[datetime] = None


class ProfileStatusRequest(BaseModel):
    profile_ids: List[uuid.UUID] = Field(min_length=1, max_length=500)


class ProfileStatusResponse(BaseModel):
    statuses: Dict[str, ProfileBillingStatus]


class LinkSubscriptionRequest(BaseModel):
    profile_ids: List[uuid.UUID] = Field(min_length=1)
    total_amount: int = Field(gt=0, description="Total cents to split across the profiles")
    notes: Optional[str] = Field(default=None, max_length=500)


# ── Invoices ──────────────────────────────────────────────────────────────

class InvoiceSyncResult(BaseModel):
    account_type: StripeAccountType
    synced: int
    skipped: int


class MarkInvoicePaidInput(BaseModel):
    """Record a cash or check payment, or confirm a Stripe invoice by hand."""
    program_profile_id: uuid.UUID
    year: int = Field(ge=2000, le=2100)
    month: int = Field(ge=1, le=12)
    amount: int = Field(gt=0, description="Cents")
    stripe_invoice_id: Optional[str] = Field(default=None, pattern=r"^in_")


class StudentPaymentResponse(BaseModel):
    id: uuid.UUID
    program_profile_id: uuid.UUID
    year: int
    month: int
    amount_paid: int
    paid_at: datetime
    stripe_invoice_id: Optional[str] = None

    model_config = {"from_attributes": True}


class InvoiceDetails(BaseModel):
    id: str
    status: Optional[str] = None
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    subscription_id: Optional[str] = None
    amount_due: int = 0
    amount_paid: int = 0
    hosted_invoice_url: Optional[str] = None
    created: Optional[datetime] = None


# ── Subscription consolidation ────────────────────────────────────────────

class ConsolidationPreview(BaseModel):
    """What linking a Stripe subscription to a Dugsi family would change."""
    stripe_subscription_id: str
    status: str
    amount: int
    customer_id: str
    stripe_customer_name: Optional[str] = None
    stripe_customer_email: Optional[str] = None
    family_reference_id: str
    child_count: int
    payer_person_id: uuid.UUID
    payer_name: str
    payer_email: Optional[str] = None
    name_mismatch: bool
    email_mismatch: bool
    existing_family_reference_id: Optional[str] = None
    is_already_linked: bool


class ConsolidateInput(BaseModel):
    family_reference_id: str = Field(min_length=1)
    # Overwrite the Stripe customer's name/email with the payer's
    sync_stripe_customer: bool = False
    # Move the subscription even when another family holds it
    force_override: bool = False


class ConsolidateResult(BaseModel):
    subscription_id: uuid.UUID
    billing_account_id: uuid.UUID
    assignments_created: int
    stripe_metadata_updated: bool
    stripe_customer_synced: bool
    previous_family_unlinked: bool
    sync_error: Optional[str] = None


# ── Orphaned subscriptions ────────────────────────────────────────────────

class OrphanedSubscription(BaseModel):
    """A Stripe subscription with no active local billing assignment."""
    id: str
    account_type: StripeAccountType
    status: str
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    amount: int = 0
    interval: str = "month"
    created: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    subscription_count: Optional[int] = Field(
        default=None, description="Mahad only: subscriptions the same customer holds"
    )


class LinkOrphanInput(BaseModel):
    program_profile_id: uuid.UUID
    account_type: StripeAccountType


class LinkOrphanResult(BaseModel):
    subscription_id: uuid.UUID
    billing_account_id: uuid.UUID
    assignments_created: int


# ── Bank account verification ─────────────────────────────────────────────

class VerifyBankAccountInput(BaseModel):
    payment_intent_id: str = Field(pattern=r"^pi_")
    # Six characters starting with SM, from the micro-deposit statement line
    descriptor_code: str = Field(min_length=1, max_length=20)
    account_type: StripeAccountType = StripeAccountType.DUGSI


class PaymentStatusResponse(BaseModel):
    payment_intent_id: str
    status: str
    verified: bool
