"""
Irshad Backend: Checkout Schemas
=================================

What:  Request/response models for the Stripe Checkout links the admin
       sends to Dugsi families and the Mahad registration checkout.

Amounts are integer cents. A Dugsi `override_amount` replaces the tiered
family rate for this checkout only; the subscription metadata records
both values so the webhook can tell an override from a pricing error.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.models.enums import GraduationStatus, PaymentFrequency, StudentBillingType


class DugsiCheckoutInput(BaseModel):
    override_amount: Optional[int] = Field(default=None, description="Cents; replaces the tiered rate")
    billing_start_date: Optional[datetime] = Field(
        default=None, description="First billing date; becomes the billing cycle anchor"
    )
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class DugsiCheckoutResponse(BaseModel):
    session_id: str
    url: str
    calculated_rate: int
    final_rate: int
    is_override: bool
    rate_description: str
    tier_description: str
    family_name: str
    child_count: int
    warning: Optional[str] = None


class MahadCheckoutInput(BaseModel):
    profile_id: uuid.UUID
    graduation_status: GraduationStatus
    payment_frequency: PaymentFrequency
    # Admin adjusts the billing type after checkout when needed
    billing_type: StudentBillingType = StudentBillingType.FULL_TIME
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class MahadCheckoutResponse(BaseModel):
    session_id: str
    url: Optional[str] = None
    rate: int
