"""
Irshad Backend: Withdrawal Schemas
===================================

What:  Request/response models for withdrawing and re-enrolling Dugsi
       children, and the billing adjustment applied afterwards.

Billing adjustments:
    keep_current        family subscription amount is left as is
    auto_recalculate    amount recomputed from the remaining child count
    custom              amount set to `custom_amount` (cents)
    cancel_subscription the family subscription is canceled
"""

import enum
import uuid
from typing import Optional

from pydantic import BaseModel, Field


class BillingAdjustment(str, enum.Enum):
    KEEP_CURRENT = "keep_current"
    AUTO_RECALCULATE = "auto_recalculate"
    CUSTOM = "custom"
    CANCEL_SUBSCRIPTION = "cancel_subscription"


class WithdrawalReason(str, enum.Enum):
    FAMILY_MOVED = "family_moved"
    FINANCIAL = "financial"
    BEHAVIORAL = "behavioral"
    SEASONAL_BREAK = "seasonal_break"
    OTHER = "other"


WITHDRAWAL_REASON_LABELS = {
    WithdrawalReason.FAMILY_MOVED: "Family moved",
    WithdrawalReason.FINANCIAL: "Financial reasons",
    WithdrawalReason.BEHAVIORAL: "Behavioral",
    WithdrawalReason.SEASONAL_BREAK: "Seasonal break",
    WithdrawalReason.OTHER: "Other",
}


def format_withdrawal_reason(reason: WithdrawalReason, note: Optional[str] = None) -> str:
    label = WITHDRAWAL_REASON_LABELS[WithdrawalReason(reason)]
    note = (note or "").strip()
    return f"{label}: {note}" if note else label


class BillingAdjustmentInput(BaseModel):
    type: BillingAdjustment = BillingAdjustment.KEEP_CURRENT
    custom_amount: Optional[int] = Field(default=None, gt=0, description="Cents, for type=custom")


class WithdrawChildInput(BaseModel):
    student_id: uuid.UUID
    reason: WithdrawalReason
    reason_note: Optional[str] = Field(default=None, max_length=500)
    billing_adjustment: BillingAdjustmentInput = Field(default_factory=BillingAdjustmentInput)


class WithdrawAllInput(BaseModel):
    student_id: uuid.UUID
    reason: WithdrawalReason
    reason_note: Optional[str] = Field(default=None, max_length=500)
    billing_adjustment: BillingAdjustmentInput = Field(
        default_factory=lambda: BillingAdjustmentInput(type=BillingAdjustment.CANCEL_SUBSCRIPTION)
    )


class ReEnrollInput(BaseModel):
    student_id: uuid.UUID
    billing_adjustment: BillingAdjustmentInput = Field(default_factory=BillingAdjustmentInput)


class WithdrawPreview(BaseModel):
    child_name: str
    active_children_count: int
    current_amount: Optional[int] = None
    recalculated_amount: int
    is_last_active_child: bool
    has_active_subscription: bool
    is_paused: bool


class BillingAdjustmentResult(BaseModel):
    applied: Optional[BillingAdjustment] = None
    new_amount: Optional[int] = None
    billing_error: Optional[str] = None


class WithdrawResult(BillingAdjustmentResult):
    success: bool = True
    withdrawn_count: int = 0
    failed_count: int = 0


class PauseResult(BaseModel):
    success: bool = True
    stripe_subscription_id: str
    status: str
