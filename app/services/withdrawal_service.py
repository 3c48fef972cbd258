"""
Irshad Backend: Dugsi Withdrawal Service
=========================================

What:  Withdraws and re-enrolls Dugsi children and keeps the family's
       Stripe subscription consistent with the number of active children.
Who:   /api/dugsi/students/{id}/withdraw*, /re-enroll and
       /api/dugsi/families/{ref}/pause|resume.

Flow (withdraw_child):

    ┌───────────────┐   ┌─────────────────────────────┐   ┌──────────────────────┐
    │ guards        │──▶│ atomic: profile, enrollment,│──▶│ billing adjustment   │
    │ (404/409/400) │   │ assignments, class roster   │   │ (Stripe, best effort)│
    └───────────────┘   └─────────────────────────────┘   └──────────────────────┘

The withdrawal itself always commits. A Stripe failure during the billing
adjustment is reported back as `billing_error` so an admin can retry the
adjustment; it never rolls back the withdrawal.
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import atomic
from app.exceptions import (
    CircuitBreakerOpenError,
    ConflictError,
    NotFoundError,
    PaymentProviderError,
    ValidationError,
)
from app.models.billing import BillingAssignment, Subscription
from app.models.common import utcnow
from app.models.dugsi import DugsiClassEnrollment
from app.models.enums import (
    ACTIVE_PROFILE_STATUSES,
    EnrollmentStatus,
    StripeAccountType,
    SubscriptionStatus,
)
from app.models.program import Enrollment, ProgramProfile
from app.schemas.withdrawal import (
    BillingAdjustment,
    BillingAdjustmentInput,
    BillingAdjustmentResult,
    PauseResult,
    ReEnrollInput,
    WithdrawAllInput,
    WithdrawChildInput,
    WithdrawPreview,
    WithdrawResult,
    format_withdrawal_reason,
)
from app.services.billing_service import billing_service, calculate_split_amounts
from app.services.family_service import family_service
from app.services.registration_service import registration_service
from app.services.stripe_service import stripe_gateway
from app.services.subscription_service import subscription_service
from app.services.tuition import calculate_dugsi_rate

logger = logging.getLogger(__name__)

FAMILY_SUBSCRIPTION_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAUSED)


class WithdrawalService:

    # ── Family lookups ────────────────────────────────────────────────────

    def _active_children(self, family: List[ProgramProfile]) -> List[ProgramProfile]:
        return [p for p in family if p.status in ACTIVE_PROFILE_STATUSES]

    async def _family_subscription(
        self, db: AsyncSession, family: List[ProgramProfile]
    ) -> Optional[Subscription]:
        """The family's active or paused Dugsi subscription, via any child's assignment."""
        result = await db.execute(
            select(Subscription)
            .join(BillingAssignment, BillingAssignment.subscription_id == Subscription.id)
            .where(
                BillingAssignment.program_profile_id.in_([p.id for p in family]),
                BillingAssignment.is_active.is_(True),
                Subscription.stripe_account_type == StripeAccountType.DUGSI,
                Subscription.status.in_(FAMILY_SUBSCRIPTION_STATUSES),
            )
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def _family_by_reference(
        self, db: AsyncSession, family_reference_id: str
    ) -> List[ProgramProfile]:
        students = await family_service.get_family_students(db, family_reference_id)
        if not students:
            raise NotFoundError(resource="family", resource_id=family_reference_id)
        return [await family_service.get_dugsi_profile(db, s.id) for s in students]

    # ── Preview ───────────────────────────────────────────────────────────

    async def get_withdraw_preview(self, db: AsyncSession, student_id: uuid.UUID) -> WithdrawPreview:
        profile = await family_service.get_dugsi_profile(db, student_id)
        family = await family_service.get_family_profiles(db, profile)
        active = self._active_children(family)
        subscription = await self._family_subscription(db, family)

        remaining = len([p for p in active if p.id != profile.id])
        return WithdrawPreview(
            child_name=profile.person.name,
            active_children_count=len(active),
            current_amount=subscription.amount if subscription else None,
            recalculated_amount=calculate_dugsi_rate(remaining),
            is_last_active_child=profile.status in ACTIVE_PROFILE_STATUSES and remaining == 0,
            has_active_subscription=subscription is not None,
            is_paused=subscription is not None and subscription.status == SubscriptionStatus.PAUSED,
        )

    # ── Billing adjustment ────────────────────────────────────────────────

    async def apply_billing_adjustment(
        self,
        db: AsyncSession,
        subscription: Optional[Subscription],
        adjustment: BillingAdjustmentInput,
        active_count: int,
    ) -> BillingAdjustmentResult:
        """
        Bring the family subscription in line with `active_count` children.

        Raises:
            PaymentProviderError / CircuitBreakerOpenError: Stripe call failed
            ValidationError: custom amount missing or zero
        """
        kind = adjustment.type
        if subscription is None:
            if kind == BillingAdjustment.CANCEL_SUBSCRIPTION:
                return BillingAdjustmentResult(billing_error="No active subscription to cancel")
            if kind == BillingAdjustment.CUSTOM:
                return BillingAdjustmentResult(billing_error="No active subscription to update")
            return BillingAdjustmentResult()
        if kind == BillingAdjustment.KEEP_CURRENT:
            return BillingAdjustmentResult(applied=kind)

        account_type = StripeAccountType(subscription.stripe_account_type)

        if kind == BillingAdjustment.CANCEL_SUBSCRIPTION:
            await subscription_service.cancel_subscription(
                db,
                subscription.stripe_subscription_id,
                cancel_in_stripe=True,
                account_type=account_type,
            )
            return BillingAdjustmentResult(applied=kind, new_amount=0)

        if kind == BillingAdjustment.CUSTOM:
            new_amount = adjustment.custom_amount or 0
        else:
            new_amount = calculate_dugsi_rate(active_count)

        if new_amount == 0:
            if kind == BillingAdjustment.AUTO_RECALCULATE:
                return await self.apply_billing_adjustment(
                    db,
                    subscription,
                    BillingAdjustmentInput(type=BillingAdjustment.CANCEL_SUBSCRIPTION),
                    active_count,
                )
            raise ValidationError(
                message="Custom amount is required",
                field="custom_amount",
                code="MISSING_CUSTOM_AMOUNT",
            )

        product_id = settings.stripe_product_id_for(account_type)
        if not product_id:
            raise PaymentProviderError(
                message=f"No Stripe product configured for the {account_type} account",
                context={"account_type": account_type.value},
            )

        stripe_sub = await stripe_gateway.retrieve_subscription(
            account_type, subscription.stripe_subscription_id
        )
        items = (stripe_sub.get("items") or {}).get("data") or []
        if not items:
            logger.error(
                "Subscription %s has no items in Stripe", subscription.stripe_subscription_id
            )
            return BillingAdjustmentResult(billing_error="No subscription item found in Stripe")
        item_id = items[0]["id"]
        await stripe_gateway.update_subscription_price(
            account_type,
            subscription.stripe_subscription_id,
            item_id=item_id,
            product_id=product_id,
            amount=new_amount,
            interval=subscription.interval,
            interval_count=subscription.interval_count,
        )

        previous = subscription.amount
        subscription.amount = new_amount
        subscription_service.record_history(
            db, subscription, f"amount {previous} -> {new_amount} ({kind.value})"
        )

        assignments = await billing_service.get_active_assignments_for_subscription(db, subscription.id)
        if assignments:
            shares = calculate_split_amounts(new_amount, len(assignments))
            for assignment, share in zip(assignments, shares):
                assignment.amount = share
                assignment.percentage = share / new_amount * 100 if len(assignments) >= 2 else None
        await db.flush()

        logger.info(
            "Subscription %s amount %d -> %d (%s)",
            subscription.stripe_subscription_id, previous, new_amount, kind.value,
        )
        return BillingAdjustmentResult(applied=kind, new_amount=new_amount)

    async def _adjust_reporting_errors(
        self,
        db: AsyncSession,
        subscription: Optional[Subscription],
        adjustment: BillingAdjustmentInput,
        active_count: int,
    ) -> BillingAdjustmentResult:
        try:
            return await self.apply_billing_adjustment(db, subscription, adjustment, active_count)
        except (PaymentProviderError, CircuitBreakerOpenError) as e:
            logger.error(
                "Billing adjustment %s failed for subscription %s: %s",
                adjustment.type.value,
                subscription.stripe_subscription_id if subscription else None,
                e.message,
            )
            return BillingAdjustmentResult(applied=None, billing_error=e.message)

    # ── Withdraw ──────────────────────────────────────────────────────────

    async def withdraw_child(
        self,
        db: AsyncSession,
        data: WithdrawChildInput,
        skip_last_child_guard: bool = False,
    ) -> WithdrawResult:
        profile = await family_service.get_dugsi_profile(db, data.student_id)
        if profile.status == EnrollmentStatus.WITHDRAWN:
            raise ConflictError(message="Student is already withdrawn", code="ALREADY_WITHDRAWN")

        adjustment = data.billing_adjustment
        family = await family_service.get_family_profiles(db, profile)
        remaining = [p for p in self._active_children(family) if p.id != profile.id]

        if not remaining and not skip_last_child_guard and adjustment.type in (
            BillingAdjustment.KEEP_CURRENT,
            BillingAdjustment.CUSTOM,
        ):
            raise ValidationError(
                message="This is the last active child; cancel or recalculate the subscription instead",
                field="billing_adjustment",
                code="LAST_ACTIVE_CHILD",
            )
        if adjustment.type == BillingAdjustment.CUSTOM and not adjustment.custom_amount:
            raise ValidationError(
                message="Custom amount is required",
                field="custom_amount",
                code="MISSING_CUSTOM_AMOUNT",
            )

        subscription = await self._family_subscription(db, family)
        reason = format_withdrawal_reason(data.reason, data.reason_note)
        now = utcnow()

        async with atomic(db):
            profile.status = EnrollmentStatus.WITHDRAWN

            enrollment = await registration_service.get_active_enrollment(db, profile.id)
            if enrollment is not None:
                enrollment.status = EnrollmentStatus.WITHDRAWN
                enrollment.end_date = now
                enrollment.reason = reason

            for assignment in await billing_service.get_active_assignments(db, [profile.id]):
                assignment.is_active = False
                assignment.end_date = now

            class_enrollment = await db.execute(
                select(DugsiClassEnrollment).where(
                    DugsiClassEnrollment.program_profile_id == profile.id,
                    DugsiClassEnrollment.is_active.is_(True),
                )
            )
            for row in class_enrollment.scalars().all():
                row.is_active = False
                row.end_date = now
            await db.flush()

        logger.info("Withdrew student %s (%s)", profile.id, reason)

        billing = await self._adjust_reporting_errors(db, subscription, adjustment, len(remaining))
        return WithdrawResult(withdrawn_count=1, **billing.model_dump())

    async def withdraw_all_children(self, db: AsyncSession, data: WithdrawAllInput) -> WithdrawResult:
        profile = await family_service.get_dugsi_profile(db, data.student_id)
        family = await family_service.get_family_profiles(db, profile)
        active = self._active_children(family)
        if not active:
            raise ConflictError(message="No active children to withdraw", code="ALREADY_WITHDRAWN")

        subscription = await self._family_subscription(db, family)
        withdrawn, failed = 0, 0
        for child in active:
            try:
                await self.withdraw_child(
                    db,
                    WithdrawChildInput(
                        student_id=child.id,
                        reason=data.reason,
                        reason_note=data.reason_note,
                        billing_adjustment=BillingAdjustmentInput(type=BillingAdjustment.KEEP_CURRENT),
                    ),
                    skip_last_child_guard=True,
                )
                withdrawn += 1
            except (ConflictError, ValidationError, NotFoundError) as e:
                failed += 1
                logger.warning("Could not withdraw student %s: %s", child.id, e.message)

        adjustment = data.billing_adjustment
        if failed and adjustment.type == BillingAdjustment.CANCEL_SUBSCRIPTION:
            # Children are still enrolled; bill them instead of canceling
            adjustment = BillingAdjustmentInput(type=BillingAdjustment.AUTO_RECALCULATE)

        billing = await self._adjust_reporting_errors(db, subscription, adjustment, failed)
        return WithdrawResult(
            success=failed == 0,
            withdrawn_count=withdrawn,
            failed_count=failed,
            **billing.model_dump(),
        )

    # ── Re-enroll ─────────────────────────────────────────────────────────

    async def re_enroll_child(self, db: AsyncSession, data: ReEnrollInput) -> WithdrawResult:
        profile = await family_service.get_dugsi_profile(db, data.student_id)
        if profile.status != EnrollmentStatus.WITHDRAWN:
            raise ConflictError(message="Student is not withdrawn", code="NOT_WITHDRAWN")

        family = await family_service.get_family_profiles(db, profile)
        active_count = len(self._active_children(family))
        subscription = await self._family_subscription(db, family)

        async with atomic(db):
            profile.status = EnrollmentStatus.ENROLLED
            db.add(
                Enrollment(
                    program_profile_id=profile.id,
                    status=EnrollmentStatus.ENROLLED,
                    start_date=utcnow(),
                    reason="Re-enrolled",
                )
            )
            if subscription is not None:
                db.add(
                    BillingAssignment(
                        subscription_id=subscription.id,
                        program_profile_id=profile.id,
                        amount=calculate_dugsi_rate(active_count + 1),
                        is_active=True,
                        notes="Re-enrolled",
                    )
                )
            await db.flush()

        logger.info("Re-enrolled student %s", profile.id)
        billing = await self._adjust_reporting_errors(
            db, subscription, data.billing_adjustment, active_count + 1
        )
        return WithdrawResult(withdrawn_count=0, **billing.model_dump())

    # ── Pause / resume ────────────────────────────────────────────────────

    async def _set_family_pause(
        self, db: AsyncSession, family_reference_id: str, pause: bool
    ) -> PauseResult:
        family = await self._family_by_reference(db, family_reference_id)
        subscription = await self._family_subscription(db, family)
        required = SubscriptionStatus.ACTIVE if pause else SubscriptionStatus.PAUSED
        if subscription is None or subscription.status != required:
            raise ValidationError(
                message=f"Family has no {required.value} subscription",
                code="NO_ACTIVE_SUBSCRIPTION",
            )

        account_type = StripeAccountType(subscription.stripe_account_type)
        if pause:
            await stripe_gateway.pause_subscription(account_type, subscription.stripe_subscription_id)
            new_status = SubscriptionStatus.PAUSED
        else:
            await stripe_gateway.resume_subscription(account_type, subscription.stripe_subscription_id)
            new_status = SubscriptionStatus.ACTIVE

        await subscription_service.update_subscription_status(
            db, subscription.stripe_subscription_id, new_status
        )
        logger.info("Family %s billing %s", family_reference_id, new_status.value)
        return PauseResult(
            stripe_subscription_id=subscription.stripe_subscription_id,
            status=new_status.value,
        )

    async def pause_family_billing(self, db: AsyncSession, family_reference_id: str) -> PauseResult:
        return await self._set_family_pause(db, family_reference_id, pause=True)

    async def resume_family_billing(self, db: AsyncSession, family_reference_id: str) -> PauseResult:
        return await self._set_family_pause(db, family_reference_id, pause=False)


# Singleton instance
withdrawal_service = WithdrawalService()
