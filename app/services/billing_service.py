"""
Irshad Backend: Billing Service
================================

What:  Billing accounts, subscription-to-profile assignments, and the
       billing status queries the admin screens use.
Who:   Registration (Dugsi family account), webhook handlers, withdrawal,
       family service, /api/billing routes.

Split rule (one family subscription, several children):

    calculate_split_amounts(23000, 3) → [7666, 7666, 7668]

    Every share is the floor of total / count; the remainder lands on the
    last share so the assignments always sum to the subscription amount.
"""

import logging
import uuid
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import atomic
from app.exceptions import DatabaseError, IrshadError, ValidationError
from app.models.billing import (
    CUSTOMER_ID_COLUMNS,
    BillingAccount,
    BillingAssignment,
    Subscription,
)
from app.models.common import utcnow
from app.models.enums import ContactType, StripeAccountType, SubscriptionStatus
from app.models.person import ContactPoint, Person
from app.schemas.billing import (
    BillingAccountResponse,
    BillingStatusResponse,
    ProfileBillingStatus,
    SubscriptionResponse,
)
from app.services.contact import normalize_email

logger = logging.getLogger(__name__)

ACTIVE_SUBSCRIPTION_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


def calculate_split_amounts(total_amount: int, count: int) -> List[int]:
    if count <= 0:
        raise ValidationError(
            message="Cannot split an amount across zero profiles",
            field="count",
            code="INVALID_SPLIT",
        )
    if count == 1:
        return [total_amount]
    share = total_amount // count
    amounts = [share] * count
    amounts[-1] = total_amount - share * (count - 1)
    return amounts


class BillingService:
    """
    Stateless; every method takes the request's AsyncSession.

    Writes flush but never commit. The request dependency (get_db_session)
    or the webhook processor owns the transaction.
    """

    # ── Billing accounts ──────────────────────────────────────────────────

    async def get_billing_account(
        self, db: AsyncSession, person_id: uuid.UUID, account_type: StripeAccountType
    ) -> Optional[BillingAccount]:
        result = await db.execute(
            select(BillingAccount).where(
                BillingAccount.person_id == person_id,
                BillingAccount.account_type == account_type,
            )
        )
        return result.scalar_one_or_none()

    async def get_billing_account_by_customer_id(
        self, db: AsyncSession, customer_id: str, account_type: StripeAccountType
    ) -> Optional[BillingAccount]:
        column = getattr(BillingAccount, CUSTOMER_ID_COLUMNS[StripeAccountType(account_type)])
        result = await db.execute(select(BillingAccount).where(column == customer_id))
        return result.scalar_one_or_none()

    async def create_or_update_billing_account(
        self,
        db: AsyncSession,
        person_id: uuid.UUID,
        account_type: StripeAccountType,
        stripe_customer_id: Optional[str] = None,
        payment_intent_id: Optional[str] = None,
        payment_method_captured: Optional[bool] = None,
        primary_contact_point_id: Optional[uuid.UUID] = None,
    ) -> BillingAccount:
        """
        Upsert the (person, account_type) billing account.

        Arguments left as None never overwrite stored values, so a webhook
        that only knows the customer id cannot erase the payment intent a
        previous event recorded.
        """
        account_type = StripeAccountType(account_type)
        account = await self.get_billing_account(db, person_id, account_type)
        if account is None:
            account = BillingAccount(
                person_id=person_id,
                account_type=account_type,
                payment_method_captured=False,
            )
            db.add(account)
            logger.info("Creating %s billing account for person %s", account_type, person_id)

        if stripe_customer_id is not None:
            setattr(account, CUSTOMER_ID_COLUMNS[account_type], stripe_customer_id)
        if payment_intent_id is not None and account_type == StripeAccountType.DUGSI:
            account.payment_intent_id_dugsi = payment_intent_id
        if payment_method_captured is not None:
            account.payment_method_captured = payment_method_captured
            if payment_method_captured:
                account.payment_method_captured_at = utcnow()
        if primary_contact_point_id is not None:
            account.primary_contact_point_id = primary_contact_point_id

        await db.flush()
        return account

    # ── Assignments ───────────────────────────────────────────────────────

    async def get_active_assignments(
        self, db: AsyncSession, profile_ids: Sequence[uuid.UUID]
    ) -> List[BillingAssignment]:
        if not profile_ids:
            return []
        result = await db.execute(
            select(BillingAssignment).where(
                BillingAssignment.program_profile_id.in_(list(profile_ids)),
                BillingAssignment.is_active.is_(True),
            )
        )
        return list(result.scalars().all())

    async def get_active_assignments_for_subscription(
        self, db: AsyncSession, subscription_id: uuid.UUID
    ) -> List[BillingAssignment]:
        result = await db.execute(
            select(BillingAssignment).where(
                BillingAssignment.subscription_id == subscription_id,
                BillingAssignment.is_active.is_(True),
            )
        )
        return list(result.scalars().all())

    async def link_subscription_to_profiles(
        self,
        db: AsyncSession,
        subscription_id: uuid.UUID,
        profile_ids: Sequence[uuid.UUID],
        total_amount: int,
        notes: Optional[str] = None,
    ) -> int:
        """
        Split a subscription across profiles, one BillingAssignment each.

        Profiles already actively assigned to this subscription are skipped,
        which makes redelivered webhooks harmless.

        Returns:
            Number of assignments created.
        """
        if not profile_ids:
            raise ValidationError(
                message="At least one profile ID is required",
                field="profile_ids",
            )

        async with atomic(db):
            result = await db.execute(
                select(BillingAssignment.program_profile_id).where(
                    BillingAssignment.subscription_id == subscription_id,
                    BillingAssignment.program_profile_id.in_(list(profile_ids)),
                    BillingAssignment.is_active.is_(True),
                )
            )
            already_linked = set(result.scalars().all())

            requested = list(dict.fromkeys(profile_ids))
            # Shares are computed over every requested profile, linked or not
            amounts = calculate_split_amounts(total_amount, len(requested))

            assignments = []
            for profile_id, amount in zip(requested, amounts):
                if profile_id in already_linked:
                    continue
                percentage = None
                if len(requested) >= 2 and total_amount > 0:
                    percentage = amount / total_amount * 100
                assignments.append(
                    BillingAssignment(
                        subscription_id=subscription_id,
                        program_profile_id=profile_id,
                        amount=amount,
                        percentage=percentage,
                        is_active=True,
                        notes=notes,
                    )
                )
            if not assignments:
                logger.info("Subscription %s already linked to all profiles", subscription_id)
                return 0

            db.add_all(assignments)
            await db.flush()

        logger.info(
            "Linked subscription %s to %d profile(s), total=%d",
            subscription_id, len(assignments), total_amount,
        )
        return len(assignments)

    async def unlink_subscription(self, db: AsyncSession, subscription_id: uuid.UUID) -> int:
        assignments = await self.get_active_assignments_for_subscription(db, subscription_id)
        now = utcnow()
        for assignment in assignments:
            assignment.is_active = False
            assignment.end_date = now
        await db.flush()
        return len(assignments)

    # ── Status queries ────────────────────────────────────────────────────

    async def get_billing_status_by_email(
        self, db: AsyncSession, email: str, account_type: StripeAccountType
    ) -> BillingStatusResponse:
        normalized = normalize_email(email)
        status = BillingStatusResponse(email=normalized or email, account_type=account_type)
        try:
            result = await db.execute(
                select(Person)
                .join(ContactPoint, ContactPoint.person_id == Person.id)
                .where(
                    ContactPoint.type == ContactType.EMAIL,
                    ContactPoint.value == normalized,
                )
                .limit(1)
            )
            person = result.scalars().first()
            if person is None:
                return status

            status.person_id = person.id
            status.name = person.name
            account = await self.get_billing_account(db, person.id, account_type)
            if account is None:
                return status

            status.billing_account = BillingAccountResponse.model_validate(account)
            subs = await db.execute(
                select(Subscription)
                .where(
                    Subscription.billing_account_id == account.id,
                    Subscription.status.in_(ACTIVE_SUBSCRIPTION_STATUSES),
                )
                .order_by(Subscription.created_at.desc())
            )
            status.subscriptions = [
                SubscriptionResponse.model_validate(s) for s in subs.scalars().all()
            ]
            return status
        except IrshadError:
            raise
        except Exception as e:
            logger.error("Billing status lookup failed: %s", str(e), exc_info=True)
            raise DatabaseError(context={"original_error": type(e).__name__})

    async def get_billing_status_for_profiles(
        self, db: AsyncSession, profile_ids: Sequence[uuid.UUID]
    ) -> Dict[str, ProfileBillingStatus]:
        """Billing status per profile id; profiles with no assignment get an empty status."""
        statuses = {str(pid): ProfileBillingStatus() for pid in profile_ids}
        if not profile_ids:
            return statuses

        result = await db.execute(
            select(BillingAssignment, Subscription)
            .join(Subscription, Subscription.id == BillingAssignment.subscription_id)
            .where(
                BillingAssignment.program_profile_id.in_(list(profile_ids)),
                BillingAssignment.is_active.is_(True),
            )
        )
        for assignment, subscription in result.all():
            statuses[str(assignment.program_profile_id)] = ProfileBillingStatus(
                subscription_status=subscription.status,
                amount=assignment.amount,
                paid_until=subscription.paid_until,
            )
        return statuses


# Singleton instance
billing_service = BillingService()
