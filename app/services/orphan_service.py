"""
Irshad Backend: Orphaned Subscriptions
=======================================

What:  Finds live Stripe subscriptions that no local profile is billed
       under, and links one to a profile by hand.
How:   Lists every subscription in the account (customers expanded),
       keeps active/trialing/past_due ones, and drops those with an active
       local BillingAssignment. Linking mirrors the subscription locally
       (create or sync) and gives the profile the full amount.
Who:   /api/billing/orphans routes.
"""

import logging
from collections import Counter
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import atomic
from app.exceptions import NotFoundError, ValidationError
from app.models.billing import BillingAssignment, Subscription
from app.models.enums import StripeAccountType
from app.models.program import ProgramProfile
from app.schemas.billing import LinkOrphanInput, LinkOrphanResult, OrphanedSubscription
from app.services.billing_matcher import program_for_account
from app.services.billing_service import billing_service
from app.services.stripe_service import stripe_gateway
from app.services.subscription_service import (
    customer_id_of,
    extract_period_dates,
    extract_price,
    from_unix,
    subscription_service,
    validate_stripe_subscription_id,
)

logger = logging.getLogger(__name__)

ORPHAN_CANDIDATE_STATUSES = ("active", "trialing", "past_due")
LINKABLE_ACCOUNTS = (StripeAccountType.MAHAD, StripeAccountType.DUGSI)


def _check_account(account_type: StripeAccountType) -> StripeAccountType:
    account_type = StripeAccountType(account_type)
    if account_type not in LINKABLE_ACCOUNTS:
        raise ValidationError(
            message=f"Subscriptions cannot be linked for the {account_type.value} account",
            field="account_type",
        )
    return account_type


class OrphanService:

    async def _linked_subscription_ids(
        self, db: AsyncSession, account_type: StripeAccountType
    ) -> set:
        result = await db.execute(
            select(Subscription.stripe_subscription_id)
            .join(BillingAssignment, BillingAssignment.subscription_id == Subscription.id)
            .where(
                Subscription.stripe_account_type == account_type,
                BillingAssignment.is_active.is_(True),
            )
        )
        return set(result.scalars().all())

    async def list_orphaned_subscriptions(
        self, db: AsyncSession, account_type: StripeAccountType
    ) -> List[OrphanedSubscription]:
        account_type = _check_account(account_type)
        stripe_subs = await stripe_gateway.list_subscriptions(
            account_type, expand=["data.customer"]
        )
        candidates = [s for s in stripe_subs if s.get("status") in ORPHAN_CANDIDATE_STATUSES]
        linked = await self._linked_subscription_ids(db, account_type)
        per_customer = Counter(customer_id_of(s) for s in candidates)

        orphans = []
        for stripe_sub in candidates:
            if stripe_sub["id"] in linked:
                continue
            customer = stripe_sub.get("customer")
            customer = customer if isinstance(customer, dict) else {}
            amount, interval, _ = extract_price(stripe_sub)
            period_start, period_end = extract_period_dates(stripe_sub)
            customer_id = customer_id_of(stripe_sub)
            orphans.append(
                OrphanedSubscription(
                    id=stripe_sub["id"],
                    account_type=account_type,
                    status=stripe_sub["status"],
                    customer_id=customer_id,
                    customer_email=customer.get("email"),
                    customer_name=customer.get("name"),
                    amount=amount or 0,
                    interval=interval,
                    created=from_unix(stripe_sub.get("created")),
                    current_period_start=period_start,
                    current_period_end=period_end,
                    metadata={k: str(v) for k, v in (stripe_sub.get("metadata") or {}).items()},
                    subscription_count=(
                        per_customer[customer_id] if account_type == StripeAccountType.MAHAD else None
                    ),
                )
            )

        logger.info(
            "%d orphaned %s subscription(s) out of %d live",
            len(orphans), account_type, len(candidates),
        )
        return orphans

    async def link_orphaned_subscription(
        self, db: AsyncSession, stripe_subscription_id: str, data: LinkOrphanInput
    ) -> LinkOrphanResult:
        account_type = _check_account(data.account_type)
        stripe_subscription_id = validate_stripe_subscription_id(stripe_subscription_id)

        profile = await db.get(ProgramProfile, data.program_profile_id)
        if profile is None:
            raise NotFoundError(resource="program profile", resource_id=str(data.program_profile_id))
        if profile.program != program_for_account(account_type):
            raise ValidationError(
                message=f"Profile is not in the {program_for_account(account_type).value} program",
                field="program_profile_id",
            )

        stripe_sub = await stripe_gateway.retrieve_subscription(account_type, stripe_subscription_id)
        customer_id = customer_id_of(stripe_sub)
        if not customer_id:
            raise ValidationError(message="Missing customer ID on subscription")

        async with atomic(db):
            account = await billing_service.create_or_update_billing_account(
                db, person_id=profile.person_id, account_type=account_type,
                stripe_customer_id=customer_id,
            )
            subscription = await subscription_service.sync_subscription_from_stripe(db, stripe_sub)
            if subscription is None:
                subscription = await subscription_service.create_subscription_from_stripe(
                    db, stripe_sub, account.id, account_type
                )
            created = await billing_service.link_subscription_to_profiles(
                db, subscription.id, [profile.id], subscription.amount,
                notes="Linked via admin interface",
            )

        logger.info(
            "Linked orphaned subscription %s to profile %s", stripe_subscription_id, profile.id
        )
        return LinkOrphanResult(
            subscription_id=subscription.id,
            billing_account_id=account.id,
            assignments_created=created,
        )


# Singleton instance
orphan_service = OrphanService()
