"""
Irshad Backend: Subscription Consolidation
===========================================

What:  Attaches an existing Dugsi Stripe subscription to a family: the
       family's primary payer becomes the billing account owner and every
       billable child gets an assignment with its share of the amount.
How:   `preview` reads the subscription (customer expanded) and reports
       name/email differences and any family already holding it.
       `consolidate` rewrites the local records in one transaction, then
       updates Stripe (subscription metadata, optionally the customer).
       The Stripe updates run after the local commit point and never undo
       it; a failure is reported in the result.
Who:   /api/billing/subscriptions/{id}/consolidate routes.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.database import atomic
from app.exceptions import (
    CircuitBreakerOpenError,
    ConflictError,
    NotFoundError,
    PaymentProviderError,
    ValidationError,
)
from app.models.billing import BillingAssignment, Subscription
from app.models.enums import StripeAccountType
from app.models.person import Person
from app.models.program import ProgramProfile
from app.schemas.billing import ConsolidateInput, ConsolidateResult, ConsolidationPreview
from app.services.billing_service import billing_service
from app.services.family_service import family_service
from app.services.stripe_service import stripe_gateway
from app.services.subscription_service import (
    extract_price,
    subscription_service,
    validate_stripe_subscription_id,
)

logger = logging.getLogger(__name__)

CONSOLIDATION_SOURCE = "admin-consolidation"


@dataclass
class _Context:
    stripe_sub: Dict[str, Any]
    customer: Dict[str, Any]
    profiles: List[ProgramProfile]
    payer: Person
    local: Optional[Subscription]
    assignments: List[BillingAssignment]
    existing_family: Optional[str]


def _differs(left: Optional[str], right: Optional[str]) -> bool:
    return (left or "").strip().lower() != (right or "").strip().lower()


class ConsolidationService:

    async def _load(
        self, db: AsyncSession, stripe_subscription_id: str, family_reference_id: str
    ) -> _Context:
        stripe_subscription_id = validate_stripe_subscription_id(stripe_subscription_id)
        stripe_sub = await stripe_gateway.retrieve_subscription(
            StripeAccountType.DUGSI, stripe_subscription_id, expand=["customer"]
        )
        customer = stripe_sub.get("customer")
        if not isinstance(customer, dict) or customer.get("deleted"):
            raise NotFoundError(resource="Stripe customer", resource_id=stripe_subscription_id)

        profiles = await family_service.get_billable_family_profiles(db, family_reference_id)
        if not profiles:
            raise NotFoundError(resource="family", resource_id=family_reference_id)
        relation = await family_service.get_primary_payer(db, profiles[0])
        if relation is None:
            raise ValidationError(
                message="No primary payer is set for this family",
                code="NO_PRIMARY_PAYER",
            )

        local = await subscription_service.get_by_stripe_id(db, stripe_subscription_id)
        assignments: List[BillingAssignment] = []
        existing_family = None
        if local is not None:
            assignments = await billing_service.get_active_assignments_for_subscription(db, local.id)
            if assignments:
                linked = await db.get(ProgramProfile, assignments[0].program_profile_id)
                existing_family = linked.family_reference_id if linked else None

        return _Context(
            stripe_sub=stripe_sub,
            customer=customer,
            profiles=profiles,
            payer=relation.guardian,
            local=local,
            assignments=assignments,
            existing_family=existing_family,
        )

    async def preview(
        self, db: AsyncSession, stripe_subscription_id: str, family_reference_id: str
    ) -> ConsolidationPreview:
        ctx = await self._load(db, stripe_subscription_id, family_reference_id)
        amount, _, _ = extract_price(ctx.stripe_sub)
        return ConsolidationPreview(
            stripe_subscription_id=ctx.stripe_sub["id"],
            status=ctx.stripe_sub.get("status") or "",
            amount=amount or 0,
            customer_id=ctx.customer["id"],
            stripe_customer_name=ctx.customer.get("name"),
            stripe_customer_email=ctx.customer.get("email"),
            family_reference_id=family_reference_id,
            child_count=len(ctx.profiles),
            payer_person_id=ctx.payer.id,
            payer_name=ctx.payer.name,
            payer_email=ctx.payer.email,
            name_mismatch=_differs(ctx.customer.get("name"), ctx.payer.name),
            email_mismatch=_differs(ctx.customer.get("email"), ctx.payer.email),
            existing_family_reference_id=ctx.existing_family,
            is_already_linked=ctx.existing_family == family_reference_id,
        )

    async def consolidate(
        self, db: AsyncSession, stripe_subscription_id: str, data: ConsolidateInput
    ) -> ConsolidateResult:
        """
        Raises:
            ConflictError(ALREADY_LINKED): another family holds the
                subscription and force_override is off
        """
        family_reference_id = data.family_reference_id
        ctx = await self._load(db, stripe_subscription_id, family_reference_id)
        moving = ctx.existing_family is not None and ctx.existing_family != family_reference_id
        if moving and not data.force_override:
            raise ConflictError(
                message=f"Subscription is already linked to family {ctx.existing_family}",
                code="ALREADY_LINKED",
                context={"family_reference_id": ctx.existing_family},
            )

        async with atomic(db):
            if ctx.local is not None and ctx.assignments:
                # Relinking recomputes every share, so drop the old rows first
                await billing_service.unlink_subscription(db, ctx.local.id)

            account = await billing_service.create_or_update_billing_account(
                db,
                person_id=ctx.payer.id,
                account_type=StripeAccountType.DUGSI,
                stripe_customer_id=ctx.customer["id"],
                payment_method_captured=True,
            )
            if ctx.local is None:
                subscription = await subscription_service.create_subscription_from_stripe(
                    db, ctx.stripe_sub, account.id, StripeAccountType.DUGSI
                )
            else:
                subscription = await subscription_service.sync_subscription_from_stripe(
                    db, ctx.stripe_sub
                )
                subscription.billing_account_id = account.id
                subscription.stripe_customer_id = ctx.customer["id"]

            profile_ids = [p.id for p in ctx.profiles]
            created = await billing_service.link_subscription_to_profiles(
                db, subscription.id, profile_ids, subscription.amount,
                notes="Consolidated via admin",
            )

        logger.info(
            "Consolidated %s into family %s (%d assignment(s), moved=%s)",
            subscription.stripe_subscription_id, family_reference_id, created, moving,
        )

        customer_synced = False
        sync_error = None
        if data.sync_stripe_customer:
            try:
                await stripe_gateway.update_customer(
                    StripeAccountType.DUGSI,
                    ctx.customer["id"],
                    name=ctx.payer.name,
                    email=ctx.payer.email,
                )
                customer_synced = True
            except (PaymentProviderError, CircuitBreakerOpenError) as e:
                sync_error = e.message
                logger.warning("Customer sync failed for %s: %s", ctx.customer["id"], e.message)

        metadata_updated = False
        try:
            await stripe_gateway.update_subscription_metadata(
                StripeAccountType.DUGSI,
                subscription.stripe_subscription_id,
                {
                    "familyId": family_reference_id,
                    "guardianPersonId": str(ctx.payer.id),
                    "childCount": str(len(profile_ids)),
                    "profileIds": ",".join(str(i) for i in profile_ids),
                    "calculatedRate": str(subscription.amount),
                    "source": CONSOLIDATION_SOURCE,
                },
            )
            metadata_updated = True
        except (PaymentProviderError, CircuitBreakerOpenError) as e:
            logger.warning(
                "Metadata update failed for %s: %s", subscription.stripe_subscription_id, e.message
            )

        return ConsolidateResult(
            subscription_id=subscription.id,
            billing_account_id=account.id,
            assignments_created=created,
            stripe_metadata_updated=metadata_updated,
            stripe_customer_synced=customer_synced,
            previous_family_unlinked=moving,
            sync_error=sync_error,
        )


# Singleton instance
consolidation_service = ConsolidationService()
