"""
Irshad Backend: Checkout Service
=================================

What:  Builds Stripe Checkout sessions: the payment link an admin sends to
       a Dugsi family, and the checkout a Mahad student completes after
       registering.
How:   The rate is computed server-side (tuition module) and written into
       the subscription metadata next to the profile ids. When Stripe later
       sends `customer.subscription.created`, the webhook handler links the
       subscription to `profileIds` and compares the charged price with
       `calculatedRate`.
Who:   POST /api/dugsi/families/{ref}/checkout, POST /api/mahad/checkout.

Subscription metadata written (technical keys, read by the webhook):

    Dugsi:  familyId, guardianPersonId, childCount, profileIds,
            calculatedRate, overrideUsed, billingStartDate, source
    Mahad:  profileId, personId, studentName, graduationStatus,
            paymentFrequency, billingType, calculatedRate, source

The capitalized keys (Family, Children, Rate, ...) are for people reading
the Stripe dashboard.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import NotFoundError, PaymentProviderError, ValidationError
from app.models.enums import Program, StripeAccountType
from app.models.program import ProgramProfile
from app.schemas.checkout import (
    DugsiCheckoutInput,
    DugsiCheckoutResponse,
    MahadCheckoutInput,
    MahadCheckoutResponse,
)
from app.services.billing_service import billing_service
from app.services.family_service import family_service
from app.services.stripe_service import stripe_gateway
from app.services.tuition import (
    MAX_EXPECTED_FAMILY_RATE,
    calculate_dugsi_rate,
    calculate_mahad_rate,
    format_rate,
    get_rate_tier_description,
    get_stripe_interval,
    should_create_subscription,
    validate_override_amount,
)

logger = logging.getLogger(__name__)

MAX_BILLING_START_DAYS = 365

DUGSI_SOURCE = "dugsi-admin-payment-link"
MAHAD_SOURCE = "mahad-registration"


def billing_cycle_anchor(start: datetime, now: Optional[datetime] = None) -> int:
    """
    Unix timestamp for `billing_cycle_anchor`.

    Raises:
        ValidationError: start is not in the future or is more than a year out
    """
    now = now or datetime.now(timezone.utc)
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if start <= now:
        raise ValidationError(
            message="Billing start date must be in the future",
            field="billing_start_date",
        )
    if start > now + timedelta(days=MAX_BILLING_START_DAYS):
        raise ValidationError(
            message=f"Billing start date must be within {MAX_BILLING_START_DAYS} days",
            field="billing_start_date",
        )
    return int(start.timestamp())


class CheckoutService:

    # ══════════════════════════════════════════════════════════════════════
    # Dugsi family payment link
    # ══════════════════════════════════════════════════════════════════════

    async def create_dugsi_checkout_session(
        self, db: AsyncSession, family_reference_id: str, data: DugsiCheckoutInput
    ) -> DugsiCheckoutResponse:
        anchor = None
        if data.billing_start_date is not None:
            anchor = billing_cycle_anchor(data.billing_start_date)

        profiles = await family_service.get_billable_family_profiles(db, family_reference_id)
        if not profiles:
            raise NotFoundError(resource="family", resource_id=family_reference_id)
        child_count = len(profiles)

        relation = await family_service.get_primary_payer(db, profiles[0])
        if relation is None:
            raise ValidationError(
                message="No primary payer is set for this family",
                code="NO_PRIMARY_PAYER",
            )
        guardian = relation.guardian
        if not guardian.email:
            raise ValidationError(
                message="The primary payer has no email address",
                code="NO_PAYER_EMAIL",
            )

        calculated_rate = calculate_dugsi_rate(child_count)
        warning = None
        is_override = data.override_amount is not None
        if is_override:
            valid, error, warning = validate_override_amount(data.override_amount, child_count)
            if not valid:
                raise ValidationError(message=error, field="override_amount")
            rate = data.override_amount
        else:
            rate = calculated_rate

        if rate <= 0:
            raise ValidationError(message="Calculated rate must be greater than zero")
        if rate > MAX_EXPECTED_FAMILY_RATE:
            logger.warning(
                "Unusually high Dugsi rate %d for family %s (%d children, override=%s)",
                rate, family_reference_id, child_count, is_override,
            )

        product_id = settings.stripe_product_id_for(StripeAccountType.DUGSI)
        if not product_id:
            raise PaymentProviderError(message="Stripe product is not configured for Dugsi")

        account = await billing_service.get_billing_account(
            db, guardian.id, StripeAccountType.DUGSI
        )
        customer_id = account.stripe_customer_id_dugsi if account else None
        interval, interval_count = get_stripe_interval(None)

        subscription_metadata = {
            "Family": guardian.name,
            "Children": ", ".join(p.person.name for p in profiles),
            "Rate": format_rate(rate),
            "Tier": get_rate_tier_description(child_count),
            "Source": "Dugsi Admin Payment Link",
            "familyId": family_reference_id,
            "guardianPersonId": str(guardian.id),
            "childCount": str(child_count),
            "profileIds": ",".join(str(p.id) for p in profiles),
            "calculatedRate": str(calculated_rate),
            "overrideUsed": "true" if is_override else "false",
            "billingStartDate": data.billing_start_date.isoformat() if data.billing_start_date else "immediate",
            "source": DUGSI_SOURCE,
        }
        subscription_data: Dict[str, Any] = {"metadata": subscription_metadata}
        if anchor is not None:
            subscription_data["billing_cycle_anchor"] = anchor
            subscription_data["proration_behavior"] = "none"

        params: Dict[str, Any] = {
            "mode": "subscription",
            "payment_method_types": ["us_bank_account"],
            "line_items": [
                {
                    "price_data": {
                        "currency": "usd",
                        "product": product_id,
                        "unit_amount": rate,
                        "recurring": {"interval": interval, "interval_count": interval_count},
                    },
                    "quantity": 1,
                }
            ],
            "subscription_data": subscription_data,
            "metadata": {
                "Family": guardian.name,
                "Source": "Dugsi Admin Payment Link",
                "familyId": family_reference_id,
                "guardianPersonId": str(guardian.id),
                "childCount": str(child_count),
                "source": DUGSI_SOURCE,
            },
            "success_url": data.success_url or f"{settings.app_url}/dugsi?payment=success",
            "cancel_url": data.cancel_url or f"{settings.app_url}/dugsi?payment=canceled",
            "allow_promotion_codes": True,
        }
        if customer_id:
            params["customer"] = customer_id
        else:
            params["customer_email"] = guardian.email

        session = await stripe_gateway.create_checkout_session(StripeAccountType.DUGSI, **params)
        if not session.get("url"):
            logger.error("Checkout session %s for family %s has no URL", session.get("id"), family_reference_id)
            raise PaymentProviderError(message="Failed to create payment link")

        logger.info(
            "Dugsi checkout %s created for family %s (%d children, rate=%d, override=%s)",
            session["id"], family_reference_id, child_count, rate, is_override,
        )
        return DugsiCheckoutResponse(
            session_id=session["id"],
            url=session["url"],
            calculated_rate=calculated_rate,
            final_rate=rate,
            is_override=is_override,
            rate_description=format_rate(rate),
            tier_description=get_rate_tier_description(child_count),
            family_name=guardian.name,
            child_count=child_count,
            warning=warning,
        )

    # ══════════════════════════════════════════════════════════════════════
    # Mahad registration checkout
    # ══════════════════════════════════════════════════════════════════════

    async def create_mahad_checkout_session(
        self, db: AsyncSession, data: MahadCheckoutInput
    ) -> MahadCheckoutResponse:
        if not should_create_subscription(data.billing_type):
            raise ValidationError(
                message="Exempt students do not need to set up payment",
                field="billing_type",
            )

        profile = await db.get(ProgramProfile, data.profile_id)
        if profile is None or profile.program != Program.MAHAD_PROGRAM:
            raise NotFoundError(resource="student profile", resource_id=str(data.profile_id))

        rate = calculate_mahad_rate(data.graduation_status, data.payment_frequency, data.billing_type)
        if rate <= 0:
            raise ValidationError(message="Invalid rate calculation")
        interval, interval_count = get_stripe_interval(data.payment_frequency)
        product_id = settings.stripe_product_id_for(StripeAccountType.MAHAD)
        if not product_id:
            raise PaymentProviderError(message="Stripe product is not configured for Mahad")

        person = profile.person
        account = await billing_service.get_billing_account(
            db, profile.person_id, StripeAccountType.MAHAD
        )
        customer_id = account.stripe_customer_id_mahad if account else None

        params: Dict[str, Any] = {
            "mode": "subscription",
            "payment_method_types": ["card", "us_bank_account"],
            "line_items": [
                {
                    "price_data": {
                        "currency": "usd",
                        "product": product_id,
                        "unit_amount": rate,
                        "recurring": {"interval": interval, "interval_count": interval_count},
                    },
                    "quantity": 1,
                }
            ],
            "subscription_data": {
                "metadata": {
                    "Student": person.name,
                    "Rate": format_rate(rate),
                    "Status": data.graduation_status.value.replace("_", " ").title(),
                    "Type": data.billing_type.value.replace("_", " ").title(),
                    "Source": "Mahad Registration",
                    "profileId": str(profile.id),
                    "personId": str(profile.person_id),
                    "studentName": person.name,
                    "graduationStatus": data.graduation_status.value,
                    "paymentFrequency": data.payment_frequency.value,
                    "billingType": data.billing_type.value,
                    "calculatedRate": str(rate),
                    "source": MAHAD_SOURCE,
                },
            },
            "metadata": {
                "Student": person.name,
                "Source": "Mahad Registration",
                "profileId": str(profile.id),
                "personId": str(profile.person_id),
                "studentName": person.name,
                "source": MAHAD_SOURCE,
            },
            "success_url": data.success_url or f"{settings.app_url}/mahad/register?success=true",
            "cancel_url": data.cancel_url or f"{settings.app_url}/mahad/register?canceled=true",
            "allow_promotion_codes": True,
        }
        if customer_id:
            params["customer"] = customer_id
        elif person.email:
            params["customer_email"] = person.email

        session = await stripe_gateway.create_checkout_session(StripeAccountType.MAHAD, **params)

        profile.graduation_status = data.graduation_status
        profile.payment_frequency = data.payment_frequency
        profile.billing_type = data.billing_type
        await db.flush()

        logger.info(
            "Mahad checkout %s created for profile %s (rate=%d, %s)",
            session["id"], profile.id, rate, data.payment_frequency.value,
        )
        return MahadCheckoutResponse(session_id=session["id"], url=session.get("url"), rate=rate)


# Singleton instance
checkout_service = CheckoutService()
