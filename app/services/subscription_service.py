"""
Irshad Backend: Subscription Service
=====================================

What:  Keeps the `subscriptions` table in step with Stripe.
How:   Reads plain Stripe subscription payloads (dicts decoded from webhook
       JSON) and upserts the local row keyed by stripe_subscription_id.
       Every status change appends a SubscriptionHistory row.
Who:   Webhook handlers, withdrawal service (pause/resume/cancel).

Period dates:
    Older Stripe API versions put current_period_start/end on the
    subscription; newer ones moved them onto each subscription item.
    extract_period_dates() reads whichever is present.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import NotFoundError, ValidationError
from app.models.billing import Subscription, SubscriptionHistory
from app.models.enums import StripeAccountType, SubscriptionStatus
from app.services.billing_service import ACTIVE_SUBSCRIPTION_STATUSES, billing_service
from app.services.stripe_service import stripe_gateway

logger = logging.getLogger(__name__)


def validate_stripe_subscription_id(value: Optional[str]) -> str:
    if not value or not isinstance(value, str) or not value.startswith("sub_"):
        raise ValidationError(
            message=f"Invalid Stripe subscription ID: {value!r}",
            field="stripe_subscription_id",
            code="INVALID_SUBSCRIPTION_ID",
        )
    return value


def from_unix(timestamp: Optional[int]) -> Optional[datetime]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)


def customer_id_of(stripe_obj: Dict[str, Any]) -> Optional[str]:
    """The customer id whether or not `customer` was expanded."""
    customer = stripe_obj.get("customer")
    if isinstance(customer, dict):
        return customer.get("id")
    return customer


def _first_item(stripe_sub: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    items = (stripe_sub.get("items") or {}).get("data") or []
    return items[0] if items else None


def extract_period_dates(
    stripe_sub: Dict[str, Any],
) -> Tuple[Optional[datetime], Optional[datetime]]:
    start = stripe_sub.get("current_period_start")
    end = stripe_sub.get("current_period_end")
    item = _first_item(stripe_sub)
    if item is not None:
        start = start if start is not None else item.get("current_period_start")
        end = end if end is not None else item.get("current_period_end")
    return from_unix(start), from_unix(end)


def extract_price(stripe_sub: Dict[str, Any]) -> Tuple[Optional[int], str, int]:
    """(unit_amount, interval, interval_count) of the first item's price."""
    item = _first_item(stripe_sub)
    price = (item or {}).get("price") or {}
    recurring = price.get("recurring") or {}
    return (
        price.get("unit_amount"),
        recurring.get("interval") or "month",
        recurring.get("interval_count") or 1,
    )


def parse_status(value: Optional[str]) -> SubscriptionStatus:
    try:
        return SubscriptionStatus(value)
    except ValueError:
        raise ValidationError(
            message=f"Invalid subscription status: {value!r}",
            field="status",
            code="INVALID_STATUS",
        )


def is_subscription_active(status: Optional[SubscriptionStatus]) -> bool:
    return status in ACTIVE_SUBSCRIPTION_STATUSES


class SubscriptionService:

    async def get_by_stripe_id(
        self, db: AsyncSession, stripe_subscription_id: str
    ) -> Optional[Subscription]:
        result = await db.execute(
            select(Subscription).where(
                Subscription.stripe_subscription_id == stripe_subscription_id
            )
        )
        return result.scalar_one_or_none()

    def record_history(
        self, db: AsyncSession, subscription: Subscription, reason: str
    ) -> None:
        db.add(
            SubscriptionHistory(
                subscription_id=subscription.id,
                stripe_subscription_id=subscription.stripe_subscription_id,
                status=subscription.status,
                amount=subscription.amount,
                reason=reason,
            )
        )

    async def create_subscription_from_stripe(
        self,
        db: AsyncSession,
        stripe_sub: Dict[str, Any],
        billing_account_id: uuid.UUID,
        account_type: StripeAccountType,
    ) -> Subscription:
        """
        Insert the local mirror of a Stripe subscription.

        Idempotent: a redelivered `customer.subscription.created` finds the
        existing row and refreshes it instead of failing on the unique key.
        """
        stripe_id = validate_stripe_subscription_id(stripe_sub.get("id"))
        status = parse_status(stripe_sub.get("status"))
        amount, interval, interval_count = extract_price(stripe_sub)
        period_start, period_end = extract_period_dates(stripe_sub)

        subscription = await self.get_by_stripe_id(db, stripe_id)
        if subscription is not None:
            logger.info("Subscription %s already exists; refreshing", stripe_id)
            subscription.status = status
            subscription.amount = amount or subscription.amount
            subscription.current_period_start = period_start
            subscription.current_period_end = period_end
            subscription.paid_until = period_end
            await db.flush()
            return subscription

        subscription = Subscription(
            billing_account_id=billing_account_id,
            stripe_account_type=StripeAccountType(account_type),
            stripe_subscription_id=stripe_id,
            stripe_customer_id=customer_id_of(stripe_sub),
            status=status,
            amount=amount or 0,
            currency=stripe_sub.get("currency") or "usd",
            interval=interval,
            interval_count=interval_count,
            current_period_start=period_start,
            current_period_end=period_end,
            paid_until=period_end,
            previous_subscription_ids=[],
        )
        db.add(subscription)
        await db.flush()
        self.record_history(db, subscription, "created")
        await db.flush()

        logger.info(
            "Created subscription %s (%s, %d cents, status=%s)",
            stripe_id, account_type, subscription.amount, status.value,
        )
        return subscription

    async def sync_subscription_from_stripe(
        self, db: AsyncSession, stripe_sub: Dict[str, Any]
    ) -> Optional[Subscription]:
        """Returns None when the subscription is not mirrored locally."""
        stripe_id = validate_stripe_subscription_id(stripe_sub.get("id"))
        status = parse_status(stripe_sub.get("status"))

        subscription = await self.get_by_stripe_id(db, stripe_id)
        if subscription is None:
            return None

        previous_status = subscription.status
        amount, interval, interval_count = extract_price(stripe_sub)
        period_start, period_end = extract_period_dates(stripe_sub)

        subscription.status = status
        if amount is not None:
            subscription.amount = amount
            subscription.interval = interval
            subscription.interval_count = interval_count
        if period_start is not None:
            subscription.current_period_start = period_start
        if period_end is not None:
            subscription.current_period_end = period_end
            subscription.paid_until = period_end

        if previous_status != status:
            self.record_history(db, subscription, f"status {previous_status.value} -> {status.value}")
            logger.info(
                "Subscription %s status %s -> %s", stripe_id, previous_status.value, status.value
            )
        await db.flush()
        return subscription

    async def update_subscription_status(
        self, db: AsyncSession, stripe_subscription_id: str, status: SubscriptionStatus
    ) -> Subscription:
        subscription = await self.get_by_stripe_id(db, stripe_subscription_id)
        if subscription is None:
            raise NotFoundError(resource="subscription", resource_id=stripe_subscription_id)

        status = SubscriptionStatus(status)
        if subscription.status != status:
            subscription.status = status
            self.record_history(db, subscription, f"status set to {status.value}")
        await db.flush()
        return subscription

    async def cancel_subscription(
        self,
        db: AsyncSession,
        stripe_subscription_id: str,
        cancel_in_stripe: bool = False,
        account_type: Optional[StripeAccountType] = None,
    ) -> Subscription:
        """
        Mark a subscription canceled and end its billing assignments.

        With cancel_in_stripe=True the Stripe subscription is canceled first;
        if that call fails nothing local changes.
        """
        subscription = await self.get_by_stripe_id(db, stripe_subscription_id)
        if subscription is None:
            raise NotFoundError(resource="subscription", resource_id=stripe_subscription_id)

        if cancel_in_stripe:
            if account_type is None:
                raise ValidationError(
                    message="Account type is required to cancel a subscription in Stripe",
                    field="account_type",
                )
            await stripe_gateway.cancel_subscription(account_type, stripe_subscription_id)

        subscription.status = SubscriptionStatus.CANCELED
        self.record_history(db, subscription, "canceled")
        unlinked = await billing_service.unlink_subscription(db, subscription.id)
        await db.flush()

        logger.info(
            "Canceled subscription %s (unlinked %d assignment(s))",
            stripe_subscription_id, unlinked,
        )
        return subscription


# Singleton instance
subscription_service = SubscriptionService()
