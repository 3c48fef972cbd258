"""
Irshad Backend: Stripe Webhook Processing
==========================================

What:  Verifies, de-duplicates and dispatches Stripe webhook events for
       both Stripe accounts (Mahad and Dugsi).
Who:   POST /api/webhooks/stripe/{source}
When:  Every time Stripe delivers an event.

Processing Flow:
    ┌───────────┐   ┌──────────┐   ┌───────────────┐   ┌──────────┐   ┌──────────┐
    │ pre-check │──▶│  verify  │──▶│ already seen? │──▶│  record  │──▶│ dispatch │
    │ body/sig  │   │ signature│   │ (event,source)│   │  event   │   │ handler  │
    └───────────┘   └──────────┘   └───────────────┘   └──────────┘   └──────────┘
        400            401            200 skipped                     200 / 4xx / 5xx

Status codes returned to Stripe:
    200  handled, unhandled type, or duplicate delivery
    400  malformed event or a rule violation (rate mismatch, invalid status);
         redelivery would fail the same way
    401  signature did not verify
    500  temporary problem (record not there yet, database error);
         Stripe redelivers with backoff

When a handler fails, its writes roll back (SAVEPOINT) and the recorded
WebhookEvent is deleted, so the redelivery is processed from scratch.
"""

import json
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import atomic
from app.exceptions import (
    IrshadError,
    PaymentProviderError,
    RateMismatchError,
    RetryableWebhookError,
    ValidationError,
    WebhookSignatureError,
)
from app.models.billing import WebhookEvent
from app.models.common import utcnow
from app.models.enums import (
    GraduationStatus,
    PaymentFrequency,
    StripeAccountType,
    StudentBillingType,
)
from app.services.billing_matcher import billing_matcher
from app.services.billing_service import billing_service
from app.services.invoice_service import invoice_period, invoice_service, invoice_subscription_id
from app.services.stripe_service import stripe_gateway
from app.services.subscription_service import (
    extract_price,
    from_unix,
    parse_status,
    subscription_service,
)
from app.services.tuition import calculate_dugsi_rate, calculate_mahad_rate

logger = logging.getLogger(__name__)

WEBHOOK_SOURCES = {
    "mahad": StripeAccountType.MAHAD,
    "dugsi": StripeAccountType.DUGSI,
}

# Error messages containing these words describe a bad event, not a transient fault
CLIENT_ERROR_MARKERS = ("Invalid", "Missing", "Required")

Handler = Callable[[AsyncSession, Dict[str, Any]], Awaitable[None]]


def _profile_ids_from_metadata(metadata: Dict[str, Any]) -> List[uuid.UUID]:
    raw = metadata.get("profileIds") or metadata.get("profileId") or ""
    ids = []
    for part in str(raw).split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(uuid.UUID(part))
        except ValueError:
            raise ValidationError(
                message=f"Invalid profile ID in subscription metadata: {part!r}",
                field="metadata.profileIds",
            )
    return ids


# ══════════════════════════════════════════════════════════════════════════
# Event Handlers
# ══════════════════════════════════════════════════════════════════════════

class EventHandlers:
    """
    Handlers for one Stripe account.

    Each handler receives `event["data"]["object"]` as a plain dict. Raising
    RetryableWebhookError asks Stripe to redeliver later; any other
    exception is mapped to a status code by WebhookProcessor.
    """

    def __init__(self, account_type: StripeAccountType):
        self.account_type = account_type
        self._handlers: Dict[str, Handler] = {
            "checkout.session.completed": self.checkout_session_completed,
            "customer.subscription.created": self.subscription_created,
            "customer.subscription.updated": self.subscription_updated,
            "customer.subscription.deleted": self.subscription_deleted,
            "invoice.finalized": self.invoice_finalized,
            "invoice.payment_succeeded": self.invoice_payment_succeeded,
            "invoice.payment_failed": self.invoice_payment_failed,
        }

    def handler_for(self, event_type: str) -> Optional[Handler]:
        return self._handlers.get(event_type)

    # ── Checkout ──────────────────────────────────────────────────────────

    async def checkout_session_completed(self, db: AsyncSession, session: Dict[str, Any]) -> None:
        match = await billing_matcher.find_by_checkout_session(db, session, self.account_type)
        if not match.matched:
            billing_matcher.log_no_match_found(session, session.get("subscription"), self.account_type)
            return

        customer_id = session.get("customer")
        if not customer_id:
            raise ValidationError(message="Missing customer ID on checkout session")

        await billing_service.create_or_update_billing_account(
            db,
            person_id=match.person_id,
            account_type=self.account_type,
            stripe_customer_id=customer_id,
            payment_intent_id=session.get("payment_intent"),
            payment_method_captured=True,
        )
        logger.info(
            "Checkout %s matched person %s via %s",
            session.get("id"), match.person_id, match.match_method,
        )

    # ── Subscriptions ─────────────────────────────────────────────────────

    def _check_rate(self, stripe_sub: Dict[str, Any], metadata: Dict[str, Any]) -> None:
        """
        Compare the charged price with the rate the checkout was built for.

        The charged amount must equal metadata.calculatedRate. A difference
        between calculatedRate and today's server-side tuition is only
        logged: tuition tables may have changed since checkout.
        """
        unit_amount, _, _ = extract_price(stripe_sub)
        calculated = metadata.get("calculatedRate")
        if calculated is None or unit_amount is None:
            return
        try:
            expected = int(calculated)
        except (TypeError, ValueError):
            raise ValidationError(message=f"Invalid calculatedRate in metadata: {calculated!r}")

        if self.account_type == StripeAccountType.MAHAD:
            keys = ("graduationStatus", "paymentFrequency", "billingType")
            if not all(metadata.get(k) for k in keys):
                return
            if unit_amount != expected:
                raise RateMismatchError(expected=expected, actual=unit_amount)
            try:
                server_rate = calculate_mahad_rate(
                    GraduationStatus(metadata["graduationStatus"]),
                    PaymentFrequency(metadata["paymentFrequency"]),
                    StudentBillingType(metadata["billingType"]),
                )
            except ValueError:
                logger.warning("Unrecognized Mahad billing metadata: %s", metadata)
                return
            if server_rate != expected:
                logger.warning(
                    "Mahad calculatedRate %d differs from server rate %d for subscription %s",
                    expected, server_rate, stripe_sub.get("id"),
                )

        elif self.account_type == StripeAccountType.DUGSI:
            if not metadata.get("childCount"):
                return
            if str(metadata.get("overrideUsed", "")).lower() == "true":
                logger.info("Dugsi subscription %s uses an admin override rate", stripe_sub.get("id"))
                return
            if unit_amount != expected:
                raise RateMismatchError(expected=expected, actual=unit_amount)
            try:
                server_rate = calculate_dugsi_rate(int(metadata["childCount"]))
            except ValueError:
                logger.warning("Unrecognized Dugsi childCount: %r", metadata.get("childCount"))
                return
            if server_rate != expected:
                logger.warning(
                    "Dugsi calculatedRate %d differs from server rate %d for subscription %s",
                    expected, server_rate, stripe_sub.get("id"),
                )

    async def subscription_created(self, db: AsyncSession, stripe_sub: Dict[str, Any]) -> None:
        customer_id = stripe_sub.get("customer")
        if not customer_id:
            raise ValidationError(message="Missing customer ID on subscription")
        metadata = stripe_sub.get("metadata") or {}

        account = await billing_service.get_billing_account_by_customer_id(
            db, customer_id, self.account_type
        )
        if account is None:
            person_ref = metadata.get("personId") or metadata.get("guardianPersonId")
            if not person_ref:
                # checkout.session.completed has not been processed yet
                raise RetryableWebhookError(
                    message=f"No billing account for customer {customer_id}",
                    context={"customer_id": customer_id},
                )
            try:
                person_id = uuid.UUID(str(person_ref))
            except ValueError:
                raise ValidationError(message=f"Invalid personId in metadata: {person_ref!r}")
            account = await billing_service.create_or_update_billing_account(
                db, person_id=person_id, account_type=self.account_type,
                stripe_customer_id=customer_id,
            )

        self._check_rate(stripe_sub, metadata)

        subscription = await subscription_service.create_subscription_from_stripe(
            db, stripe_sub, account.id, self.account_type
        )

        profile_ids = _profile_ids_from_metadata(metadata)
        if profile_ids:
            amount, _, _ = extract_price(stripe_sub)
            if amount is None:
                raise ValidationError(message="Missing subscription items")
            if amount <= 0:
                raise ValidationError(message=f"Invalid subscription amount: {amount}")
            await billing_service.link_subscription_to_profiles(
                db, subscription.id, profile_ids, amount,
                notes="Linked automatically via webhook",
            )

    async def subscription_updated(self, db: AsyncSession, stripe_sub: Dict[str, Any]) -> None:
        stripe_id = stripe_sub.get("id")
        existing = await subscription_service.get_by_stripe_id(db, stripe_id)
        if existing is None:
            raise RetryableWebhookError(
                message=f"Subscription {stripe_id} not found yet",
                context={"stripe_subscription_id": stripe_id},
            )
        parse_status(stripe_sub.get("status"))
        await subscription_service.sync_subscription_from_stripe(db, stripe_sub)

    async def subscription_deleted(self, db: AsyncSession, stripe_sub: Dict[str, Any]) -> None:
        stripe_id = stripe_sub.get("id")
        if await subscription_service.get_by_stripe_id(db, stripe_id) is None:
            logger.warning("Deleted subscription %s is not mirrored locally", stripe_id)
            return
        await subscription_service.cancel_subscription(db, stripe_id)

    # ── Invoices ──────────────────────────────────────────────────────────

    async def _apply_invoice_period(self, db: AsyncSession, invoice: Dict[str, Any]):
        stripe_id = invoice_subscription_id(invoice)
        if not stripe_id:
            logger.info("Invoice %s is not tied to a subscription", invoice.get("id"))
            return None
        subscription = await subscription_service.get_by_stripe_id(db, stripe_id)
        if subscription is None:
            raise RetryableWebhookError(
                message=f"Subscription {stripe_id} not found for invoice {invoice.get('id')}",
                context={"stripe_subscription_id": stripe_id},
            )
        _, period_end = invoice_period(invoice)
        if period_end:
            subscription.paid_until = from_unix(period_end)
        return subscription

    async def invoice_finalized(self, db: AsyncSession, invoice: Dict[str, Any]) -> None:
        await self._apply_invoice_period(db, invoice)
        await db.flush()

    async def invoice_payment_succeeded(self, db: AsyncSession, invoice: Dict[str, Any]) -> None:
        subscription = await self._apply_invoice_period(db, invoice)
        if subscription is None:
            return
        subscription.last_payment_date = utcnow()

        invoice_id = invoice.get("id")
        if invoice_id:
            period_start, _ = invoice_period(invoice)
            await invoice_service.record_invoice_payments(
                db, subscription, invoice_id, period_start=from_unix(period_start)
            )
        await db.flush()

    async def invoice_payment_failed(self, db: AsyncSession, invoice: Dict[str, Any]) -> None:
        logger.warning(
            "Invoice %s payment failed (customer=%s, subscription=%s, attempt=%s)",
            invoice.get("id"),
            invoice.get("customer"),
            invoice_subscription_id(invoice),
            invoice.get("attempt_count"),
        )


# ══════════════════════════════════════════════════════════════════════════
# Processor
# ══════════════════════════════════════════════════════════════════════════

class WebhookProcessor:
    """
    Entry point used by the webhook route.

    `process()` never raises for event-level problems; it returns the
    (status_code, body) pair Stripe should see.
    """

    async def process(
        self,
        db: AsyncSession,
        source: str,
        body: bytes,
        signature: Optional[str],
    ) -> Tuple[int, Dict[str, Any]]:
        account_type = WEBHOOK_SOURCES.get(source)
        if account_type is None:
            return 404, {"error": f"Unknown webhook source: {source}"}
        if not body:
            return 400, {"error": "Empty request body"}
        if not signature:
            return 400, {"error": "Missing signature"}

        # ── Verify ────────────────────────────────────────────────────────
        try:
            stripe_gateway.construct_event(body, signature, account_type)
        except WebhookSignatureError as e:
            return 401, {"error": e.message}
        except ValidationError as e:
            return 400, {"error": e.message}
        except PaymentProviderError as e:
            logger.error("Cannot verify %s webhook: %s", source, e.message)
            return 500, {"error": "Webhook verification is not configured"}

        try:
            event = json.loads(body)
        except ValueError:
            return 400, {"error": "Invalid JSON payload"}

        event_id = event.get("id")
        event_type = event.get("type")
        if not event_id or not event_type:
            return 400, {"error": "Invalid event: missing id or type"}

        # ── Idempotency ───────────────────────────────────────────────────
        result = await db.execute(
            select(WebhookEvent.id).where(
                WebhookEvent.event_id == event_id,
                WebhookEvent.source == source,
            )
        )
        if result.scalar_one_or_none() is not None:
            logger.info("Skipping already processed %s event %s (%s)", source, event_id, event_type)
            return 200, {"received": True, "skipped": True}

        webhook_event = WebhookEvent(
            event_id=event_id,
            event_type=event_type,
            source=source,
            payload=event,
        )
        try:
            async with atomic(db):
                db.add(webhook_event)
                await db.flush()
        except IntegrityError:
            # A concurrent delivery of the same event recorded it first
            logger.info("Concurrent delivery of %s event %s; skipping", source, event_id)
            return 200, {"received": True, "skipped": True}

        # ── Dispatch ──────────────────────────────────────────────────────
        handler = EventHandlers(account_type).handler_for(event_type)
        if handler is None:
            logger.warning("Unhandled %s webhook event type: %s", source, event_type)
            return 200, {"received": True}

        logger.info("Processing %s event %s (%s)", source, event_id, event_type)
        try:
            async with atomic(db):
                await handler(db, (event.get("data") or {}).get("object") or {})
        except Exception as e:
            await self._forget_event(db, webhook_event)
            return self._error_response(e, source, event_id, event_type)

        return 200, {"received": True}

    async def _forget_event(self, db: AsyncSession, webhook_event: WebhookEvent) -> None:
        await db.delete(webhook_event)
        await db.flush()

    def _error_response(
        self, error: Exception, source: str, event_id: str, event_type: str
    ) -> Tuple[int, Dict[str, Any]]:
        if isinstance(error, RetryableWebhookError):
            logger.warning(
                "Retryable failure on %s event %s (%s): %s",
                source, event_id, event_type, error.message,
            )
            return 500, {"error": "Temporary processing error, will retry"}

        if isinstance(error, RateMismatchError):
            logger.error("Rate mismatch on %s event %s: %s", source, event_id, error.message)
            return 400, {"error": error.message}

        message = error.message if isinstance(error, IrshadError) else str(error)
        if any(marker in message for marker in CLIENT_ERROR_MARKERS):
            logger.error("Rejected %s event %s (%s): %s", source, event_id, event_type, message)
            return 400, {"error": message}

        logger.error(
            "Failed to process %s event %s (%s): %s",
            source, event_id, event_type, message,
            exc_info=error,
        )
        return 500, {"error": "Webhook processing failed"}


# Singleton instance
webhook_processor = WebhookProcessor()
