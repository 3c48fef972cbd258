"""
Irshad Backend: Invoice Service
================================

What:  Turns paid Stripe invoices into StudentPayment rows, and the admin
       invoice actions: backfill from Stripe, resend, mark paid by hand,
       and invoice details.
How:   A paid invoice of a subscription produces one StudentPayment per
       actively assigned profile, keyed by (profile, invoice). Rows that
       already exist are left alone, so replays and repeated syncs never
       double-count a month.
Who:   Webhook handler for `invoice.payment_succeeded`, /api/billing/invoices
       routes.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import NotFoundError
from app.models.billing import CUSTOMER_ID_COLUMNS, BillingAccount, Subscription
from app.models.common import utcnow
from app.models.enums import StripeAccountType
from app.models.program import ProgramProfile, StudentPayment
from app.schemas.billing import (
    InvoiceDetails,
    InvoiceSyncResult,
    MarkInvoicePaidInput,
)
from app.services.billing_service import billing_service
from app.services.stripe_service import stripe_gateway
from app.services.subscription_service import from_unix

logger = logging.getLogger(__name__)


def invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    subscription = invoice.get("subscription")
    if isinstance(subscription, dict):
        subscription = subscription.get("id")
    if subscription:
        return subscription
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return details.get("subscription")


def invoice_period(invoice: Dict[str, Any]) -> Tuple[Optional[int], Optional[int]]:
    lines = (invoice.get("lines") or {}).get("data") or []
    period = (lines[0].get("period") or {}) if lines else {}
    start = period.get("start") or invoice.get("period_start")
    end = period.get("end") or invoice.get("period_end")
    return start, end


def invoice_paid_at(invoice: Dict[str, Any]) -> Optional[datetime]:
    if invoice.get("status") != "paid":
        return None
    transitions = invoice.get("status_transitions") or {}
    return from_unix(transitions.get("paid_at"))


def _customer_fields(customer: Any) -> Tuple[Optional[str], Optional[str]]:
    if isinstance(customer, dict):
        return customer.get("id"), customer.get("email")
    return customer, None


class InvoiceService:

    # ── Payment rows ──────────────────────────────────────────────────────

    async def record_invoice_payments(
        self,
        db: AsyncSession,
        subscription: Subscription,
        invoice_id: str,
        paid_at: Optional[datetime] = None,
        period_start: Optional[datetime] = None,
    ) -> Tuple[int, int]:
        """
        One StudentPayment per active assignment of the subscription.

        Returns:
            (created, skipped). A profile already recorded for this invoice
            is skipped.
        """
        paid_at = paid_at or utcnow()
        period = period_start or paid_at

        assignments = await billing_service.get_active_assignments_for_subscription(
            db, subscription.id
        )
        if not assignments:
            return 0, 0

        result = await db.execute(
            select(StudentPayment.program_profile_id).where(
                StudentPayment.stripe_invoice_id == invoice_id
            )
        )
        recorded = set(result.scalars().all())

        created = skipped = 0
        for assignment in assignments:
            if assignment.program_profile_id in recorded:
                skipped += 1
                continue
            db.add(
                StudentPayment(
                    program_profile_id=assignment.program_profile_id,
                    year=period.year,
                    month=period.month,
                    amount_paid=assignment.amount,
                    paid_at=paid_at,
                    stripe_invoice_id=invoice_id,
                )
            )
            recorded.add(assignment.program_profile_id)
            created += 1
        return created, skipped

    # ── Stripe backfill ───────────────────────────────────────────────────

    async def sync_invoices(
        self, db: AsyncSession, account_type: StripeAccountType
    ) -> InvoiceSyncResult:
        """
        Backfill StudentPayment rows from every customer's invoice list.

        Draft and unpaid invoices are counted as skipped, as are invoices of
        subscriptions that are not mirrored locally.
        """
        account_type = StripeAccountType(account_type)
        column = getattr(BillingAccount, CUSTOMER_ID_COLUMNS[account_type])
        result = await db.execute(
            select(column).where(
                BillingAccount.account_type == account_type,
                column.is_not(None),
            )
        )
        customer_ids = [c for c in result.scalars().all() if c]

        synced = skipped = 0
        subscriptions: Dict[str, Optional[Subscription]] = {}
        for customer_id in customer_ids:
            invoices = await stripe_gateway.list_invoices(account_type, customer_id)
            for invoice in invoices:
                paid_at = invoice_paid_at(invoice)
                stripe_sub_id = invoice_subscription_id(invoice)
                if invoice.get("status") == "draft" or paid_at is None or not stripe_sub_id:
                    skipped += 1
                    continue

                if stripe_sub_id not in subscriptions:
                    found = await db.execute(
                        select(Subscription).where(
                            Subscription.stripe_subscription_id == stripe_sub_id
                        )
                    )
                    subscriptions[stripe_sub_id] = found.scalar_one_or_none()
                subscription = subscriptions[stripe_sub_id]
                if subscription is None:
                    skipped += 1
                    continue

                period_start, _ = invoice_period(invoice)
                created, already = await self.record_invoice_payments(
                    db, subscription, invoice["id"], paid_at, from_unix(period_start)
                )
                synced += created
                skipped += already

        await db.flush()
        logger.info(
            "Invoice sync (%s): %d customers, %d synced, %d skipped",
            account_type, len(customer_ids), synced, skipped,
        )
        return InvoiceSyncResult(account_type=account_type, synced=synced, skipped=skipped)

    # ── Admin actions ─────────────────────────────────────────────────────

    async def resend_invoice(self, account_type: StripeAccountType, invoice_id: str) -> None:
        await stripe_gateway.send_invoice(account_type, invoice_id)
        logger.info("Resent invoice %s (%s)", invoice_id, account_type)

    async def mark_invoice_paid(
        self, db: AsyncSession, data: MarkInvoicePaidInput
    ) -> StudentPayment:
        """
        Record a payment taken outside Stripe.

        With a Stripe invoice id the (profile, invoice) row is updated in
        place when it exists; manual payments always add a row.
        """
        profile = await db.get(ProgramProfile, data.program_profile_id)
        if profile is None:
            raise NotFoundError(resource="program profile", resource_id=str(data.program_profile_id))

        payment = None
        if data.stripe_invoice_id:
            result = await db.execute(
                select(StudentPayment).where(
                    StudentPayment.program_profile_id == data.program_profile_id,
                    StudentPayment.stripe_invoice_id == data.stripe_invoice_id,
                )
            )
            payment = result.scalar_one_or_none()

        if payment is None:
            payment = StudentPayment(
                id=uuid.uuid4(),
                program_profile_id=data.program_profile_id,
                year=data.year,
                month=data.month,
                stripe_invoice_id=data.stripe_invoice_id,
                amount_paid=data.amount,
                paid_at=utcnow(),
            )
            db.add(payment)
        else:
            payment.amount_paid = data.amount
            payment.paid_at = utcnow()

        await db.flush()
        logger.info(
            "Marked %04d-%02d paid for profile %s (%d cents, invoice=%s)",
            data.year, data.month, data.program_profile_id, data.amount, data.stripe_invoice_id,
        )
        return payment

    async def get_invoice_details(
        self, account_type: StripeAccountType, invoice_id: str
    ) -> InvoiceDetails:
        invoice = await stripe_gateway.retrieve_invoice(account_type, invoice_id)
        customer_id, customer_email = _customer_fields(invoice.get("customer"))
        return InvoiceDetails(
            id=invoice["id"],
            status=invoice.get("status"),
            customer_id=customer_id,
            customer_email=customer_email or invoice.get("customer_email"),
            subscription_id=invoice_subscription_id(invoice),
            amount_due=invoice.get("amount_due") or 0,
            amount_paid=invoice.get("amount_paid") or 0,
            hosted_invoice_url=invoice.get("hosted_invoice_url"),
            created=from_unix(invoice.get("created")),
        )


# Singleton instance
invoice_service = InvoiceService()
