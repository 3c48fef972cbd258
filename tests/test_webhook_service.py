"""
Irshad Backend: Webhook Processor Tests
========================================

What:  Tests for WebhookProcessor.process() and the event handlers.
Why:   Stripe decides whether to redeliver from our status code alone; a
       wrong code either loses an event or makes Stripe retry forever.
How:   Signature verification is patched on the gateway singleton; the
       handlers' collaborators (subscription/billing services) are patched
       on the webhook module.

What we test:
    ✅ Unknown source → 404, empty body or missing signature → 400
    ✅ Bad signature → 401
    ✅ Duplicate delivery → 200 skipped, nothing recorded
    ✅ Unhandled event types are recorded and acknowledged
    ✅ Retryable failures → 500 and the recorded event is forgotten
    ✅ Rate mismatch on subscription.created → 400, nothing mirrored
    ✅ Checkout sessions store the customer only when a match is found
    ✅ Metadata profile ids are linked with the charged amount
    ✅ Paid invoices set paid_until and record student payments
"""

import json
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.exceptions import RateMismatchError, RetryableWebhookError, WebhookSignatureError
from app.models.billing import WebhookEvent
from app.models.enums import StripeAccountType
from app.services.webhook_service import EventHandlers, WebhookProcessor


def _event(event_type="customer.subscription.updated", obj=None, event_id="evt_123"):
    return json.dumps(
        {"id": event_id, "type": event_type, "data": {"object": obj or {"id": "sub_123"}}}
    ).encode()


class TestWebhookPreChecks:

    def setup_method(self):
        self.processor = WebhookProcessor()

    @pytest.mark.asyncio
    async def test_unknown_source(self, mock_db_session):
        status, body = await self.processor.process(mock_db_session, "youth", _event(), "sig")
        assert status == 404
        assert "Unknown webhook source" in body["error"]

    @pytest.mark.asyncio
    async def test_empty_body(self, mock_db_session):
        status, _ = await self.processor.process(mock_db_session, "dugsi", b"", "sig")
        assert status == 400

    @pytest.mark.asyncio
    async def test_missing_signature(self, mock_db_session):
        status, body = await self.processor.process(mock_db_session, "mahad", _event(), None)
        assert status == 400
        assert body["error"] == "Missing signature"

    @pytest.mark.asyncio
    async def test_bad_signature(self, mock_db_session):
        with patch("app.services.webhook_service.stripe_gateway") as mock_gateway:
            mock_gateway.construct_event.side_effect = WebhookSignatureError()
            status, _ = await self.processor.process(mock_db_session, "dugsi", _event(), "bad")
        assert status == 401
        mock_db_session.execute.assert_not_awaited()


class TestWebhookDispatch:
    """Tests for idempotency and handler dispatch."""

    def setup_method(self):
        self.processor = WebhookProcessor()

    @pytest.mark.asyncio
    async def test_duplicate_event_is_skipped(self, mock_db_session, make_result):
        mock_db_session.execute.return_value = make_result(scalars=["existing-id"])

        with patch("app.services.webhook_service.stripe_gateway"):
            status, body = await self.processor.process(mock_db_session, "dugsi", _event(), "sig")

        assert status == 200
        assert body == {"received": True, "skipped": True}
        mock_db_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_unhandled_type_is_recorded_and_acknowledged(self, mock_db_session, make_result):
        mock_db_session.execute.return_value = make_result(scalars=[])

        with patch("app.services.webhook_service.stripe_gateway"):
            status, body = await self.processor.process(
                mock_db_session, "mahad", _event(event_type="charge.refunded"), "sig"
            )

        assert status == 200
        assert body == {"received": True}
        recorded = mock_db_session.add.call_args[0][0]
        assert isinstance(recorded, WebhookEvent)
        assert recorded.event_id == "evt_123"
        assert recorded.source == "mahad"

    @pytest.mark.asyncio
    async def test_event_without_type_is_rejected(self, mock_db_session):
        body = json.dumps({"id": "evt_1"}).encode()
        with patch("app.services.webhook_service.stripe_gateway"):
            status, _ = await self.processor.process(mock_db_session, "dugsi", body, "sig")
        assert status == 400

    @pytest.mark.asyncio
    async def test_retryable_failure_returns_500_and_forgets_event(
        self, mock_db_session, make_result
    ):
        mock_db_session.execute.return_value = make_result(scalars=[])

        with patch("app.services.webhook_service.stripe_gateway"), \
             patch("app.services.webhook_service.subscription_service") as mock_subs:
            mock_subs.get_by_stripe_id = AsyncMock(return_value=None)

            status, body = await self.processor.process(mock_db_session, "dugsi", _event(), "sig")

        assert status == 500
        assert "retry" in body["error"]
        recorded = mock_db_session.add.call_args[0][0]
        mock_db_session.delete.assert_awaited_once_with(recorded)

    @pytest.mark.asyncio
    async def test_subscription_updated_syncs(self, mock_db_session, make_result):
        mock_db_session.execute.return_value = make_result(scalars=[])
        stripe_sub = {"id": "sub_123", "status": "past_due"}

        with patch("app.services.webhook_service.stripe_gateway"), \
             patch("app.services.webhook_service.subscription_service") as mock_subs:
            mock_subs.get_by_stripe_id = AsyncMock(return_value=MagicMock())
            mock_subs.sync_subscription_from_stripe = AsyncMock()

            status, _ = await self.processor.process(
                mock_db_session, "dugsi", _event(obj=stripe_sub), "sig"
            )

        assert status == 200
        mock_subs.sync_subscription_from_stripe.assert_awaited_once_with(mock_db_session, stripe_sub)

    @pytest.mark.asyncio
    async def test_invalid_status_is_a_client_error(self, mock_db_session, make_result):
        mock_db_session.execute.return_value = make_result(scalars=[])

        with patch("app.services.webhook_service.stripe_gateway"), \
             patch("app.services.webhook_service.subscription_service") as mock_subs:
            mock_subs.get_by_stripe_id = AsyncMock(return_value=MagicMock())

            status, body = await self.processor.process(
                mock_db_session,
                "dugsi",
                _event(obj={"id": "sub_123", "status": "bogus"}),
                "sig",
            )

        assert status == 400
        assert "Invalid subscription status" in body["error"]


class TestEventHandlers:
    """Direct handler tests."""

    @pytest.mark.asyncio
    async def test_subscription_created_without_account_or_person_retries(self, mock_db_session):
        handlers = EventHandlers(StripeAccountType.DUGSI)
        with patch("app.services.webhook_service.billing_service") as mock_billing:
            mock_billing.get_billing_account_by_customer_id = AsyncMock(return_value=None)
            with pytest.raises(RetryableWebhookError):
                await handlers.subscription_created(
                    mock_db_session, {"id": "sub_1", "customer": "cus_1", "metadata": {}}
                )

    def test_dugsi_rate_mismatch(self):
        handlers = EventHandlers(StripeAccountType.DUGSI)
        stripe_sub = {
            "id": "sub_1",
            "items": {"data": [{"price": {"unit_amount": 15000}}]},
        }
        with pytest.raises(RateMismatchError) as exc_info:
            handlers._check_rate(stripe_sub, {"childCount": "2", "calculatedRate": "16000"})
        assert exc_info.value.expected == 16000
        assert exc_info.value.actual == 15000

    def test_dugsi_override_skips_rate_check(self):
        handlers = EventHandlers(StripeAccountType.DUGSI)
        stripe_sub = {"id": "sub_1", "items": {"data": [{"price": {"unit_amount": 15000}}]}}
        handlers._check_rate(
            stripe_sub, {"childCount": "2", "calculatedRate": "16000", "overrideUsed": "true"}
        )

    def test_mahad_matching_rate_passes(self):
        handlers = EventHandlers(StripeAccountType.MAHAD)
        stripe_sub = {"id": "sub_1", "items": {"data": [{"price": {"unit_amount": 12000}}]}}
        handlers._check_rate(
            stripe_sub,
            {
                "graduationStatus": "NON_GRADUATE",
                "paymentFrequency": "MONTHLY",
                "billingType": "FULL_TIME",
                "calculatedRate": "12000",
            },
        )

    @pytest.mark.asyncio
    async def test_subscription_deleted_unknown_is_ignored(self, mock_db_session):
        handlers = EventHandlers(StripeAccountType.MAHAD)
        with patch("app.services.webhook_service.subscription_service") as mock_subs:
            mock_subs.get_by_stripe_id = AsyncMock(return_value=None)
            mock_subs.cancel_subscription = AsyncMock()

            await handlers.subscription_deleted(mock_db_session, {"id": "sub_gone"})

        mock_subs.cancel_subscription.assert_not_awaited()


class TestCheckoutAndSubscriptionCreated:
    """Checkout matching and subscription linking."""

    @pytest.mark.asyncio
    async def test_unmatched_checkout_is_logged_not_written(self, mock_db_session):
        handlers = EventHandlers(StripeAccountType.MAHAD)
        session = {"id": "cs_1", "customer": "cus_1", "subscription": "sub_1"}
        with patch("app.services.webhook_service.billing_matcher") as mock_matcher, \
             patch("app.services.webhook_service.billing_service") as mock_billing:
            mock_matcher.find_by_checkout_session = AsyncMock(
                return_value=MagicMock(matched=False)
            )
            mock_billing.create_or_update_billing_account = AsyncMock()

            await handlers.checkout_session_completed(mock_db_session, session)

        mock_matcher.log_no_match_found.assert_called_once_with(
            session, "sub_1", StripeAccountType.MAHAD
        )
        mock_billing.create_or_update_billing_account.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_matched_checkout_stores_customer(self, mock_db_session):
        handlers = EventHandlers(StripeAccountType.MAHAD)
        person_id = uuid.uuid4()
        match = MagicMock(matched=True, person_id=person_id, match_method="email")
        session = {"id": "cs_1", "customer": "cus_1", "payment_intent": "pi_1"}
        with patch("app.services.webhook_service.billing_matcher") as mock_matcher, \
             patch("app.services.webhook_service.billing_service") as mock_billing:
            mock_matcher.find_by_checkout_session = AsyncMock(return_value=match)
            mock_billing.create_or_update_billing_account = AsyncMock()

            await handlers.checkout_session_completed(mock_db_session, session)

        kwargs = mock_billing.create_or_update_billing_account.call_args.kwargs
        assert kwargs["person_id"] == person_id
        assert kwargs["stripe_customer_id"] == "cus_1"
        assert kwargs["payment_intent_id"] == "pi_1"
        assert kwargs["payment_method_captured"] is True

    @pytest.mark.asyncio
    async def test_subscription_created_links_metadata_profiles(self, mock_db_session):
        handlers = EventHandlers(StripeAccountType.DUGSI)
        first, second = uuid.uuid4(), uuid.uuid4()
        local = MagicMock(id=uuid.uuid4())
        stripe_sub = {
            "id": "sub_1",
            "customer": "cus_1",
            "items": {"data": [{"price": {"unit_amount": 16000}}]},
            "metadata": {
                "childCount": "2",
                "calculatedRate": "16000",
                "profileIds": f"{first},{second}",
            },
        }
        with patch("app.services.webhook_service.billing_service") as mock_billing, \
             patch("app.services.webhook_service.subscription_service") as mock_subs:
            mock_billing.get_billing_account_by_customer_id = AsyncMock(return_value=MagicMock())
            mock_billing.link_subscription_to_profiles = AsyncMock(return_value=2)
            mock_subs.create_subscription_from_stripe = AsyncMock(return_value=local)

            await handlers.subscription_created(mock_db_session, stripe_sub)

        args = mock_billing.link_subscription_to_profiles.call_args[0]
        assert args[1] == local.id
        assert args[2] == [first, second]
        assert args[3] == 16000

    @pytest.mark.asyncio
    async def test_rate_mismatch_is_rejected_and_forgotten(self, mock_db_session, make_result):
        mock_db_session.execute.return_value = make_result(scalars=[])
        stripe_sub = {
            "id": "sub_1",
            "customer": "cus_1",
            "items": {"data": [{"price": {"unit_amount": 9000}}]},
            "metadata": {"childCount": "2", "calculatedRate": "16000"},
        }

        with patch("app.services.webhook_service.stripe_gateway"), \
             patch("app.services.webhook_service.billing_service") as mock_billing, \
             patch("app.services.webhook_service.subscription_service") as mock_subs:
            mock_billing.get_billing_account_by_customer_id = AsyncMock(return_value=MagicMock())
            mock_subs.create_subscription_from_stripe = AsyncMock()

            status, body = await WebhookProcessor().process(
                mock_db_session,
                "dugsi",
                _event(event_type="customer.subscription.created", obj=stripe_sub),
                "sig",
            )

        assert status == 400
        assert "Rate mismatch" in body["error"]
        mock_subs.create_subscription_from_stripe.assert_not_awaited()
        mock_db_session.delete.assert_awaited_once()


class TestInvoiceEvents:

    @pytest.mark.asyncio
    async def test_payment_succeeded_records_student_payments(self, mock_db_session):
        handlers = EventHandlers(StripeAccountType.DUGSI)
        subscription = MagicMock()
        invoice = {
            "id": "in_1",
            "subscription": "sub_1",
            "lines": {"data": [{"period": {"start": 1767225600, "end": 1769904000}}]},
        }
        with patch("app.services.webhook_service.subscription_service") as mock_subs, \
             patch("app.services.webhook_service.invoice_service") as mock_invoices:
            mock_subs.get_by_stripe_id = AsyncMock(return_value=subscription)
            mock_invoices.record_invoice_payments = AsyncMock(return_value=(2, 0))

            await handlers.invoice_payment_succeeded(mock_db_session, invoice)

        assert subscription.paid_until == datetime(2026, 2, 1, tzinfo=timezone.utc)
        args = mock_invoices.record_invoice_payments.call_args
        assert args[0][1] is subscription
        assert args[0][2] == "in_1"
        assert args.kwargs["period_start"] == datetime(2026, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_invoice_without_subscription_is_ignored(self, mock_db_session):
        handlers = EventHandlers(StripeAccountType.MAHAD)
        with patch("app.services.webhook_service.subscription_service") as mock_subs, \
             patch("app.services.webhook_service.invoice_service") as mock_invoices:
            mock_subs.get_by_stripe_id = AsyncMock()
            mock_invoices.record_invoice_payments = AsyncMock()

            await handlers.invoice_payment_succeeded(mock_db_session, {"id": "in_one_off"})

        mock_subs.get_by_stripe_id.assert_not_awaited()
        mock_invoices.record_invoice_payments.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invoice_for_unknown_subscription_retries(self, mock_db_session):
        handlers = EventHandlers(StripeAccountType.DUGSI)
        with patch("app.services.webhook_service.subscription_service") as mock_subs:
            mock_subs.get_by_stripe_id = AsyncMock(return_value=None)
            with pytest.raises(RetryableWebhookError):
                await handlers.invoice_finalized(
                    mock_db_session, {"id": "in_1", "subscription": "sub_later"}
                )
