"""
Irshad Backend: Stripe Gateway Unit Tests (Mocked)
===================================================

What:  Tests for StripeGateway with the Stripe SDK patched out.
Why:   Tests should not make real API calls (requires network and keys).
How:   Patches `stripe` calls inside app.services.stripe_service.

What we test:
    ✅ Circuit breaker opens after consecutive failures
    ✅ Circuit breaker resets after recovery timeout
    ✅ Non-transient Stripe errors fail fast as PaymentProviderError
    ✅ Webhook signature errors map to WebhookSignatureError / ValidationError
    ❌ Real API calls
"""

import time
from unittest.mock import MagicMock, patch

import pytest
import stripe

from app.exceptions import (
    CircuitBreakerOpenError,
    PaymentProviderError,
    ValidationError,
    WebhookSignatureError,
)
from app.models.enums import StripeAccountType
from app.services.stripe_service import CircuitBreaker, StripeGateway


class TestCircuitBreaker:
    """Tests for the CircuitBreaker resilience pattern."""

    def test_initial_state_is_closed(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        assert cb.state == "closed"
        assert cb.failure_count == 0

    def test_stays_closed_under_threshold(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        for _ in range(4):
            cb.record_failure()
        assert cb.state == "closed"
        assert cb.can_execute() is True

    def test_opens_at_threshold(self):
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=60)
        for _ in range(3):
            cb.record_failure()
        assert cb.state == "open"

    def test_open_circuit_rejects_calls(self):
        """OPEN circuit breaker should reject calls with CircuitBreakerOpenError."""
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        cb.record_failure()

        with pytest.raises(CircuitBreakerOpenError):
            cb.can_execute()

    def test_success_resets_failure_count(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        cb.record_failure()
        cb.record_failure()
        assert cb.failure_count == 2

        cb.record_success()
        assert cb.failure_count == 0
        assert cb.state == "closed"

    def test_half_open_after_recovery_timeout(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        assert cb.state == "open"

        time.sleep(0.01)
        assert cb.can_execute() is True
        assert cb.state == "half_open"

    def test_failure_in_half_open_reopens(self):
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=0)
        for _ in range(3):
            cb.record_failure()
        time.sleep(0.01)
        cb.can_execute()

        cb.record_failure()
        assert cb.state == "open"


class TestStripeGatewayMocked:
    """Tests for StripeGateway with the SDK patched."""

    @pytest.mark.asyncio
    async def test_call_success_returns_sdk_result(self):
        gateway = StripeGateway()
        with patch("app.services.stripe_service.stripe.Subscription.retrieve") as mock_retrieve:
            mock_retrieve.return_value = {"id": "sub_123", "status": "active"}

            result = await gateway.retrieve_subscription(StripeAccountType.DUGSI, "sub_123")

        assert result["id"] == "sub_123"
        mock_retrieve.assert_called_once_with("sub_123", api_key="sk_test_dugsi")
        assert gateway.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_invalid_request_fails_fast(self):
        gateway = StripeGateway()
        with patch("app.services.stripe_service.stripe.Subscription.cancel") as mock_cancel:
            mock_cancel.side_effect = stripe.InvalidRequestError("No such subscription", "id")

            with pytest.raises(PaymentProviderError):
                await gateway.cancel_subscription(StripeAccountType.MAHAD, "sub_missing")

        # Rejections do not count against the breaker
        assert mock_cancel.call_count == 1
        assert gateway.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_open_circuit_blocks_calls(self):
        gateway = StripeGateway()
        for _ in range(gateway.circuit_breaker.failure_threshold):
            gateway.circuit_breaker.record_failure()

        with patch("app.services.stripe_service.stripe.Subscription.retrieve") as mock_retrieve:
            with pytest.raises(CircuitBreakerOpenError):
                await gateway.retrieve_subscription(StripeAccountType.DUGSI, "sub_123")
            mock_retrieve.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_api_key_raises(self):
        gateway = StripeGateway()
        with patch("app.services.stripe_service.settings") as mock_settings:
            mock_settings.stripe_secret_key_for.return_value = None
            with pytest.raises(PaymentProviderError):
                await gateway.pause_subscription(StripeAccountType.DUGSI, "sub_123")


class TestConstructEvent:
    """Webhook signature verification."""

    def test_valid_signature_returns_event(self):
        gateway = StripeGateway()
        event = {"id": "evt_1", "type": "invoice.finalized"}
        with patch("app.services.stripe_service.stripe.Webhook.construct_event") as mock_construct:
            mock_construct.return_value = event
            assert gateway.construct_event(b"{}", "t=1,v1=abc", StripeAccountType.MAHAD) is event
            mock_construct.assert_called_once_with(b"{}", "t=1,v1=abc", "whsec_test_mahad")

    def test_bad_signature(self):
        gateway = StripeGateway()
        with patch("app.services.stripe_service.stripe.Webhook.construct_event") as mock_construct:
            mock_construct.side_effect = stripe.SignatureVerificationError("bad", "sig")
            with pytest.raises(WebhookSignatureError):
                gateway.construct_event(b"{}", "bad", StripeAccountType.DUGSI)

    def test_invalid_json(self):
        gateway = StripeGateway()
        with patch("app.services.stripe_service.stripe.Webhook.construct_event") as mock_construct:
            mock_construct.side_effect = ValueError("Expecting value")
            with pytest.raises(ValidationError) as exc_info:
                gateway.construct_event(b"not json", "sig", StripeAccountType.DUGSI)
        assert exc_info.value.code == "INVALID_PAYLOAD"

    def test_missing_secret(self):
        gateway = StripeGateway()
        with patch("app.services.stripe_service.settings") as mock_settings:
            mock_settings.stripe_webhook_secret_for.return_value = ""
            with pytest.raises(PaymentProviderError):
                gateway.construct_event(b"{}", "sig", StripeAccountType.DUGSI)

    def test_construct_event_skips_breaker(self):
        # construct_event is synchronous and never touches the breaker
        gateway = StripeGateway()
        gateway.circuit_breaker = MagicMock()
        with patch("app.services.stripe_service.stripe.Webhook.construct_event", return_value={}):
            gateway.construct_event(b"{}", "sig", StripeAccountType.MAHAD)
        gateway.circuit_breaker.can_execute.assert_not_called()


class TestGatewayCalls:
    """The newer SDK wrappers forward the account key and their arguments."""

    @pytest.mark.asyncio
    async def test_checkout_session_uses_account_key(self):
        gateway = StripeGateway()
        with patch("app.services.stripe_service.stripe.checkout.Session.create") as mock_create:
            mock_create.return_value = {"id": "cs_1", "url": "https://checkout.stripe.com/cs_1"}

            session = await gateway.create_checkout_session(
                StripeAccountType.DUGSI, mode="subscription", customer_email="a@b.co"
            )

        assert session["id"] == "cs_1"
        mock_create.assert_called_once_with(
            mode="subscription", customer_email="a@b.co", api_key="sk_test_dugsi"
        )

    @pytest.mark.asyncio
    async def test_retrieve_subscription_passes_expand(self):
        gateway = StripeGateway()
        with patch("app.services.stripe_service.stripe.Subscription.retrieve") as mock_retrieve:
            mock_retrieve.return_value = {"id": "sub_1"}
            await gateway.retrieve_subscription(
                StripeAccountType.DUGSI, "sub_1", expand=["customer"]
            )

        mock_retrieve.assert_called_once_with(
            "sub_1", api_key="sk_test_dugsi", expand=["customer"]
        )

    @pytest.mark.asyncio
    async def test_list_subscriptions_follows_pagination(self):
        gateway = StripeGateway()
        page = MagicMock()
        page.auto_paging_iter.return_value = iter([{"id": "sub_1"}, {"id": "sub_2"}])
        with patch("app.services.stripe_service.stripe.Subscription.list", return_value=page) as mock_list:
            subs = await gateway.list_subscriptions(StripeAccountType.MAHAD)

        assert [s["id"] for s in subs] == ["sub_1", "sub_2"]
        kwargs = mock_list.call_args.kwargs
        assert kwargs["status"] == "all"
        assert kwargs["api_key"] == "sk_test_mahad"

    @pytest.mark.asyncio
    async def test_update_customer_sends_only_given_fields(self):
        gateway = StripeGateway()
        with patch("app.services.stripe_service.stripe.Customer.modify") as mock_modify:
            await gateway.update_customer(StripeAccountType.DUGSI, "cus_1", name="Amina Ali")

        mock_modify.assert_called_once_with("cus_1", api_key="sk_test_dugsi", name="Amina Ali")

    @pytest.mark.asyncio
    async def test_send_invoice(self):
        gateway = StripeGateway()
        with patch("app.services.stripe_service.stripe.Invoice.send_invoice") as mock_send:
            await gateway.send_invoice(StripeAccountType.MAHAD, "in_1")

        mock_send.assert_called_once_with("in_1", api_key="sk_test_mahad")

    @pytest.mark.asyncio
    async def test_rejection_carries_stripe_code(self):
        gateway = StripeGateway()
        with patch("app.services.stripe_service.stripe.PaymentIntent.verify_microdeposits") as mock_verify:
            mock_verify.side_effect = stripe.InvalidRequestError(
                "The code is wrong", "descriptor_code", code="incorrect_code"
            )
            with pytest.raises(PaymentProviderError) as exc_info:
                await gateway.verify_microdeposits(StripeAccountType.DUGSI, "pi_1", "SM1234")

        assert exc_info.value.context["stripe_code"] == "incorrect_code"
