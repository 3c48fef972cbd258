"""
Irshad Backend: Stripe Gateway
===============================

What:  Every outbound Stripe call the backend makes, behind one circuit
       breaker and a tenacity retry.
How:   The `stripe` SDK is synchronous; calls run in a worker thread via
       asyncio.to_thread. Two Stripe accounts exist (Mahad and Dugsi), so
       the API key is resolved from the account type and passed per call
       instead of setting the global `stripe.api_key`.
Who:   Withdrawal service (pause/resume/price swap/cancel), subscription
       service (cancel), webhook processor (signature verification),
       checkout, invoice, consolidation, orphan and payment services.

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter, only for
       stripe.APIConnectionError and stripe.RateLimitError
    2. Circuit breaker shared by both accounts; opens after
       cb_failure_threshold exhausted-retry failures
    3. Any other stripe.StripeError (invalid request, card error, auth)
       fails immediately; it does not count against the breaker

Error Handling Chain:
    API call fails transiently → tenacity retries (retry_max_attempts)
    → All retries fail → record breaker failure → PaymentProviderError (503)
    → Breaker threshold reached → later calls raise CircuitBreakerOpenError
    → After cb_recovery_timeout → one test call (HALF_OPEN)
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

import stripe
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from app.config import settings
from app.exceptions import (
    CircuitBreakerOpenError,
    PaymentProviderError,
    ValidationError,
    WebhookSignatureError,
)
from app.models.enums import StripeAccountType

logger = logging.getLogger(__name__)

TRANSIENT_STRIPE_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError)


def _list_all(list_func: Callable[..., Any], **kwargs: Any) -> List[Any]:
    """Drain a paginated list call; runs in the worker thread with the other SDK calls."""
    return list(list_func(**kwargs).auto_paging_iter())


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Circuit breaker guarding Stripe calls.

    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (rejecting all requests)
            → All calls raise CircuitBreakerOpenError immediately
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (testing recovery)
            → On success: transition to CLOSED (reset failure_count)
            → On failure: transition back to OPEN (reset timer)

    Counters live in process memory; each uvicorn worker has its own breaker.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Returns True if a call may proceed.

        Raises:
            CircuitBreakerOpenError if OPEN and the recovery timeout has not elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info("Stripe circuit breaker transitioning to HALF_OPEN after %.1fs", elapsed)
                self.state = self.HALF_OPEN
                return True
            remaining = int(self.recovery_timeout - elapsed)
            raise CircuitBreakerOpenError(recovery_time=remaining)

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Stripe circuit breaker transitioning to CLOSED (provider recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Stripe circuit breaker returning to OPEN (test call failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Stripe circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Gateway
# ══════════════════════════════════════════════════════════════════════════

class StripeGateway:
    """
    Thin async wrapper over the Stripe SDK.

    Each public method takes the StripeAccountType the object lives in.
    Subscriptions created in the Dugsi account are invisible to the Mahad
    key and vice versa.
    """

    def __init__(self):
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )
        logger.info(
            "StripeGateway initialized with circuit_breaker(threshold=%d, recovery=%ds)",
            settings.cb_failure_threshold,
            settings.cb_recovery_timeout,
        )

    @staticmethod
    def _api_key(account_type: StripeAccountType) -> str:
        api_key = settings.stripe_secret_key_for(account_type)
        if not api_key:
            raise PaymentProviderError(
                message=f"Stripe is not configured for the {account_type} account",
                context={"account_type": str(account_type)},
            )
        return api_key

    async def _call(
        self,
        account_type: StripeAccountType,
        operation: str,
        func: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """
        Run one SDK call through the breaker and the retry policy.

        Raises:
            CircuitBreakerOpenError: breaker is open
            PaymentProviderError: Stripe rejected the call or stayed unreachable
        """
        call_id = str(uuid.uuid4())[:8]
        self.circuit_breaker.can_execute()
        api_key = self._api_key(account_type)

        logger.info("[%s] Stripe %s (%s)", call_id, operation, account_type)
        try:
            result = await self._call_with_retry(
                func, *args, api_key=api_key, **kwargs
            )
        except TRANSIENT_STRIPE_ERRORS as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] Stripe %s failed after retries: %s", call_id, operation, str(e))
            raise PaymentProviderError(
                message="The payment provider is unreachable. Please try again later.",
                retry_after=self.circuit_breaker.recovery_timeout,
                context={
                    "call_id": call_id,
                    "operation": operation,
                    "attempts": settings.retry_max_attempts,
                },
            )
        except stripe.StripeError as e:
            logger.error("[%s] Stripe %s rejected: %s", call_id, operation, str(e))
            raise PaymentProviderError(
                message=f"Stripe {operation} failed: {e.user_message or str(e)}",
                context={
                    "call_id": call_id,
                    "operation": operation,
                    "error_type": type(e).__name__,
                    "stripe_code": getattr(e, "code", None),
                },
            )

        self.circuit_breaker.record_success()
        return result

    @retry(
        retry=retry_if_exception_type(TRANSIENT_STRIPE_ERRORS),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _call_with_retry(
        self, func: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> Any:
        start_time = time.time()
        result = await asyncio.to_thread(func, *args, **kwargs)
        logger.debug("Stripe call completed in %.0fms", (time.time() - start_time) * 1000)
        return result

    # ── Subscriptions ─────────────────────────────────────────────────────

    async def retrieve_subscription(
        self,
        account_type: StripeAccountType,
        subscription_id: str,
        expand: Optional[List[str]] = None,
    ):
        kwargs = {"expand": expand} if expand else {}
        return await self._call(
            account_type,
            "retrieve_subscription",
            stripe.Subscription.retrieve,
            subscription_id,
            **kwargs,
        )

    async def list_subscriptions(
        self, account_type: StripeAccountType, expand: Optional[List[str]] = None
    ) -> List[Any]:
        """Every subscription in the account, all statuses, following pagination."""
        return await self._call(
            account_type,
            "list_subscriptions",
            _list_all,
            stripe.Subscription.list,
            status="all",
            limit=100,
            expand=expand or [],
        )

    async def update_subscription_metadata(
        self, account_type: StripeAccountType, subscription_id: str, metadata: Dict[str, str]
    ):
        return await self._call(
            account_type,
            "update_subscription_metadata",
            stripe.Subscription.modify,
            subscription_id,
            metadata=metadata,
        )

    async def cancel_subscription(self, account_type: StripeAccountType, subscription_id: str):
        return await self._call(
            account_type, "cancel_subscription", stripe.Subscription.cancel, subscription_id
        )

    async def pause_subscription(self, account_type: StripeAccountType, subscription_id: str):
        """Stop collecting payments; invoices created while paused are voided."""
        return await self._call(
            account_type,
            "pause_subscription",
            stripe.Subscription.modify,
            subscription_id,
            pause_collection={"behavior": "void"},
        )

    async def resume_subscription(self, account_type: StripeAccountType, subscription_id: str):
        # An empty string unsets pause_collection
        return await self._call(
            account_type,
            "resume_subscription",
            stripe.Subscription.modify,
            subscription_id,
            pause_collection="",
        )

    async def update_subscription_price(
        self,
        account_type: StripeAccountType,
        subscription_id: str,
        item_id: str,
        product_id: str,
        amount: int,
        interval: str = "month",
        interval_count: int = 1,
    ):
        """
        Replace the price on a subscription item with an inline price.

        Takes effect from the next invoice; no proration is generated for
        the current period.
        """
        return await self._call(
            account_type,
            "update_subscription_price",
            stripe.Subscription.modify,
            subscription_id,
            items=[
                {
                    "id": item_id,
                    "price_data": {
                        "currency": "usd",
                        "product": product_id,
                        "unit_amount": amount,
                        "recurring": {
                            "interval": interval,
                            "interval_count": interval_count,
                        },
                    },
                }
            ],
            proration_behavior="none",
        )

    # ── Checkout ──────────────────────────────────────────────────────────

    async def create_checkout_session(self, account_type: StripeAccountType, **params: Any):
        return await self._call(
            account_type, "create_checkout_session", stripe.checkout.Session.create, **params
        )

    # ── Customers ─────────────────────────────────────────────────────────

    async def update_customer(
        self,
        account_type: StripeAccountType,
        customer_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ):
        fields = {k: v for k, v in {"name": name, "email": email}.items() if v}
        return await self._call(
            account_type, "update_customer", stripe.Customer.modify, customer_id, **fields
        )

    # ── Invoices ──────────────────────────────────────────────────────────

    async def list_invoices(
        self, account_type: StripeAccountType, customer_id: str, limit: int = 100
    ) -> List[Any]:
        result = await self._call(
            account_type, "list_invoices", stripe.Invoice.list, customer=customer_id, limit=limit
        )
        return list(result.data)

    async def retrieve_invoice(self, account_type: StripeAccountType, invoice_id: str):
        return await self._call(
            account_type,
            "retrieve_invoice",
            stripe.Invoice.retrieve,
            invoice_id,
            expand=["customer", "subscription", "payment_intent"],
        )

    async def send_invoice(self, account_type: StripeAccountType, invoice_id: str):
        """Email the hosted invoice to the customer again."""
        return await self._call(
            account_type, "send_invoice", stripe.Invoice.send_invoice, invoice_id
        )

    # ── Payment intents ───────────────────────────────────────────────────

    async def retrieve_payment_intent(self, account_type: StripeAccountType, payment_intent_id: str):
        return await self._call(
            account_type,
            "retrieve_payment_intent",
            stripe.PaymentIntent.retrieve,
            payment_intent_id,
        )

    async def verify_microdeposits(
        self, account_type: StripeAccountType, payment_intent_id: str, descriptor_code: str
    ):
        """Confirm a US bank account with the SM-prefixed statement descriptor code."""
        return await self._call(
            account_type,
            "verify_microdeposits",
            stripe.PaymentIntent.verify_microdeposits,
            payment_intent_id,
            descriptor_code=descriptor_code,
        )

    # ── Webhooks ──────────────────────────────────────────────────────────

    def construct_event(
        self, payload: bytes, signature: str, account_type: StripeAccountType
    ) -> Dict[str, Any]:
        """
        Verify a webhook signature against the account's signing secret.

        Runs locally (HMAC over the raw body); no network call, so no
        breaker or retry.

        Raises:
            PaymentProviderError: no signing secret configured
            WebhookSignatureError: signature does not match
            ValidationError: payload is not valid JSON
        """
        secret = settings.stripe_webhook_secret_for(account_type)
        if not secret:
            raise PaymentProviderError(
                message=f"Webhook secret is not configured for the {account_type} account",
                context={"account_type": str(account_type)},
            )
        try:
            return stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Webhook signature verification failed (%s): %s", account_type, str(e))
            raise WebhookSignatureError(context={"account_type": str(account_type)})
        except ValueError as e:
            raise ValidationError(
                message="Invalid webhook payload: body is not valid JSON",
                code="INVALID_PAYLOAD",
                context={"error": str(e)},
            )


# Singleton instance
stripe_gateway = StripeGateway()
