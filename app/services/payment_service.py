"""
Irshad Backend: Bank Account Verification
==========================================

What:  Completes micro-deposit verification of a US bank account and reads
       a payment intent's status.
How:   Stripe deposits a small amount whose statement line carries a
       six-character code starting with SM. The admin enters that code;
       it is normalized (trimmed, upper-cased) and checked locally before
       the Stripe call. Stripe rejections that mean something to the admin
       become 400s with a readable message.
Who:   /api/billing/payments routes.
"""

import logging
import re

from app.exceptions import PaymentProviderError, ValidationError
from app.models.enums import StripeAccountType
from app.schemas.billing import PaymentStatusResponse
from app.services.stripe_service import stripe_gateway

logger = logging.getLogger(__name__)

DESCRIPTOR_CODE_PATTERN = re.compile(r"^SM[A-Z0-9]{4}$")

VERIFICATION_ERRORS = {
    "payment_intent_unexpected_state": "This bank account has already been verified",
    "incorrect_code": "The verification code is incorrect. Check the statement and try again.",
    "resource_missing": "Payment intent not found",
}


def normalize_descriptor_code(code: str) -> str:
    normalized = (code or "").strip().upper()
    if not DESCRIPTOR_CODE_PATTERN.match(normalized):
        raise ValidationError(
            message="Descriptor code must be 6 characters starting with SM (e.g. SM1234)",
            field="descriptor_code",
            code="INVALID_DESCRIPTOR_CODE",
        )
    return normalized


def _validate_payment_intent_id(payment_intent_id: str) -> str:
    if not payment_intent_id or not payment_intent_id.startswith("pi_"):
        raise ValidationError(
            message=f"Invalid payment intent ID: {payment_intent_id!r}",
            field="payment_intent_id",
        )
    return payment_intent_id


class PaymentService:

    async def verify_bank_account(
        self,
        payment_intent_id: str,
        descriptor_code: str,
        account_type: StripeAccountType = StripeAccountType.DUGSI,
    ) -> PaymentStatusResponse:
        payment_intent_id = _validate_payment_intent_id(payment_intent_id)
        code = normalize_descriptor_code(descriptor_code)
        try:
            intent = await stripe_gateway.verify_microdeposits(account_type, payment_intent_id, code)
        except PaymentProviderError as e:
            stripe_code = e.context.get("stripe_code")
            if stripe_code in VERIFICATION_ERRORS:
                raise ValidationError(
                    message=VERIFICATION_ERRORS[stripe_code],
                    field="descriptor_code",
                    code=stripe_code.upper(),
                ) from e
            raise

        status = intent.get("status") or ""
        logger.info("Micro-deposit verification for %s: %s", payment_intent_id, status)
        return PaymentStatusResponse(
            payment_intent_id=payment_intent_id,
            status=status,
            verified=status == "succeeded",
        )

    async def get_payment_status(
        self, payment_intent_id: str, account_type: StripeAccountType = StripeAccountType.DUGSI
    ) -> PaymentStatusResponse:
        payment_intent_id = _validate_payment_intent_id(payment_intent_id)
        intent = await stripe_gateway.retrieve_payment_intent(account_type, payment_intent_id)
        status = intent.get("status") or ""
        return PaymentStatusResponse(
            payment_intent_id=payment_intent_id,
            status=status,
            verified=status == "succeeded",
        )


# Singleton instance
payment_service = PaymentService()
