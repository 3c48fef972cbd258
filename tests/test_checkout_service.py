"""
Irshad Backend: Checkout Service Tests
=======================================

What:  Tests for the Dugsi payment link and the Mahad registration checkout.
How:   family_service, billing_service and stripe_gateway are patched on the
       checkout module; the params handed to Stripe are inspected directly.

What we test:
    ✅ Dugsi subscription metadata carries profileIds, childCount,
       calculatedRate and overrideUsed
    ✅ An override keeps the calculated rate in metadata
    ✅ Billing start date becomes the cycle anchor; past dates are rejected
    ✅ Missing family / primary payer are reported before Stripe is called
    ✅ Mahad metadata and the exempt rejection
"""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.exceptions import NotFoundError, PaymentProviderError, ValidationError
from app.models.enums import (
    GraduationStatus,
    PaymentFrequency,
    Program,
    StripeAccountType,
    StudentBillingType,
)
from app.schemas.checkout import DugsiCheckoutInput, MahadCheckoutInput
from app.services.checkout_service import CheckoutService, billing_cycle_anchor


def _child(name):
    profile = MagicMock()
    profile.id = uuid.uuid4()
    profile.person.name = name
    return profile


def _guardian(email="hodan@example.com"):
    guardian = MagicMock()
    guardian.id = uuid.uuid4()
    guardian.name = "Hodan Yusuf"
    guardian.email = email
    return guardian


class TestBillingCycleAnchor:

    def test_future_date_becomes_timestamp(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        start = datetime(2026, 2, 1, tzinfo=timezone.utc)
        assert billing_cycle_anchor(start, now) == int(start.timestamp())

    def test_naive_date_is_utc(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert billing_cycle_anchor(datetime(2026, 2, 1), now) == int(
            datetime(2026, 2, 1, tzinfo=timezone.utc).timestamp()
        )

    def test_past_date_rejected(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        with pytest.raises(ValidationError) as exc_info:
            billing_cycle_anchor(now - timedelta(days=1), now)
        assert exc_info.value.field == "billing_start_date"

    def test_more_than_a_year_out_rejected(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        with pytest.raises(ValidationError):
            billing_cycle_anchor(now + timedelta(days=400), now)


class TestDugsiCheckout:

    def setup_method(self):
        self.service = CheckoutService()
        self.children = [_child("Ayaan"), _child("Sagal")]
        self.guardian = _guardian()
        relation = MagicMock()
        relation.guardian = self.guardian

        self.family_patch = patch("app.services.checkout_service.family_service")
        self.billing_patch = patch("app.services.checkout_service.billing_service")
        self.stripe_patch = patch("app.services.checkout_service.stripe_gateway")
        self.family = self.family_patch.start()
        self.billing = self.billing_patch.start()
        self.stripe = self.stripe_patch.start()

        self.family.get_billable_family_profiles = AsyncMock(return_value=self.children)
        self.family.get_primary_payer = AsyncMock(return_value=relation)
        self.billing.get_billing_account = AsyncMock(return_value=None)
        self.stripe.create_checkout_session = AsyncMock(
            return_value={"id": "cs_123", "url": "https://checkout.stripe.com/cs_123"}
        )

    def teardown_method(self):
        patch.stopall()

    def _params(self):
        return self.stripe.create_checkout_session.call_args.kwargs

    @pytest.mark.asyncio
    async def test_metadata_carries_profiles_and_rate(self, mock_db_session):
        response = await self.service.create_dugsi_checkout_session(
            mock_db_session, "fam-1", DugsiCheckoutInput()
        )

        assert self.stripe.create_checkout_session.call_args.args == (StripeAccountType.DUGSI,)
        metadata = self._params()["subscription_data"]["metadata"]
        assert metadata["profileIds"] == ",".join(str(c.id) for c in self.children)
        assert metadata["childCount"] == "2"
        assert metadata["calculatedRate"] == "16000"
        assert metadata["overrideUsed"] == "false"
        assert metadata["familyId"] == "fam-1"
        assert metadata["guardianPersonId"] == str(self.guardian.id)
        assert metadata["billingStartDate"] == "immediate"

        assert self._params()["line_items"][0]["price_data"]["unit_amount"] == 16000
        assert self._params()["customer_email"] == "hodan@example.com"
        assert response.final_rate == 16000
        assert response.is_override is False
        assert response.url == "https://checkout.stripe.com/cs_123"

    @pytest.mark.asyncio
    async def test_override_keeps_calculated_rate(self, mock_db_session):
        response = await self.service.create_dugsi_checkout_session(
            mock_db_session, "fam-1", DugsiCheckoutInput(override_amount=12000)
        )

        metadata = self._params()["subscription_data"]["metadata"]
        assert metadata["overrideUsed"] == "true"
        assert metadata["calculatedRate"] == "16000"
        assert self._params()["line_items"][0]["price_data"]["unit_amount"] == 12000
        assert response.calculated_rate == 16000
        assert response.final_rate == 12000

    @pytest.mark.asyncio
    async def test_existing_customer_is_reused(self, mock_db_session):
        account = MagicMock()
        account.stripe_customer_id_dugsi = "cus_family"
        self.billing.get_billing_account = AsyncMock(return_value=account)

        await self.service.create_dugsi_checkout_session(
            mock_db_session, "fam-1", DugsiCheckoutInput()
        )

        assert self._params()["customer"] == "cus_family"
        assert "customer_email" not in self._params()

    @pytest.mark.asyncio
    async def test_billing_start_date_sets_anchor(self, mock_db_session):
        start = datetime.now(timezone.utc) + timedelta(days=10)

        await self.service.create_dugsi_checkout_session(
            mock_db_session, "fam-1", DugsiCheckoutInput(billing_start_date=start)
        )

        subscription_data = self._params()["subscription_data"]
        assert subscription_data["billing_cycle_anchor"] == int(start.timestamp())
        assert subscription_data["proration_behavior"] == "none"
        assert subscription_data["metadata"]["billingStartDate"] == start.isoformat()

    @pytest.mark.asyncio
    async def test_unknown_family(self, mock_db_session):
        self.family.get_billable_family_profiles = AsyncMock(return_value=[])

        with pytest.raises(NotFoundError):
            await self.service.create_dugsi_checkout_session(
                mock_db_session, "fam-missing", DugsiCheckoutInput()
            )
        self.stripe.create_checkout_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_primary_payer(self, mock_db_session):
        self.family.get_primary_payer = AsyncMock(return_value=None)

        with pytest.raises(ValidationError) as exc_info:
            await self.service.create_dugsi_checkout_session(
                mock_db_session, "fam-1", DugsiCheckoutInput()
            )
        assert exc_info.value.code == "NO_PRIMARY_PAYER"
        self.stripe.create_checkout_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_override(self, mock_db_session):
        with pytest.raises(ValidationError) as exc_info:
            await self.service.create_dugsi_checkout_session(
                mock_db_session, "fam-1", DugsiCheckoutInput(override_amount=0)
            )
        assert exc_info.value.field == "override_amount"

    @pytest.mark.asyncio
    async def test_session_without_url(self, mock_db_session):
        self.stripe.create_checkout_session = AsyncMock(return_value={"id": "cs_123", "url": None})

        with pytest.raises(PaymentProviderError):
            await self.service.create_dugsi_checkout_session(
                mock_db_session, "fam-1", DugsiCheckoutInput()
            )


class TestMahadCheckout:

    def setup_method(self):
        self.service = CheckoutService()
        self.profile = MagicMock()
        self.profile.id = uuid.uuid4()
        self.profile.person_id = uuid.uuid4()
        self.profile.program = Program.MAHAD_PROGRAM
        self.profile.person.name = "Abdirahman Farah"
        self.profile.person.email = "abdi@example.com"

        self.billing_patch = patch("app.services.checkout_service.billing_service")
        self.stripe_patch = patch("app.services.checkout_service.stripe_gateway")
        self.billing = self.billing_patch.start()
        self.stripe = self.stripe_patch.start()
        self.billing.get_billing_account = AsyncMock(return_value=None)
        self.stripe.create_checkout_session = AsyncMock(
            return_value={"id": "cs_mahad", "url": "https://checkout.stripe.com/cs_mahad"}
        )

    def teardown_method(self):
        patch.stopall()

    def _input(self, **overrides):
        values = {
            "profile_id": self.profile.id,
            "graduation_status": GraduationStatus.NON_GRADUATE,
            "payment_frequency": PaymentFrequency.MONTHLY,
        }
        values.update(overrides)
        return MahadCheckoutInput(**values)

    @pytest.mark.asyncio
    async def test_metadata_and_profile_update(self, mock_db_session):
        mock_db_session.get.return_value = self.profile

        response = await self.service.create_mahad_checkout_session(mock_db_session, self._input())

        params = self.stripe.create_checkout_session.call_args.kwargs
        metadata = params["subscription_data"]["metadata"]
        assert metadata["profileId"] == str(self.profile.id)
        assert metadata["calculatedRate"] == "12000"
        assert metadata["graduationStatus"] == "NON_GRADUATE"
        assert metadata["billingType"] == "FULL_TIME"
        assert params["customer_email"] == "abdi@example.com"
        assert response.rate == 12000
        assert self.profile.payment_frequency == PaymentFrequency.MONTHLY
        mock_db_session.flush.assert_awaited()

    @pytest.mark.asyncio
    async def test_exempt_rejected(self, mock_db_session):
        with pytest.raises(ValidationError):
            await self.service.create_mahad_checkout_session(
                mock_db_session, self._input(billing_type=StudentBillingType.EXEMPT)
            )
        self.stripe.create_checkout_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_dugsi_profile_not_found(self, mock_db_session):
        self.profile.program = Program.DUGSI_PROGRAM
        mock_db_session.get.return_value = self.profile

        with pytest.raises(NotFoundError):
            await self.service.create_mahad_checkout_session(mock_db_session, self._input())
