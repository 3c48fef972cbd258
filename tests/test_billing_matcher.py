"""
Irshad Backend: Checkout Session Matcher Tests
===============================================

What:  Tests for BillingMatcher.find_by_checkout_session().
Why:   The lookup order decides whose billing account a Stripe customer is
       attached to; a wrong match bills the wrong family.
How:   Each db.execute() call is one lookup stage, so `side_effect` lists
       the result of every stage in order. billing_service is patched on
       the matcher module.

What we test:
    ✅ The student email custom field wins and is normalized
    ✅ The WhatsApp custom field is tried when the email finds nothing
    ✅ A payer who already has a billing account matches as "guardian"
    ✅ A payer without an account falls back to a self-pay student
    ✅ Invalid or missing contact data skips its stage
    ✅ Nothing found → an unmatched result
"""

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.models.enums import Program, StripeAccountType
from app.services.billing_matcher import (
    EMAIL_CUSTOM_FIELD,
    PHONE_CUSTOM_FIELD,
    BillingMatcher,
    _custom_field_value,
    program_for_account,
)


def _profile():
    profile = MagicMock()
    profile.id = uuid.uuid4()
    profile.person_id = uuid.uuid4()
    return profile


def _session(email=None, phone=None, payer_email=None):
    custom_fields = []
    if email is not None:
        custom_fields.append({"key": EMAIL_CUSTOM_FIELD, "text": {"value": email}})
    if phone is not None:
        custom_fields.append({"key": PHONE_CUSTOM_FIELD, "numeric": {"value": phone}})
    session = {"id": "cs_test", "custom_fields": custom_fields, "customer": "cus_1"}
    if payer_email is not None:
        session["customer_details"] = {"email": payer_email}
    return session


class TestHelpers:

    def test_custom_field_reads_any_kind(self):
        session = {"custom_fields": [{"key": "k", "text": None, "dropdown": {"value": "x"}}]}
        assert _custom_field_value(session, "k") == "x"

    def test_missing_custom_field(self):
        assert _custom_field_value({}, EMAIL_CUSTOM_FIELD) is None

    def test_program_for_account(self):
        assert program_for_account(StripeAccountType.MAHAD) == Program.MAHAD_PROGRAM
        assert program_for_account(StripeAccountType.DUGSI) == Program.DUGSI_PROGRAM


class TestFindByCheckoutSession:

    def setup_method(self):
        self.matcher = BillingMatcher()

    @pytest.mark.asyncio
    async def test_custom_email_wins(self, mock_db_session, make_result):
        profile = _profile()
        account = MagicMock()
        mock_db_session.execute.return_value = make_result(scalars=[profile])

        with patch("app.services.billing_matcher.billing_service") as mock_billing:
            mock_billing.get_billing_account = AsyncMock(return_value=account)
            match = await self.matcher.find_by_checkout_session(
                mock_db_session,
                _session(email="  Student@Example.COM ", payer_email="parent@example.com"),
                StripeAccountType.MAHAD,
            )

        assert match.matched
        assert match.match_method == "email"
        assert match.validated_email == "student@example.com"
        assert match.program_profile is profile
        assert match.billing_account is account
        assert match.person_id == account.person_id
        assert mock_db_session.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_phone_after_email_misses(self, mock_db_session, make_result):
        profile = _profile()
        mock_db_session.execute.side_effect = [
            make_result(scalars=[]),
            make_result(scalars=[profile]),
        ]

        with patch("app.services.billing_matcher.billing_service") as mock_billing:
            mock_billing.get_billing_account = AsyncMock(return_value=None)
            match = await self.matcher.find_by_checkout_session(
                mock_db_session,
                _session(email="nobody@example.com", phone="+1 (612) 555-0100"),
                StripeAccountType.MAHAD,
            )

        assert match.match_method == "phone"
        assert match.program_profile is profile
        assert match.billing_account is None
        assert match.person_id == profile.person_id

    @pytest.mark.asyncio
    async def test_payer_with_billing_account_is_guardian(self, mock_db_session, make_result):
        account = MagicMock()
        mock_db_session.execute.return_value = make_result(scalars=[account])

        with patch("app.services.billing_matcher.billing_service"):
            match = await self.matcher.find_by_checkout_session(
                mock_db_session,
                _session(payer_email="Parent@Example.com"),
                StripeAccountType.DUGSI,
            )

        assert match.match_method == "guardian"
        assert match.billing_account is account
        assert match.program_profile is None
        assert match.validated_email == "parent@example.com"

    @pytest.mark.asyncio
    async def test_payer_without_account_is_self_pay(self, mock_db_session, make_result):
        profile = _profile()
        mock_db_session.execute.side_effect = [
            make_result(scalars=[]),
            make_result(scalars=[profile]),
        ]

        with patch("app.services.billing_matcher.billing_service") as mock_billing:
            mock_billing.get_billing_account = AsyncMock(return_value=None)
            match = await self.matcher.find_by_checkout_session(
                mock_db_session,
                _session(payer_email="student@example.com"),
                StripeAccountType.MAHAD,
            )

        assert match.match_method == "email"
        assert match.program_profile is profile

    @pytest.mark.asyncio
    async def test_invalid_contact_data_is_skipped(self, mock_db_session, make_result):
        account = MagicMock()
        mock_db_session.execute.return_value = make_result(scalars=[account])

        with patch("app.services.billing_matcher.billing_service"):
            match = await self.matcher.find_by_checkout_session(
                mock_db_session,
                _session(email="not-an-email", phone="555-0100", payer_email="parent@example.com"),
                StripeAccountType.DUGSI,
            )

        # Only the payer lookup ran
        assert mock_db_session.execute.await_count == 1
        assert match.match_method == "guardian"

    @pytest.mark.asyncio
    async def test_no_match(self, mock_db_session, make_result):
        mock_db_session.execute.return_value = make_result(scalars=[])

        with patch("app.services.billing_matcher.billing_service"):
            match = await self.matcher.find_by_checkout_session(
                mock_db_session,
                _session(email="a@example.com", phone="6125550100", payer_email="b@example.com"),
                StripeAccountType.MAHAD,
            )

        assert not match.matched
        assert match.person_id is None
        assert match.account_type == StripeAccountType.MAHAD
        assert mock_db_session.execute.await_count == 4
