"""
Irshad Backend: Orphaned Subscription Tests
============================================

What:  Tests for finding and linking Stripe subscriptions with no profile.
How:   stripe_gateway, billing_service and subscription_service are patched
       on the orphan module.

What we test:
    ✅ Linked, canceled and incomplete subscriptions are not orphans
    ✅ Mahad orphans report how many live subscriptions the customer has
    ✅ Linking checks the profile's program and mirrors the subscription
"""

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.exceptions import NotFoundError, ValidationError
from app.models.enums import Program, StripeAccountType
from app.schemas.billing import LinkOrphanInput
from app.services.orphan_service import OrphanService


def _sub(sub_id, status="active", customer="cus_1"):
    return {
        "id": sub_id,
        "status": status,
        "customer": {"id": customer, "email": f"{customer}@example.com", "name": "Student"},
        "created": 1767225600,
        "items": {"data": [{"price": {"unit_amount": 12000, "recurring": {"interval": "month"}}}]},
    }


class TestListOrphans:

    @pytest.mark.asyncio
    async def test_linked_and_dead_subscriptions_excluded(self, mock_db_session, make_result):
        service = OrphanService()
        subs = [
            _sub("sub_linked"),
            _sub("sub_orphan"),
            _sub("sub_canceled", status="canceled"),
            _sub("sub_incomplete", status="incomplete"),
            _sub("sub_other", customer="cus_2"),
        ]
        mock_db_session.execute.return_value = make_result(scalars=["sub_linked"])

        with patch("app.services.orphan_service.stripe_gateway") as mock_gateway:
            mock_gateway.list_subscriptions = AsyncMock(return_value=subs)
            orphans = await service.list_orphaned_subscriptions(mock_db_session, StripeAccountType.MAHAD)

        assert [o.id for o in orphans] == ["sub_orphan", "sub_other"]
        assert orphans[0].customer_email == "cus_1@example.com"
        assert orphans[0].amount == 12000
        # cus_1 has sub_linked and sub_orphan live
        assert orphans[0].subscription_count == 2
        assert orphans[1].subscription_count == 1

    @pytest.mark.asyncio
    async def test_other_accounts_rejected(self, mock_db_session):
        with pytest.raises(ValidationError):
            await OrphanService().list_orphaned_subscriptions(
                mock_db_session, StripeAccountType.GENERAL_DONATION
            )


class TestLinkOrphan:

    def setup_method(self):
        self.service = OrphanService()
        self.profile = MagicMock(id=uuid.uuid4(), person_id=uuid.uuid4())
        self.profile.program = Program.MAHAD_PROGRAM

    @pytest.mark.asyncio
    async def test_links_profile_with_full_amount(self, mock_db_session):
        mock_db_session.get.return_value = self.profile
        account = MagicMock(id=uuid.uuid4())
        subscription = MagicMock(id=uuid.uuid4(), amount=12000)

        with patch("app.services.orphan_service.stripe_gateway") as mock_gateway, \
             patch("app.services.orphan_service.billing_service") as mock_billing, \
             patch("app.services.orphan_service.subscription_service") as mock_subs:
            mock_gateway.retrieve_subscription = AsyncMock(return_value=_sub("sub_orphan"))
            mock_billing.create_or_update_billing_account = AsyncMock(return_value=account)
            mock_billing.link_subscription_to_profiles = AsyncMock(return_value=1)
            mock_subs.sync_subscription_from_stripe = AsyncMock(return_value=None)
            mock_subs.create_subscription_from_stripe = AsyncMock(return_value=subscription)

            result = await self.service.link_orphaned_subscription(
                mock_db_session, "sub_orphan",
                LinkOrphanInput(program_profile_id=self.profile.id, account_type=StripeAccountType.MAHAD),
            )

        assert mock_billing.create_or_update_billing_account.call_args.kwargs["stripe_customer_id"] == "cus_1"
        mock_subs.create_subscription_from_stripe.assert_awaited_once()
        mock_billing.link_subscription_to_profiles.assert_awaited_once_with(
            mock_db_session, subscription.id, [self.profile.id], 12000,
            notes="Linked via admin interface",
        )
        assert result.billing_account_id == account.id
        assert result.assignments_created == 1

    @pytest.mark.asyncio
    async def test_program_mismatch(self, mock_db_session):
        self.profile.program = Program.DUGSI_PROGRAM
        mock_db_session.get.return_value = self.profile

        with pytest.raises(ValidationError):
            await self.service.link_orphaned_subscription(
                mock_db_session, "sub_orphan",
                LinkOrphanInput(program_profile_id=self.profile.id, account_type=StripeAccountType.MAHAD),
            )

    @pytest.mark.asyncio
    async def test_unknown_profile(self, mock_db_session):
        with pytest.raises(NotFoundError):
            await self.service.link_orphaned_subscription(
                mock_db_session, "sub_orphan",
                LinkOrphanInput(program_profile_id=uuid.uuid4(), account_type=StripeAccountType.DUGSI),
            )
