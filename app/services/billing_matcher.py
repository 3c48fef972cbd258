"""
Irshad Backend: Checkout Session Matcher
=========================================

What:  Works out which student (or paying guardian) a completed Stripe
       checkout session belongs to.
Who:   The `checkout.session.completed` webhook handler.

Lookup priority (first hit wins):

    1. Custom field "studentsemailonethatyouusedtoregister"  → match_method="email"
    2. Custom field "studentswhatsappthatyouuseforourgroup"  → match_method="phone"
    3. customer_details.email
         payer already has a billing account                 → match_method="guardian"
         otherwise self-pay student by that email            → match_method="email"

For 1, 2 and the self-pay branch of 3, the profile must be in the
program of the Stripe account and must not already be covered by an
active or trialing subscription.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import and_, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.billing import BillingAccount, BillingAssignment, Subscription
from app.models.enums import ContactType, Program, StripeAccountType
from app.models.person import ContactPoint, Person
from app.models.program import ProgramProfile
from app.services.billing_service import ACTIVE_SUBSCRIPTION_STATUSES, billing_service
from app.services.contact import is_valid_email, normalize_email, normalize_phone

logger = logging.getLogger(__name__)

EMAIL_CUSTOM_FIELD = "studentsemailonethatyouusedtoregister"
PHONE_CUSTOM_FIELD = "studentswhatsappthatyouuseforourgroup"


@dataclass
class MatchResult:
    account_type: StripeAccountType
    billing_account: Optional[BillingAccount] = None
    program_profile: Optional[ProgramProfile] = None
    match_method: Optional[str] = None
    validated_email: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.billing_account is not None or self.program_profile is not None

    @property
    def person_id(self):
        if self.billing_account is not None:
            return self.billing_account.person_id
        if self.program_profile is not None:
            return self.program_profile.person_id
        return None


def _custom_field_value(session: Dict[str, Any], key: str) -> Optional[str]:
    for field in session.get("custom_fields") or []:
        if field.get("key") != key:
            continue
        for kind in ("text", "numeric", "dropdown"):
            value = (field.get(kind) or {}).get("value")
            if value:
                return str(value)
    return None


def program_for_account(account_type: StripeAccountType) -> Program:
    if account_type == StripeAccountType.MAHAD:
        return Program.MAHAD_PROGRAM
    return Program.DUGSI_PROGRAM


class BillingMatcher:

    async def _find_unbilled_profile(
        self,
        db: AsyncSession,
        contact_types,
        value: str,
        program: Program,
    ) -> Optional[ProgramProfile]:
        covered = exists().where(
            and_(
                BillingAssignment.program_profile_id == ProgramProfile.id,
                BillingAssignment.is_active.is_(True),
                Subscription.id == BillingAssignment.subscription_id,
                Subscription.status.in_(ACTIVE_SUBSCRIPTION_STATUSES),
            )
        )
        result = await db.execute(
            select(ProgramProfile)
            .join(Person, Person.id == ProgramProfile.person_id)
            .join(ContactPoint, ContactPoint.person_id == Person.id)
            .where(
                ContactPoint.type.in_(contact_types),
                ContactPoint.value == value,
                ProgramProfile.program == program,
                ~covered,
            )
            .order_by(ProgramProfile.created_at.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def _match_profile(
        self,
        db: AsyncSession,
        account_type: StripeAccountType,
        contact_types,
        value: str,
        match_method: str,
        validated_email: Optional[str] = None,
    ) -> Optional[MatchResult]:
        profile = await self._find_unbilled_profile(
            db, contact_types, value, program_for_account(account_type)
        )
        if profile is None:
            return None
        account = await billing_service.get_billing_account(db, profile.person_id, account_type)
        return MatchResult(
            account_type=account_type,
            billing_account=account,
            program_profile=profile,
            match_method=match_method,
            validated_email=validated_email,
        )

    async def find_by_checkout_session(
        self,
        db: AsyncSession,
        session: Dict[str, Any],
        account_type: StripeAccountType,
    ) -> MatchResult:
        # 1. Student email typed into the checkout form
        custom_email = normalize_email(_custom_field_value(session, EMAIL_CUSTOM_FIELD))
        if custom_email and is_valid_email(custom_email):
            match = await self._match_profile(
                db, account_type, [ContactType.EMAIL], custom_email, "email", custom_email
            )
            if match:
                return match

        # 2. Student WhatsApp number typed into the checkout form
        custom_phone = normalize_phone(_custom_field_value(session, PHONE_CUSTOM_FIELD))
        if custom_phone:
            match = await self._match_profile(
                db, account_type, [ContactType.PHONE, ContactType.WHATSAPP], custom_phone, "phone"
            )
            if match:
                return match

        # 3. The payer's own email
        payer_email = normalize_email((session.get("customer_details") or {}).get("email"))
        if payer_email and is_valid_email(payer_email):
            result = await db.execute(
                select(BillingAccount)
                .join(ContactPoint, ContactPoint.person_id == BillingAccount.person_id)
                .where(
                    ContactPoint.type == ContactType.EMAIL,
                    ContactPoint.value == payer_email,
                    BillingAccount.account_type == account_type,
                )
                .limit(1)
            )
            account = result.scalars().first()
            if account is not None:
                return MatchResult(
                    account_type=account_type,
                    billing_account=account,
                    match_method="guardian",
                    validated_email=payer_email,
                )
            match = await self._match_profile(
                db, account_type, [ContactType.EMAIL], payer_email, "email", payer_email
            )
            if match:
                return match

        return MatchResult(account_type=account_type)

    def log_no_match_found(
        self,
        session: Dict[str, Any],
        subscription_id: Optional[str],
        account_type: StripeAccountType,
    ) -> None:
        logger.warning(
            "No billing match for checkout session %s (account=%s, subscription=%s, "
            "custom_email=%r, custom_phone=%r, customer_email=%r, customer=%s)",
            session.get("id"),
            account_type,
            subscription_id,
            _custom_field_value(session, EMAIL_CUSTOM_FIELD),
            _custom_field_value(session, PHONE_CUSTOM_FIELD),
            (session.get("customer_details") or {}).get("email"),
            session.get("customer"),
        )


# Singleton instance
billing_matcher = BillingMatcher()
