"""
Irshad Backend: Billing Models
===============================

What:  ORM models mirroring Stripe billing state: `billing_accounts`,
       `subscriptions`, `subscription_history`, `billing_assignments` and
       `webhook_events`.

Relationships:

    Person ──< BillingAccount (one per account type)
                   │
                   └──< Subscription (mirror of a Stripe subscription)
                            │
                            └──< BillingAssignment >── ProgramProfile

    A Dugsi family pays one subscription for several children; each child
    gets a BillingAssignment carrying its share of the amount.

WebhookEvent is the idempotency ledger: one row per (event_id, source).
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.common import TimestampMixin, UUIDPrimaryKeyMixin, pg_enum, utcnow
from app.models.enums import StripeAccountType, SubscriptionStatus
from app.models.person import Person
from app.models.program import ProgramProfile


class BillingAccount(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "billing_accounts"

    person_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id", ondelete="CASCADE"), nullable=False
    )
    account_type: Mapped[StripeAccountType] = mapped_column(
        pg_enum(StripeAccountType, "stripe_account_type"), nullable=False
    )

    # ── Stripe customer per account ───────────────────────────────────────
    # A customer id is only meaningful inside its own Stripe account.
    stripe_customer_id_mahad: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    stripe_customer_id_dugsi: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    stripe_customer_id_youth: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    stripe_customer_id_donation: Mapped[Optional[str]] = mapped_column(String(255), unique=True)

    payment_intent_id_dugsi: Mapped[Optional[str]] = mapped_column(String(255))
    payment_method_captured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_method_captured_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True)
    )
    primary_contact_point_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("contact_points.id", ondelete="SET NULL")
    )

    person: Mapped[Person] = relationship(lazy="selectin")
    subscriptions: Mapped[List["Subscription"]] = relationship(back_populates="billing_account")

    __table_args__ = (
        UniqueConstraint("person_id", "account_type", name="uq_billing_account_person_type"),
    )

    def customer_id_for(self, account_type: StripeAccountType) -> Optional[str]:
        return getattr(self, CUSTOMER_ID_COLUMNS[StripeAccountType(account_type)])


# Column holding the Stripe customer id for each account type
CUSTOMER_ID_COLUMNS = {
    StripeAccountType.MAHAD: "stripe_customer_id_mahad",
    StripeAccountType.DUGSI: "stripe_customer_id_dugsi",
    StripeAccountType.YOUTH_EVENTS: "stripe_customer_id_youth",
    StripeAccountType.GENERAL_DONATION: "stripe_customer_id_donation",
}


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "subscriptions"

    billing_account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("billing_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    stripe_account_type: Mapped[StripeAccountType] = mapped_column(
        pg_enum(StripeAccountType, "stripe_account_type"), nullable=False
    )
    stripe_subscription_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    stripe_customer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[SubscriptionStatus] = mapped_column(
        pg_enum(SubscriptionStatus, "subscription_status"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    interval: Mapped[str] = mapped_column(String(20), nullable=False, default="month")
    interval_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    current_period_start: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    current_period_end: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    paid_until: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    last_payment_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    previous_subscription_ids: Mapped[List[str]] = mapped_column(
        JSONB, nullable=False, default=list
    )

    billing_account: Mapped[BillingAccount] = relationship(back_populates="subscriptions")
    assignments: Mapped[List["BillingAssignment"]] = relationship(back_populates="subscription")

    __table_args__ = (
        Index("idx_subscriptions_account_status", "billing_account_id", "status"),
        Index("idx_subscriptions_customer", "stripe_customer_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(stripe_id='{self.stripe_subscription_id}', "
            f"status='{self.status}', amount={self.amount})>"
        )


class SubscriptionHistory(UUIDPrimaryKeyMixin, Base):
    """Append-only log of status/amount changes on a subscription."""

    __tablename__ = "subscription_history"

    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False
    )
    stripe_subscription_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[SubscriptionStatus] = mapped_column(
        pg_enum(SubscriptionStatus, "subscription_status"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(255))
    changed_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )


class BillingAssignment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "billing_assignments"

    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False
    )
    program_profile_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("program_profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    percentage: Mapped[Optional[float]] = mapped_column(Float)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    start_date: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    end_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    subscription: Mapped[Subscription] = relationship(back_populates="assignments", lazy="selectin")
    program_profile: Mapped[ProgramProfile] = relationship(lazy="selectin")

    __table_args__ = (
        Index("idx_billing_assignments_profile_active", "program_profile_id", "is_active"),
        Index("idx_billing_assignments_subscription_active", "subscription_id", "is_active"),
    )


class WebhookEvent(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "webhook_events"

    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    # Which endpoint received it: 'mahad' or 'dugsi'
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSONB, nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("event_id", "source", name="uq_webhook_event_source"),
    )
