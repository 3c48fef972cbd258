"""
Shared column helpers for the ORM models.

Every table uses a UUID primary key generated by PostgreSQL and UTC
timestamps with time zone. Enum columns store the enum *value* in a named
PostgreSQL enum type, so SubscriptionStatus.ACTIVE is stored as 'active'
exactly as Stripe sends it.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Type

from sqlalchemy import Enum as SAEnum, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def pg_enum(enum_cls: Type[enum.Enum], name: str) -> SAEnum:
    """Named PostgreSQL enum type that persists member values."""
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class UUIDPrimaryKeyMixin:
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
