"""Initial schema

Revision ID: 001
Revises: None
Create Date: 2026-10-01 00:00:00.000000+00:00

What:  Creates every table of the Irshad backend: people and contacts,
       program profiles and enrollments, billing (accounts, subscriptions,
       assignments, webhook log), Dugsi classes and attendance, teachers
       and check-ins.
How:   Named PostgreSQL enum types are created first and shared between
       tables (e.g. `shift`, `stripe_account_type`). UUID primary keys use
       gen_random_uuid().

Rollback: downgrade() drops all tables and enum types (destructive).
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUMS = {
    "program": ("MAHAD_PROGRAM", "DUGSI_PROGRAM", "YOUTH_EVENTS", "GENERAL_DONATION"),
    "enrollment_status": ("REGISTERED", "ENROLLED", "ON_LEAVE", "WITHDRAWN", "COMPLETED", "SUSPENDED"),
    "subscription_status": (
        "incomplete", "incomplete_expired", "trialing", "active",
        "past_due", "canceled", "unpaid", "paused",
    ),
    "stripe_account_type": ("MAHAD", "DUGSI", "YOUTH_EVENTS", "GENERAL_DONATION"),
    "contact_type": ("EMAIL", "PHONE", "WHATSAPP", "OTHER"),
    "contact_verification_status": ("UNVERIFIED", "PENDING", "VERIFIED", "FAILED"),
    "guardian_role": ("PARENT", "GUARDIAN", "SPONSOR", "DONOR"),
    "gender": ("MALE", "FEMALE"),
    "education_level": ("ELEMENTARY", "MIDDLE_SCHOOL", "HIGH_SCHOOL", "COLLEGE", "POST_GRAD"),
    "grade_level": (
        "KINDERGARTEN", "GRADE_1", "GRADE_2", "GRADE_3", "GRADE_4", "GRADE_5", "GRADE_6",
        "GRADE_7", "GRADE_8", "GRADE_9", "GRADE_10", "GRADE_11", "GRADE_12",
        "FRESHMAN", "SOPHOMORE", "JUNIOR", "SENIOR",
    ),
    "shift": ("MORNING", "EVENING"),
    "dugsi_attendance_status": ("PRESENT", "ABSENT", "LATE", "EXCUSED"),
    "graduation_status": ("NON_GRADUATE", "GRADUATE"),
    "payment_frequency": ("MONTHLY", "BI_MONTHLY"),
    "student_billing_type": ("FULL_TIME", "FULL_TIME_SCHOLARSHIP", "PART_TIME", "EXEMPT"),
}


def enum(name: str) -> postgresql.ENUM:
    # Types are created once in upgrade(); tables only reference them
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        primary_key=True,
    )


def uuid_fk(name: str, target: str, ondelete: str = "CASCADE", nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey(target, ondelete=ondelete),
        nullable=nullable,
    )


def timestamps() -> list:
    return [
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
    ]


def tstz(name: str, nullable: bool = True, **kwargs) -> sa.Column:
    return sa.Column(name, sa.TIMESTAMP(timezone=True), nullable=nullable, **kwargs)


def flag(name: str, default: bool) -> sa.Column:
    return sa.Column(
        name, sa.Boolean(), nullable=False, server_default=sa.text("true" if default else "false")
    )


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # ── People ────────────────────────────────────────────────────────────
    op.create_table(
        "people",
        uuid_pk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        *timestamps(),
    )
    op.create_index("idx_people_name_lower", "people", [sa.text("lower(name)")])

    op.create_table(
        "contact_points",
        uuid_pk(),
        uuid_fk("person_id", "people.id"),
        sa.Column("type", enum("contact_type"), nullable=False),
        sa.Column("value", sa.String(255), nullable=False, comment="Lower-cased email or 10-digit phone"),
        flag("is_primary", False),
        sa.Column(
            "verification_status",
            enum("contact_verification_status"),
            nullable=False,
            server_default="UNVERIFIED",
        ),
        flag("is_active", True),
        *timestamps(),
        sa.UniqueConstraint("person_id", "type", "value", name="uq_contact_person_type_value"),
    )
    op.create_index("idx_contact_points_type_value", "contact_points", ["type", "value"])

    op.create_table(
        "guardian_relationships",
        uuid_pk(),
        uuid_fk("guardian_id", "people.id"),
        uuid_fk("dependent_id", "people.id"),
        sa.Column("role", enum("guardian_role"), nullable=False, server_default="PARENT"),
        tstz("start_date"),
        tstz("end_date"),
        flag("is_active", True),
        flag("is_primary_payer", False),
        sa.Column("notes", sa.Text(), nullable=True),
        *timestamps(),
        sa.UniqueConstraint("guardian_id", "dependent_id", "role", name="uq_guardian_dependent_role"),
    )
    op.create_index(
        "idx_guardian_relationships_dependent",
        "guardian_relationships",
        ["dependent_id", "is_active"],
    )

    op.create_table(
        "sibling_relationships",
        uuid_pk(),
        uuid_fk("person1_id", "people.id"),
        uuid_fk("person2_id", "people.id"),
        sa.Column("detection_method", sa.String(50), nullable=False, server_default="manual"),
        sa.Column("confidence", sa.Float(), nullable=True),
        flag("is_active", True),
        *timestamps(),
        sa.UniqueConstraint("person1_id", "person2_id", name="uq_sibling_pair"),
        sa.CheckConstraint("person1_id < person2_id", name="ck_sibling_pair_ordered"),
    )

    # ── Programs ──────────────────────────────────────────────────────────
    op.create_table(
        "batches",
        uuid_pk(),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        tstz("start_date"),
        tstz("end_date"),
        *timestamps(),
    )

    op.create_table(
        "program_profiles",
        uuid_pk(),
        uuid_fk("person_id", "people.id"),
        sa.Column("program", enum("program"), nullable=False),
        sa.Column("status", enum("enrollment_status"), nullable=False, server_default="REGISTERED"),
        sa.Column("monthly_rate", sa.Integer(), nullable=False, server_default="150"),
        flag("custom_rate", False),
        sa.Column("gender", enum("gender"), nullable=True),
        sa.Column("education_level", enum("education_level"), nullable=True),
        sa.Column("grade_level", enum("grade_level"), nullable=True),
        sa.Column("school_name", sa.String(255), nullable=True),
        sa.Column("health_info", sa.Text(), nullable=True),
        sa.Column("family_reference_id", sa.String(64), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("graduation_status", enum("graduation_status"), nullable=True),
        sa.Column("payment_frequency", enum("payment_frequency"), nullable=True),
        sa.Column("billing_type", enum("student_billing_type"), nullable=True),
        sa.Column("payment_notes", sa.Text(), nullable=True),
        *timestamps(),
        sa.UniqueConstraint("person_id", "program", name="uq_profile_person_program"),
    )
    op.create_index("idx_program_profiles_family", "program_profiles", ["family_reference_id"])
    op.create_index("idx_program_profiles_program_status", "program_profiles", ["program", "status"])

    op.create_table(
        "enrollments",
        uuid_pk(),
        uuid_fk("program_profile_id", "program_profiles.id"),
        uuid_fk("batch_id", "batches.id", ondelete="SET NULL", nullable=True),
        sa.Column("status", enum("enrollment_status"), nullable=False, server_default="REGISTERED"),
        tstz("start_date", nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        tstz("end_date"),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *timestamps(),
    )
    op.create_index("idx_enrollments_profile_status", "enrollments", ["program_profile_id", "status"])
    op.create_index("idx_enrollments_batch", "enrollments", ["batch_id"])

    op.create_table(
        "student_payments",
        uuid_pk(),
        uuid_fk("program_profile_id", "program_profiles.id"),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("amount_paid", sa.Integer(), nullable=False),
        tstz("paid_at", nullable=False),
        sa.Column("stripe_invoice_id", sa.String(255), nullable=True),
        *timestamps(),
        sa.UniqueConstraint("program_profile_id", "stripe_invoice_id", name="uq_student_payment_invoice"),
    )

    # ── Billing ───────────────────────────────────────────────────────────
    op.create_table(
        "billing_accounts",
        uuid_pk(),
        uuid_fk("person_id", "people.id"),
        sa.Column("account_type", enum("stripe_account_type"), nullable=False),
        sa.Column("stripe_customer_id_mahad", sa.String(255), nullable=True, unique=True),
        sa.Column("stripe_customer_id_dugsi", sa.String(255), nullable=True, unique=True),
        sa.Column("stripe_customer_id_youth", sa.String(255), nullable=True, unique=True),
        sa.Column("stripe_customer_id_donation", sa.String(255), nullable=True, unique=True),
        sa.Column("payment_intent_id_dugsi", sa.String(255), nullable=True),
        flag("payment_method_captured", False),
        tstz("payment_method_captured_at"),
        uuid_fk("primary_contact_point_id", "contact_points.id", ondelete="SET NULL", nullable=True),
        *timestamps(),
        sa.UniqueConstraint("person_id", "account_type", name="uq_billing_account_person_type"),
    )

    op.create_table(
        "subscriptions",
        uuid_pk(),
        uuid_fk("billing_account_id", "billing_accounts.id"),
        sa.Column("stripe_account_type", enum("stripe_account_type"), nullable=False),
        sa.Column("stripe_subscription_id", sa.String(255), nullable=False, unique=True),
        sa.Column("stripe_customer_id", sa.String(255), nullable=False),
        sa.Column("status", enum("subscription_status"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False, comment="Cents per billing interval"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="usd"),
        sa.Column("interval", sa.String(20), nullable=False, server_default="month"),
        sa.Column("interval_count", sa.Integer(), nullable=False, server_default="1"),
        tstz("current_period_start"),
        tstz("current_period_end"),
        tstz("paid_until"),
        tstz("last_payment_date"),
        sa.Column(
            "previous_subscription_ids",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        *timestamps(),
    )
    op.create_index("idx_subscriptions_account_status", "subscriptions", ["billing_account_id", "status"])
    op.create_index("idx_subscriptions_customer", "subscriptions", ["stripe_customer_id"])

    op.create_table(
        "subscription_history",
        uuid_pk(),
        uuid_fk("subscription_id", "subscriptions.id"),
        sa.Column("stripe_subscription_id", sa.String(255), nullable=False),
        sa.Column("status", enum("subscription_status"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(255), nullable=True),
        tstz("changed_at", nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )

    op.create_table(
        "billing_assignments",
        uuid_pk(),
        uuid_fk("subscription_id", "subscriptions.id"),
        uuid_fk("program_profile_id", "program_profiles.id"),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("percentage", sa.Float(), nullable=True),
        flag("is_active", True),
        tstz("start_date", nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        tstz("end_date"),
        sa.Column("notes", sa.Text(), nullable=True),
        *timestamps(),
    )
    op.create_index(
        "idx_billing_assignments_profile_active",
        "billing_assignments",
        ["program_profile_id", "is_active"],
    )
    op.create_index(
        "idx_billing_assignments_subscription_active",
        "billing_assignments",
        ["subscription_id", "is_active"],
    )

    op.create_table(
        "webhook_events",
        uuid_pk(),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("source", sa.String(50), nullable=False, comment="Receiving endpoint: mahad or dugsi"),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        tstz("processed_at", nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("event_id", "source", name="uq_webhook_event_source"),
    )

    # ── Teachers ──────────────────────────────────────────────────────────
    op.create_table(
        "teachers",
        uuid_pk(),
        sa.Column(
            "person_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("people.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        *timestamps(),
    )

    op.create_table(
        "teacher_programs",
        uuid_pk(),
        uuid_fk("teacher_id", "teachers.id"),
        sa.Column("program", enum("program"), nullable=False),
        sa.Column("shifts", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        flag("is_active", True),
        *timestamps(),
        sa.UniqueConstraint("teacher_id", "program", name="uq_teacher_program"),
    )

    op.create_table(
        "teacher_assignments",
        uuid_pk(),
        uuid_fk("teacher_id", "teachers.id"),
        uuid_fk("program_profile_id", "program_profiles.id"),
        sa.Column("shift", enum("shift"), nullable=False),
        flag("is_active", True),
        tstz("start_date", nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        tstz("end_date"),
        *timestamps(),
        sa.UniqueConstraint(
            "teacher_id", "program_profile_id", "shift", name="uq_teacher_assignment_shift"
        ),
    )

    op.create_table(
        "dugsi_teacher_check_ins",
        uuid_pk(),
        uuid_fk("teacher_id", "teachers.id"),
        sa.Column("date", sa.Date(), nullable=False, comment="Local calendar day of the shift"),
        sa.Column("shift", enum("shift"), nullable=False),
        tstz("clock_in_time", nullable=False),
        sa.Column("clock_in_lat", sa.Float(), nullable=True),
        sa.Column("clock_in_lng", sa.Float(), nullable=True),
        flag("clock_in_valid", False),
        tstz("clock_out_time"),
        sa.Column("clock_out_lat", sa.Float(), nullable=True),
        sa.Column("clock_out_lng", sa.Float(), nullable=True),
        flag("is_late", False),
        sa.Column("notes", sa.Text(), nullable=True),
        *timestamps(),
        sa.UniqueConstraint("teacher_id", "date", "shift", name="uq_checkin_teacher_date_shift"),
    )
    op.create_index("idx_checkins_date", "dugsi_teacher_check_ins", ["date"])

    # ── Dugsi classes and attendance ──────────────────────────────────────
    op.create_table(
        "dugsi_classes",
        uuid_pk(),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("shift", enum("shift"), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        flag("is_active", True),
        *timestamps(),
    )

    op.create_table(
        "dugsi_class_teachers",
        uuid_pk(),
        uuid_fk("class_id", "dugsi_classes.id"),
        uuid_fk("teacher_id", "teachers.id"),
        flag("is_active", True),
        *timestamps(),
        sa.UniqueConstraint("class_id", "teacher_id", name="uq_class_teacher"),
    )

    op.create_table(
        "dugsi_class_enrollments",
        uuid_pk(),
        uuid_fk("class_id", "dugsi_classes.id"),
        sa.Column(
            "program_profile_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("program_profiles.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        flag("is_active", True),
        tstz("start_date", nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        tstz("end_date"),
        *timestamps(),
    )
    op.create_index(
        "idx_class_enrollments_class_active", "dugsi_class_enrollments", ["class_id", "is_active"]
    )

    op.create_table(
        "dugsi_attendance_sessions",
        uuid_pk(),
        sa.Column("date", sa.Date(), nullable=False),
        uuid_fk("class_id", "dugsi_classes.id"),
        uuid_fk("teacher_id", "teachers.id", ondelete="RESTRICT"),
        sa.Column("notes", sa.Text(), nullable=True),
        flag("is_closed", False),
        *timestamps(),
        sa.UniqueConstraint("date", "class_id", name="uq_attendance_session_date_class"),
    )
    op.create_index("idx_attendance_sessions_date", "dugsi_attendance_sessions", ["date"])

    op.create_table(
        "dugsi_attendance_records",
        uuid_pk(),
        uuid_fk("session_id", "dugsi_attendance_sessions.id"),
        uuid_fk("program_profile_id", "program_profiles.id"),
        sa.Column("status", enum("dugsi_attendance_status"), nullable=False),
        flag("lesson_completed", False),
        sa.Column("surah_name", sa.String(100), nullable=True),
        sa.Column("ayat_from", sa.Integer(), nullable=True),
        sa.Column("ayat_to", sa.Integer(), nullable=True),
        sa.Column("lesson_notes", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        tstz("marked_at", nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        *timestamps(),
        sa.UniqueConstraint("session_id", "program_profile_id", name="uq_attendance_record"),
    )


TABLES_IN_DROP_ORDER = (
    "dugsi_attendance_records",
    "dugsi_attendance_sessions",
    "dugsi_class_enrollments",
    "dugsi_class_teachers",
    "dugsi_classes",
    "dugsi_teacher_check_ins",
    "teacher_assignments",
    "teacher_programs",
    "teachers",
    "webhook_events",
    "billing_assignments",
    "subscription_history",
    "subscriptions",
    "billing_accounts",
    "student_payments",
    "enrollments",
    "program_profiles",
    "batches",
    "sibling_relationships",
    "guardian_relationships",
    "contact_points",
    "people",
)


def downgrade() -> None:
    """Drop every table (children first), then the enum types."""
    for table in TABLES_IN_DROP_ORDER:
        op.drop_table(table)

    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).drop(bind, checkfirst=True)
