"""
Irshad Backend: Dashboard Service
==================================

What:  Aggregate counts for the admin dashboard of one program.

MRR:
    Sum of active/trialing subscription amounts in the program's Stripe
    account, normalized to one month: a bi-monthly subscription
    (interval_count=2) contributes half its amount.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.billing import Subscription
from app.models.enums import ACCOUNT_PROGRAM, EnrollmentStatus, Program, SubscriptionStatus
from app.models.program import ProgramProfile
from app.schemas.dashboard import ProgramOverview
from app.services.billing_service import ACTIVE_SUBSCRIPTION_STATUSES

logger = logging.getLogger(__name__)

PROGRAM_ACCOUNT = {program: account for account, program in ACCOUNT_PROGRAM.items()}


class DashboardService:

    async def get_program_overview(self, db: AsyncSession, program: Program) -> ProgramOverview:
        program = Program(program)
        result = await db.execute(
            select(ProgramProfile.status, func.count(ProgramProfile.id))
            .where(ProgramProfile.program == program)
            .group_by(ProgramProfile.status)
        )
        by_status = {status: 0 for status in EnrollmentStatus}
        for status, count in result.all():
            by_status[EnrollmentStatus(status)] = count

        account_type = PROGRAM_ACCOUNT[program]
        subs = await db.execute(
            select(Subscription.status, Subscription.amount, Subscription.interval_count).where(
                Subscription.stripe_account_type == account_type
            )
        )
        active, past_due, mrr = 0, 0, 0
        for status, amount, interval_count in subs.all():
            if status in ACTIVE_SUBSCRIPTION_STATUSES:
                active += 1
                mrr += amount // (interval_count or 1)
            elif status == SubscriptionStatus.PAST_DUE:
                past_due += 1

        return ProgramOverview(
            program=program,
            total_profiles=sum(by_status.values()),
            by_status=by_status,
            active_subscriptions=active,
            past_due_subscriptions=past_due,
            monthly_recurring_revenue=mrr,
        )


# Singleton instance
dashboard_service = DashboardService()
