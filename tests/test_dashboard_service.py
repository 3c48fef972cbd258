"""
Irshad Backend: Dashboard Service Tests
========================================

What:  Tests for DashboardService.get_program_overview().
How:   The two aggregate queries (profiles by status, subscriptions) are
       fed through `make_result(rows=...)`.

What we test:
    ✅ Every enrollment status is reported, missing ones as 0
    ✅ MRR counts active and trialing subscriptions only
    ✅ Bi-monthly amounts are halved
"""

import pytest

from app.models.enums import EnrollmentStatus, Program, SubscriptionStatus
from app.services.dashboard_service import DashboardService


class TestProgramOverview:

    def setup_method(self):
        self.service = DashboardService()

    @pytest.mark.asyncio
    async def test_counts_and_mrr(self, mock_db_session, make_result):
        mock_db_session.execute.side_effect = [
            make_result(rows=[("ENROLLED", 12), ("WITHDRAWN", 3)]),
            make_result(
                rows=[
                    (SubscriptionStatus.ACTIVE, 16000, 1),
                    (SubscriptionStatus.TRIALING, 12000, 2),
                    (SubscriptionStatus.PAST_DUE, 8000, 1),
                    (SubscriptionStatus.CANCELED, 9000, 1),
                ]
            ),
        ]

        overview = await self.service.get_program_overview(mock_db_session, Program.DUGSI_PROGRAM)

        assert overview.program == Program.DUGSI_PROGRAM
        assert overview.total_profiles == 15
        assert overview.by_status[EnrollmentStatus.ENROLLED] == 12
        assert overview.by_status[EnrollmentStatus.WITHDRAWN] == 3
        assert overview.by_status[EnrollmentStatus.REGISTERED] == 0
        assert overview.active_subscriptions == 2
        assert overview.past_due_subscriptions == 1
        assert overview.monthly_recurring_revenue == 16000 + 6000

    @pytest.mark.asyncio
    async def test_empty_program(self, mock_db_session, make_result):
        mock_db_session.execute.side_effect = [make_result(rows=[]), make_result(rows=[])]

        overview = await self.service.get_program_overview(mock_db_session, "MAHAD_PROGRAM")

        assert overview.program == Program.MAHAD_PROGRAM
        assert overview.total_profiles == 0
        assert set(overview.by_status) == set(EnrollmentStatus)
        assert overview.monthly_recurring_revenue == 0
