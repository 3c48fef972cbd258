"""
Irshad Backend: Dashboard Schemas
==================================
"""

from typing import Dict

from pydantic import BaseModel, Field

from app.models.enums import EnrollmentStatus, Program


class ProgramOverview(BaseModel):
    program: Program
    total_profiles: int
    by_status: Dict[EnrollmentStatus, int]
    active_subscriptions: int
    past_due_subscriptions: int
    monthly_recurring_revenue: int = Field(description="Cents per month")
