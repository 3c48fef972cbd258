# Models package init
"""
Irshad Backend: ORM Models
===========================

Importing this package registers every table with Base.metadata, which
Alembic's env.py relies on for autogenerate.
"""

from app.models.billing import (  # noqa: F401
    BillingAccount,
    BillingAssignment,
    Subscription,
    SubscriptionHistory,
    WebhookEvent,
)
from app.models.dugsi import (  # noqa: F401
    DugsiAttendanceRecord,
    DugsiAttendanceSession,
    DugsiClass,
    DugsiClassEnrollment,
    DugsiClassTeacher,
)
from app.models.person import (  # noqa: F401
    ContactPoint,
    GuardianRelationship,
    Person,
    SiblingRelationship,
)
from app.models.program import Batch, Enrollment, ProgramProfile, StudentPayment  # noqa: F401
from app.models.teacher import (  # noqa: F401
    DugsiTeacherCheckIn,
    Teacher,
    TeacherAssignment,
    TeacherProgram,
)
