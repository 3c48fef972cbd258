"""
Irshad Backend: Domain Enumerations
====================================

What:  Every enumerated domain value, shared by the ORM models, the
       Pydantic schemas and the services.
How:   `str` enums, so members compare equal to the raw strings that arrive
       in Stripe metadata and JSON request bodies.
"""

import enum


class Program(str, enum.Enum):
    MAHAD_PROGRAM = "MAHAD_PROGRAM"
    DUGSI_PROGRAM = "DUGSI_PROGRAM"
    YOUTH_EVENTS = "YOUTH_EVENTS"
    GENERAL_DONATION = "GENERAL_DONATION"


class EnrollmentStatus(str, enum.Enum):
    REGISTERED = "REGISTERED"
    ENROLLED = "ENROLLED"
    ON_LEAVE = "ON_LEAVE"
    WITHDRAWN = "WITHDRAWN"
    COMPLETED = "COMPLETED"
    SUSPENDED = "SUSPENDED"


# Statuses that count a student as currently in the program
ACTIVE_PROFILE_STATUSES = (EnrollmentStatus.REGISTERED, EnrollmentStatus.ENROLLED)


class SubscriptionStatus(str, enum.Enum):
    """Mirrors Stripe's subscription.status values verbatim."""

    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"


class StripeAccountType(str, enum.Enum):
    MAHAD = "MAHAD"
    DUGSI = "DUGSI"
    YOUTH_EVENTS = "YOUTH_EVENTS"
    GENERAL_DONATION = "GENERAL_DONATION"


class ContactType(str, enum.Enum):
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    WHATSAPP = "WHATSAPP"
    OTHER = "OTHER"


class ContactVerificationStatus(str, enum.Enum):
    UNVERIFIED = "UNVERIFIED"
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    FAILED = "FAILED"


class GuardianRole(str, enum.Enum):
    PARENT = "PARENT"
    GUARDIAN = "GUARDIAN"
    SPONSOR = "SPONSOR"
    DONOR = "DONOR"


class Gender(str, enum.Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"


class EducationLevel(str, enum.Enum):
    ELEMENTARY = "ELEMENTARY"
    MIDDLE_SCHOOL = "MIDDLE_SCHOOL"
    HIGH_SCHOOL = "HIGH_SCHOOL"
    COLLEGE = "COLLEGE"
    POST_GRAD = "POST_GRAD"


class GradeLevel(str, enum.Enum):
    KINDERGARTEN = "KINDERGARTEN"
    GRADE_1 = "GRADE_1"
    GRADE_2 = "GRADE_2"
    GRADE_3 = "GRADE_3"
    GRADE_4 = "GRADE_4"
    GRADE_5 = "GRADE_5"
    GRADE_6 = "GRADE_6"
    GRADE_7 = "GRADE_7"
    GRADE_8 = "GRADE_8"
    GRADE_9 = "GRADE_9"
    GRADE_10 = "GRADE_10"
    GRADE_11 = "GRADE_11"
    GRADE_12 = "GRADE_12"
    FRESHMAN = "FRESHMAN"
    SOPHOMORE = "SOPHOMORE"
    JUNIOR = "JUNIOR"
    SENIOR = "SENIOR"


class Shift(str, enum.Enum):
    MORNING = "MORNING"
    EVENING = "EVENING"


class DugsiAttendanceStatus(str, enum.Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    LATE = "LATE"
    EXCUSED = "EXCUSED"


class GraduationStatus(str, enum.Enum):
    NON_GRADUATE = "NON_GRADUATE"
    GRADUATE = "GRADUATE"


class PaymentFrequency(str, enum.Enum):
    MONTHLY = "MONTHLY"
    BI_MONTHLY = "BI_MONTHLY"


class StudentBillingType(str, enum.Enum):
    FULL_TIME = "FULL_TIME"
    FULL_TIME_SCHOLARSHIP = "FULL_TIME_SCHOLARSHIP"
    PART_TIME = "PART_TIME"
    EXEMPT = "EXEMPT"


# Program a Stripe account bills for
ACCOUNT_PROGRAM = {
    StripeAccountType.MAHAD: Program.MAHAD_PROGRAM,
    StripeAccountType.DUGSI: Program.DUGSI_PROGRAM,
    StripeAccountType.YOUTH_EVENTS: Program.YOUTH_EVENTS,
    StripeAccountType.GENERAL_DONATION: Program.GENERAL_DONATION,
}
