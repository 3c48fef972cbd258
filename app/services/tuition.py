"""
Irshad Backend: Tuition Calculators
====================================

What:  Pure rate calculations for both programs, in integer cents.
Who:   Registration (Mahad monthly_rate), webhook rate guards, withdrawal
       recalculation, dashboard and the /tuition endpoints.

Dugsi (per family, per month):
    ┌────────────────┬────────┐
    │ Child          │ Rate   │
    ├────────────────┼────────┤
    │ 1st, 2nd       │ $80    │
    │ 3rd            │ $70    │
    │ 4th and later  │ $60    │
    └────────────────┴────────┘
    e.g. 3 children → 8000 + 8000 + 7000 = 23000

Mahad (per student, per billing interval):
    base[graduation_status][payment_frequency]
      − 3000 for FULL_TIME_SCHOLARSHIP
      ÷ 2 (floor) for PART_TIME
      × 2 for BI_MONTHLY (one charge covers two months)
    EXEMPT or missing billing type → 0
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from app.models.enums import GraduationStatus, PaymentFrequency, StudentBillingType


# ══════════════════════════════════════════════════════════════════════════
# Dugsi
# ══════════════════════════════════════════════════════════════════════════

DUGSI_FIRST_TIER_RATE = 8000     # children 1-2
DUGSI_THIRD_CHILD_RATE = 7000
DUGSI_ADDITIONAL_RATE = 6000     # children 4+

MAX_EXPECTED_FAMILY_RATE = 65000
# Overrides further than this fraction from the calculated rate get a warning
OVERRIDE_DEVIATION_THRESHOLD = 0.5


@dataclass(frozen=True)
class RateBreakdownLine:
    child_number: int
    rate: int
    tier: str


@dataclass(frozen=True)
class RateBreakdown:
    child_count: int
    lines: List[RateBreakdownLine]
    total: int


def _dugsi_child_rate(child_number: int) -> Tuple[int, str]:
    if child_number <= 2:
        return DUGSI_FIRST_TIER_RATE, "base"
    if child_number == 3:
        return DUGSI_THIRD_CHILD_RATE, "third"
    return DUGSI_ADDITIONAL_RATE, "additional"


def calculate_dugsi_rate(child_count: int) -> int:
    """Monthly family rate in cents; 0 for no children or a non-integer count."""
    if not isinstance(child_count, int) or isinstance(child_count, bool) or child_count <= 0:
        return 0
    return sum(_dugsi_child_rate(n)[0] for n in range(1, child_count + 1))


def get_rate_breakdown(child_count: int) -> RateBreakdown:
    lines = []
    for n in range(1, max(child_count, 0) + 1):
        rate, tier = _dugsi_child_rate(n)
        lines.append(RateBreakdownLine(child_number=n, rate=rate, tier=tier))
    return RateBreakdown(
        child_count=max(child_count, 0),
        lines=lines,
        total=sum(line.rate for line in lines),
    )


def format_rate(cents: int) -> str:
    return f"${cents / 100:,.2f}"


def get_rate_tier_description(child_count: int) -> str:
    if child_count <= 0:
        return "No children"
    if child_count == 1:
        return f"1 child at {format_rate(DUGSI_FIRST_TIER_RATE)}"
    if child_count == 2:
        return f"2 children at {format_rate(DUGSI_FIRST_TIER_RATE)} each"
    if child_count == 3:
        return (
            f"2 children at {format_rate(DUGSI_FIRST_TIER_RATE)} + "
            f"1 at {format_rate(DUGSI_THIRD_CHILD_RATE)}"
        )
    return (
        f"2 children at {format_rate(DUGSI_FIRST_TIER_RATE)} + "
        f"1 at {format_rate(DUGSI_THIRD_CHILD_RATE)} + "
        f"{child_count - 3} at {format_rate(DUGSI_ADDITIONAL_RATE)}"
    )


def validate_override_amount(
    override_amount, child_count: int
) -> Tuple[bool, Optional[str], Optional[str]]:
    """
    Check an admin-entered family rate.

    Returns:
        (valid, error, warning). A warning never makes the amount invalid;
        it flags values above the expected maximum or far from the
        calculated rate so the admin can double-check.
    """
    if isinstance(override_amount, bool) or not isinstance(override_amount, int):
        return False, "Override amount must be a whole number of cents", None
    if override_amount <= 0:
        return False, "Override amount must be greater than zero", None

    warning = None
    calculated = calculate_dugsi_rate(child_count)
    if override_amount > MAX_EXPECTED_FAMILY_RATE:
        warning = (
            f"Amount {format_rate(override_amount)} exceeds the expected maximum of "
            f"{format_rate(MAX_EXPECTED_FAMILY_RATE)}"
        )
    elif calculated > 0:
        deviation = abs(override_amount - calculated) / calculated
        if deviation > OVERRIDE_DEVIATION_THRESHOLD:
            warning = (
                f"Amount {format_rate(override_amount)} differs from the calculated rate "
                f"{format_rate(calculated)} by {deviation:.0%}"
            )
    return True, None, warning


# ══════════════════════════════════════════════════════════════════════════
# Mahad
# ══════════════════════════════════════════════════════════════════════════

MAHAD_BASE_RATES = {
    GraduationStatus.NON_GRADUATE: {
        PaymentFrequency.MONTHLY: 12000,
        PaymentFrequency.BI_MONTHLY: 11000,
    },
    GraduationStatus.GRADUATE: {
        PaymentFrequency.MONTHLY: 9500,
        PaymentFrequency.BI_MONTHLY: 9000,
    },
}

SCHOLARSHIP_DISCOUNT = 3000


def calculate_mahad_rate(
    graduation_status: Optional[GraduationStatus],
    payment_frequency: Optional[PaymentFrequency],
    billing_type: Optional[StudentBillingType],
) -> int:
    """Amount charged per billing interval, in cents."""
    if billing_type is None or billing_type == StudentBillingType.EXEMPT:
        return 0

    status = GraduationStatus(graduation_status or GraduationStatus.NON_GRADUATE)
    frequency = PaymentFrequency(payment_frequency or PaymentFrequency.MONTHLY)
    rate = MAHAD_BASE_RATES[status][frequency]

    billing_type = StudentBillingType(billing_type)
    if billing_type == StudentBillingType.FULL_TIME_SCHOLARSHIP:
        rate -= SCHOLARSHIP_DISCOUNT
    elif billing_type == StudentBillingType.PART_TIME:
        rate //= 2

    if frequency == PaymentFrequency.BI_MONTHLY:
        rate *= 2
    return rate


def get_stripe_interval(payment_frequency: Optional[PaymentFrequency]) -> Tuple[str, int]:
    if payment_frequency == PaymentFrequency.BI_MONTHLY:
        return "month", 2
    return "month", 1


def should_create_subscription(billing_type: Optional[StudentBillingType]) -> bool:
    return billing_type is not None and billing_type != StudentBillingType.EXEMPT
