"""
Irshad Backend: Tuition Calculator Tests
=========================================

What:  Tests for the Dugsi family rate and Mahad student rate calculators.
Why:   These numbers end up on Stripe invoices; the webhook rate guard
       compares subscription prices against them.
How:   Pure functions, no fixtures needed.

What we test:
    ✅ Dugsi tiers (80 / 80 / 70 / 60...) and the zero-children case
    ✅ Rate breakdown lines and tier descriptions
    ✅ Override validation: errors vs. warnings
    ✅ Mahad base rates, scholarship discount, part-time halving, bi-monthly doubling
    ✅ Stripe interval mapping and the exempt billing type
"""

import pytest

from app.models.enums import GraduationStatus, PaymentFrequency, StudentBillingType
from app.services.tuition import (
    MAX_EXPECTED_FAMILY_RATE,
    calculate_dugsi_rate,
    calculate_mahad_rate,
    format_rate,
    get_rate_breakdown,
    get_rate_tier_description,
    get_stripe_interval,
    should_create_subscription,
    validate_override_amount,
)


class TestDugsiRate:
    """Tests for calculate_dugsi_rate()."""

    @pytest.mark.parametrize(
        "child_count,expected",
        [
            (0, 0),
            (1, 8000),
            (2, 16000),
            (3, 23000),
            (4, 29000),
            (5, 35000),
        ],
    )
    def test_tiered_family_rate(self, child_count, expected):
        assert calculate_dugsi_rate(child_count) == expected

    def test_negative_count_is_zero(self):
        assert calculate_dugsi_rate(-2) == 0

    @pytest.mark.parametrize("child_count", [2.5, 2.0, "3", None, True])
    def test_non_integer_count_is_zero(self, child_count):
        assert calculate_dugsi_rate(child_count) == 0

    def test_breakdown_sums_to_rate(self):
        breakdown = get_rate_breakdown(4)
        assert breakdown.child_count == 4
        assert [line.rate for line in breakdown.lines] == [8000, 8000, 7000, 6000]
        assert [line.tier for line in breakdown.lines] == ["base", "base", "third", "additional"]
        assert breakdown.total == calculate_dugsi_rate(4)

    def test_breakdown_for_no_children_is_empty(self):
        breakdown = get_rate_breakdown(0)
        assert breakdown.lines == []
        assert breakdown.total == 0


class TestRateDescriptions:

    def test_format_rate(self):
        assert format_rate(23000) == "$230.00"
        assert format_rate(125050) == "$1,250.50"

    def test_descriptions(self):
        assert get_rate_tier_description(0) == "No children"
        assert get_rate_tier_description(1) == "1 child at $80.00"
        assert get_rate_tier_description(2) == "2 children at $80.00 each"
        assert get_rate_tier_description(3) == "2 children at $80.00 + 1 at $70.00"
        assert get_rate_tier_description(5) == "2 children at $80.00 + 1 at $70.00 + 2 at $60.00"


class TestOverrideValidation:
    """Tests for validate_override_amount()."""

    def test_matching_amount_is_valid_without_warning(self):
        assert validate_override_amount(16000, 2) == (True, None, None)

    def test_non_integer_is_invalid(self):
        valid, error, _ = validate_override_amount(160.5, 2)
        assert valid is False
        assert "whole number" in error

    def test_bool_is_not_accepted_as_int(self):
        valid, _, _ = validate_override_amount(True, 1)
        assert valid is False

    def test_zero_is_invalid(self):
        valid, error, _ = validate_override_amount(0, 2)
        assert valid is False
        assert "greater than zero" in error

    def test_amount_above_maximum_warns(self):
        valid, error, warning = validate_override_amount(MAX_EXPECTED_FAMILY_RATE + 1, 2)
        assert valid is True
        assert error is None
        assert "expected maximum" in warning

    def test_large_deviation_warns(self):
        # 16000 calculated; 5000 is ~69% off
        valid, _, warning = validate_override_amount(5000, 2)
        assert valid is True
        assert "differs from the calculated rate" in warning

    def test_small_deviation_does_not_warn(self):
        _, _, warning = validate_override_amount(14000, 2)
        assert warning is None


class TestMahadRate:
    """Tests for calculate_mahad_rate() and the Stripe interval helpers."""

    def test_non_graduate_monthly_full_time(self):
        rate = calculate_mahad_rate(
            GraduationStatus.NON_GRADUATE, PaymentFrequency.MONTHLY, StudentBillingType.FULL_TIME
        )
        assert rate == 12000

    def test_graduate_monthly_full_time(self):
        rate = calculate_mahad_rate(
            GraduationStatus.GRADUATE, PaymentFrequency.MONTHLY, StudentBillingType.FULL_TIME
        )
        assert rate == 9500

    def test_scholarship_discount(self):
        rate = calculate_mahad_rate(
            GraduationStatus.NON_GRADUATE,
            PaymentFrequency.MONTHLY,
            StudentBillingType.FULL_TIME_SCHOLARSHIP,
        )
        assert rate == 9000

    def test_part_time_halves_rate(self):
        rate = calculate_mahad_rate(
            GraduationStatus.GRADUATE, PaymentFrequency.MONTHLY, StudentBillingType.PART_TIME
        )
        assert rate == 4750

    def test_bi_monthly_charges_two_months(self):
        rate = calculate_mahad_rate(
            GraduationStatus.NON_GRADUATE, PaymentFrequency.BI_MONTHLY, StudentBillingType.FULL_TIME
        )
        assert rate == 22000

    def test_exempt_and_missing_billing_type_are_free(self):
        assert calculate_mahad_rate(
            GraduationStatus.GRADUATE, PaymentFrequency.MONTHLY, StudentBillingType.EXEMPT
        ) == 0
        assert calculate_mahad_rate(GraduationStatus.GRADUATE, PaymentFrequency.MONTHLY, None) == 0

    def test_missing_status_and_frequency_use_defaults(self):
        assert calculate_mahad_rate(None, None, StudentBillingType.FULL_TIME) == 12000

    def test_stripe_interval(self):
        assert get_stripe_interval(PaymentFrequency.MONTHLY) == ("month", 1)
        assert get_stripe_interval(PaymentFrequency.BI_MONTHLY) == ("month", 2)
        assert get_stripe_interval(None) == ("month", 1)

    def test_should_create_subscription(self):
        assert should_create_subscription(StudentBillingType.FULL_TIME) is True
        assert should_create_subscription(StudentBillingType.EXEMPT) is False
        assert should_create_subscription(None) is False
