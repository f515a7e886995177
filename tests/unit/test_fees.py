"""Unit tests for tier fee calculation and per-source apportioning"""

from decimal import Decimal

import pytest

from bcard_gateway.domain.exceptions import InvalidAmountError
from bcard_gateway.domain.fees import calculate_fees, calculate_split_amounts, get_fee_percent
from bcard_gateway.domain.models import SplitAllocation


def test_fee_percent_by_tier():
    assert get_fee_percent("free") == Decimal("2.9")
    assert get_fee_percent("pro") == Decimal("2.9")
    assert get_fee_percent("premium") == Decimal("1.9")


def test_unknown_tier_pays_free_rate():
    assert get_fee_percent("enterprise") == Decimal("2.9")
    assert get_fee_percent(None) == Decimal("2.9")


def test_calculate_fees_free_tier():
    """$100 on free: 2.90 fee, 102.90 total"""
    fees = calculate_fees("100.00", "free")

    assert fees.base == Decimal("100.00")
    assert fees.fee_amount == Decimal("2.90")
    assert fees.total == Decimal("102.90")


def test_calculate_fees_premium_tier():
    fees = calculate_fees(Decimal("250"), "premium")

    assert fees.fee_amount == Decimal("4.75")
    assert fees.total == Decimal("254.75")


def test_fee_rounds_half_up():
    """10.00 * 2.9% = 0.29 exactly; 0.50 * 2.9% = 0.0145 -> 0.01"""
    assert calculate_fees("10.00", "free").fee_amount == Decimal("0.29")
    assert calculate_fees("0.50", "free").fee_amount == Decimal("0.01")
    # 1.50 * 2.9% = 0.0435 -> 0.04
    assert calculate_fees("1.50", "free").fee_amount == Decimal("0.04")


def test_float_input_does_not_pick_up_binary_noise():
    fees = calculate_fees(0.1 + 0.2, "free")
    assert fees.base == Decimal("0.30")


def test_calculate_fees_is_deterministic():
    assert calculate_fees("73.19", "pro") == calculate_fees("73.19", "pro")


@pytest.mark.parametrize("amount", [0, "-5", "abc", None, True, float("nan"), "0.001"])
def test_calculate_fees_rejects_invalid_amounts(amount):
    with pytest.raises(InvalidAmountError):
        calculate_fees(amount, "free")


def test_split_amounts_60_40():
    """Scenario: $100 free split 60/40 -> 61.74 + 41.16 = 102.90"""
    splits = calculate_split_amounts(
        "100.00",
        "free",
        [SplitAllocation("a", percentage=Decimal("60")), SplitAllocation("b", percentage=Decimal("40"))],
    )

    assert [s.total_required for s in splits] == [Decimal("61.74"), Decimal("41.16")]
    assert [s.fee_amount for s in splits] == [Decimal("1.74"), Decimal("1.16")]
    assert [s.base_amount for s in splits] == [Decimal("60.00"), Decimal("40.00")]
    assert sum(s.total_required for s in splits) == Decimal("102.90")


def test_split_amounts_round_each_source_once():
    """$10 free 50/50: each share 5.145 rounds to 5.15, one cent over the nominal 10.29"""
    splits = calculate_split_amounts(
        "10.00",
        "free",
        [SplitAllocation("a", percentage=Decimal("50")), SplitAllocation("b", percentage=Decimal("50"))],
    )

    assert [s.total_required for s in splits] == [Decimal("5.15"), Decimal("5.15")]
    assert sum(s.total_required for s in splits) == Decimal("10.30")


@pytest.mark.parametrize(
    "amount, tier, percentages",
    [
        ("100.00", "free", ["33.33", "33.33", "33.34"]),
        ("10.00", "free", ["50", "50"]),
        ("99.99", "free", ["14.28"] * 6 + ["14.32"]),
        ("1.00", "pro", ["25"] * 4),
        ("250.55", "premium", ["10", "20", "30", "40"]),
        ("0.07", "free", ["14.28"] * 6 + ["14.32"]),
    ],
)
def test_split_totals_stay_within_a_cent_per_source(amount, tier, percentages):
    fees = calculate_fees(amount, tier)
    splits = calculate_split_amounts(
        amount,
        tier,
        [SplitAllocation(f"src_{i}", percentage=Decimal(p)) for i, p in enumerate(percentages)],
    )

    drift = abs(sum(s.total_required for s in splits) - fees.total)
    assert drift <= Decimal("0.01") * len(splits)
    assert all(s.base_amount + s.fee_amount == s.total_required for s in splits)
