"""Unit tests for split resolution and validation"""

from decimal import Decimal

from bcard_gateway.domain.models import FundingSourceSnapshot, SplitAllocation, SplitConfiguration, SplitStrategy
from bcard_gateway.domain.splits import resolve_shares, validate_split


def _sources(**balances: str) -> dict:
    return {
        source_id: FundingSourceSnapshot(
            id=source_id,
            name=source_id.capitalize(),
            payment_method_ref=f"pm_mock_{source_id}",
            available_balance=Decimal(balance),
        )
        for source_id, balance in balances.items()
    }


def _percentage_split(amount: str, *parts: tuple) -> SplitConfiguration:
    return SplitConfiguration(
        total_amount=Decimal(amount),
        strategy=SplitStrategy.PERCENTAGE,
        allocations=[SplitAllocation(source_id, percentage=Decimal(p)) for source_id, p in parts],
    )


def test_valid_percentage_split_breakdown():
    result = validate_split(
        _percentage_split("100.00", ("checking", "60"), ("savings", "40")),
        _sources(checking="500.00", savings="500.00"),
        "free",
    )

    assert result.valid is True
    assert result.errors == []
    assert result.fees.total == Decimal("102.90")
    assert [r.total_required for r in result.breakdown] == [Decimal("61.74"), Decimal("41.16")]
    assert all(r.sufficient for r in result.breakdown)


def test_percentages_within_tolerance_pass():
    """100.01 is inside the 0.01 tolerance"""
    result = validate_split(
        _percentage_split("10.00", ("checking", "50"), ("savings", "50.01")),
        _sources(checking="100.00", savings="100.00"),
        "free",
    )
    assert result.valid is True


def test_percentages_outside_tolerance_fail():
    """100.02 is outside the 0.01 tolerance"""
    result = validate_split(
        _percentage_split("10.00", ("checking", "50"), ("savings", "50.02")),
        _sources(checking="100.00", savings="100.00"),
        "free",
    )

    assert result.valid is False
    assert "Split percentages must total 100% (got 100.02%)" in result.errors


def test_insufficient_balance_reports_shortfall():
    result = validate_split(
        _percentage_split("100.00", ("checking", "60"), ("savings", "40")),
        _sources(checking="50.00", savings="500.00"),
        "free",
    )

    assert result.valid is False
    assert result.errors == [
        "Funding source Checking has insufficient balance. "
        "Required: $61.74, Available: $50.00, Shortfall: $11.74"
    ]
    assert result.breakdown[0].shortfall == Decimal("11.74")
    assert result.breakdown[1].shortfall == Decimal("0.00")


def test_unknown_and_duplicate_sources():
    result = validate_split(
        _percentage_split("20.00", ("checking", "50"), ("checking", "25"), ("ghost", "25")),
        _sources(checking="100.00"),
        "free",
    )

    assert result.valid is False
    assert "Funding source checking is listed more than once" in result.errors
    assert "Funding source ghost is not available" in result.errors


def test_inactive_source_is_not_available():
    sources = _sources(checking="100.00")
    sources["checking"].is_active = False

    result = validate_split(_percentage_split("10.00", ("checking", "100")), sources, "free")

    assert result.errors == ["Funding source checking is not available"]


def test_zero_share_is_rejected():
    result = validate_split(
        _percentage_split("10.00", ("checking", "100"), ("savings", "0")),
        _sources(checking="100.00", savings="100.00"),
        "free",
    )

    assert result.valid is False
    assert "Funding source Savings must be allocated a positive amount" in result.errors


def test_invalid_amount_is_a_validation_error():
    result = validate_split(_percentage_split("0", ("checking", "100")), _sources(checking="1.00"), "free")

    assert result.valid is False
    assert result.breakdown == []
    assert result.fees is None


def test_fixed_amount_split():
    config = SplitConfiguration(
        total_amount=Decimal("100.00"),
        strategy=SplitStrategy.FIXED_AMOUNT,
        allocations=[
            SplitAllocation("checking", amount=Decimal("60.00")),
            SplitAllocation("savings", amount=Decimal("40.00")),
        ],
    )
    result = validate_split(config, _sources(checking="500.00", savings="500.00"), "free")

    assert result.valid is True
    assert [r.total_required for r in result.breakdown] == [Decimal("61.74"), Decimal("41.16")]


def test_fixed_amount_mismatch():
    config = SplitConfiguration(
        total_amount=Decimal("100.00"),
        strategy=SplitStrategy.FIXED_AMOUNT,
        allocations=[
            SplitAllocation("checking", amount=Decimal("60.00")),
            SplitAllocation("savings", amount=Decimal("30.00")),
        ],
    )
    result = validate_split(config, _sources(checking="500.00", savings="500.00"), "free")

    assert result.valid is False
    assert "Split configuration totals $90.00 but payment amount is $100.00" in result.errors


def test_smart_split_last_share_absorbs_remainder():
    config = SplitConfiguration(
        total_amount=Decimal("100.00"),
        strategy=SplitStrategy.SMART,
        allocations=[SplitAllocation("a"), SplitAllocation("b"), SplitAllocation("c")],
    )

    shares = resolve_shares(config, Decimal("100.00"))

    assert shares == [("a", Decimal("33.33")), ("b", Decimal("33.33")), ("c", Decimal("33.34"))]


def test_smart_split_overrides_win():
    config = SplitConfiguration(
        total_amount=Decimal("100.00"),
        strategy=SplitStrategy.SMART,
        allocations=[
            SplitAllocation("a"),
            SplitAllocation("b", amount=Decimal("50.00")),
            SplitAllocation("c"),
        ],
    )

    shares = resolve_shares(config, Decimal("100.00"))

    assert shares == [("a", Decimal("25.00")), ("b", Decimal("50.00")), ("c", Decimal("25.00"))]


def test_smart_split_validates_end_to_end():
    config = SplitConfiguration(
        total_amount=Decimal("90.00"),
        strategy=SplitStrategy.SMART,
        allocations=[SplitAllocation("checking"), SplitAllocation("savings", percentage=Decimal("50"))],
    )
    result = validate_split(config, _sources(checking="100.00", savings="100.00"), "premium")

    assert result.valid is True
    # 1.9% of 90.00 = 1.71, split evenly
    assert [r.total_required for r in result.breakdown] == [Decimal("45.86"), Decimal("45.86")]


def test_single_source_percentage_must_total_100():
    result = validate_split(_percentage_split("10.00", ("checking", "99")), _sources(checking="100.00"), "free")

    assert result.valid is False
    assert "Split percentages must total 100% (got 99%)" in result.errors
    assert "Split configuration totals $9.90 but payment amount is $10.00" in result.errors


def test_single_source_fixed_amount_must_cover_total():
    config = SplitConfiguration(
        total_amount=Decimal("100.00"),
        strategy=SplitStrategy.FIXED_AMOUNT,
        allocations=[SplitAllocation("checking", amount=Decimal("90.00"))],
    )
    result = validate_split(config, _sources(checking="500.00"), "free")

    assert result.valid is False
    assert result.errors == ["Split configuration totals $90.00 but payment amount is $100.00"]
