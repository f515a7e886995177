"""Platform fee calculation based on subscription tier"""

from decimal import Decimal
from typing import Any, List, Sequence, Tuple

from bcard_gateway.domain.exceptions import InvalidAmountError
from bcard_gateway.domain.models import FeeBreakdown, SplitAllocation, SplitAmount
from bcard_gateway.domain.tiers import get_tier_limits
from bcard_gateway.utils.money import parse_amount, quantize

HUNDRED = Decimal("100")


def get_fee_percent(tier: str | None) -> Decimal:
    """Fee percentage for a tier (unknown tiers pay the free-tier rate)"""
    return get_tier_limits(tier).fee_percent


def calculate_fees(amount: Any, tier: str | None) -> FeeBreakdown:
    """
    Calculate the platform fee for a payment.

    The fee is rounded half-up to cents exactly once; total is base + rounded fee.

    Example:
        100.00 on free (2.9%) -> fee 2.90, total 102.90

    Raises:
        InvalidAmountError: amount <= 0 or not a number
    """
    base = quantize(parse_amount(amount))
    if base <= 0:
        raise InvalidAmountError(f"Amount must be at least 0.01, got {amount}")

    fee_percent = get_fee_percent(tier)
    fee_amount = quantize(base * fee_percent / HUNDRED)

    return FeeBreakdown(
        base=base,
        fee_percent=fee_percent,
        fee_amount=fee_amount,
        total=base + fee_amount,
    )


def apportion(fees: FeeBreakdown, shares: Sequence[Tuple[str, Decimal]]) -> List[SplitAmount]:
    """
    Spread base and fee over funding sources by their share of the base.

    Args:
        fees: Fee breakdown for the whole payment
        shares: (funding_source_id, percentage of base) pairs, unrounded

    Each source's total is rounded once from its unrounded base + fee share, so
    per-source totals can drift from fees.total by at most one cent per source.
    """
    amounts = []
    for funding_source_id, percentage in shares:
        base_share = fees.base * percentage / HUNDRED
        fee_share = fees.fee_amount * percentage / HUNDRED

        total_required = quantize(base_share + fee_share)
        fee_amount = quantize(fee_share)

        amounts.append(
            SplitAmount(
                funding_source_id=funding_source_id,
                percentage=percentage,
                base_amount=total_required - fee_amount,
                fee_amount=fee_amount,
                total_required=total_required,
            )
        )
    return amounts


def calculate_split_amounts(
    amount: Any,
    tier: str | None,
    splits: Sequence[SplitAllocation],
) -> List[SplitAmount]:
    """Required amount (base + proportional fee) for each percentage split"""
    fees = calculate_fees(amount, tier)
    return apportion(
        fees,
        [(split.funding_source_id, Decimal(split.percentage or 0)) for split in splits],
    )
