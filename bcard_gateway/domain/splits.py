"""Split configuration resolution and validation"""

from decimal import Decimal
from typing import List, Mapping, Tuple

from bcard_gateway.domain.exceptions import InvalidAmountError
from bcard_gateway.domain.fees import HUNDRED, apportion, calculate_fees
from bcard_gateway.domain.models import (
    FundingSourceSnapshot,
    SourceRequirement,
    SplitConfiguration,
    SplitStrategy,
    SplitValidation,
)
from bcard_gateway.utils.money import CENT, format_usd, from_cents, to_cents

PERCENT_TOLERANCE = Decimal("0.01")
AMOUNT_TOLERANCE = CENT
ZERO = Decimal("0")


def resolve_shares(config: SplitConfiguration, base: Decimal) -> List[Tuple[str, Decimal]]:
    """
    Turn a split configuration into each source's share of the base amount.

    Strategies:
    - percentage: base * percentage / 100 (left unrounded)
    - fixed_amount: the allocation's amount as given
    - smart: an explicit amount or percentage wins; sources without one split
      whatever is left equally, the last of them absorbing the rounding remainder

    Example (smart, $100.00, overrides none, 3 sources):
        10000 cents / 3 = 3333 base, remainder 1 -> [33.33, 33.33, 33.34]
    """
    if config.strategy == SplitStrategy.PERCENTAGE:
        return [
            (a.funding_source_id, base * Decimal(a.percentage or 0) / HUNDRED)
            for a in config.allocations
        ]

    if config.strategy == SplitStrategy.FIXED_AMOUNT:
        return [(a.funding_source_id, Decimal(a.amount or 0)) for a in config.allocations]

    shares: List[Tuple[str, Decimal]] = []
    overridden = ZERO
    equal_positions = []
    for position, a in enumerate(config.allocations):
        if a.amount is not None:
            share = Decimal(a.amount)
        elif a.percentage is not None:
            share = base * Decimal(a.percentage) / HUNDRED
        else:
            equal_positions.append(position)
            shares.append((a.funding_source_id, ZERO))
            continue
        overridden += share
        shares.append((a.funding_source_id, share))

    if not equal_positions:
        return shares

    remaining_cents = max(to_cents(base - overridden), 0)
    each_cents = remaining_cents // len(equal_positions)
    remainder = remaining_cents % len(equal_positions)

    for i, position in enumerate(equal_positions):
        # Last equal share absorbs remainder to keep the exact total
        cents = each_cents + (remainder if i == len(equal_positions) - 1 else 0)
        shares[position] = (shares[position][0], from_cents(cents))

    return shares


def validate_split(
    config: SplitConfiguration,
    sources: Mapping[str, FundingSourceSnapshot],
    tier: str | None,
) -> SplitValidation:
    """
    Check that a split configuration can be settled. Read-only: balances are compared, never touched.

    Requirements:
    - every source exists, is active, and is listed once
    - each source's share including its proportional fee fits its available balance
    - percentage splits sum to 100 within 0.01
    - resolved shares sum to the payment amount within 0.01

    Returns:
        SplitValidation with one human-readable error per problem and the per-source breakdown
    """
    try:
        fees = calculate_fees(config.total_amount, tier)
    except InvalidAmountError as e:
        return SplitValidation(valid=False, errors=[str(e)], breakdown=[])

    if not config.allocations:
        return SplitValidation(
            valid=False,
            errors=["Split configuration needs at least one funding source"],
            breakdown=[],
            fees=fees,
        )

    errors: List[str] = []

    seen = set()
    for allocation in config.allocations:
        source_id = allocation.funding_source_id
        if source_id in seen:
            errors.append(f"Funding source {source_id} is listed more than once")
        seen.add(source_id)

        source = sources.get(source_id)
        if source is None or not source.is_active:
            errors.append(f"Funding source {source_id} is not available")

    shares = resolve_shares(config, fees.base)
    if config.strategy == SplitStrategy.PERCENTAGE:
        percentages = [(a.funding_source_id, Decimal(a.percentage or 0)) for a in config.allocations]
    else:
        percentages = [(source_id, share * HUNDRED / fees.base) for source_id, share in shares]

    breakdown = []
    for (source_id, share), split_amount in zip(shares, apportion(fees, percentages)):
        source = sources.get(source_id)
        requirement = SourceRequirement(
            funding_source_id=source_id,
            name=source.name if source else source_id,
            percentage=split_amount.percentage,
            base_amount=split_amount.base_amount,
            fee_amount=split_amount.fee_amount,
            total_required=split_amount.total_required,
            available_balance=source.available_balance if source else ZERO,
        )
        breakdown.append(requirement)

        if share <= ZERO or requirement.total_required <= ZERO:
            errors.append(f"Funding source {requirement.name} must be allocated a positive amount")
        elif source is not None and source.is_active and not requirement.sufficient:
            errors.append(
                f"Funding source {requirement.name} has insufficient balance. "
                f"Required: {format_usd(requirement.total_required)}, "
                f"Available: {format_usd(requirement.available_balance)}, "
                f"Shortfall: {format_usd(requirement.shortfall)}"
            )

    if config.strategy == SplitStrategy.PERCENTAGE:
        percent_total = sum((Decimal(a.percentage or 0) for a in config.allocations), ZERO)
        if abs(percent_total - HUNDRED) > PERCENT_TOLERANCE:
            errors.append(f"Split percentages must total 100% (got {percent_total}%)")

    share_total = sum((share for _, share in shares), ZERO)
    if abs(share_total - fees.base) > AMOUNT_TOLERANCE:
        errors.append(
            f"Split configuration totals {format_usd(share_total)} "
            f"but payment amount is {format_usd(fees.base)}"
        )

    return SplitValidation(valid=not errors, errors=errors, breakdown=breakdown, fees=fees)
