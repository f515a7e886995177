"""Subscription tier limits shared by fee calculation and the funding policy gate"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict

UNLIMITED = -1


@dataclass(frozen=True)
class TierLimits:
    name: str
    max_funding_sources: int
    requires_name_verification: bool
    kyc_bonus_sources: int
    kyc_relaxes_name_check: bool
    fee_percent: Decimal

    @property
    def display_name(self) -> str:
        return self.name.capitalize()


SUBSCRIPTION_TIERS: Dict[str, TierLimits] = {
    "free": TierLimits(
        name="free",
        max_funding_sources=2,
        requires_name_verification=True,
        kyc_bonus_sources=1,
        kyc_relaxes_name_check=True,
        fee_percent=Decimal("2.9"),
    ),
    "pro": TierLimits(
        name="pro",
        max_funding_sources=5,
        requires_name_verification=False,
        kyc_bonus_sources=0,
        kyc_relaxes_name_check=False,
        fee_percent=Decimal("2.9"),  # value is in features, not fees
    ),
    "premium": TierLimits(
        name="premium",
        max_funding_sources=UNLIMITED,
        requires_name_verification=False,
        kyc_bonus_sources=0,
        kyc_relaxes_name_check=False,
        fee_percent=Decimal("1.9"),
    ),
}

DEFAULT_TIER = "free"


def get_tier_limits(tier: str | None) -> TierLimits:
    """Look up a tier; unknown or missing tiers get the free tier"""
    return SUBSCRIPTION_TIERS.get((tier or "").lower(), SUBSCRIPTION_TIERS[DEFAULT_TIER])
