"""Funding source attachment policy: tier quotas, KYC bonus, cardholder name matching"""

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import List

from bcard_gateway.domain.models import PolicyDecision, UserProfile
from bcard_gateway.domain.ports import FundingSourceStore, UserDirectory
from bcard_gateway.domain.tiers import UNLIMITED, TierLimits, get_tier_limits

_PUNCTUATION = re.compile(r"[^\w\s'-]")
_WHITESPACE = re.compile(r"\s+")

USER_NOT_FOUND = "User not found"
PROFILE_NAME_MISSING = "Complete your profile with first and last name before adding funding sources."
NAME_MISMATCH = (
    "The name on the funding source must match your account name for security purposes. "
    "Complete ID verification to add sources in other names."
)


def normalize_name(name: str) -> str:
    """Lowercase, drop punctuation other than hyphens and apostrophes, collapse whitespace"""
    name = _PUNCTUATION.sub("", name.lower())
    return _WHITESPACE.sub(" ", name).strip()


def _tokens_match(a: str, b: str) -> bool:
    if a == b:
        return True
    # Tokens longer than 3 chars also match by containment ("beth" in "elizabeth")
    return (len(a) > 3 and a in b) or (len(b) > 3 and b in a)


def names_match(account_name: str, cardholder_name: str) -> bool:
    """
    Check a cardholder name against the account holder's name.

    Rules:
    - exact match after normalization
    - otherwise at least 2 overlapping tokens, or 1 when either side is a single token
    - single-character tokens (initials) are ignored

    Example:
        "Jane A. Doe" vs "jane doe" -> True (jane, doe)
        "Jane Doe" vs "John Smith" -> False
    """
    if not account_name or not cardholder_name:
        return False

    account = normalize_name(account_name)
    cardholder = normalize_name(cardholder_name)
    if account == cardholder:
        return bool(account)

    account_tokens = [t for t in account.split(" ") if len(t) > 1]
    cardholder_tokens = [t for t in cardholder.split(" ") if len(t) > 1]
    if not account_tokens or not cardholder_tokens:
        return False

    matching = sum(
        1 for token in account_tokens if any(_tokens_match(token, other) for other in cardholder_tokens)
    )
    required = min(2, len(account_tokens), len(cardholder_tokens))
    return matching >= required


def effective_max_sources(limits: TierLimits, kyc_verified: bool) -> int:
    if limits.max_funding_sources == UNLIMITED:
        return UNLIMITED
    return limits.max_funding_sources + (limits.kyc_bonus_sources if kyc_verified else 0)


def name_check_required(limits: TierLimits, kyc_verified: bool) -> bool:
    return limits.requires_name_verification and not (kyc_verified and limits.kyc_relaxes_name_check)


def _quota_message(limits: TierLimits, kyc_verified: bool) -> str:
    base_message = f"{limits.display_name} tier allows maximum {limits.max_funding_sources} funding sources."

    if kyc_verified and limits.kyc_bonus_sources > 0:
        return (
            f"{base_message} You've already used your +{limits.kyc_bonus_sources} ID verification bonus. "
            "Upgrade your plan to add more."
        )
    if not kyc_verified and limits.kyc_bonus_sources > 0:
        return (
            f"{base_message} Complete ID verification to unlock {limits.kyc_bonus_sources} "
            "additional funding source, or upgrade your plan."
        )
    return f"{base_message} Upgrade your plan to add more."


def evaluate_attachment(profile: UserProfile, active_sources: int, cardholder_name: str) -> PolicyDecision:
    """Apply quota then name rules to an already loaded user profile"""
    limits = get_tier_limits(profile.tier)
    kyc_verified = profile.is_kyc_verified

    max_sources = effective_max_sources(limits, kyc_verified)
    if max_sources != UNLIMITED and active_sources >= max_sources:
        return PolicyDecision(allowed=False, reason=_quota_message(limits, kyc_verified))

    if not name_check_required(limits, kyc_verified):
        return PolicyDecision(allowed=True)

    if not profile.full_name:
        return PolicyDecision(allowed=False, reason=PROFILE_NAME_MISSING, name_checked=True)
    if not names_match(profile.full_name, cardholder_name):
        return PolicyDecision(allowed=False, reason=NAME_MISMATCH, name_checked=True)

    return PolicyDecision(allowed=True, name_checked=True)


class FundingPolicyGate:
    """Decides whether a user may attach another funding source. Never writes."""

    def __init__(self, users: UserDirectory, funding_sources: FundingSourceStore):
        self.users = users
        self.funding_sources = funding_sources

    def can_attach_funding_source(self, user_id: str, cardholder_name: str) -> PolicyDecision:
        profile = self.users.get_user(user_id)
        if profile is None:
            return PolicyDecision(allowed=False, reason=USER_NOT_FOUND)

        active_sources = self.funding_sources.count_active(user_id)
        return evaluate_attachment(profile, active_sources, cardholder_name)


@dataclass
class SubscriptionBenefits:
    tier: str
    display_name: str
    max_funding_sources: int
    name_verification_required: bool
    fee_percent: Decimal
    kyc_verified: bool
    features: List[str]


def subscription_benefits(tier: str | None, kyc_verified: bool) -> SubscriptionBenefits:
    """Effective limits and feature lines for a tier, including the KYC bonus"""
    limits = get_tier_limits(tier)
    max_sources = effective_max_sources(limits, kyc_verified)
    name_check = name_check_required(limits, kyc_verified)

    features = [
        f"{'Unlimited' if max_sources == UNLIMITED else max_sources} funding sources",
        "Name verification required" if name_check else "Any cardholder name allowed",
        f"{limits.fee_percent}% transaction fees",
    ]

    if limits.kyc_bonus_sources > 0:
        if kyc_verified:
            features.append(f"ID verification bonus: +{limits.kyc_bonus_sources} funding source")
            if limits.kyc_relaxes_name_check:
                features.append("Can add sources in other names")
        else:
            features.append(f"Complete ID verification for +{limits.kyc_bonus_sources} funding source")
            features.append("Add sources in other names after verification")

    if limits.name == "pro":
        features += ["Enhanced payment processing features", "Priority customer support"]
    elif limits.name == "premium":
        features += [
            "Lowest transaction fees available",
            "Advanced analytics and reporting",
            "White-label integration options",
        ]

    return SubscriptionBenefits(
        tier=limits.name,
        display_name=limits.display_name,
        max_funding_sources=max_sources,
        name_verification_required=name_check,
        fee_percent=limits.fee_percent,
        kyc_verified=kyc_verified,
        features=features,
    )
