"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class SplitStrategy(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    SMART = "smart"  # equal distribution with per-source overrides


class ErrorKind(str, Enum):
    INVALID_AMOUNT = "InvalidAmount"
    VALIDATION_FAILED = "ValidationFailed"
    POLICY_DENIED = "PolicyDenied"
    CAPTURE_FAILED = "CaptureFailed"
    CARD_ISSUANCE_FAILED = "CardIssuanceFailed"
    INTERNAL_ERROR = "InternalError"


class CaptureStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class AttemptStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"  # money captured, no card


class CardStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"


@dataclass(frozen=True)
class FeeBreakdown:
    """Platform fee applied to a payment"""

    base: Decimal
    fee_percent: Decimal
    fee_amount: Decimal
    total: Decimal


@dataclass(frozen=True)
class SplitAmount:
    """Share of base and fee owed by one funding source"""

    funding_source_id: str
    percentage: Decimal
    base_amount: Decimal
    fee_amount: Decimal
    total_required: Decimal


@dataclass
class SplitAllocation:
    """One entry of a split configuration; which field is read depends on the strategy"""

    funding_source_id: str
    percentage: Optional[Decimal] = None
    amount: Optional[Decimal] = None


@dataclass
class SplitConfiguration:
    total_amount: Decimal
    strategy: SplitStrategy
    allocations: List[SplitAllocation]

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe copy stored with the generation attempt"""
        return {
            "total_amount": str(self.total_amount),
            "strategy": self.strategy.value,
            "allocations": [
                {
                    "funding_source_id": a.funding_source_id,
                    "percentage": str(a.percentage) if a.percentage is not None else None,
                    "amount": str(a.amount) if a.amount is not None else None,
                }
                for a in self.allocations
            ],
        }


@dataclass
class FundingSourceSnapshot:
    """Read-only view of a funding source at validation time"""

    id: str
    name: str
    payment_method_ref: str
    available_balance: Decimal
    is_active: bool = True


@dataclass
class SourceRequirement:
    """What one funding source must cover, and whether it can"""

    funding_source_id: str
    name: str
    percentage: Decimal
    base_amount: Decimal
    fee_amount: Decimal
    total_required: Decimal
    available_balance: Decimal

    @property
    def shortfall(self) -> Decimal:
        return max(self.total_required - self.available_balance, Decimal("0.00"))

    @property
    def sufficient(self) -> bool:
        return self.total_required <= self.available_balance


@dataclass
class SplitValidation:
    valid: bool
    errors: List[str]
    breakdown: List[SourceRequirement]
    fees: Optional[FeeBreakdown] = None


@dataclass
class UserProfile:
    """User/subscription read model consulted by the policy gate and card issuance"""

    user_id: str
    tier: str
    kyc_status: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[Dict[str, Any]] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    @property
    def is_kyc_verified(self) -> bool:
        return self.kyc_status in ("approved", "verified")


@dataclass
class PolicyDecision:
    allowed: bool
    reason: Optional[str] = None
    name_checked: bool = False


@dataclass(frozen=True)
class IdempotencyMetadata:
    """Identifies one capture so a vendor can deduplicate replays"""

    generation_attempt_id: str
    funding_source_id: str
    merchant_name: str

    @property
    def key(self) -> str:
        return f"bcard-{self.generation_attempt_id}-{self.funding_source_id}"


@dataclass
class CaptureResult:
    """Vendor answer for a single capture call"""

    succeeded: bool
    vendor_reference: Optional[str] = None
    captured_cents: int = 0
    error_code: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class IssuedCard:
    card_ref: str
    last4: str
    exp_month: int
    exp_year: int
    brand: str = "visa"


@dataclass
class SensitiveCardFields:
    number: str
    cvc: str


@dataclass
class CaptureRecord:
    """Finalized capture attempt for one funding source"""

    funding_source_id: str
    name: str
    requested_amount: Decimal
    captured_amount: Decimal
    status: CaptureStatus
    vendor_reference: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    processing_time_ms: int = 0


@dataclass
class SettlementRequest:
    user_id: str
    merchant_name: str
    amount: Any  # parsed by the orchestrator so bad input becomes InvalidAmount
    strategy: SplitStrategy
    allocations: List[SplitAllocation]


@dataclass
class IssuedBcard:
    """Card details handed back once, right after issuance"""

    card_id: str
    name: str
    masked_number: str
    number: str
    cvc: str
    exp_month: int
    exp_year: int
    spending_limit: Decimal


@dataclass
class SettlementSucceeded:
    attempt_id: str
    card: IssuedBcard
    captures: List[CaptureRecord]
    fees: FeeBreakdown
    collected_amount: Decimal
    transaction_id: str
    status: str = "succeeded"


@dataclass
class SettlementFailed:
    error_kind: ErrorKind
    message: str
    attempt_id: Optional[str] = None
    captures: List[CaptureRecord] = field(default_factory=list)
    requirements: List[SourceRequirement] = field(default_factory=list)
    fees: Optional[FeeBreakdown] = None
    requires_manual_refund: bool = False
    requires_manual_card_retry: bool = False
    status: str = "failed"

    @property
    def captured_sources(self) -> List[CaptureRecord]:
        """Sources whose money was taken and must be refunded by hand"""
        return [c for c in self.captures if c.status == CaptureStatus.SUCCEEDED]
