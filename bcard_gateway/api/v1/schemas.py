"""Pydantic schemas for API request/response validation"""

from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from bcard_gateway.domain.models import CaptureStatus, ErrorKind, SplitStrategy


class SplitAllocationSchema(BaseModel):
    """One funding source's part of a split; percentage or amount depending on strategy"""

    funding_source_id: str = Field(..., min_length=1)
    percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    amount: Optional[Decimal] = Field(None, ge=0)


class SettlementCreateRequest(BaseModel):
    """Request body for POST /v1/settlements"""

    user_id: str = Field(..., min_length=1, description="User identifier")
    merchant_name: str = Field(..., min_length=1, description="Merchant the bcard will pay")
    # Parsed by the settlement core so malformed amounts come back as InvalidAmount results
    amount: Union[Decimal, str] = Field(..., description="Payment amount in dollars, before fees")
    strategy: SplitStrategy = SplitStrategy.PERCENTAGE
    allocations: List[SplitAllocationSchema] = Field(..., min_length=1)


class SplitValidationRequest(BaseModel):
    """Request body for POST /v1/splits/validate"""

    user_id: str = Field(..., min_length=1)
    amount: Union[Decimal, str]
    strategy: SplitStrategy = SplitStrategy.PERCENTAGE
    allocations: List[SplitAllocationSchema] = Field(..., min_length=1)


class FeeBreakdownSchema(BaseModel):
    base: Decimal
    fee_percent: Decimal
    fee_amount: Decimal
    total: Decimal


class SourceRequirementSchema(BaseModel):
    """What one funding source must cover"""

    funding_source_id: str
    name: str
    percentage: Decimal
    base_amount: Decimal
    fee_amount: Decimal
    total_required: Decimal
    available_balance: Decimal
    shortfall: Decimal
    sufficient: bool


class SplitValidationResponse(BaseModel):
    """Response for POST /v1/splits/validate"""

    valid: bool
    errors: List[str]
    fees: Optional[FeeBreakdownSchema] = None
    breakdown: List[SourceRequirementSchema]


class CaptureSchema(BaseModel):
    """Outcome of capturing one funding source"""

    funding_source_id: str
    name: str
    requested_amount: Decimal
    captured_amount: Decimal
    status: CaptureStatus
    vendor_reference: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    processing_time_ms: int = 0


class IssuedCardSchema(BaseModel):
    """Newly issued bcard. number and cvc are only ever returned here."""

    card_id: str
    name: str
    masked_number: str
    number: str
    cvc: str
    exp_month: int
    exp_year: int
    spending_limit: Decimal


class SettlementSucceededResponse(BaseModel):
    status: Literal["succeeded"] = "succeeded"
    attempt_id: str
    transaction_id: str
    card: IssuedCardSchema
    captures: List[CaptureSchema]
    fees: FeeBreakdownSchema
    collected_amount: Decimal


class SettlementFailedResponse(BaseModel):
    status: Literal["failed"] = "failed"
    error_kind: ErrorKind
    message: str
    attempt_id: Optional[str] = None
    captures: List[CaptureSchema] = []
    requirements: List[SourceRequirementSchema] = []
    fees: Optional[FeeBreakdownSchema] = None
    requires_manual_refund: bool = False
    requires_manual_card_retry: bool = False


SettlementResult = Annotated[
    Union[SettlementSucceededResponse, SettlementFailedResponse],
    Field(discriminator="status"),
]


class EligibilityRequest(BaseModel):
    """Request body for POST /v1/funding-sources/eligibility"""

    user_id: str = Field(..., min_length=1)
    cardholder_name: str = Field(..., description="Name printed on the card or bank account")


class PolicyResponse(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    name_checked: bool = False
    error_kind: Optional[ErrorKind] = None


class FundingSourceCreateRequest(BaseModel):
    """Request body for POST /v1/funding-sources"""

    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, description="Nickname shown to the user")
    cardholder_name: str = Field(..., min_length=1)
    source_type: Literal["credit_card", "debit_card", "bank_account"] = "credit_card"
    payment_method_ref: Optional[str] = Field(None, description="Vendor payment method id")
    last4: Optional[str] = Field(None, min_length=4, max_length=4)
    brand: Optional[str] = None
    available_balance: Decimal = Field(..., ge=0)
    default_split_percentage: Optional[Decimal] = Field(None, ge=0, le=100)


class FundingSourceResponse(BaseModel):
    id: str
    user_id: str
    name: str
    cardholder_name: str
    source_type: str
    last4: Optional[str] = None
    brand: Optional[str] = None
    available_balance: Decimal
    default_split_percentage: Optional[Decimal] = None
    is_active: bool
    is_name_verified: bool
    created_at: str


class FundingSourceListResponse(BaseModel):
    user_id: str
    funding_sources: List[FundingSourceResponse]


class CardResponse(BaseModel):
    """Stored bcard; never includes the full number or CVC"""

    card_id: str
    name: str
    masked_number: str
    last4: str
    exp_month: int
    exp_year: int
    brand: str
    spending_limit: Decimal
    currency: str
    status: str
    created_at: str


class CardListResponse(BaseModel):
    user_id: str
    cards: List[CardResponse]


class CardStatusUpdate(BaseModel):
    """Request body for PATCH /v1/cards/{card_id}/status"""

    user_id: str = Field(..., min_length=1)
    status: Literal["active", "inactive"]


class CaptureAttemptItem(BaseModel):
    funding_source_id: str
    requested_amount: Decimal
    captured_amount: Decimal
    status: str
    vendor_reference: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class SettlementAttemptResponse(BaseModel):
    """Response for GET /v1/settlements/{attempt_id}"""

    attempt_id: str
    user_id: str
    merchant_name: str
    status: str
    requested_amount: Decimal
    actual_amount: Optional[Decimal] = None
    currency: str
    vendor: str
    split_config: Dict[str, Any]
    card_id: Optional[str] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    processing_time_ms: Optional[int] = None
    captures: List[CaptureAttemptItem]
    created_at: str
    completed_at: Optional[str] = None


class TransactionItem(BaseModel):
    transaction_id: str
    attempt_id: str
    card_id: str
    merchant_name: str
    amount: Decimal
    fee_amount: Decimal
    currency: str
    splits: List[Dict[str, Any]]
    status: str
    created_at: str


class TransactionHistoryResponse(BaseModel):
    """Response for GET /v1/transactions"""

    user_id: str
    transactions: List[TransactionItem]


class BenefitsResponse(BaseModel):
    """Response for GET /v1/users/{user_id}/benefits"""

    user_id: str
    tier: str
    display_name: str
    max_funding_sources: int  # -1 means unlimited
    name_verification_required: bool
    fee_percent: Decimal
    kyc_verified: bool
    features: List[str]
