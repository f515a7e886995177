"""Capability interfaces the settlement core depends on"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional

from bcard_gateway.domain.models import (
    AttemptStatus,
    CaptureRecord,
    CaptureResult,
    CardStatus,
    ErrorKind,
    FundingSourceSnapshot,
    IdempotencyMetadata,
    IssuedCard,
    SensitiveCardFields,
    UserProfile,
)


class CaptureAdapter(ABC):
    """Charges a payment method for an exact amount"""

    @property
    @abstractmethod
    def name(self) -> str:
        """Vendor name recorded on generation attempts (e.g. 'stripe', 'mock')"""
        ...

    @abstractmethod
    async def capture(
        self,
        payment_method_ref: str,
        amount_cents: int,
        currency: str,
        idempotency: IdempotencyMetadata,
    ) -> CaptureResult:
        """
        Capture funds from one payment method.

        Must return the same result when called again with the same idempotency key.
        A declined charge is a failed CaptureResult; transport problems raise
        CaptureVendorError.
        """
        ...


class CardProvisioner(ABC):
    """Issues and manages virtual cards at the issuing vendor"""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def create_cardholder(
        self,
        name: str,
        email: Optional[str],
        phone: Optional[str] = None,
        address: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Create a cardholder and return the vendor reference"""
        ...

    @abstractmethod
    async def issue_card(self, cardholder_ref: str, spending_limit_cents: int, currency: str) -> IssuedCard:
        """Create an active virtual card limited to spending_limit_cents"""
        ...

    @abstractmethod
    async def retrieve_sensitive_fields(self, card_ref: str) -> SensitiveCardFields:
        """Full number and CVC. Called once, right after issuance."""
        ...

    @abstractmethod
    async def set_card_status(self, card_ref: str, status: CardStatus) -> None:
        """Freeze (inactive) or unfreeze (active) a card"""
        ...


class UserDirectory(ABC):
    @abstractmethod
    def get_user(self, user_id: str) -> Optional[UserProfile]:
        """Tier, latest KYC status and contact details, or None for unknown users"""
        ...


class FundingSourceStore(ABC):
    @abstractmethod
    def count_active(self, user_id: str) -> int:
        ...

    @abstractmethod
    def get_snapshots(self, user_id: str, source_ids: Iterable[str]) -> Dict[str, FundingSourceSnapshot]:
        """Active sources owned by the user, keyed by id; unknown ids are left out"""
        ...

    @abstractmethod
    def reserve(self, source_id: str, amount_cents: int) -> bool:
        """Atomically take amount_cents off the available balance; False if it no longer covers it"""
        ...

    @abstractmethod
    def release(self, source_id: str, amount_cents: int) -> None:
        """Give back a reservation that was not consumed"""
        ...


class SettlementLedger(ABC):
    """Audit trail of settlement attempts"""

    @abstractmethod
    def begin_attempt(
        self,
        user_id: str,
        merchant_name: str,
        requested_cents: int,
        currency: str,
        split_snapshot: Dict[str, Any],
        vendor: str,
    ) -> str:
        ...

    @abstractmethod
    def record_capture(self, attempt_id: str, record: CaptureRecord) -> None:
        ...

    @abstractmethod
    def record_card(self, user_id: str, name: str, card: IssuedCard, spending_limit_cents: int) -> str:
        ...

    @abstractmethod
    def record_transaction(
        self,
        user_id: str,
        attempt_id: str,
        card_id: str,
        merchant_name: str,
        amount_cents: int,
        fee_cents: int,
        currency: str,
        splits: Any,
        vendor_reference: Optional[str],
    ) -> str:
        ...

    @abstractmethod
    def finalize_attempt(
        self,
        attempt_id: str,
        status: AttemptStatus,
        actual_cents: Optional[int] = None,
        card_id: Optional[str] = None,
        error_kind: Optional[ErrorKind] = None,
        error_message: Optional[str] = None,
        processing_time_ms: Optional[int] = None,
    ) -> None:
        ...
