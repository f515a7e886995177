"""Data access layer for users, funding sources, cards and settlement history"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from bcard_gateway.domain.exceptions import CardNotFoundError, FundingSourceNotFoundError
from bcard_gateway.domain.models import (
    AttemptStatus,
    CaptureRecord,
    CardStatus,
    ErrorKind,
    FundingSourceSnapshot,
    IssuedCard,
    UserProfile,
)
from bcard_gateway.domain.ports import FundingSourceStore, SettlementLedger, UserDirectory
from bcard_gateway.infrastructure.database.models import (
    BcardGenerationAttempt,
    CaptureAttempt,
    FundingSource,
    KycVerification,
    SettlementTransaction,
    UserAccount,
    VirtualCard,
)
from bcard_gateway.utils.money import from_cents, to_cents


def _parse_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except ValueError:
        return None


class UserRepository(UserDirectory):
    """Repository for account holders and their KYC state"""

    def __init__(self, db: Session):
        self.db = db

    def get_account(self, user_id: str) -> Optional[UserAccount]:
        return self.db.query(UserAccount).filter(UserAccount.id == user_id).first()

    def latest_kyc_status(self, user_id: str) -> Optional[str]:
        kyc = (
            self.db.query(KycVerification)
            .filter(KycVerification.user_id == user_id)
            .order_by(KycVerification.created_at.desc())
            .first()
        )
        return kyc.status if kyc else None

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        account = self.get_account(user_id)
        if account is None:
            return None

        return UserProfile(
            user_id=account.id,
            tier=account.subscription_tier,
            kyc_status=self.latest_kyc_status(user_id),
            first_name=account.first_name,
            last_name=account.last_name,
            email=account.email,
            phone=account.phone,
            address=account.address,
        )


class FundingSourceRepository(FundingSourceStore):
    """
    Repository for funding sources.

    reserve/release change balances with a single conditional UPDATE and commit right away,
    so a reservation is visible to concurrent settlements before the vendor is called.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        user_id: str,
        name: str,
        cardholder_name: str,
        payment_method_ref: str,
        balance_cents: int,
        source_type: str = "credit_card",
        last4: Optional[str] = None,
        brand: Optional[str] = None,
        default_split_percentage: Optional[Decimal] = None,
        is_name_verified: bool = False,
    ) -> FundingSource:
        source = FundingSource(
            user_id=user_id,
            name=name,
            cardholder_name=cardholder_name,
            payment_method_ref=payment_method_ref,
            balance_cents=balance_cents,
            source_type=source_type,
            last4=last4,
            brand=brand,
            default_split_percentage=default_split_percentage,
            is_name_verified=is_name_verified,
        )
        self.db.add(source)
        self.db.commit()
        self.db.refresh(source)
        return source

    def list_for_user(self, user_id: str, include_inactive: bool = False) -> List[FundingSource]:
        query = self.db.query(FundingSource).filter(FundingSource.user_id == user_id)
        if not include_inactive:
            query = query.filter(FundingSource.is_active.is_(True))
        return query.order_by(FundingSource.created_at).all()

    def get_for_user(self, user_id: str, source_id: str) -> Optional[FundingSource]:
        source_uuid = _parse_uuid(source_id)
        if source_uuid is None:
            return None
        return (
            self.db.query(FundingSource)
            .filter(FundingSource.id == source_uuid, FundingSource.user_id == user_id)
            .first()
        )

    def deactivate(self, user_id: str, source_id: str) -> FundingSource:
        """Soft delete; capture history keeps pointing at the row"""
        source = self.get_for_user(user_id, source_id)
        if source is None or not source.is_active:
            raise FundingSourceNotFoundError(f"Funding source {source_id} not found")

        source.is_active = False
        self.db.commit()
        self.db.refresh(source)
        return source

    def count_active(self, user_id: str) -> int:
        return (
            self.db.query(FundingSource)
            .filter(FundingSource.user_id == user_id, FundingSource.is_active.is_(True))
            .count()
        )

    def get_snapshots(self, user_id: str, source_ids: Iterable[str]) -> Dict[str, FundingSourceSnapshot]:
        ids = [u for u in (_parse_uuid(s) for s in source_ids) if u is not None]
        if not ids:
            return {}

        rows = (
            self.db.query(FundingSource)
            .filter(
                FundingSource.id.in_(ids),
                FundingSource.user_id == user_id,
                FundingSource.is_active.is_(True),
            )
            .all()
        )
        return {
            str(row.id): FundingSourceSnapshot(
                id=str(row.id),
                name=row.name,
                payment_method_ref=row.payment_method_ref,
                available_balance=from_cents(row.balance_cents),
                is_active=row.is_active,
            )
            for row in rows
        }

    def reserve(self, source_id: str, amount_cents: int) -> bool:
        updated = (
            self.db.query(FundingSource)
            .filter(
                FundingSource.id == _parse_uuid(source_id),
                FundingSource.is_active.is_(True),
                FundingSource.balance_cents >= amount_cents,
            )
            .update(
                {
                    FundingSource.balance_cents: FundingSource.balance_cents - amount_cents,
                    FundingSource.version: FundingSource.version + 1,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        return updated == 1

    def release(self, source_id: str, amount_cents: int) -> None:
        (
            self.db.query(FundingSource)
            .filter(FundingSource.id == _parse_uuid(source_id))
            .update(
                {
                    FundingSource.balance_cents: FundingSource.balance_cents + amount_cents,
                    FundingSource.version: FundingSource.version + 1,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()


class LedgerRecorder(SettlementLedger):
    """Writes the settlement audit trail, committing at every checkpoint"""

    def __init__(self, db: Session):
        self.db = db
        self._sequence: Dict[str, int] = {}

    def begin_attempt(
        self,
        user_id: str,
        merchant_name: str,
        requested_cents: int,
        currency: str,
        split_snapshot: Dict[str, Any],
        vendor: str,
    ) -> str:
        attempt = BcardGenerationAttempt(
            user_id=user_id,
            merchant_name=merchant_name,
            requested_cents=requested_cents,
            currency=currency,
            split_config=split_snapshot,
            vendor=vendor,
            status=AttemptStatus.PENDING.value,
        )
        self.db.add(attempt)
        self.db.commit()
        return str(attempt.id)

    def record_capture(self, attempt_id: str, record: CaptureRecord) -> None:
        sequence = self._sequence.get(attempt_id, 0)
        self._sequence[attempt_id] = sequence + 1

        self.db.add(
            CaptureAttempt(
                generation_attempt_id=_parse_uuid(attempt_id),
                funding_source_id=_parse_uuid(record.funding_source_id),
                sequence=sequence,
                requested_cents=to_cents(record.requested_amount),
                captured_cents=to_cents(record.captured_amount),
                status=record.status.value,
                vendor_reference=record.vendor_reference,
                error_code=record.error_code,
                error_message=record.error_message,
                processing_time_ms=record.processing_time_ms,
            )
        )
        self.db.commit()

    def record_card(self, user_id: str, name: str, card: IssuedCard, spending_limit_cents: int) -> str:
        db_card = VirtualCard(
            user_id=user_id,
            name=name,
            vendor_card_ref=card.card_ref,
            masked_number=f"****-****-****-{card.last4}",
            last4=card.last4,
            exp_month=card.exp_month,
            exp_year=card.exp_year,
            brand=card.brand,
            spending_limit_cents=spending_limit_cents,
            status=CardStatus.ACTIVE.value,
        )
        self.db.add(db_card)
        self.db.commit()
        return str(db_card.id)

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
        transaction = SettlementTransaction(
            user_id=user_id,
            generation_attempt_id=_parse_uuid(attempt_id),
            card_id=_parse_uuid(card_id),
            merchant_name=merchant_name,
            amount_cents=amount_cents,
            fee_cents=fee_cents,
            currency=currency,
            splits=splits,
            vendor_reference=vendor_reference,
        )
        self.db.add(transaction)
        self.db.commit()
        return str(transaction.id)

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
        attempt = self.db.get(BcardGenerationAttempt, _parse_uuid(attempt_id))
        attempt.status = status.value
        attempt.actual_cents = actual_cents
        attempt.card_id = _parse_uuid(card_id) if card_id else None
        attempt.error_kind = error_kind.value if error_kind else None
        attempt.error_message = error_message
        attempt.processing_time_ms = processing_time_ms
        attempt.completed_at = datetime.now(timezone.utc)
        self.db.commit()


class CardRepository:
    """Repository for issued bcards"""

    def __init__(self, db: Session):
        self.db = db

    def list_for_user(self, user_id: str) -> List[VirtualCard]:
        return (
            self.db.query(VirtualCard)
            .filter(VirtualCard.user_id == user_id)
            .order_by(VirtualCard.created_at.desc())
            .all()
        )

    def get_for_user(self, user_id: str, card_id: str) -> VirtualCard:
        card_uuid = _parse_uuid(card_id)
        card = None
        if card_uuid is not None:
            card = (
                self.db.query(VirtualCard)
                .filter(VirtualCard.id == card_uuid, VirtualCard.user_id == user_id)
                .first()
            )
        if card is None:
            raise CardNotFoundError(f"Card {card_id} not found")
        return card

    def set_status(self, card: VirtualCard, status: CardStatus) -> VirtualCard:
        card.status = status.value
        self.db.commit()
        self.db.refresh(card)
        return card


class SettlementHistoryRepository:
    """Read side of the settlement audit trail"""

    def __init__(self, db: Session):
        self.db = db

    def get_attempt(self, user_id: str, attempt_id: str) -> Optional[BcardGenerationAttempt]:
        attempt_uuid = _parse_uuid(attempt_id)
        if attempt_uuid is None:
            return None
        return (
            self.db.query(BcardGenerationAttempt)
            .filter(BcardGenerationAttempt.id == attempt_uuid, BcardGenerationAttempt.user_id == user_id)
            .first()
        )

    def get_transactions_by_user(self, user_id: str, limit: int = 20) -> List[SettlementTransaction]:
        return (
            self.db.query(SettlementTransaction)
            .filter(SettlementTransaction.user_id == user_id)
            .order_by(SettlementTransaction.created_at.desc())
            .limit(limit)
            .all()
        )
