"""GET /v1/settlements/{attempt_id} and GET /v1/transactions - settlement history"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from bcard_gateway.api.v1.schemas import (
    CaptureAttemptItem,
    SettlementAttemptResponse,
    TransactionHistoryResponse,
    TransactionItem,
)
from bcard_gateway.infrastructure.database.repositories import SettlementHistoryRepository
from bcard_gateway.infrastructure.database.session import get_db
from bcard_gateway.utils.money import from_cents

router = APIRouter()


@router.get("/settlements/{attempt_id}", response_model=SettlementAttemptResponse)
def get_settlement_attempt(
    attempt_id: str,
    user_id: str = Query(..., description="User identifier"),
    db: Session = Depends(get_db),
):
    """
    Retrieve one generation attempt with its per-source captures.

    Used by ops to see what was captured before a failure.
    """
    attempt = SettlementHistoryRepository(db).get_attempt(user_id, attempt_id)
    if attempt is None:
        raise HTTPException(status_code=404, detail=f"Settlement {attempt_id} not found")

    return SettlementAttemptResponse(
        attempt_id=str(attempt.id),
        user_id=attempt.user_id,
        merchant_name=attempt.merchant_name,
        status=attempt.status,
        requested_amount=from_cents(attempt.requested_cents),
        actual_amount=from_cents(attempt.actual_cents) if attempt.actual_cents is not None else None,
        currency=attempt.currency,
        vendor=attempt.vendor,
        split_config=attempt.split_config,
        card_id=str(attempt.card_id) if attempt.card_id else None,
        error_kind=attempt.error_kind,
        error_message=attempt.error_message,
        processing_time_ms=attempt.processing_time_ms,
        captures=[
            CaptureAttemptItem(
                funding_source_id=str(c.funding_source_id),
                requested_amount=from_cents(c.requested_cents),
                captured_amount=from_cents(c.captured_cents),
                status=c.status,
                vendor_reference=c.vendor_reference,
                error_code=c.error_code,
                error_message=c.error_message,
            )
            for c in attempt.captures
        ],
        created_at=attempt.created_at.isoformat(),
        completed_at=attempt.completed_at.isoformat() if attempt.completed_at else None,
    )


@router.get("/transactions", response_model=TransactionHistoryResponse)
def get_transaction_history(
    user_id: str = Query(..., description="User identifier"),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """Recent completed split payments for a user"""
    transactions = SettlementHistoryRepository(db).get_transactions_by_user(user_id, limit=limit)

    return TransactionHistoryResponse(
        user_id=user_id,
        transactions=[
            TransactionItem(
                transaction_id=str(t.id),
                attempt_id=str(t.generation_attempt_id),
                card_id=str(t.card_id),
                merchant_name=t.merchant_name,
                amount=from_cents(t.amount_cents),
                fee_amount=from_cents(t.fee_cents),
                currency=t.currency,
                splits=t.splits,
                status=t.status,
                created_at=t.created_at.isoformat(),
            )
            for t in transactions
        ],
    )
