"""POST /v1/settlements and POST /v1/splits/validate - split payment settlement endpoints"""

import logging
import time
from decimal import Decimal
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from bcard_gateway.api.dependencies import get_event_client, get_orchestrator, get_request_id
from bcard_gateway.api.v1.schemas import (
    CaptureSchema,
    FeeBreakdownSchema,
    IssuedCardSchema,
    SettlementCreateRequest,
    SettlementFailedResponse,
    SettlementResult,
    SettlementSucceededResponse,
    SourceRequirementSchema,
    SplitAllocationSchema,
    SplitValidationRequest,
    SplitValidationResponse,
)
from bcard_gateway.domain.exceptions import InvalidAmountError, UserNotFoundError
from bcard_gateway.domain.models import (
    CaptureRecord,
    ErrorKind,
    FeeBreakdown,
    SettlementFailed,
    SettlementRequest,
    SourceRequirement,
    SplitAllocation,
    SplitConfiguration,
    SplitValidation,
)
from bcard_gateway.domain.settlement import SettlementOrchestrator
from bcard_gateway.infrastructure.clients.events import OpsEventClient
from bcard_gateway.infrastructure.database.session import get_db
from bcard_gateway.infrastructure.observability.logging import log_settlement
from bcard_gateway.infrastructure.observability.metrics import record_settlement
from bcard_gateway.utils.money import CENT, parse_amount, to_cents

router = APIRouter()

STATUS_BY_ERROR_KIND = {
    ErrorKind.INVALID_AMOUNT: 422,
    ErrorKind.VALIDATION_FAILED: 422,
    ErrorKind.POLICY_DENIED: 403,
    ErrorKind.CAPTURE_FAILED: 402,
    ErrorKind.CARD_ISSUANCE_FAILED: 502,
    ErrorKind.INTERNAL_ERROR: 500,
}


def _allocations(items: List[SplitAllocationSchema]) -> List[SplitAllocation]:
    return [
        SplitAllocation(funding_source_id=a.funding_source_id, percentage=a.percentage, amount=a.amount)
        for a in items
    ]


def _fees(fees: FeeBreakdown) -> FeeBreakdownSchema:
    return FeeBreakdownSchema(
        base=fees.base,
        fee_percent=fees.fee_percent,
        fee_amount=fees.fee_amount,
        total=fees.total,
    )


def _requirement(r: SourceRequirement) -> SourceRequirementSchema:
    return SourceRequirementSchema(
        funding_source_id=r.funding_source_id,
        name=r.name,
        percentage=r.percentage.quantize(CENT),
        base_amount=r.base_amount,
        fee_amount=r.fee_amount,
        total_required=r.total_required,
        available_balance=r.available_balance,
        shortfall=r.shortfall,
        sufficient=r.sufficient,
    )


def _capture(c: CaptureRecord) -> CaptureSchema:
    return CaptureSchema(
        funding_source_id=c.funding_source_id,
        name=c.name,
        requested_amount=c.requested_amount,
        captured_amount=c.captured_amount,
        status=c.status,
        vendor_reference=c.vendor_reference,
        error_code=c.error_code,
        error_message=c.error_message,
        processing_time_ms=c.processing_time_ms,
    )


def _failed_response(result: SettlementFailed) -> SettlementFailedResponse:
    return SettlementFailedResponse(
        error_kind=result.error_kind,
        message=result.message,
        attempt_id=result.attempt_id,
        captures=[_capture(c) for c in result.captures],
        requirements=[_requirement(r) for r in result.requirements],
        fees=_fees(result.fees) if result.fees else None,
        requires_manual_refund=result.requires_manual_refund,
        requires_manual_card_retry=result.requires_manual_card_retry,
    )


def _reconciliation_event(user_id: str, result: SettlementFailed) -> dict:
    return {
        "event": "SETTLEMENT_NEEDS_RECONCILIATION",
        "attempt_id": result.attempt_id,
        "user_id": user_id,
        "error_kind": result.error_kind.value,
        "requires_manual_refund": result.requires_manual_refund,
        "requires_manual_card_retry": result.requires_manual_card_retry,
        "captured": [
            {
                "funding_source_id": c.funding_source_id,
                "amount_cents": to_cents(c.captured_amount),
                "vendor_reference": c.vendor_reference,
            }
            for c in result.captured_sources
        ],
    }


@router.post("/settlements", response_model=SettlementResult, status_code=201)
async def create_settlement(
    request_body: SettlementCreateRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
    ops_client: OpsEventClient = Depends(get_event_client),
):
    """
    Capture a payment split across funding sources and issue a single-use bcard.

    Flow:
    1. Validate the split and compute fees for the user's tier
    2. Capture each source in order, stopping at the first failure
    3. Issue a virtual card limited to the collected amount
    4. Record the transaction and send an async event to ops

    Failures come back as a result with status "failed" and an error_kind;
    captured money is flagged for manual refund, never refunded automatically.
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        result = await orchestrator.settle(
            SettlementRequest(
                user_id=request_body.user_id,
                merchant_name=request_body.merchant_name,
                amount=request_body.amount,
                strategy=request_body.strategy,
                allocations=_allocations(request_body.allocations),
            )
        )
    except UserNotFoundError as e:
        logging.warning(f"Settlement for unknown user: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    duration_ms = (time.time() - start_time) * 1000
    record_settlement(result)

    if result.status == "succeeded":
        background_tasks.add_task(
            ops_client.send_event,
            {
                "event": "BCARD_ISSUED",
                "attempt_id": result.attempt_id,
                "transaction_id": result.transaction_id,
                "card_id": result.card.card_id,
                "user_id": request_body.user_id,
                "merchant_name": request_body.merchant_name,
                "amount_cents": to_cents(result.collected_amount),
            },
        )
        log_settlement(
            request_id,
            request_body.user_id,
            "succeeded",
            result.attempt_id,
            to_cents(result.collected_amount),
            duration_ms,
        )
        return SettlementSucceededResponse(
            attempt_id=result.attempt_id,
            transaction_id=result.transaction_id,
            card=IssuedCardSchema(
                card_id=result.card.card_id,
                name=result.card.name,
                masked_number=result.card.masked_number,
                number=result.card.number,
                cvc=result.card.cvc,
                exp_month=result.card.exp_month,
                exp_year=result.card.exp_year,
                spending_limit=result.card.spending_limit,
            ),
            captures=[_capture(c) for c in result.captures],
            fees=_fees(result.fees),
            collected_amount=result.collected_amount,
        )

    if result.requires_manual_refund or result.requires_manual_card_retry:
        background_tasks.add_task(ops_client.send_event, _reconciliation_event(request_body.user_id, result))

    collected = sum((c.captured_amount for c in result.captured_sources), Decimal("0.00"))
    log_settlement(
        request_id,
        request_body.user_id,
        result.error_kind.value,
        result.attempt_id,
        to_cents(collected),
        duration_ms,
    )
    response.status_code = STATUS_BY_ERROR_KIND[result.error_kind]
    return _failed_response(result)


@router.post("/splits/validate", response_model=SplitValidationResponse)
def validate_split_configuration(
    request_body: SplitValidationRequest,
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
):
    """
    Pre-check a split before settling: fees, each source's requirement, and every problem found.

    Nothing is reserved or captured.
    """
    try:
        amount = parse_amount(request_body.amount)
    except InvalidAmountError as e:
        return SplitValidationResponse(valid=False, errors=[str(e)], breakdown=[])

    config = SplitConfiguration(
        total_amount=amount,
        strategy=request_body.strategy,
        allocations=_allocations(request_body.allocations),
    )
    try:
        validation: SplitValidation = orchestrator.validate(request_body.user_id, config)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return SplitValidationResponse(
        valid=validation.valid,
        errors=validation.errors,
        fees=_fees(validation.fees) if validation.fees else None,
        breakdown=[_requirement(r) for r in validation.breakdown],
    )
