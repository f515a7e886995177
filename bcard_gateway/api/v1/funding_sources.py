"""Funding source endpoints - attachment eligibility, creation, listing, removal"""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from bcard_gateway.api.dependencies import get_policy_gate
from bcard_gateway.api.v1.schemas import (
    EligibilityRequest,
    FundingSourceCreateRequest,
    FundingSourceListResponse,
    FundingSourceResponse,
    PolicyResponse,
)
from bcard_gateway.config import settings
from bcard_gateway.domain.exceptions import FundingSourceNotFoundError
from bcard_gateway.domain.models import ErrorKind
from bcard_gateway.domain.policy import USER_NOT_FOUND, FundingPolicyGate
from bcard_gateway.infrastructure.database.models import FundingSource
from bcard_gateway.infrastructure.database.repositories import FundingSourceRepository
from bcard_gateway.infrastructure.database.session import get_db
from bcard_gateway.infrastructure.observability.metrics import policy_denial_counter
from bcard_gateway.utils.money import from_cents, to_cents

router = APIRouter()


def _source_response(source: FundingSource) -> FundingSourceResponse:
    return FundingSourceResponse(
        id=str(source.id),
        user_id=source.user_id,
        name=source.name,
        cardholder_name=source.cardholder_name,
        source_type=source.source_type,
        last4=source.last4,
        brand=source.brand,
        available_balance=from_cents(source.balance_cents),
        default_split_percentage=source.default_split_percentage,
        is_active=source.is_active,
        is_name_verified=source.is_name_verified,
        created_at=source.created_at.isoformat(),
    )


@router.post("/funding-sources/eligibility", response_model=PolicyResponse)
def check_eligibility(
    request_body: EligibilityRequest,
    gate: FundingPolicyGate = Depends(get_policy_gate),
):
    """Would the user be allowed to attach a source in this cardholder's name? Read-only."""
    decision = gate.can_attach_funding_source(request_body.user_id, request_body.cardholder_name)
    return PolicyResponse(
        allowed=decision.allowed,
        reason=decision.reason,
        name_checked=decision.name_checked,
        error_kind=None if decision.allowed else ErrorKind.POLICY_DENIED,
    )


@router.post("/funding-sources", response_model=FundingSourceResponse, status_code=201)
def create_funding_source(
    request_body: FundingSourceCreateRequest,
    db: Session = Depends(get_db),
    gate: FundingPolicyGate = Depends(get_policy_gate),
):
    """
    Attach a funding source after the policy gate allows it.

    The source is marked name-verified when the cardholder name check ran and passed.
    """
    decision = gate.can_attach_funding_source(request_body.user_id, request_body.cardholder_name)

    if decision.reason == USER_NOT_FOUND:
        raise HTTPException(status_code=404, detail=f"User {request_body.user_id} not found")

    if not decision.allowed:
        policy_denial_counter.labels(reason="name" if decision.name_checked else "quota").inc()
        logging.info(
            "Funding source denied",
            extra={"user_id": request_body.user_id, "reason": decision.reason},
        )
        raise HTTPException(
            status_code=403,
            detail={"error_kind": ErrorKind.POLICY_DENIED.value, "message": decision.reason},
        )

    payment_method_ref = request_body.payment_method_ref
    if not payment_method_ref:
        if settings.vendor == "stripe":
            raise HTTPException(status_code=422, detail="payment_method_ref is required")
        payment_method_ref = f"pm_mock_{uuid.uuid4().hex[:24]}"

    source = FundingSourceRepository(db).create(
        user_id=request_body.user_id,
        name=request_body.name,
        cardholder_name=request_body.cardholder_name,
        payment_method_ref=payment_method_ref,
        balance_cents=to_cents(request_body.available_balance),
        source_type=request_body.source_type,
        last4=request_body.last4,
        brand=request_body.brand,
        default_split_percentage=request_body.default_split_percentage,
        is_name_verified=decision.name_checked,
    )
    return _source_response(source)


@router.get("/funding-sources", response_model=FundingSourceListResponse)
def list_funding_sources(
    user_id: str = Query(..., description="User identifier"),
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
):
    sources = FundingSourceRepository(db).list_for_user(user_id, include_inactive=include_inactive)
    return FundingSourceListResponse(user_id=user_id, funding_sources=[_source_response(s) for s in sources])


@router.delete("/funding-sources/{source_id}", response_model=FundingSourceResponse)
def remove_funding_source(
    source_id: str,
    user_id: str = Query(..., description="User identifier"),
    db: Session = Depends(get_db),
):
    """Soft delete; the source stops counting toward the tier quota"""
    try:
        source = FundingSourceRepository(db).deactivate(user_id, source_id)
    except FundingSourceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _source_response(source)
