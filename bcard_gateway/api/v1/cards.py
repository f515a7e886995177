"""Issued bcard endpoints - list, fetch, freeze/unfreeze"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from bcard_gateway.api.dependencies import get_card_provisioner
from bcard_gateway.api.v1.schemas import CardListResponse, CardResponse, CardStatusUpdate
from bcard_gateway.domain.exceptions import CardNotFoundError, CardProvisioningError
from bcard_gateway.domain.models import CardStatus
from bcard_gateway.domain.ports import CardProvisioner
from bcard_gateway.infrastructure.database.models import VirtualCard
from bcard_gateway.infrastructure.database.repositories import CardRepository
from bcard_gateway.infrastructure.database.session import get_db
from bcard_gateway.utils.money import from_cents

router = APIRouter()


def _card_response(card: VirtualCard) -> CardResponse:
    return CardResponse(
        card_id=str(card.id),
        name=card.name,
        masked_number=card.masked_number,
        last4=card.last4,
        exp_month=card.exp_month,
        exp_year=card.exp_year,
        brand=card.brand,
        spending_limit=from_cents(card.spending_limit_cents),
        currency=card.currency,
        status=card.status,
        created_at=card.created_at.isoformat(),
    )


@router.get("/cards", response_model=CardListResponse)
def list_cards(
    user_id: str = Query(..., description="User identifier"),
    db: Session = Depends(get_db),
):
    cards = CardRepository(db).list_for_user(user_id)
    return CardListResponse(user_id=user_id, cards=[_card_response(c) for c in cards])


@router.get("/cards/{card_id}", response_model=CardResponse)
def get_card(
    card_id: str,
    user_id: str = Query(..., description="User identifier"),
    db: Session = Depends(get_db),
):
    try:
        card = CardRepository(db).get_for_user(user_id, card_id)
    except CardNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _card_response(card)


@router.patch("/cards/{card_id}/status", response_model=CardResponse)
async def update_card_status(
    card_id: str,
    request_body: CardStatusUpdate,
    db: Session = Depends(get_db),
    issuer: CardProvisioner = Depends(get_card_provisioner),
):
    """Freeze (inactive) or unfreeze (active) a card at the issuer, then record it"""
    repo = CardRepository(db)
    try:
        card = repo.get_for_user(request_body.user_id, card_id)
    except CardNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    if card.status == CardStatus.EXPIRED.value:
        raise HTTPException(status_code=409, detail="Expired cards cannot change status")

    status = CardStatus(request_body.status)
    try:
        await issuer.set_card_status(card.vendor_card_ref, status)
    except CardProvisioningError as e:
        logging.error(f"Card status update failed: {e}", extra={"card_id": card_id})
        raise HTTPException(status_code=502, detail="Card issuer unavailable")

    return _card_response(repo.set_status(card, status))
