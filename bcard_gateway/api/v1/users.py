"""GET /v1/users/{user_id}/benefits - subscription tier benefits"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from bcard_gateway.api.v1.schemas import BenefitsResponse
from bcard_gateway.domain.policy import subscription_benefits
from bcard_gateway.infrastructure.database.repositories import UserRepository
from bcard_gateway.infrastructure.database.session import get_db

router = APIRouter()


@router.get("/users/{user_id}/benefits", response_model=BenefitsResponse)
def get_benefits(user_id: str, db: Session = Depends(get_db)):
    """Effective funding source limit, name rule and fee rate, including the ID verification bonus"""
    profile = UserRepository(db).get_user(user_id)
    if profile is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")

    benefits = subscription_benefits(profile.tier, profile.is_kyc_verified)
    return BenefitsResponse(
        user_id=user_id,
        tier=benefits.tier,
        display_name=benefits.display_name,
        max_funding_sources=benefits.max_funding_sources,
        name_verification_required=benefits.name_verification_required,
        fee_percent=benefits.fee_percent,
        kyc_verified=benefits.kyc_verified,
        features=benefits.features,
    )
