"""Dependency injection for FastAPI endpoints"""

from functools import lru_cache

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from bcard_gateway.config import settings
from bcard_gateway.domain.policy import FundingPolicyGate
from bcard_gateway.domain.ports import CaptureAdapter, CardProvisioner
from bcard_gateway.domain.settlement import SettlementOrchestrator
from bcard_gateway.infrastructure.clients.capture import MockCaptureAdapter, StripeCaptureClient
from bcard_gateway.infrastructure.clients.events import OpsEventClient
from bcard_gateway.infrastructure.clients.issuing import MockCardProvisioner, StripeIssuingClient
from bcard_gateway.infrastructure.database.repositories import (
    FundingSourceRepository,
    LedgerRecorder,
    UserRepository,
)
from bcard_gateway.infrastructure.database.session import get_db


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


# Cached so the mock vendors keep their in-memory state across requests
@lru_cache
def get_capture_adapter() -> CaptureAdapter:
    if settings.vendor == "stripe":
        return StripeCaptureClient()
    return MockCaptureAdapter()


@lru_cache
def get_card_provisioner() -> CardProvisioner:
    if settings.vendor == "stripe":
        return StripeIssuingClient()
    return MockCardProvisioner()


def get_event_client() -> OpsEventClient:
    """Provide ops webhook client instance"""
    return OpsEventClient()


def get_policy_gate(db: Session = Depends(get_db)) -> FundingPolicyGate:
    return FundingPolicyGate(UserRepository(db), FundingSourceRepository(db))


def get_orchestrator(
    db: Session = Depends(get_db),
    capture: CaptureAdapter = Depends(get_capture_adapter),
    issuer: CardProvisioner = Depends(get_card_provisioner),
) -> SettlementOrchestrator:
    """Settlement orchestrator wired to the request's DB session and the configured vendor"""
    return SettlementOrchestrator(
        capture=capture,
        issuer=issuer,
        users=UserRepository(db),
        funding_sources=FundingSourceRepository(db),
        ledger=LedgerRecorder(db),
        currency=settings.currency,
        vendor_timeout=settings.vendor_timeout_seconds,
        demo_mode=settings.demo_mode,
    )
