"""Pytest fixtures for testing"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

from decimal import Decimal
from typing import Callable, Generator, Optional
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from bcard_gateway.api.dependencies import get_capture_adapter, get_card_provisioner, get_event_client
from bcard_gateway.api.main import create_app
from bcard_gateway.domain.settlement import SettlementOrchestrator
from bcard_gateway.infrastructure.clients.capture import MockCaptureAdapter
from bcard_gateway.infrastructure.clients.events import OpsEventClient
from bcard_gateway.infrastructure.clients.issuing import MockCardProvisioner
from bcard_gateway.infrastructure.database.models import Base, FundingSource, KycVerification, UserAccount
from bcard_gateway.infrastructure.database.repositories import (
    FundingSourceRepository,
    LedgerRecorder,
    UserRepository,
)
from bcard_gateway.infrastructure.database.session import build_engine, get_db
from bcard_gateway.utils.money import to_cents

# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = build_engine(TEST_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def capture_adapter() -> MockCaptureAdapter:
    return MockCaptureAdapter()


@pytest.fixture
def card_issuer() -> MockCardProvisioner:
    return MockCardProvisioner()


@pytest.fixture
def ops_client() -> AsyncMock:
    return AsyncMock(spec=OpsEventClient)


@pytest.fixture
def client(
    db: Session,
    capture_adapter: MockCaptureAdapter,
    card_issuer: MockCardProvisioner,
    ops_client: AsyncMock,
) -> TestClient:
    """Create FastAPI test client with test database and in-memory vendors"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_capture_adapter] = lambda: capture_adapter
    app.dependency_overrides[get_card_provisioner] = lambda: card_issuer
    app.dependency_overrides[get_event_client] = lambda: ops_client
    return TestClient(app)


@pytest.fixture
def make_user(db: Session) -> Callable[..., UserAccount]:
    """Factory for account holders; kyc_status adds a verification row"""

    def _make_user(
        user_id: str = "user_1",
        tier: str = "free",
        first_name: Optional[str] = "Jane",
        last_name: Optional[str] = "Doe",
        kyc_status: Optional[str] = None,
    ) -> UserAccount:
        user = UserAccount(
            id=user_id,
            email=f"{user_id}@example.com",
            first_name=first_name,
            last_name=last_name,
            subscription_tier=tier,
        )
        db.add(user)
        if kyc_status:
            db.add(KycVerification(user_id=user_id, status=kyc_status))
        db.commit()
        return user

    return _make_user


@pytest.fixture
def make_source(db: Session) -> Callable[..., FundingSource]:
    """Factory for funding sources with a balance in dollars"""

    def _make_source(
        user_id: str = "user_1",
        name: str = "Checking",
        balance: str = "500.00",
        payment_method_ref: Optional[str] = None,
        cardholder_name: str = "Jane Doe",
    ) -> FundingSource:
        return FundingSourceRepository(db).create(
            user_id=user_id,
            name=name,
            cardholder_name=cardholder_name,
            payment_method_ref=payment_method_ref or f"pm_mock_{name.lower().replace(' ', '_')}",
            balance_cents=to_cents(Decimal(balance)),
        )

    return _make_source


@pytest.fixture
def orchestrator(
    db: Session,
    capture_adapter: MockCaptureAdapter,
    card_issuer: MockCardProvisioner,
) -> SettlementOrchestrator:
    """Settlement orchestrator on the test database with in-memory vendors"""
    return SettlementOrchestrator(
        capture=capture_adapter,
        issuer=card_issuer,
        users=UserRepository(db),
        funding_sources=FundingSourceRepository(db),
        ledger=LedgerRecorder(db),
        vendor_timeout=1.0,
    )
