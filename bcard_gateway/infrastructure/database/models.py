"""SQLAlchemy ORM models for users, funding sources, cards and the settlement audit trail"""

import uuid
from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class UserAccount(Base):
    """Account holder with subscription tier and contact details used for cardholders"""

    __tablename__ = "user_account"

    id = Column(Text, primary_key=True)
    email = Column(Text, nullable=True)
    first_name = Column(Text, nullable=True)
    last_name = Column(Text, nullable=True)
    phone = Column(Text, nullable=True)
    address = Column(JSON, nullable=True)
    subscription_tier = Column(Text, nullable=False, default="free")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    kyc_verifications = relationship(
        "KycVerification",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="KycVerification.created_at.desc()",
    )
    funding_sources = relationship("FundingSource", back_populates="user")


class KycVerification(Base):
    """ID verification submission; the most recent row is the user's KYC status"""

    __tablename__ = "kyc_verification"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(Text, nullable=False, default="pending")  # pending | approved | verified | rejected
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("UserAccount", back_populates="kyc_verifications")


class FundingSource(Base):
    """Card or bank account the user splits payments across"""

    __tablename__ = "funding_source"
    __table_args__ = (CheckConstraint("balance_cents >= 0", name="ck_funding_source_balance_non_negative"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, ForeignKey("user_account.id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    cardholder_name = Column(Text, nullable=False)
    source_type = Column(Text, nullable=False, default="credit_card")  # credit_card | debit_card | bank_account
    payment_method_ref = Column(Text, nullable=False)
    last4 = Column(Text, nullable=True)
    brand = Column(Text, nullable=True)
    balance_cents = Column(BigInteger, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)
    default_split_percentage = Column(Numeric(5, 2), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_name_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    user = relationship("UserAccount", back_populates="funding_sources")


class VirtualCard(Base):
    """Issued bcard. Full number and CVC are never stored."""

    __tablename__ = "virtual_card"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, ForeignKey("user_account.id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    vendor_card_ref = Column(Text, nullable=False)
    masked_number = Column(Text, nullable=False)
    last4 = Column(Text, nullable=False)
    exp_month = Column(Integer, nullable=False)
    exp_year = Column(Integer, nullable=False)
    brand = Column(Text, nullable=False, default="visa")
    spending_limit_cents = Column(BigInteger, nullable=False)
    currency = Column(Text, nullable=False, default="usd")
    status = Column(Text, nullable=False, default="active")  # active | inactive | expired
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class BcardGenerationAttempt(Base):
    """One settlement request, from validation to card or failure"""

    __tablename__ = "bcard_generation_attempt"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, ForeignKey("user_account.id"), nullable=False, index=True)
    merchant_name = Column(Text, nullable=False)
    requested_cents = Column(BigInteger, nullable=False)
    actual_cents = Column(BigInteger, nullable=True)
    currency = Column(Text, nullable=False, default="usd")
    split_config = Column(JSON, nullable=False)
    vendor = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="pending")  # pending | completed | failed | partial
    error_kind = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    card_id = Column(UUID(as_uuid=True), ForeignKey("virtual_card.id"), nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    captures = relationship(
        "CaptureAttempt",
        back_populates="generation_attempt",
        cascade="all, delete-orphan",
        order_by="CaptureAttempt.sequence",
    )


class CaptureAttempt(Base):
    """Capture of one funding source's share within a generation attempt"""

    __tablename__ = "capture_attempt"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    generation_attempt_id = Column(
        UUID(as_uuid=True),
        ForeignKey("bcard_generation_attempt.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    funding_source_id = Column(UUID(as_uuid=True), ForeignKey("funding_source.id"), nullable=False)
    sequence = Column(Integer, nullable=False)
    requested_cents = Column(BigInteger, nullable=False)
    captured_cents = Column(BigInteger, nullable=False, default=0)
    status = Column(Text, nullable=False)  # succeeded | failed
    vendor_reference = Column(Text, nullable=True)
    error_code = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    generation_attempt = relationship("BcardGenerationAttempt", back_populates="captures")


class SettlementTransaction(Base):
    """Completed split payment: what the merchant was paid and how it was funded"""

    __tablename__ = "settlement_transaction"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, ForeignKey("user_account.id"), nullable=False, index=True)
    generation_attempt_id = Column(UUID(as_uuid=True), ForeignKey("bcard_generation_attempt.id"), nullable=False)
    card_id = Column(UUID(as_uuid=True), ForeignKey("virtual_card.id"), nullable=False)
    merchant_name = Column(Text, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    fee_cents = Column(BigInteger, nullable=False)
    currency = Column(Text, nullable=False, default="usd")
    splits = Column(JSON, nullable=False)
    vendor_reference = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="completed")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
