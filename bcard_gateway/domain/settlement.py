"""Settlement orchestrator - captures a split payment and issues the bcard"""

import asyncio
import logging
import time
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Dict, List, Set, TypeVar, Union

from bcard_gateway.domain.exceptions import (
    CaptureVendorError,
    CardProvisioningError,
    IllegalStateTransition,
    InvalidAmountError,
    UserNotFoundError,
)
from bcard_gateway.domain.fees import calculate_fees
from bcard_gateway.domain.models import (
    AttemptStatus,
    CaptureRecord,
    CaptureResult,
    CaptureStatus,
    ErrorKind,
    FundingSourceSnapshot,
    IdempotencyMetadata,
    IssuedBcard,
    SettlementFailed,
    SettlementRequest,
    SettlementSucceeded,
    SourceRequirement,
    SplitConfiguration,
    SplitValidation,
    UserProfile,
)
from bcard_gateway.domain.ports import (
    CaptureAdapter,
    CardProvisioner,
    FundingSourceStore,
    SettlementLedger,
    UserDirectory,
)
from bcard_gateway.domain.splits import validate_split
from bcard_gateway.utils.money import CENT, format_usd, from_cents, parse_amount, to_cents

logger = logging.getLogger(__name__)

T = TypeVar("T")
SettlementResult = Union[SettlementSucceeded, SettlementFailed]


class SettlementState(str, Enum):
    CREATED = "created"
    VALIDATING = "validating"
    CAPTURING = "capturing"
    ALL_CAPTURED = "all_captured"
    PARTIALLY_FAILED = "partially_failed"
    CARD_ISSUING = "card_issuing"
    COMPLETED = "completed"
    FAILED = "failed"


TRANSITIONS: Dict[SettlementState, Set[SettlementState]] = {
    SettlementState.CREATED: {SettlementState.VALIDATING},
    SettlementState.VALIDATING: {SettlementState.CAPTURING, SettlementState.FAILED},
    SettlementState.CAPTURING: {
        SettlementState.ALL_CAPTURED,
        SettlementState.PARTIALLY_FAILED,
        SettlementState.FAILED,
    },
    SettlementState.ALL_CAPTURED: {SettlementState.CARD_ISSUING},
    SettlementState.PARTIALLY_FAILED: {SettlementState.FAILED},
    SettlementState.CARD_ISSUING: {SettlementState.COMPLETED, SettlementState.FAILED},
    SettlementState.COMPLETED: set(),
    SettlementState.FAILED: set(),
}


class SettlementRun:
    """State and capture bookkeeping for one settlement request"""

    def __init__(self) -> None:
        self.state = SettlementState.CREATED
        self.history: List[SettlementState] = [self.state]
        self.captures: List[CaptureRecord] = []

    def advance(self, target: SettlementState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise IllegalStateTransition(f"Cannot move settlement from {self.state.value} to {target.value}")
        self.state = target
        self.history.append(target)

    @property
    def succeeded_captures(self) -> List[CaptureRecord]:
        return [c for c in self.captures if c.status == CaptureStatus.SUCCEEDED]

    @property
    def collected(self) -> Decimal:
        return sum((c.captured_amount for c in self.succeeded_captures), Decimal("0.00"))


class SettlementOrchestrator:
    """
    Drives one split payment from validation to an issued bcard.

    Flow:
    1. Validate the split against balance snapshots and the user's fee tier
    2. For each source, in split order: reserve balance, capture, record the attempt
    3. Stop at the first failed capture (later sources are never charged)
    4. Issue a card whose spending limit is the amount actually collected
    5. Record card and transaction, finalize the generation attempt

    Captured money is never refunded automatically; failures after a capture come back
    with requires_manual_refund / requires_manual_card_retry set.
    """

    def __init__(
        self,
        capture: CaptureAdapter,
        issuer: CardProvisioner,
        users: UserDirectory,
        funding_sources: FundingSourceStore,
        ledger: SettlementLedger,
        currency: str = "usd",
        vendor_timeout: float = 15.0,
        demo_mode: bool = False,
    ):
        self.capture = capture
        self.issuer = issuer
        self.users = users
        self.funding_sources = funding_sources
        self.ledger = ledger
        self.currency = currency
        self.vendor_timeout = vendor_timeout
        self.demo_mode = demo_mode

    def _load_user(self, user_id: str) -> UserProfile:
        profile = self.users.get_user(user_id)
        if profile is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return profile

    def _snapshots(self, user_id: str, config: SplitConfiguration) -> Dict[str, FundingSourceSnapshot]:
        return self.funding_sources.get_snapshots(user_id, [a.funding_source_id for a in config.allocations])

    def validate(self, user_id: str, config: SplitConfiguration) -> SplitValidation:
        """Pre-check a split without capturing anything"""
        profile = self._load_user(user_id)
        return validate_split(config, self._snapshots(user_id, config), profile.tier)

    async def settle(self, request: SettlementRequest) -> SettlementResult:
        started = time.monotonic()

        try:
            amount = parse_amount(request.amount)
            profile = self._load_user(request.user_id)
            fees = calculate_fees(amount, profile.tier)
        except InvalidAmountError as e:
            return SettlementFailed(error_kind=ErrorKind.INVALID_AMOUNT, message=str(e))

        config = SplitConfiguration(total_amount=amount, strategy=request.strategy, allocations=request.allocations)
        attempt_id = self.ledger.begin_attempt(
            user_id=request.user_id,
            merchant_name=request.merchant_name,
            requested_cents=to_cents(fees.total),
            currency=self.currency,
            split_snapshot=config.snapshot(),
            vendor=self.capture.name,
        )

        run = SettlementRun()
        try:
            return await self._run(run, attempt_id, request, profile, config, started)
        except Exception as e:
            logger.exception(
                "Settlement failed unexpectedly",
                extra={"attempt_id": attempt_id, "user_id": request.user_id, "state": run.state.value},
            )
            captured = bool(run.succeeded_captures)
            failure = SettlementFailed(
                error_kind=ErrorKind.INTERNAL_ERROR,
                message=f"Settlement failed unexpectedly: {e}",
                attempt_id=attempt_id,
                captures=run.captures,
                fees=fees,
                requires_manual_refund=captured,
                requires_manual_card_retry=captured and len(run.captures) == len(config.allocations),
            )
            return self._fail(run, failure, started)

    async def _run(
        self,
        run: SettlementRun,
        attempt_id: str,
        request: SettlementRequest,
        profile: UserProfile,
        config: SplitConfiguration,
        started: float,
    ) -> SettlementResult:
        run.advance(SettlementState.VALIDATING)
        snapshots = self._snapshots(request.user_id, config)
        validation = validate_split(config, snapshots, profile.tier)
        fees = validation.fees

        if not validation.valid:
            run.advance(SettlementState.FAILED)
            failure = SettlementFailed(
                error_kind=ErrorKind.VALIDATION_FAILED,
                message="; ".join(validation.errors),
                attempt_id=attempt_id,
                requirements=validation.breakdown,
                fees=fees,
            )
            return self._fail(run, failure, started)

        run.advance(SettlementState.CAPTURING)
        for requirement in validation.breakdown:
            source = snapshots[requirement.funding_source_id]
            record = await self._capture_one(attempt_id, request.merchant_name, source, requirement)
            # Tracked before persisting so a ledger error still reports captured money
            run.captures.append(record)
            self.ledger.record_capture(attempt_id, record)

            if record.status == CaptureStatus.FAILED:
                run.advance(SettlementState.PARTIALLY_FAILED)
                run.advance(SettlementState.FAILED)
                return self._fail(run, self._capture_failure(attempt_id, run, record, validation), started)

        collected = run.collected
        requested = sum((r.total_required for r in validation.breakdown), Decimal("0.00"))
        if abs(collected - requested) > CENT:
            run.advance(SettlementState.FAILED)
            failure = SettlementFailed(
                error_kind=ErrorKind.CAPTURE_FAILED,
                message=(
                    f"Captured {format_usd(collected)} but {format_usd(requested)} was requested. "
                    "Captured funds require manual refund."
                ),
                attempt_id=attempt_id,
                captures=run.captures,
                requirements=validation.breakdown,
                fees=fees,
                requires_manual_refund=True,
            )
            return self._fail(run, failure, started)

        run.advance(SettlementState.ALL_CAPTURED)
        run.advance(SettlementState.CARD_ISSUING)

        card_name = f"bcard for {request.merchant_name}"
        try:
            card, sensitive = await self._issue_card(profile, collected)
        except (CardProvisioningError, asyncio.TimeoutError) as e:
            run.advance(SettlementState.FAILED)
            failure = SettlementFailed(
                error_kind=ErrorKind.CARD_ISSUANCE_FAILED,
                message=(
                    f"Collected {format_usd(collected)} but the card could not be issued: "
                    f"{str(e) or 'card vendor timed out'}. Funds require manual refund or card retry."
                ),
                attempt_id=attempt_id,
                captures=run.captures,
                requirements=validation.breakdown,
                fees=fees,
                requires_manual_refund=True,
                requires_manual_card_retry=True,
            )
            return self._fail(run, failure, started)

        card_id = self.ledger.record_card(request.user_id, card_name, card, to_cents(collected))
        transaction_id = self.ledger.record_transaction(
            user_id=request.user_id,
            attempt_id=attempt_id,
            card_id=card_id,
            merchant_name=request.merchant_name,
            amount_cents=to_cents(fees.base),
            fee_cents=to_cents(fees.fee_amount),
            currency=self.currency,
            splits=[
                {
                    "funding_source_id": c.funding_source_id,
                    "requested_amount": str(c.requested_amount),
                    "captured_amount": str(c.captured_amount),
                    "vendor_reference": c.vendor_reference,
                }
                for c in run.captures
            ],
            vendor_reference=run.captures[0].vendor_reference,
        )

        run.advance(SettlementState.COMPLETED)
        self.ledger.finalize_attempt(
            attempt_id,
            AttemptStatus.COMPLETED,
            actual_cents=to_cents(collected),
            card_id=card_id,
            processing_time_ms=_elapsed_ms(started),
        )
        logger.info(
            "Settlement completed",
            extra={"attempt_id": attempt_id, "user_id": request.user_id, "collected": str(collected)},
        )

        return SettlementSucceeded(
            attempt_id=attempt_id,
            card=IssuedBcard(
                card_id=card_id,
                name=card_name,
                masked_number=f"****-****-****-{card.last4}",
                number=sensitive.number,
                cvc=sensitive.cvc,
                exp_month=card.exp_month,
                exp_year=card.exp_year,
                spending_limit=collected,
            ),
            captures=run.captures,
            fees=fees,
            collected_amount=collected,
            transaction_id=transaction_id,
        )

    async def _capture_one(
        self,
        attempt_id: str,
        merchant_name: str,
        source: FundingSourceSnapshot,
        requirement: SourceRequirement,
    ) -> CaptureRecord:
        amount_cents = to_cents(requirement.total_required)
        started = time.monotonic()

        if not self.funding_sources.reserve(source.id, amount_cents):
            # Balance moved between validation and capture
            return CaptureRecord(
                funding_source_id=source.id,
                name=source.name,
                requested_amount=requirement.total_required,
                captured_amount=Decimal("0.00"),
                status=CaptureStatus.FAILED,
                error_code="insufficient_funds",
                error_message=f"Available balance no longer covers {format_usd(requirement.total_required)}",
                processing_time_ms=_elapsed_ms(started),
            )

        idempotency = IdempotencyMetadata(
            generation_attempt_id=attempt_id,
            funding_source_id=source.id,
            merchant_name=merchant_name,
        )
        try:
            result = await self._bounded(
                self.capture.capture(source.payment_method_ref, amount_cents, self.currency, idempotency)
            )
        except asyncio.TimeoutError:
            result = CaptureResult(
                succeeded=False,
                error_code="timeout",
                error_message=f"Capture timed out after {self.vendor_timeout}s",
            )
        except CaptureVendorError as e:
            result = CaptureResult(succeeded=False, error_code="vendor_error", error_message=str(e))
        except Exception as e:
            logger.exception(
                "Capture adapter raised unexpectedly",
                extra={"attempt_id": attempt_id, "funding_source_id": source.id},
            )
            result = CaptureResult(
                succeeded=False,
                error_code="vendor_error",
                error_message=str(e) or type(e).__name__,
            )

        if not result.succeeded or self.demo_mode:
            self.funding_sources.release(source.id, amount_cents)

        return CaptureRecord(
            funding_source_id=source.id,
            name=source.name,
            requested_amount=requirement.total_required,
            captured_amount=from_cents(result.captured_cents) if result.succeeded else Decimal("0.00"),
            status=CaptureStatus.SUCCEEDED if result.succeeded else CaptureStatus.FAILED,
            vendor_reference=result.vendor_reference,
            error_code=result.error_code,
            error_message=result.error_message,
            processing_time_ms=_elapsed_ms(started),
        )

    def _capture_failure(
        self,
        attempt_id: str,
        run: SettlementRun,
        failed: CaptureRecord,
        validation: SplitValidation,
    ) -> SettlementFailed:
        captured = run.succeeded_captures
        message = (
            f"Could not capture {format_usd(failed.requested_amount)} from {failed.name}: "
            f"{failed.error_message or failed.error_code or 'declined'}"
        )
        if captured:
            names = ", ".join(f"{c.name} ({format_usd(c.captured_amount)})" for c in captured)
            message += f". Already captured from {names}; these funds require manual refund."

        return SettlementFailed(
            error_kind=ErrorKind.CAPTURE_FAILED,
            message=message,
            attempt_id=attempt_id,
            captures=run.captures,
            requirements=validation.breakdown,
            fees=validation.fees,
            requires_manual_refund=bool(captured),
        )

    async def _issue_card(self, profile: UserProfile, collected: Decimal):
        cardholder_ref = await self._bounded(
            self.issuer.create_cardholder(
                name=profile.full_name or profile.user_id,
                email=profile.email,
                phone=profile.phone,
                address=profile.address,
            )
        )
        card = await self._bounded(self.issuer.issue_card(cardholder_ref, to_cents(collected), self.currency))
        sensitive = await self._bounded(self.issuer.retrieve_sensitive_fields(card.card_ref))
        return card, sensitive

    async def _bounded(self, call: Awaitable[T]) -> T:
        return await asyncio.wait_for(call, timeout=self.vendor_timeout)

    def _fail(self, run: SettlementRun, failure: SettlementFailed, started: float) -> SettlementFailed:
        captured = run.succeeded_captures
        if failure.attempt_id is not None:
            self.ledger.finalize_attempt(
                failure.attempt_id,
                AttemptStatus.PARTIAL if captured else AttemptStatus.FAILED,
                actual_cents=to_cents(run.collected) if captured else None,
                error_kind=failure.error_kind,
                error_message=failure.message,
                processing_time_ms=_elapsed_ms(started),
            )
        logger.warning(
            "Settlement failed",
            extra={
                "attempt_id": failure.attempt_id,
                "error_kind": failure.error_kind.value,
                "requires_manual_refund": failure.requires_manual_refund,
            },
        )
        return failure


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
