"""Payment capture clients: Stripe PaymentIntents and an in-memory mock"""

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

import httpx

from bcard_gateway.config import settings
from bcard_gateway.domain.exceptions import CaptureVendorError
from bcard_gateway.domain.models import CaptureResult, IdempotencyMetadata
from bcard_gateway.domain.ports import CaptureAdapter

logger = logging.getLogger(__name__)

# Idempotency results kept by the mock; oldest are evicted first
MOCK_RESULT_CACHE_SIZE = 1000


def _decline_error(response: httpx.Response) -> Dict[str, Any]:
    """Stripe's error object from a decline response, or {} when the body is not one"""
    try:
        body = response.json()
    except ValueError:
        return {}
    error = body.get("error") if isinstance(body, dict) else None
    return error if isinstance(error, dict) else {}


class StripeCaptureClient(CaptureAdapter):
    """Captures funds with a confirmed, off-session PaymentIntent per funding source"""

    def __init__(
        self,
        secret_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key or settings.stripe_secret_key
        self.base_url = base_url or settings.stripe_api_base
        self.timeout = timeout or settings.vendor_timeout_seconds
        self.transport = transport

    @property
    def name(self) -> str:
        return "stripe"

    async def capture(
        self,
        payment_method_ref: str,
        amount_cents: int,
        currency: str,
        idempotency: IdempotencyMetadata,
    ) -> CaptureResult:
        """
        Create and confirm a PaymentIntent for exactly amount_cents.

        A card decline (400/402) is a failed CaptureResult carrying Stripe's error code.

        Raises:
            CaptureVendorError: On timeout, network failure, 5xx, or an unreadable response
        """
        form = {
            "amount": str(amount_cents),
            "currency": currency,
            "payment_method": payment_method_ref,
            "confirm": "true",
            "off_session": "true",
            "metadata[generation_attempt_id]": idempotency.generation_attempt_id,
            "metadata[funding_source_id]": idempotency.funding_source_id,
            "metadata[merchant_name]": idempotency.merchant_name,
            "metadata[funding_type]": "bcard_split_payment",
        }

        async with httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.secret_key, ""),
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            try:
                response = await client.post(
                    "/v1/payment_intents",
                    data=form,
                    headers={"Idempotency-Key": idempotency.key},
                )

                if response.status_code in (400, 402):
                    error = _decline_error(response)
                    intent = error.get("payment_intent")
                    return CaptureResult(
                        succeeded=False,
                        vendor_reference=intent.get("id") if isinstance(intent, dict) else None,
                        error_code=error.get("decline_code") or error.get("code") or "card_declined",
                        error_message=error.get("message", "Payment was declined"),
                    )

                response.raise_for_status()
                intent = response.json()

                if intent["status"] != "succeeded":
                    return CaptureResult(
                        succeeded=False,
                        vendor_reference=intent["id"],
                        error_code=intent["status"],
                        error_message=f"Payment intent ended in status {intent['status']}",
                    )

                return CaptureResult(
                    succeeded=True,
                    vendor_reference=intent.get("latest_charge") or intent["id"],
                    captured_cents=int(intent.get("amount_received") or intent["amount"]),
                )

            except httpx.TimeoutException as e:
                raise CaptureVendorError(f"Stripe capture timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise CaptureVendorError(f"Stripe capture error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise CaptureVendorError(f"Stripe unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                raise CaptureVendorError(f"Invalid payment intent from Stripe: {e}") from e


class MockCaptureAdapter(CaptureAdapter):
    """
    In-memory capture used in development and tests.

    Args:
        failures: payment_method_ref -> decline code to return for that method
        short_captures: payment_method_ref -> cents to report instead of the requested amount
        delay: seconds to wait before answering, for timeout tests
        cache_size: how many idempotency results and recorded calls to keep
    """

    def __init__(
        self,
        failures: Dict[str, str] | None = None,
        short_captures: Dict[str, int] | None = None,
        delay: float = 0.0,
        cache_size: int = MOCK_RESULT_CACHE_SIZE,
    ) -> None:
        self.failures = dict(failures or {})
        self.short_captures = dict(short_captures or {})
        self.delay = delay
        self.cache_size = cache_size
        self.calls: list[tuple[str, int]] = []
        self._results: Dict[str, CaptureResult] = {}

    @property
    def name(self) -> str:
        return "mock"

    async def capture(
        self,
        payment_method_ref: str,
        amount_cents: int,
        currency: str,
        idempotency: IdempotencyMetadata,
    ) -> CaptureResult:
        if idempotency.key in self._results:
            return self._results[idempotency.key]

        if self.delay:
            await asyncio.sleep(self.delay)
        self.calls.append((payment_method_ref, amount_cents))

        code = self.failures.get(payment_method_ref)
        if code:
            result = CaptureResult(
                succeeded=False,
                error_code=code,
                error_message=f"Your card was declined ({code})",
            )
        else:
            result = CaptureResult(
                succeeded=True,
                vendor_reference=f"ch_mock_{uuid.uuid4().hex[:16]}",
                captured_cents=self.short_captures.get(payment_method_ref, amount_cents),
            )

        logger.debug(
            "Mock capture",
            extra={"idempotency_key": idempotency.key, "amount_cents": amount_cents, "succeeded": result.succeeded},
        )
        self._results[idempotency.key] = result
        if len(self._results) > self.cache_size:
            self._results.pop(next(iter(self._results)))
        del self.calls[: -self.cache_size]
        return result
