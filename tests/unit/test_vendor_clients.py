"""Unit tests for Stripe clients, in-memory vendors and the ops webhook client"""

from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qsl

import httpx
import pytest

from bcard_gateway.domain.exceptions import CaptureVendorError, CardProvisioningError
from bcard_gateway.domain.models import CardStatus, IdempotencyMetadata
from bcard_gateway.infrastructure.clients.capture import MockCaptureAdapter, StripeCaptureClient
from bcard_gateway.infrastructure.clients.events import OpsEventClient
from bcard_gateway.infrastructure.clients.issuing import MockCardProvisioner, StripeIssuingClient

IDEMPOTENCY = IdempotencyMetadata(generation_attempt_id="att_1", funding_source_id="src_1", merchant_name="Acme")


def _form(request: httpx.Request) -> dict:
    return dict(parse_qsl(request.content.decode()))


def _capture_client(handler) -> StripeCaptureClient:
    return StripeCaptureClient(
        secret_key="sk_test_123",
        base_url="https://stripe.test",
        transport=httpx.MockTransport(handler),
    )


def _issuing_client(handler) -> StripeIssuingClient:
    return StripeIssuingClient(
        secret_key="sk_test_123",
        base_url="https://stripe.test",
        transport=httpx.MockTransport(handler),
    )


async def test_stripe_capture_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["idempotency_key"] = request.headers["Idempotency-Key"]
        seen["auth"] = request.headers["Authorization"]
        seen["form"] = _form(request)
        return httpx.Response(
            200,
            json={
                "id": "pi_1",
                "status": "succeeded",
                "amount": 1029,
                "amount_received": 1029,
                "latest_charge": "ch_1",
            },
        )

    result = await _capture_client(handler).capture("pm_card_visa", 1029, "usd", IDEMPOTENCY)

    assert result.succeeded is True
    assert result.vendor_reference == "ch_1"
    assert result.captured_cents == 1029
    assert seen["path"] == "/v1/payment_intents"
    assert seen["idempotency_key"] == "bcard-att_1-src_1"
    assert seen["auth"].startswith("Basic ")
    assert seen["form"]["amount"] == "1029"
    assert seen["form"]["confirm"] == "true"
    assert seen["form"]["metadata[funding_source_id]"] == "src_1"


async def test_stripe_capture_trusts_amount_received():
    def handler(request):
        return httpx.Response(
            200,
            json={"id": "pi_1", "status": "succeeded", "amount": 1029, "amount_received": 1000, "latest_charge": "ch_1"},
        )

    result = await _capture_client(handler).capture("pm_card_visa", 1029, "usd", IDEMPOTENCY)
    assert result.captured_cents == 1000


async def test_stripe_capture_decline_is_a_failed_result():
    def handler(request):
        return httpx.Response(
            402,
            json={
                "error": {
                    "code": "card_declined",
                    "decline_code": "insufficient_funds",
                    "message": "Your card has insufficient funds.",
                    "payment_intent": {"id": "pi_2"},
                }
            },
        )

    result = await _capture_client(handler).capture("pm_card_visa", 1029, "usd", IDEMPOTENCY)

    assert result.succeeded is False
    assert result.error_code == "insufficient_funds"
    assert result.error_message == "Your card has insufficient funds."
    assert result.vendor_reference == "pi_2"


@pytest.mark.parametrize(
    "status_code, body",
    [
        (402, {"json": ["card_declined"]}),
        (402, {"json": {"error": "card_declined"}}),
        (400, {"text": "Bad Request"}),
    ],
)
async def test_stripe_capture_decline_with_unexpected_body(status_code, body):
    def handler(request):
        return httpx.Response(status_code, **body)

    result = await _capture_client(handler).capture("pm_card_visa", 1029, "usd", IDEMPOTENCY)

    assert result.succeeded is False
    assert result.error_code == "card_declined"
    assert result.vendor_reference is None


async def test_stripe_capture_unfinished_intent_fails():
    def handler(request):
        return httpx.Response(200, json={"id": "pi_3", "status": "requires_action", "amount": 1029})

    result = await _capture_client(handler).capture("pm_card_visa", 1029, "usd", IDEMPOTENCY)

    assert result.succeeded is False
    assert result.error_code == "requires_action"


async def test_stripe_capture_server_error_raises():
    def handler(request):
        return httpx.Response(500, json={"error": {"message": "oops"}})

    with pytest.raises(CaptureVendorError, match="500"):
        await _capture_client(handler).capture("pm_card_visa", 1029, "usd", IDEMPOTENCY)


async def test_stripe_capture_timeout_raises():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(CaptureVendorError, match="timeout"):
        await _capture_client(handler).capture("pm_card_visa", 1029, "usd", IDEMPOTENCY)


async def test_stripe_issuing_flow():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/v1/issuing/cardholders":
            return httpx.Response(200, json={"id": "ich_1"})
        if request.url.path == "/v1/issuing/cards":
            return httpx.Response(
                200,
                json={"id": "ic_1", "last4": "4242", "exp_month": 8, "exp_year": 2029, "brand": "Visa"},
            )
        return httpx.Response(200, json={"id": "ic_1", "number": "4242424242424242", "cvc": "123"})

    client = _issuing_client(handler)
    cardholder_ref = await client.create_cardholder("Jane Doe", "jane@example.com")
    card = await client.issue_card(cardholder_ref, 10290, "usd")
    sensitive = await client.retrieve_sensitive_fields(card.card_ref)

    assert cardholder_ref == "ich_1"
    assert card.last4 == "4242"
    assert card.brand == "visa"
    assert sensitive.number == "4242424242424242"
    assert sensitive.cvc == "123"

    cardholder_form = _form(requests[0])
    assert cardholder_form["type"] == "individual"
    assert cardholder_form["billing[address][line1]"] == "123 Main St"
    assert cardholder_form["billing[address][postal_code]"] == "94102"

    card_form = _form(requests[1])
    assert card_form["cardholder"] == "ich_1"
    assert card_form["type"] == "virtual"
    assert card_form["spending_controls[spending_limits][0][amount]"] == "10290"
    assert card_form["spending_controls[spending_limits][0][interval]"] == "per_authorization"

    assert requests[2].method == "GET"
    assert requests[2].url.path == "/v1/issuing/cards/ic_1"
    assert requests[2].url.params.get_list("expand[]") == ["number", "cvc"]


async def test_stripe_issuing_error_raises():
    def handler(request):
        return httpx.Response(400, json={"error": {"message": "Cardholder is inactive"}})

    with pytest.raises(CardProvisioningError, match="400"):
        await _issuing_client(handler).issue_card("ich_1", 1000, "usd")


async def test_stripe_issuing_missing_card_details():
    def handler(request):
        return httpx.Response(200, json={"id": "ic_1"})

    with pytest.raises(CardProvisioningError):
        await _issuing_client(handler).retrieve_sensitive_fields("ic_1")


async def test_mock_capture_replays_same_idempotency_key():
    adapter = MockCaptureAdapter()

    first = await adapter.capture("pm_mock_a", 500, "usd", IDEMPOTENCY)
    second = await adapter.capture("pm_mock_a", 500, "usd", IDEMPOTENCY)

    assert first is second
    assert len(adapter.calls) == 1


async def test_mock_capture_cache_is_bounded():
    adapter = MockCaptureAdapter(cache_size=2)

    for n in range(3):
        idempotency = IdempotencyMetadata(
            generation_attempt_id=f"att_{n}", funding_source_id="src_1", merchant_name="Acme"
        )
        await adapter.capture("pm_mock_a", 100 + n, "usd", idempotency)

    assert adapter.calls == [("pm_mock_a", 101), ("pm_mock_a", 102)]
    assert len(adapter._results) == 2


async def test_mock_issuer_releases_card_details_once():
    issuer = MockCardProvisioner()
    cardholder_ref = await issuer.create_cardholder("Jane Doe", None)
    card = await issuer.issue_card(cardholder_ref, 1000, "usd")

    sensitive = await issuer.retrieve_sensitive_fields(card.card_ref)

    assert sensitive.number.endswith(card.last4)
    assert len(sensitive.cvc) == 3
    assert "number" not in issuer.cards[card.card_ref]
    assert "cvc" not in issuer.cards[card.card_ref]
    with pytest.raises(CardProvisioningError, match="already retrieved"):
        await issuer.retrieve_sensitive_fields(card.card_ref)


async def test_mock_issuer_freeze_and_unfreeze():
    issuer = MockCardProvisioner()
    cardholder_ref = await issuer.create_cardholder("Jane Doe", None)
    card = await issuer.issue_card(cardholder_ref, 1000, "usd")

    await issuer.set_card_status(card.card_ref, CardStatus.INACTIVE)
    assert issuer.cards[card.card_ref]["status"] == CardStatus.INACTIVE

    await issuer.set_card_status(card.card_ref, CardStatus.ACTIVE)
    assert issuer.cards[card.card_ref]["status"] == CardStatus.ACTIVE


async def test_mock_issuer_unknown_card():
    with pytest.raises(CardProvisioningError):
        await MockCardProvisioner().set_card_status("ic_missing", CardStatus.INACTIVE)


async def test_ops_webhook_retries_with_backoff():
    ok = httpx.Response(200, request=httpx.Request("POST", "http://ops.test/hook"))
    post = AsyncMock(side_effect=[httpx.ConnectError("down"), ok])

    with patch.object(httpx.AsyncClient, "post", new=post), patch(
        "bcard_gateway.infrastructure.clients.events.asyncio.sleep", new=AsyncMock()
    ) as sleep:
        await OpsEventClient("http://ops.test/hook").send_event({"event": "BCARD_ISSUED"})

    assert post.await_count == 2
    sleep.assert_awaited_once_with(1.0)


async def test_ops_webhook_gives_up_after_max_retries():
    error = httpx.Response(503, request=httpx.Request("POST", "http://ops.test/hook"))
    post = AsyncMock(return_value=error)
    client = OpsEventClient("http://ops.test/hook")
    client.max_retries = 3

    with patch.object(httpx.AsyncClient, "post", new=post), patch(
        "bcard_gateway.infrastructure.clients.events.asyncio.sleep", new=AsyncMock()
    ) as sleep:
        with pytest.raises(httpx.HTTPStatusError):
            await client.send_event({"event": "SETTLEMENT_NEEDS_RECONCILIATION"})

    assert post.await_count == 3
    assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]
