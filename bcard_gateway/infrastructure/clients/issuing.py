"""Virtual card issuing clients: Stripe Issuing and an in-memory mock"""

import secrets
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from bcard_gateway.config import settings
from bcard_gateway.domain.exceptions import CardProvisioningError
from bcard_gateway.domain.models import CardStatus, IssuedCard, SensitiveCardFields
from bcard_gateway.domain.ports import CardProvisioner


def default_billing_address() -> Dict[str, str]:
    return {
        "line1": settings.default_address_line1,
        "city": settings.default_address_city,
        "state": settings.default_address_state,
        "postal_code": settings.default_address_postal_code,
        "country": settings.default_address_country,
    }


class StripeIssuingClient(CardProvisioner):
    """Creates cardholders and single-use virtual cards through the Stripe Issuing API"""

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

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        """
        Send one form-encoded request to Stripe.

        Raises:
            CardProvisioningError: On timeout, network failure, non-2xx status, or invalid JSON
        """
        async with httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.secret_key, ""),
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            try:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                return response.json()
            except httpx.TimeoutException as e:
                raise CardProvisioningError(f"Stripe Issuing timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise CardProvisioningError(f"Stripe Issuing error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise CardProvisioningError(f"Stripe Issuing unreachable: {e}") from e
            except ValueError as e:
                raise CardProvisioningError(f"Invalid response from Stripe Issuing: {e}") from e

    async def create_cardholder(
        self,
        name: str,
        email: Optional[str],
        phone: Optional[str] = None,
        address: Optional[Dict[str, Any]] = None,
    ) -> str:
        form = {"name": name, "type": "individual", "status": "active"}
        if email:
            form["email"] = email
        if phone:
            form["phone_number"] = phone
        for key, value in (address or default_billing_address()).items():
            if value:
                form[f"billing[address][{key}]"] = str(value)

        data = await self._request("POST", "/v1/issuing/cardholders", data=form)
        try:
            return data["id"]
        except KeyError as e:
            raise CardProvisioningError("Stripe cardholder response has no id") from e

    async def issue_card(self, cardholder_ref: str, spending_limit_cents: int, currency: str) -> IssuedCard:
        form = {
            "cardholder": cardholder_ref,
            "currency": currency,
            "type": "virtual",
            "status": "active",
            "spending_controls[spending_limits][0][amount]": str(spending_limit_cents),
            "spending_controls[spending_limits][0][interval]": "per_authorization",
            "metadata[payment_type]": "split_payment",
        }
        data = await self._request("POST", "/v1/issuing/cards", data=form)
        try:
            return IssuedCard(
                card_ref=data["id"],
                last4=data["last4"],
                exp_month=int(data["exp_month"]),
                exp_year=int(data["exp_year"]),
                brand=str(data.get("brand", "visa")).lower(),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise CardProvisioningError(f"Invalid card from Stripe Issuing: {e}") from e

    async def retrieve_sensitive_fields(self, card_ref: str) -> SensitiveCardFields:
        data = await self._request(
            "GET",
            f"/v1/issuing/cards/{card_ref}",
            params=[("expand[]", "number"), ("expand[]", "cvc")],
        )
        if not data.get("number") or not data.get("cvc"):
            raise CardProvisioningError(f"Stripe did not return card details for {card_ref}")
        return SensitiveCardFields(number=data["number"], cvc=data["cvc"])

    async def set_card_status(self, card_ref: str, status: CardStatus) -> None:
        await self._request("POST", f"/v1/issuing/cards/{card_ref}", data={"status": status.value})


class MockCardProvisioner(CardProvisioner):
    """Simulates card issuing in memory. Set fail_issuance to make issue_card fail."""

    def __init__(self, fail_issuance: bool = False) -> None:
        self.fail_issuance = fail_issuance
        self.cardholders: Dict[str, Dict[str, Any]] = {}
        self.cards: Dict[str, Dict[str, Any]] = {}

    @property
    def name(self) -> str:
        return "mock"

    async def create_cardholder(
        self,
        name: str,
        email: Optional[str],
        phone: Optional[str] = None,
        address: Optional[Dict[str, Any]] = None,
    ) -> str:
        cardholder_ref = f"ich_mock_{uuid.uuid4().hex[:12]}"
        self.cardholders[cardholder_ref] = {
            "name": name,
            "email": email,
            "phone": phone,
            "address": address or default_billing_address(),
        }
        return cardholder_ref

    async def issue_card(self, cardholder_ref: str, spending_limit_cents: int, currency: str) -> IssuedCard:
        if self.fail_issuance:
            raise CardProvisioningError("Mock issuer refused to create the card")
        if cardholder_ref not in self.cardholders:
            raise CardProvisioningError(f"Unknown cardholder: {cardholder_ref}")

        now = datetime.now(timezone.utc)
        number = "4000" + "".join(str(secrets.randbelow(10)) for _ in range(12))
        card_ref = f"ic_mock_{uuid.uuid4().hex[:12]}"
        self.cards[card_ref] = {
            "cardholder": cardholder_ref,
            "number": number,
            "cvc": f"{secrets.randbelow(1000):03d}",
            "spending_limit_cents": spending_limit_cents,
            "currency": currency,
            "status": CardStatus.ACTIVE,
        }
        return IssuedCard(card_ref=card_ref, last4=number[-4:], exp_month=now.month, exp_year=now.year + 3)

    async def retrieve_sensitive_fields(self, card_ref: str) -> SensitiveCardFields:
        card = self.cards.get(card_ref)
        if card is None:
            raise CardProvisioningError(f"Card not found: {card_ref}")
        # Number and CVC can be read once; nothing keeps them afterwards
        number = card.pop("number", None)
        cvc = card.pop("cvc", None)
        if number is None or cvc is None:
            raise CardProvisioningError(f"Card details for {card_ref} were already retrieved")
        return SensitiveCardFields(number=number, cvc=cvc)

    async def set_card_status(self, card_ref: str, status: CardStatus) -> None:
        card = self.cards.get(card_ref)
        if card is None:
            raise CardProvisioningError(f"Card not found: {card_ref}")
        card["status"] = status
