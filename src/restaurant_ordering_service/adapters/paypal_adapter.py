"""PayPal payment provider.

Uses the PayPal Orders v2 REST API over httpx with the OAuth 2.0 client
credentials flow. PayPal is a redirect method: the "client secret" handed
to the customer is the approval URL, and an approved order is captured the
next time it is retrieved so that verification settles it.
"""

import logging
from decimal import Decimal
from typing import Any

import httpx

from restaurant_ordering_service.adapters.base_adapter import (
    PaymentProvider,
    ProviderIntent,
    ProviderRefund,
    ProviderStatus,
)
from restaurant_ordering_service.services.exceptions import (
    PaymentProviderError,
    PaymentProviderTimeout,
)

logger = logging.getLogger(__name__)

_ORDER_STATUSES = {
    "COMPLETED": ProviderStatus.SUCCEEDED,
    "VOIDED": ProviderStatus.CANCELED,
}

_CAPTURE_STATUSES = {
    "COMPLETED": ProviderStatus.SUCCEEDED,
    "PENDING": ProviderStatus.PROCESSING,
    "DECLINED": ProviderStatus.FAILED,
    "FAILED": ProviderStatus.FAILED,
}

_REFUND_STATUSES = {
    "COMPLETED": ProviderStatus.SUCCEEDED,
    "PENDING": ProviderStatus.PROCESSING,
    "FAILED": ProviderStatus.FAILED,
    "CANCELLED": ProviderStatus.CANCELED,
}


def _to_major_units(amount: int) -> str:
    return f"{Decimal(amount) / 100:.2f}"


def _to_minor_units(value: str) -> int:
    return int(Decimal(value) * 100)


class PayPalProvider(PaymentProvider):
    """Adapter for the PayPal Orders v2 API."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        environment: str = "sandbox",
        frontend_url: str = "http://localhost:3000",
        timeout_seconds: float = 10.0,
    ) -> None:
        """Initialize PayPal provider.

        Args:
            client_id: PayPal REST app client ID
            client_secret: PayPal REST app secret
            environment: API environment ('sandbox' or 'production')
            frontend_url: Base URL for the approval return and cancel pages
            timeout_seconds: Upper bound on each PayPal operation
        """
        super().__init__("paypal", timeout_seconds)
        self.client_id = client_id
        self.client_secret = client_secret
        self.environment = environment
        self.frontend_url = frontend_url.rstrip("/")

        if environment == "production":
            self.base_url = "https://api-m.paypal.com"
        else:
            self.base_url = "https://api-m.sandbox.paypal.com"

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        response = await client.post(
            f"{self.base_url}/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
        )
        if response.status_code != 200:
            logger.error(f"PayPal auth failed: {response.status_code}")
            raise PaymentProviderError("Payment provider authentication failed", retryable=False)
        return response.json()["access_token"]

    async def _request(self, method: str, path: str, json: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send one authenticated request.

        Raises:
            PaymentProviderError: On non-2xx responses or network failures
            PaymentProviderTimeout: If httpx times out
        """
        try:
            async with httpx.AsyncClient() as client:
                token = await self._get_access_token(client)
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    json=json,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.TimeoutException as e:
            logger.error(f"PayPal {method} {path} timed out: {e}")
            raise PaymentProviderTimeout("Payment provider did not respond in time") from e
        except httpx.HTTPError as e:
            logger.error(f"PayPal {method} {path} failed: {e}")
            raise PaymentProviderError("Payment provider is unreachable") from e

        if response.status_code >= 400:
            logger.error(f"PayPal {method} {path} returned {response.status_code}: {response.text}")
            raise PaymentProviderError(
                f"Payment provider rejected the request ({response.status_code})",
                retryable=response.status_code >= 500 or response.status_code == 429,
            )

        return response.json()

    async def create_intent(
        self,
        amount: int,
        currency: str,
        customer_email: str | None,
        metadata: dict[str, str],
    ) -> ProviderIntent:
        reference = metadata.get("reference", "")
        purchase_unit: dict[str, Any] = {
            "reference_id": reference,
            "custom_id": metadata.get("order_id", ""),
            "amount": {"currency_code": currency.upper(), "value": _to_major_units(amount)},
        }
        if "order_number" in metadata:
            purchase_unit["description"] = f"Order {metadata['order_number']}"

        body: dict[str, Any] = {
            "intent": "CAPTURE",
            "purchase_units": [purchase_unit],
            "application_context": {
                "return_url": f"{self.frontend_url}/payment/success?reference={reference}",
                "cancel_url": f"{self.frontend_url}/payment/cancel?reference={reference}",
                "user_action": "PAY_NOW",
            },
        }
        if customer_email:
            body["payer"] = {"email_address": customer_email}

        order = await self._bounded("create_intent", self._request("POST", "/v2/checkout/orders", body))

        approval_url = next(
            (link["href"] for link in order.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        if approval_url is None:
            logger.error(f"PayPal order {order.get('id')} has no approval link")
            raise PaymentProviderError("Payment provider returned no approval link", retryable=False)

        logger.info(f"PayPal order created: {order['id']}")
        return ProviderIntent(id=order["id"], client_secret=approval_url, status=ProviderStatus.REQUIRES_ACTION)

    async def retrieve_intent(self, intent_id: str) -> ProviderIntent:
        order = await self._bounded(
            "retrieve_intent", self._request("GET", f"/v2/checkout/orders/{intent_id}")
        )
        status = order.get("status", "")

        if status == "APPROVED":
            captured = await self._bounded(
                "capture", self._request("POST", f"/v2/checkout/orders/{intent_id}/capture", {})
            )
            capture = captured["purchase_units"][0]["payments"]["captures"][0]
            logger.info(f"PayPal order {intent_id} captured: {capture['status']}")
            return ProviderIntent(
                id=intent_id,
                client_secret="",
                status=_CAPTURE_STATUSES.get(capture["status"], ProviderStatus.PROCESSING),
            )

        # CREATED, SAVED and PAYER_ACTION_REQUIRED still wait on the buyer
        return ProviderIntent(
            id=intent_id,
            client_secret="",
            status=_ORDER_STATUSES.get(status, ProviderStatus.REQUIRES_ACTION),
        )

    async def create_refund(
        self, transaction_id: str, amount: int, metadata: dict[str, str]
    ) -> ProviderRefund:
        order = await self._bounded(
            "retrieve_intent", self._request("GET", f"/v2/checkout/orders/{transaction_id}")
        )
        try:
            capture = order["purchase_units"][0]["payments"]["captures"][0]
        except (KeyError, IndexError) as e:
            raise PaymentProviderError(
                f"PayPal order {transaction_id} has no capture to refund", retryable=False
            ) from e

        currency = capture["amount"]["currency_code"]
        if amount > _to_minor_units(capture["amount"]["value"]):
            raise PaymentProviderError("Refund exceeds captured amount", retryable=False)

        body: dict[str, Any] = {
            "amount": {"currency_code": currency, "value": _to_major_units(amount)},
            "note_to_payer": f"Refund for {metadata.get('reference', transaction_id)}",
        }
        refund = await self._bounded(
            "create_refund",
            self._request("POST", f"/v2/payments/captures/{capture['id']}/refund", body),
        )
        logger.info(f"PayPal refund {refund['id']} created for capture {capture['id']}: {refund['status']}")

        return ProviderRefund(
            id=refund["id"],
            status=_REFUND_STATUSES.get(refund["status"], ProviderStatus.PROCESSING),
        )
