"""
Mercado Pago REST client (processor A), httpx sync client behind a circuit breaker.

Used by the webhook handler (payment lookup), checkout (preference creation)
and the reconciliation sweep (payment search by external_reference).
"""
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from paygate.core.config import settings
from paygate.services.processors.base import ProcessorClient

PROCESSOR_NAME = "mercadopago"


class MercadoPagoPayer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None

    @property
    def full_name(self) -> str | None:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or None


class MercadoPagoPayment(BaseModel):
    """The subset of a payment resource the reconciliation engine reads."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    status: str
    payer: MercadoPagoPayer = Field(default_factory=MercadoPagoPayer)
    preference_id: str | None = None
    external_reference: str | None = None
    transaction_amount: float | None = None
    currency_id: str | None = None


class MercadoPagoPreference(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    init_point: str | None = None
    sandbox_init_point: str | None = None


class MercadoPagoClient(ProcessorClient):
    processor_name = PROCESSOR_NAME
    display_name = "Mercado Pago"

    def __init__(
        self,
        access_token: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(
            access_token if access_token is not None else settings.mercadopago_access_token,
            api_url or settings.mercadopago_api_url,
            timeout or settings.http_client_timeout,
        )

    # ------------------------------------------------------------------
    # API
    # ------------------------------------------------------------------

    def get_payment(self, payment_id: str) -> MercadoPagoPayment:
        data = self._request("get_payment", "GET", f"/v1/payments/{payment_id}")
        return self.parse(MercadoPagoPayment, data)

    def search_payments(self, external_reference: str) -> list[MercadoPagoPayment]:
        data = self._request(
            "search_payments",
            "GET",
            "/v1/payments/search",
            params={"external_reference": external_reference, "sort": "date_created", "criteria": "desc"},
        )
        return [self.parse(MercadoPagoPayment, item) for item in data.get("results") or []]

    def create_preference(
        self,
        *,
        title: str,
        amount: float,
        currency: str,
        payer_email: str | None,
        external_reference: str,
        back_urls: dict[str, str] | None = None,
        notification_url: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MercadoPagoPreference:
        body: dict[str, Any] = {
            "items": [
                {
                    "title": title,
                    "quantity": 1,
                    "currency_id": currency,
                    "unit_price": amount,
                }
            ],
            "payment_methods": {"installments": 1},
            "external_reference": external_reference,
            "statement_descriptor": settings.mercadopago_statement_descriptor,
            "metadata": metadata or {},
        }
        if payer_email:
            body["payer"] = {"email": payer_email}
        if back_urls:
            body["back_urls"] = back_urls
            body["auto_return"] = "approved"
        if notification_url:
            body["notification_url"] = notification_url
        data = self._request("create_preference", "POST", "/checkout/preferences", json=body)
        return self.parse(MercadoPagoPreference, data)

