"""
Kiwify REST client (processor B). Only the order lookup by customer email is
used: purchase verification when the order notification never arrived.
"""
from pydantic import BaseModel, ConfigDict, Field

from paygate.core.config import settings
from paygate.services.processors.base import ProcessorClient

PROCESSOR_NAME = "kiwify"

PAID_ORDER_STATUSES = ("paid", "approved")


class KiwifyApiCustomer(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str | None = None
    email: str | None = None
    name: str | None = None


class KiwifyApiProduct(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str | None = None
    name: str | None = None


class KiwifyApiOrder(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    status: str
    customer: KiwifyApiCustomer = Field(default_factory=KiwifyApiCustomer)
    product: KiwifyApiProduct = Field(default_factory=KiwifyApiProduct)
    amount: float | None = None
    created_at: str | None = None

    @property
    def is_paid(self) -> bool:
        return self.status in PAID_ORDER_STATUSES


class KiwifyClient(ProcessorClient):
    processor_name = PROCESSOR_NAME
    display_name = "Kiwify"

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(
            api_key if api_key is not None else settings.kiwify_api_key,
            api_url or settings.kiwify_api_url,
            timeout or settings.http_client_timeout,
        )

    def list_orders(self, email: str) -> list[KiwifyApiOrder]:
        """Orders of a customer, newest first as returned by Kiwify."""
        data = self._request("list_orders", "GET", "/v1/orders", params={"email": email})
        return [self.parse(KiwifyApiOrder, item) for item in data.get("data") or []]
