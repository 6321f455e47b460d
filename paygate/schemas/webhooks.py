"""
Processor notification payloads. Parsed and validated before any mutation:
events we do not handle parse to None (answered as "ignored"), handled events
with a bad shape raise ValidationError (400).
"""
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaError

from paygate.core.errors import ValidationError

MERCADOPAGO_PAYMENT_EVENTS = ("payment",)
KIWIFY_SETTLEMENT_EVENTS = ("order.paid", "order.approved")


def _schema_error(processor: str, exc: SchemaError) -> ValidationError:
    fields = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
    return ValidationError(
        f"Invalid {processor} notification: {', '.join(fields)}",
        context={"processor": processor, "fields": fields},
    )


# ------------------------------------------------------------------
# Processor A: Mercado Pago
# ------------------------------------------------------------------

class MercadoPagoPaymentRef(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str = Field(min_length=1)


class MercadoPagoPaymentEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    data: MercadoPagoPaymentRef

    @property
    def payment_id(self) -> str:
        return self.data.id


def parse_mercadopago_notification(payload: Any) -> MercadoPagoPaymentEvent | None:
    if not isinstance(payload, dict):
        raise ValidationError("Notification body must be a JSON object", context={"processor": "mercadopago"})
    # "topic" is the older IPN field name for the same value
    event_type = payload.get("type") or payload.get("topic")
    if event_type not in MERCADOPAGO_PAYMENT_EVENTS:
        return None
    try:
        return MercadoPagoPaymentEvent.model_validate({**payload, "type": event_type})
    except SchemaError as e:
        raise _schema_error("mercadopago", e) from e


# ------------------------------------------------------------------
# Processor B: Kiwify
# ------------------------------------------------------------------

class KiwifyCustomer(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str | None = None
    email: str = Field(min_length=3)
    name: str | None = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip()
        if "@" not in v:
            raise ValueError("customer email must be an address")
        return v


class KiwifyProduct(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str | None = None
    name: str | None = None


class KiwifyOrder(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str = Field(min_length=1)
    customer: KiwifyCustomer
    product: KiwifyProduct = Field(default_factory=KiwifyProduct)
    amount: float | None = None
    created_at: str | None = None


class KiwifyOrderEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event: str
    data: KiwifyOrder


def parse_kiwify_notification(payload: Any) -> KiwifyOrderEvent | None:
    if not isinstance(payload, dict):
        raise ValidationError("Notification body must be a JSON object", context={"processor": "kiwify"})
    if payload.get("event") not in KIWIFY_SETTLEMENT_EVENTS:
        return None
    try:
        return KiwifyOrderEvent.model_validate(payload)
    except SchemaError as e:
        raise _schema_error("kiwify", e) from e
