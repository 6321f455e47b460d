"""
KiwifyPurchaseService: processor B purchase lookup by customer email.

- Asks Kiwify for the customer's orders; a paid or approved order is a valid
  purchase and refreshes the customer's kiwify_customers row.
- Without an API key, or when the API call fails, answers from the locally
  approved intents instead.
- recover_intent() is the access-verification hook: it records a paid order as
  an approved intent when its notification never reached us.
"""
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from paygate.billing.config import get_default_currency, get_plan_price
from paygate.core.config import settings
from paygate.core.errors import UpstreamError, ValidationError
from paygate.models.kiwify_customer import KiwifyCustomer
from paygate.models.purchase_intent import INTENT_APPROVED, PurchaseIntent
from paygate.services.matching.service import MatchQuery, OrderMatcher
from paygate.services.processors.kiwify import PROCESSOR_NAME, KiwifyApiOrder, KiwifyClient
from paygate.services.purchase_intents.service import PurchaseIntentStore

logger = logging.getLogger(__name__)

SOURCE_KIWIFY = "kiwify"
SOURCE_LOCAL = "local_orders"
SOURCE_LOCAL_FALLBACK = "local_orders_fallback"


@dataclass
class KiwifyPurchaseCheck:
    has_valid_purchase: bool
    email: str
    source: str
    order: KiwifyApiOrder | None = None

    def to_response(self) -> dict[str, Any]:
        if not self.has_valid_purchase:
            return {"hasValidPurchase": False, "customerData": None}
        customer: dict[str, Any] = {
            "email": self.email,
            "name": self.email.split("@")[0],
            "source": self.source,
        }
        if self.order is not None:
            customer.update(
                id=self.order.customer.id,
                email=self.order.customer.email or self.email,
                name=self.order.customer.name or customer["name"],
                order_id=self.order.id,
                product_id=self.order.product.id,
            )
        return {"hasValidPurchase": True, "customerData": customer}


def record_kiwify_order(
    store: PurchaseIntentStore,
    *,
    order_id: str,
    email: str | None,
    amount: float | None,
    product_name: str | None,
) -> PurchaseIntent:
    """Kiwify sells on its own checkout: an order with no intent of ours becomes a new pending intent."""
    plan_type = settings.kiwify_default_plan
    intent = store.create_intent(
        processor=PROCESSOR_NAME,
        amount=amount if amount is not None else get_plan_price(plan_type),
        currency=get_default_currency(),
        plan_type=plan_type,
        email=email,
        processor_reference_id=order_id,
        product_name=product_name or settings.product_name,
    )
    logger.info(
        "kiwify_order_recorded",
        extra={"step": "record_order", "intent_id": intent.id, "payment_id": order_id},
    )
    return intent


class KiwifyPurchaseService:
    def __init__(self, db: Session, client: KiwifyClient | None = None) -> None:
        self.db = db
        self.client = client or KiwifyClient()
        self.store = PurchaseIntentStore(db)

    def verify(self, email: str | None) -> KiwifyPurchaseCheck:
        email = (email or "").strip()
        if not email:
            raise ValidationError("Email is required")

        if not self.client.is_available():
            logger.info("kiwify_lookup_skipped", extra={"email": email, "reason": "api_key_not_configured"})
            return self._local_check(email, SOURCE_LOCAL)
        try:
            order = self.find_paid_order(email)
        except UpstreamError as e:
            logger.warning("kiwify_lookup_failed", extra={"email": email, "error": e.message})
            return self._local_check(email, SOURCE_LOCAL_FALLBACK)
        return KiwifyPurchaseCheck(
            has_valid_purchase=order is not None,
            email=email,
            source=SOURCE_KIWIFY,
            order=order,
        )

    def find_paid_order(self, email: str) -> KiwifyApiOrder | None:
        """Latest paid order for the email; refreshes the customer row. Raises UpstreamError."""
        paid = [order for order in self.client.list_orders(email) if order.is_paid]
        logger.info(
            "kiwify_lookup_result",
            extra={"step": "lookup", "processor": PROCESSOR_NAME, "email": email, "candidates": len(paid)},
        )
        if not paid:
            return None
        latest = paid[0]
        self._upsert_customer(email, latest)
        return latest

    def recover_intent(self, email: str) -> PurchaseIntent | None:
        """
        Approved intent for a paid Kiwify order of this email, recorded if needed.
        None when Kiwify has no paid order for the email or cannot be asked.
        """
        if not self.client.is_available():
            return None
        try:
            order = self.find_paid_order(email)
        except UpstreamError as e:
            logger.warning("kiwify_lookup_failed", extra={"email": email, "error": e.message})
            return None
        if order is None:
            return None

        match = OrderMatcher(self.db, store=self.store).match(
            MatchQuery(processor_reference_id=order.id, processor_payment_id=order.id, payer_email=email),
            processor=PROCESSOR_NAME,
        )
        intent = match.intent if match.found else record_kiwify_order(
            self.store,
            order_id=order.id,
            email=email,
            amount=order.amount,
            product_name=order.product.name,
        )
        result = self.store.transition(
            intent,
            INTENT_APPROVED,
            email=self.store.resolve_email(intent, email),
            processor_payment_id=order.id,
        )
        if not result.applied:
            logger.warning(
                "kiwify_recovery_skipped",
                extra={"intent_id": intent.id, "payment_id": order.id, "reason": result.reason},
            )
            return None
        logger.info(
            "kiwify_order_recovered",
            extra={"step": "recover", "intent_id": intent.id, "payment_id": order.id, "email": email},
        )
        return result.intent

    def _local_check(self, email: str, source: str) -> KiwifyPurchaseCheck:
        intents = self.store.find_approved_for_email(email)
        return KiwifyPurchaseCheck(has_valid_purchase=bool(intents), email=email, source=source)

    def _upsert_customer(self, email: str, order: KiwifyApiOrder) -> KiwifyCustomer:
        customer_email = order.customer.email or email
        customer = self.db.query(KiwifyCustomer).filter(KiwifyCustomer.email == customer_email).one_or_none()
        if customer is None:
            try:
                with self.db.begin_nested():
                    customer = KiwifyCustomer(email=customer_email)
                    self.db.add(customer)
            except IntegrityError:
                customer = self.db.query(KiwifyCustomer).filter(KiwifyCustomer.email == customer_email).one()
        customer.kiwify_customer_id = order.customer.id
        customer.name = order.customer.name or email.split("@")[0]
        customer.last_order_id = order.id
        customer.last_purchase_date = order.created_at
        customer.status = "active"
        self.db.flush()
        return customer
