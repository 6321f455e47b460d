"""
Processor B (Kiwify) notification handler.

Kiwify sells on its own hosted checkout, so most orders have no intent of ours.
When nothing matches, the order is recorded as a new intent and settled like
any other approval. The fallback tier is never used here.
"""
import logging
from typing import Any

from paygate.models.purchase_intent import INTENT_APPROVED
from paygate.schemas.webhooks import parse_kiwify_notification
from paygate.services.kiwify_purchases.service import record_kiwify_order
from paygate.services.matching.service import MatchQuery
from paygate.services.notifications.service import KIND_WELCOME
from paygate.services.webhooks.base import BaseWebhookHandler, WebhookOutcome

logger = logging.getLogger(__name__)


class KiwifyWebhookHandler(BaseWebhookHandler):
    processor = "kiwify"
    notification_kind = KIND_WELCOME

    def handle(self, payload: Any) -> WebhookOutcome:
        event = parse_kiwify_notification(payload)
        if event is None:
            return self.ignored("unsupported_event", event=payload.get("event"))

        order = event.data
        logger.info(
            "webhook_received",
            extra={
                "step": "receive",
                "processor": self.processor,
                "event": event.event,
                "payment_id": order.id,
                "email": order.customer.email,
            },
        )
        query = MatchQuery(
            processor_reference_id=order.id,
            payer_email=order.customer.email,
            processor_payment_id=order.id,
        )
        match = self.matcher.match(query, processor=self.processor, allow_fallback=False)
        intent = match.intent if match.found else record_kiwify_order(
            self.store,
            order_id=order.id,
            email=order.customer.email,
            amount=order.amount,
            product_name=order.product.name,
        )

        outcome = self.settle(
            intent,
            INTENT_APPROVED,
            payer_email=order.customer.email,
            payment_id=order.id,
            full_name=order.customer.name,
        )
        self.db.commit()
        self.dispatch(outcome)
        return outcome
