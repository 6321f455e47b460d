"""
Processor A (Mercado Pago) notification handler.

The notification only carries the payment id; the payment detail is fetched
from the processor, matched to an intent (fallback tier allowed on this legacy
path) and settled. process_payment() is also the reconciliation sweep's entry point.
"""
import logging
from typing import Any

from sqlalchemy.orm import Session

from paygate.models.purchase_intent import INTENT_APPROVED, INTENT_CANCELLED, INTENT_REJECTED
from paygate.services.confirmation.service import PurchaseConfirmationService
from paygate.services.matching.service import MatchQuery
from paygate.services.notifications.service import KIND_DOWNLOAD, FulfillmentNotifier
from paygate.services.processors.mercadopago import MercadoPagoClient, MercadoPagoPayment
from paygate.services.webhooks.base import OUTCOME_PROCESSED, BaseWebhookHandler, WebhookOutcome
from paygate.schemas.webhooks import parse_mercadopago_notification

logger = logging.getLogger(__name__)

# Processor status -> intent status
STATUS_MAP = {
    "approved": INTENT_APPROVED,
    "rejected": INTENT_REJECTED,
    "cancelled": INTENT_CANCELLED,
}
# Still in progress at the processor: intent stays pending, updated_at is rewritten.
IN_PROGRESS_STATUSES = ("pending", "in_process", "authorized", "in_mediation")


class MercadoPagoWebhookHandler(BaseWebhookHandler):
    processor = "mercadopago"
    notification_kind = KIND_DOWNLOAD

    def __init__(
        self,
        db: Session,
        client: MercadoPagoClient | None = None,
        notifier: FulfillmentNotifier | None = None,
        confirmation: PurchaseConfirmationService | None = None,
    ) -> None:
        super().__init__(db, notifier=notifier, confirmation=confirmation)
        self.client = client or MercadoPagoClient()

    def handle(self, payload: Any) -> WebhookOutcome:
        event = parse_mercadopago_notification(payload)
        if event is None:
            event_type = payload.get("type") or payload.get("topic")
            return self.ignored("unsupported_event", event=event_type)

        logger.info(
            "webhook_received",
            extra={"step": "receive", "processor": self.processor, "payment_id": event.payment_id},
        )
        payment = self.client.get_payment(event.payment_id)
        outcome = self.process_payment(payment, allow_fallback=True)
        self.db.commit()
        self.dispatch(outcome)
        return outcome

    def process_payment(self, payment: MercadoPagoPayment, *, allow_fallback: bool) -> WebhookOutcome:
        """Match and settle one payment. Flushes, never commits."""
        logger.info(
            "payment_fetched",
            extra={
                "step": "fetch_payment",
                "processor": self.processor,
                "payment_id": payment.id,
                "status": payment.status,
                "preference_id": payment.preference_id,
                "external_reference": payment.external_reference,
            },
        )
        in_progress = payment.status in IN_PROGRESS_STATUSES
        target = STATUS_MAP.get(payment.status)
        if target is None and not in_progress:
            # refunded / charged_back / unknown: not handled here
            return self.ignored("unhandled_payment_status", payment_id=payment.id, status=payment.status)

        query = MatchQuery(
            processor_reference_id=payment.preference_id,
            external_reference=payment.external_reference,
            payer_email=payment.payer.email,
            processor_payment_id=payment.id,
        )
        # The fallback tier is only worth its risk for a settled payment.
        match = self.matcher.match(query, processor=self.processor, allow_fallback=allow_fallback and not in_progress)
        if not match.found:
            return self.order_not_found(query, payment.id)

        intent = match.intent
        if in_progress:
            self.store.touch(intent)
            self._count(OUTCOME_PROCESSED)
            return WebhookOutcome(status=OUTCOME_PROCESSED, intent_id=intent.id, intent_status=intent.status)

        return self.settle(
            intent,
            target,
            payer_email=payment.payer.email,
            payment_id=payment.id,
            full_name=payment.payer.full_name,
        )
