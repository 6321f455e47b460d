"""
Shared settlement path of the processor webhook handlers.

A handler parses the notification, matches it to a purchase intent and hands the
processor status to settle(). Handlers flush only inside settle(); handle()
commits, then requests the fulfillment notification.
"""
import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from paygate.models.purchase_intent import INTENT_APPROVED, PurchaseIntent
from paygate.services.audit.service import AuditService
from paygate.services.confirmation.service import PurchaseConfirmationService
from paygate.services.matching.service import MatchQuery, OrderMatcher
from paygate.services.notifications.service import FulfillmentNotifier, FulfillmentRequest
from paygate.services.purchase_intents.service import REASON_CONCURRENT, REASON_STALE, PurchaseIntentStore
from paygate.utils.email import is_masked_email, pick_known_email
from paygate.utils.metrics import webhooks_received_total

logger = logging.getLogger(__name__)

OUTCOME_PROCESSED = "processed"
OUTCOME_IGNORED = "ignored"
OUTCOME_NOT_FOUND = "order_not_found"


@dataclass
class WebhookOutcome:
    status: str
    intent_id: str | None = None
    intent_status: str | None = None
    provisioned: bool = False
    duplicate: bool = False
    account_id: str | None = None
    reason: str | None = None
    notification: FulfillmentRequest | None = field(default=None, repr=False)

    def to_response(self) -> dict[str, Any]:
        if self.status != OUTCOME_PROCESSED:
            body: dict[str, Any] = {"status": self.status}
            if self.reason:
                body["reason"] = self.reason
            return body
        body = {
            "status": self.status,
            "intent_id": self.intent_id,
            "intent_status": self.intent_status,
            "provisioned": self.provisioned,
            "duplicate": self.duplicate,
        }
        if self.account_id:
            body["account_id"] = self.account_id
        return body


class BaseWebhookHandler:
    processor: str = ""
    notification_kind: str = ""

    def __init__(
        self,
        db: Session,
        notifier: FulfillmentNotifier | None = None,
        confirmation: PurchaseConfirmationService | None = None,
    ) -> None:
        self.db = db
        self.store = PurchaseIntentStore(db)
        self.matcher = OrderMatcher(db, store=self.store)
        self.notifier = notifier or FulfillmentNotifier()
        self.confirmation = confirmation or PurchaseConfirmationService(db)

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def ignored(self, reason: str, **context: Any) -> WebhookOutcome:
        webhooks_received_total.labels(processor=self.processor, outcome=OUTCOME_IGNORED).inc()
        logger.info(
            "webhook_ignored",
            extra={"step": "filter", "processor": self.processor, "reason": reason, "context": context or None},
        )
        return WebhookOutcome(status=OUTCOME_IGNORED, reason=reason)

    def order_not_found(self, query: MatchQuery, payment_id: str | None) -> WebhookOutcome:
        webhooks_received_total.labels(processor=self.processor, outcome=OUTCOME_NOT_FOUND).inc()
        logger.warning(
            "webhook_order_not_found",
            extra={
                "step": "match",
                "processor": self.processor,
                "payment_id": payment_id,
                "preference_id": query.processor_reference_id,
                "external_reference": query.external_reference,
                "email": query.payer_email,
            },
        )
        AuditService(self.db).log(
            actor_type="processor",
            actor_id=self.processor,
            action="order_not_found",
            entity_type="payment",
            entity_id=payment_id,
            payload={
                "processor_reference_id": query.processor_reference_id,
                "external_reference": query.external_reference,
                "payer_email": query.payer_email,
            },
        )
        return WebhookOutcome(status=OUTCOME_NOT_FOUND)

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def settle(
        self,
        intent: PurchaseIntent,
        new_status: str,
        *,
        payer_email: str | None,
        payment_id: str | None,
        full_name: str | None = None,
    ) -> WebhookOutcome:
        """
        Apply the processor status to the intent. On approval, confirm the purchase
        and prepare the fulfillment notification (sent after commit by the caller).
        One re-read and re-evaluation when a concurrent delivery moved the intent first.
        """
        for _attempt in range(2):
            duplicate = (
                new_status == INTENT_APPROVED
                and intent.status == INTENT_APPROVED
                and payment_id is not None
                and intent.processor_payment_id == payment_id
            )
            email = self.store.resolve_email(intent, payer_email) if new_status == INTENT_APPROVED else None
            result = self.store.transition(
                intent,
                new_status,
                email=email,
                processor_payment_id=payment_id,
            )
            if result.applied:
                break
            if result.reason == REASON_STALE:
                return self.ignored(
                    REASON_STALE,
                    intent_id=intent.id,
                    previous_status=result.previous_status,
                    status=new_status,
                )
            intent = result.intent
        else:
            return self.ignored(REASON_CONCURRENT, intent_id=intent.id, status=new_status)

        outcome = WebhookOutcome(
            status=OUTCOME_PROCESSED,
            intent_id=intent.id,
            intent_status=intent.status,
            duplicate=duplicate,
        )
        logger.info(
            "intent_settled",
            extra={
                "step": "transition",
                "processor": self.processor,
                "intent_id": intent.id,
                "payment_id": payment_id,
                "previous_status": result.previous_status,
                "status": intent.status,
            },
        )

        if new_status != INTENT_APPROVED or duplicate:
            self._count(OUTCOME_PROCESSED if not duplicate else "duplicate")
            return outcome

        confirmation = self.confirmation.confirm(
            intent,
            source=f"webhook:{self.processor}",
            payer_email=payer_email,
            full_name=full_name,
            processor_order_id=payment_id,
        )
        outcome.provisioned = confirmation.provisioned
        outcome.account_id = confirmation.account_id

        known_email = pick_known_email(payer_email, intent.email)
        if known_email and not is_masked_email(payer_email):
            outcome.notification = FulfillmentRequest(
                kind=self.notification_kind,
                email=known_email,
                intent_id=intent.id,
                full_name=full_name,
            )
        elif is_masked_email(payer_email):
            logger.info(
                "fulfillment_notification_skipped",
                extra={"intent_id": intent.id, "processor": self.processor, "reason": "masked_email"},
            )

        self._count(OUTCOME_PROCESSED)
        return outcome

    def dispatch(self, outcome: WebhookOutcome) -> None:
        """Call after commit."""
        if outcome.notification is not None:
            self.notifier.request(outcome.notification)

    def _count(self, outcome: str) -> None:
        webhooks_received_total.labels(processor=self.processor, outcome=outcome).inc()
