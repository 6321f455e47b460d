"""
FulfillmentNotifier: requests the post-purchase email without blocking the caller.
Enqueue failures are logged and counted, never raised: the purchase is already
committed when the notification is requested.
"""
import logging
from dataclasses import dataclass

from paygate.utils.email import is_masked_email, is_real_email
from paygate.utils.metrics import fulfillment_notifications_total

logger = logging.getLogger(__name__)

KIND_DOWNLOAD = "download"  # processor A checkout: app download link
KIND_WELCOME = "welcome"    # processor B: account is active


@dataclass(frozen=True)
class FulfillmentRequest:
    kind: str
    email: str
    intent_id: str
    full_name: str | None = None


class FulfillmentNotifier:
    def request(self, notification: FulfillmentRequest) -> bool:
        """True when the notification was queued."""
        if is_masked_email(notification.email) or not is_real_email(notification.email):
            fulfillment_notifications_total.labels(kind=notification.kind, status="skipped_masked").inc()
            logger.info(
                "fulfillment_notification_skipped",
                extra={"intent_id": notification.intent_id, "reason": "masked_email"},
            )
            return False

        from paygate.workers.tasks.fulfillment import send_fulfillment_email

        try:
            send_fulfillment_email.delay(
                notification.kind,
                notification.email,
                notification.intent_id,
                notification.full_name,
            )
        except Exception as e:
            fulfillment_notifications_total.labels(kind=notification.kind, status="enqueue_failed").inc()
            logger.error(
                "fulfillment_notification_enqueue_failed",
                extra={"intent_id": notification.intent_id, "email": notification.email, "error": str(e)},
            )
            return False

        fulfillment_notifications_total.labels(kind=notification.kind, status="queued").inc()
        logger.info(
            "fulfillment_notification_queued",
            extra={"intent_id": notification.intent_id, "email": notification.email, "event": notification.kind},
        )
        return True
