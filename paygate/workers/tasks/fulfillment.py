"""
Celery task: deliver a fulfillment email through the external mailer.
"""
import logging

import httpx

from paygate.core.celery_app import celery_app
from paygate.core.config import settings
from paygate.services.notifications.service import KIND_DOWNLOAD, KIND_WELCOME
from paygate.utils.email import display_name
from paygate.utils.metrics import fulfillment_notifications_total

logger = logging.getLogger(__name__)

SUBJECTS = {
    KIND_DOWNLOAD: "🎉 Seu {product} está pronto para download!",
    KIND_WELCOME: "🎉 {name}, bem-vindo! Sua conta está ativa",
}


def build_message(kind: str, email: str, full_name: str | None = None) -> dict:
    if kind not in SUBJECTS:
        raise ValueError(f"Unknown notification kind: {kind}")
    name = display_name(email, full_name).split(" ")[0]
    return {
        "to": email,
        "template": kind,
        "subject": SUBJECTS[kind].format(product=settings.product_name, name=name),
        "variables": {"name": name, "email": email, "product": settings.product_name},
    }


@celery_app.task(
    name="paygate.workers.tasks.fulfillment.send_fulfillment_email",
    time_limit=60,
    soft_time_limit=50,
)
def send_fulfillment_email(kind: str, email: str, intent_id: str, full_name: str | None = None) -> dict:
    if not settings.mailer_url:
        logger.warning(
            "fulfillment_email_dropped",
            extra={"intent_id": intent_id, "email": email, "reason": "mailer_not_configured"},
        )
        return {"ok": False, "error": "mailer_not_configured"}

    message = build_message(kind, email, full_name)
    headers = {"Authorization": f"Bearer {settings.mailer_api_key}"} if settings.mailer_api_key else {}
    try:
        with httpx.Client(timeout=settings.http_client_timeout) as client:
            response = client.post(settings.mailer_url, json=message, headers=headers)
            response.raise_for_status()
    except httpx.HTTPError as e:
        fulfillment_notifications_total.labels(kind=kind, status="failed").inc()
        logger.error(
            "fulfillment_email_failed",
            extra={"intent_id": intent_id, "email": email, "error": str(e)},
        )
        return {"ok": False, "error": str(e)}

    fulfillment_notifications_total.labels(kind=kind, status="sent").inc()
    logger.info("fulfillment_email_sent", extra={"intent_id": intent_id, "email": email, "event": kind})
    return {"ok": True, "intent_id": intent_id}
