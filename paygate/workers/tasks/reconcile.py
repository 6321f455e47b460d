"""
Celery beat task: reconcile pending processor A intents whose notification was lost.
Each recent pending intent with a correlation token is looked up at the processor
by external_reference; the payments found go through the webhook processing path
(no fallback tier). Errors of one intent are logged and do not stop the sweep.
"""
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from paygate.core.celery_app import celery_app
from paygate.core.config import settings
from paygate.core.errors import PaygateError
from paygate.db.session import SessionLocal
from paygate.models.purchase_intent import INTENT_APPROVED
from paygate.services.processors.mercadopago import MercadoPagoClient
from paygate.services.webhooks.mercadopago import MercadoPagoWebhookHandler

logger = logging.getLogger(__name__)


def reconcile_pending(db: Session, client: MercadoPagoClient, handler: MercadoPagoWebhookHandler | None = None) -> dict:
    handler = handler or MercadoPagoWebhookHandler(db, client=client)
    since = datetime.now(timezone.utc) - timedelta(hours=settings.reconcile_lookback_hours)
    intents = handler.store.list_pending_for_reconcile("mercadopago", created_since=since)

    checked = approved = errors = 0
    for intent in intents:
        checked += 1
        intent_id = intent.id
        try:
            payments = client.search_payments(intent.external_reference)
            outcomes = [handler.process_payment(payment, allow_fallback=False) for payment in payments]
            db.commit()
        except (PaygateError, SQLAlchemyError) as e:
            db.rollback()
            errors += 1
            logger.error(
                "reconcile_intent_failed",
                extra={"step": "reconcile", "intent_id": intent_id, "error": str(e)},
            )
            continue

        for outcome in outcomes:
            handler.dispatch(outcome)
        db.refresh(intent)
        if intent.status == INTENT_APPROVED:
            approved += 1
            logger.info("reconcile_intent_approved", extra={"step": "reconcile", "intent_id": intent_id})

    return {"checked": checked, "approved": approved, "errors": errors}


@celery_app.task(
    name="paygate.workers.tasks.reconcile.reconcile_pending_intents",
    time_limit=600,
    soft_time_limit=570,
)
def reconcile_pending_intents() -> dict:
    client = MercadoPagoClient()
    if not client.is_available():
        logger.info("reconcile_skipped", extra={"reason": "mercadopago_not_configured"})
        return {"checked": 0, "approved": 0, "errors": 0}

    db = SessionLocal()
    try:
        result = reconcile_pending(db, client)
        logger.info("reconcile_completed", extra=result)
        return result
    finally:
        client.close()
        db.close()
