"""
Processor notification endpoints. Not found / ignored answer 200 so the
processor stops redelivering; failures answer 500 so it retries.
"""
from typing import Any

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from paygate.api.deps import get_mercadopago_client, get_notifier
from paygate.db.session import get_db
from paygate.services.notifications.service import FulfillmentNotifier
from paygate.services.processors.mercadopago import MercadoPagoClient
from paygate.services.webhooks.kiwify import KiwifyWebhookHandler
from paygate.services.webhooks.mercadopago import MercadoPagoWebhookHandler

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/mercadopago")
def mercadopago_webhook(
    payload: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    client: MercadoPagoClient = Depends(get_mercadopago_client),
    notifier: FulfillmentNotifier = Depends(get_notifier),
) -> dict:
    handler = MercadoPagoWebhookHandler(db, client=client, notifier=notifier)
    return handler.handle(payload).to_response()


@router.post("/kiwify")
def kiwify_webhook(
    payload: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    notifier: FulfillmentNotifier = Depends(get_notifier),
) -> dict:
    handler = KiwifyWebhookHandler(db, notifier=notifier)
    return handler.handle(payload).to_response()
