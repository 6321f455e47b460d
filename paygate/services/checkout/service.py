"""
CheckoutService: opens a processor A checkout for a plan.

The intent is created first with a fresh correlation token; the preference carries
the token as external_reference so the payment notification matches on tier 1.
A failed preference call cancels the intent so it never attracts a fallback match.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from paygate.billing.config import get_default_currency, get_plan_price
from paygate.core.config import settings
from paygate.core.errors import UpstreamError, ValidationError
from paygate.models.purchase_intent import INTENT_CANCELLED
from paygate.services.processors.mercadopago import MercadoPagoClient
from paygate.services.purchase_intents.service import PurchaseIntentStore
from paygate.utils.email import is_real_email

logger = logging.getLogger(__name__)


@dataclass
class CheckoutSession:
    intent_id: str
    preference_id: str
    init_point: str | None
    external_reference: str


class CheckoutService:
    def __init__(self, db: Session, client: MercadoPagoClient | None = None) -> None:
        self.db = db
        self.store = PurchaseIntentStore(db)
        self.client = client or MercadoPagoClient()

    def start(self, plan_type: str, email: str | None = None) -> CheckoutSession:
        if email is not None and not is_real_email(email):
            raise ValidationError("A valid email is required")
        try:
            amount = get_plan_price(plan_type)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        external_reference = self.store.new_external_reference()
        intent = self.store.create_intent(
            processor="mercadopago",
            amount=amount,
            currency=get_default_currency(),
            plan_type=plan_type,
            email=email,
            external_reference=external_reference,
            product_name=settings.product_name,
        )
        # Committed before the processor call: the payment notification can
        # arrive before this request returns.
        self.db.commit()

        try:
            preference = self.client.create_preference(
                title=settings.product_name,
                amount=amount,
                currency=intent.currency,
                payer_email=email,
                external_reference=external_reference,
                back_urls=self._back_urls(),
                notification_url=f"{settings.public_base_url.rstrip('/')}/webhooks/mercadopago",
                metadata={"intent_id": intent.id, "plan_type": plan_type},
            )
        except UpstreamError:
            self.store.transition(intent, INTENT_CANCELLED)
            self.db.commit()
            logger.error(
                "checkout_preference_failed",
                extra={"step": "create_preference", "intent_id": intent.id, "external_reference": external_reference},
            )
            raise

        self.store.set_processor_reference(intent, preference.id)
        self.db.commit()
        logger.info(
            "checkout_started",
            extra={
                "step": "create_preference",
                "intent_id": intent.id,
                "preference_id": preference.id,
                "external_reference": external_reference,
            },
        )
        return CheckoutSession(
            intent_id=intent.id,
            preference_id=preference.id,
            init_point=preference.init_point,
            external_reference=external_reference,
        )

    @staticmethod
    def _back_urls() -> dict[str, str] | None:
        urls = {
            "success": settings.checkout_success_url,
            "failure": settings.checkout_failure_url,
            "pending": settings.checkout_pending_url,
        }
        urls = {k: v for k, v in urls.items() if v}
        return urls or None
