"""
PurchaseConfirmationService: the single "confirm purchase" operation.

Producers: both webhook handlers, the access verification endpoint and the
reconciliation sweep. All of them confirm an approved purchase intent through
here, so every path converges on the same account, profile and (one)
subscription record per intent.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from paygate.models.purchase_intent import INTENT_APPROVED, PurchaseIntent
from paygate.services.provisioning.service import AccountProvisioner, ProvisionRequest
from paygate.utils.email import pick_known_email

logger = logging.getLogger(__name__)

REASON_NO_EMAIL = "no_known_email"


@dataclass
class ConfirmationResult:
    provisioned: bool
    account_id: str | None = None
    created: bool = False
    partial: bool = False
    reason: str | None = None


class PurchaseConfirmationService:
    def __init__(self, db: Session, provisioner: AccountProvisioner | None = None):
        self.db = db
        self.provisioner = provisioner or AccountProvisioner(db)

    def confirm(
        self,
        intent: PurchaseIntent,
        *,
        source: str,
        payer_email: str | None = None,
        full_name: str | None = None,
        processor_order_id: str | None = None,
    ) -> ConfirmationResult:
        if intent.status != INTENT_APPROVED:
            raise ValueError(f"Intent {intent.id} is {intent.status}, only approved intents are confirmed")

        email = pick_known_email(payer_email, intent.email)
        if email is None:
            # Masked payer and nothing stored: nobody to provision yet.
            logger.warning(
                "provisioning_deferred",
                extra={"step": "confirm", "intent_id": intent.id, "source": source, "reason": REASON_NO_EMAIL},
            )
            return ConfirmationResult(provisioned=False, reason=REASON_NO_EMAIL)

        result = self.provisioner.provision(
            ProvisionRequest(
                email=email,
                plan_type=intent.plan_type,
                amount=intent.amount,
                currency=intent.currency,
                full_name=full_name,
                purchase_intent_id=intent.id,
                processor=intent.processor,
                processor_order_id=processor_order_id or intent.processor_payment_id,
                source=source,
            )
        )
        return ConfirmationResult(
            provisioned=True,
            account_id=result.account_id,
            created=result.created,
            partial=result.partial,
        )
