"""
AccessVerificationService: "do I have access now" for a customer who just paid.

Looks for an approved purchase intent for the email (recent window first, then
all time, then a paid Kiwify order whose notification never arrived),
confirms the most recently updated one through the same path as the webhooks
and issues a fresh session. No approved intent and no paid order: no side effects.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from paygate.billing.config import get_access_recency_window
from paygate.core.errors import UpstreamError, ValidationError
from paygate.services.confirmation.service import PurchaseConfirmationService
from paygate.services.identity.base import IdentityProvider, SessionTokens
from paygate.services.identity.local import get_identity_provider
from paygate.services.kiwify_purchases.service import KiwifyPurchaseService
from paygate.services.provisioning.service import AccountProvisioner
from paygate.services.purchase_intents.service import PurchaseIntentStore
from paygate.utils.metrics import access_checks_total

logger = logging.getLogger(__name__)

MESSAGE_NO_PAYMENT = "Nenhum pagamento aprovado encontrado para este email"
MESSAGE_GRANTED = "Pagamento confirmado, acesso liberado"


@dataclass
class AccessVerification:
    has_valid_payment: bool
    email: str
    message: str
    account_id: str | None = None
    tokens: SessionTokens | None = None

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "hasValidPayment": self.has_valid_payment,
            "email": self.email,
            "message": self.message,
        }
        if self.tokens is not None:
            body["access_token"] = self.tokens.access_token
            body["refresh_token"] = self.tokens.refresh_token
            body["user_id"] = self.account_id
        return body


class AccessVerificationService:
    def __init__(
        self,
        db: Session,
        identity: IdentityProvider | None = None,
        confirmation: PurchaseConfirmationService | None = None,
        kiwify: KiwifyPurchaseService | None = None,
    ) -> None:
        self.db = db
        self.store = PurchaseIntentStore(db)
        self.identity = identity or get_identity_provider(db)
        self.confirmation = confirmation or PurchaseConfirmationService(
            db, provisioner=AccountProvisioner(db, identity=self.identity)
        )
        self.kiwify = kiwify or KiwifyPurchaseService(db)

    def verify(self, email: str | None) -> AccessVerification:
        email = (email or "").strip()
        if not email:
            raise ValidationError("Email is required")

        since = datetime.now(timezone.utc) - get_access_recency_window()
        intents = self.store.find_approved_for_email(email, updated_since=since)
        lookup = "recent"
        if not intents:
            intents = self.store.find_approved_for_email(email)
            lookup = "all_time"
        if not intents:
            recovered = self.kiwify.recover_intent(email)
            if recovered is not None:
                intents = [recovered]
                lookup = "kiwify"

        if not intents:
            access_checks_total.labels(result="denied").inc()
            logger.info("access_denied", extra={"step": "lookup", "email": email, "reason": "no_approved_intent"})
            return AccessVerification(has_valid_payment=False, email=email, message=MESSAGE_NO_PAYMENT)

        intent = intents[0]
        logger.info(
            "access_payment_found",
            extra={"step": "lookup", "email": email, "intent_id": intent.id, "source": lookup},
        )
        confirmation = self.confirmation.confirm(intent, source="verify_access", payer_email=email)
        if not confirmation.provisioned or confirmation.account_id is None:
            raise UpstreamError("Could not provision account", context={"step": "confirm", "intent_id": intent.id})
        self.db.commit()

        tokens = self.identity.issue_session(confirmation.account_id)
        access_checks_total.labels(result="granted").inc()
        logger.info(
            "access_granted",
            extra={
                "step": "issue_session",
                "email": email,
                "intent_id": intent.id,
                "account_id": confirmation.account_id,
                "status": "partial" if confirmation.partial else "complete",
            },
        )
        return AccessVerification(
            has_valid_payment=True,
            email=email,
            message=MESSAGE_GRANTED,
            account_id=confirmation.account_id,
            tokens=tokens,
        )
