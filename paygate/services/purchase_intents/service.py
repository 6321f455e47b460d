"""
PurchaseIntentStore: CRUD over purchase intents and their transition rules.

Ответственности:
- Создание intent с корреляционным токеном (external_reference)
- Поиск по идентификаторам процессора для OrderMatcher
- Переходы статуса: только вперёд, условная запись по ожидаемому статусу
- Правило перезаписи email (только реальный адрес поверх пустого/маскированного)
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from paygate.billing.config import get_correlation_prefix
from paygate.models.purchase_intent import (
    INTENT_APPROVED,
    INTENT_CANCELLED,
    INTENT_PENDING,
    INTENT_REJECTED,
    INTENT_STATUSES,
    PurchaseIntent,
)
from paygate.utils.email import is_masked_email, is_real_email

logger = logging.getLogger(__name__)

# pending < rejected/cancelled < approved. Same status = re-write (updated_at only).
STATUS_RANK = {
    INTENT_PENDING: 0,
    INTENT_REJECTED: 1,
    INTENT_CANCELLED: 1,
    INTENT_APPROVED: 2,
}

REASON_STALE = "stale_transition"
REASON_CONCURRENT = "concurrent_update"


def can_transition(current: str, new: str) -> bool:
    """Forward-only: higher rank, or the same status re-written."""
    if current == new:
        return True
    return STATUS_RANK[new] > STATUS_RANK[current]


@dataclass
class TransitionResult:
    applied: bool
    intent: PurchaseIntent
    previous_status: str
    reason: str | None = None


class PurchaseIntentStore:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @staticmethod
    def new_external_reference() -> str:
        return f"{get_correlation_prefix()}{uuid4().hex}"

    def create_intent(
        self,
        *,
        processor: str,
        amount: float,
        currency: str,
        plan_type: str = "lifetime",
        email: str | None = None,
        external_reference: str | None = None,
        processor_reference_id: str | None = None,
        processor_payment_id: str | None = None,
        product_name: str | None = None,
        status: str = INTENT_PENDING,
    ) -> PurchaseIntent:
        if status not in INTENT_STATUSES:
            raise ValueError(f"Unknown intent status: {status}")
        intent = PurchaseIntent(
            id=str(uuid4()),
            processor=processor,
            email=email,
            external_reference=external_reference,
            processor_reference_id=processor_reference_id,
            processor_payment_id=processor_payment_id,
            plan_type=plan_type,
            product_name=product_name,
            amount=amount,
            currency=currency,
            status=status,
        )
        self.db.add(intent)
        self.db.flush()
        logger.info(
            "intent_created",
            extra={
                "intent_id": intent.id,
                "processor": processor,
                "status": status,
                "external_reference": external_reference,
            },
        )
        return intent

    def set_processor_reference(self, intent: PurchaseIntent, processor_reference_id: str) -> PurchaseIntent:
        intent.processor_reference_id = processor_reference_id
        self.db.add(intent)
        self.db.flush()
        return intent

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, intent_id: str) -> PurchaseIntent | None:
        return self.db.query(PurchaseIntent).filter(PurchaseIntent.id == intent_id).one_or_none()

    def find_by_external_reference(self, external_reference: str) -> PurchaseIntent | None:
        return (
            self.db.query(PurchaseIntent)
            .filter(PurchaseIntent.external_reference == external_reference)
            .one_or_none()
        )

    def find_containing_reference(self, fragment: str) -> list[PurchaseIntent]:
        """Legacy tokens: fragment contained in external_reference or processor_reference_id."""
        return (
            self.db.query(PurchaseIntent)
            .filter(
                or_(
                    PurchaseIntent.external_reference.contains(fragment, autoescape=True),
                    PurchaseIntent.processor_reference_id.contains(fragment, autoescape=True),
                )
            )
            .order_by(PurchaseIntent.created_at.desc())
            .all()
        )

    def find_by_processor_reference(self, processor_reference_id: str) -> list[PurchaseIntent]:
        return (
            self.db.query(PurchaseIntent)
            .filter(PurchaseIntent.processor_reference_id == processor_reference_id)
            .order_by(PurchaseIntent.created_at.desc())
            .all()
        )

    def find_by_payment_id(self, processor_payment_id: str) -> PurchaseIntent | None:
        return (
            self.db.query(PurchaseIntent)
            .filter(PurchaseIntent.processor_payment_id == processor_payment_id)
            .order_by(PurchaseIntent.created_at.desc())
            .first()
        )

    def most_recent_pending(self, processor: str | None = None) -> PurchaseIntent | None:
        query = self.db.query(PurchaseIntent).filter(PurchaseIntent.status == INTENT_PENDING)
        if processor:
            query = query.filter(PurchaseIntent.processor == processor)
        return query.order_by(PurchaseIntent.created_at.desc()).first()

    def find_approved_for_email(self, email: str, updated_since: datetime | None = None) -> list[PurchaseIntent]:
        query = self.db.query(PurchaseIntent).filter(
            PurchaseIntent.email == email,
            PurchaseIntent.status == INTENT_APPROVED,
        )
        if updated_since is not None:
            query = query.filter(PurchaseIntent.updated_at >= updated_since)
        return query.order_by(PurchaseIntent.updated_at.desc()).all()

    def list_pending_for_reconcile(self, processor: str, created_since: datetime) -> list[PurchaseIntent]:
        return (
            self.db.query(PurchaseIntent)
            .filter(
                PurchaseIntent.processor == processor,
                PurchaseIntent.status == INTENT_PENDING,
                PurchaseIntent.external_reference.isnot(None),
                PurchaseIntent.created_at >= created_since,
            )
            .order_by(PurchaseIntent.created_at.asc())
            .all()
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @staticmethod
    def resolve_email(intent: PurchaseIntent, payer_email: str | None) -> str | None:
        """
        New email for the intent, or None to keep the stored one.
        Only a real payer address may replace an empty or masked stored value.
        """
        if not is_real_email(payer_email):
            return None
        if not intent.email or is_masked_email(intent.email):
            return payer_email
        return None

    def transition(
        self,
        intent: PurchaseIntent,
        new_status: str,
        *,
        email: str | None = None,
        processor_payment_id: str | None = None,
        correction: bool = False,
    ) -> TransitionResult:
        """
        Conditional write: UPDATE ... WHERE id = :id AND status = :previous.
        applied=False with reason concurrent_update means another delivery moved
        the intent first; the caller re-reads and decides again.
        """
        if new_status not in INTENT_STATUSES:
            raise ValueError(f"Unknown intent status: {new_status}")

        previous = intent.status
        if not correction and not can_transition(previous, new_status):
            logger.warning(
                "intent_transition_rejected",
                extra={"intent_id": intent.id, "previous_status": previous, "status": new_status},
            )
            return TransitionResult(applied=False, intent=intent, previous_status=previous, reason=REASON_STALE)

        values = {"status": new_status, "updated_at": datetime.now(timezone.utc)}
        if email is not None:
            values["email"] = email
        if processor_payment_id is not None:
            values["processor_payment_id"] = processor_payment_id

        result = self.db.execute(
            update(PurchaseIntent)
            .where(PurchaseIntent.id == intent.id, PurchaseIntent.status == previous)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.flush()
        self.db.refresh(intent)

        if result.rowcount == 0:
            logger.warning(
                "intent_transition_conflict",
                extra={"intent_id": intent.id, "previous_status": previous, "status": intent.status},
            )
            return TransitionResult(applied=False, intent=intent, previous_status=previous, reason=REASON_CONCURRENT)

        if correction and not can_transition(previous, new_status):
            logger.warning(
                "intent_status_corrected",
                extra={"intent_id": intent.id, "previous_status": previous, "status": new_status},
            )
        return TransitionResult(applied=True, intent=intent, previous_status=previous)

    def touch(self, intent: PurchaseIntent) -> PurchaseIntent:
        """Re-write updated_at without a status change (processor still reports in-progress)."""
        intent.updated_at = datetime.now(timezone.utc)
        self.db.add(intent)
        self.db.flush()
        return intent
