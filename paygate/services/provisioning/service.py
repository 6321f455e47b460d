"""
AccountProvisioner: ensures an account, a premium entitlement profile and an
approved subscription record exist for a confirmed purchase.

Idempotent per email: lookup-then-create with the unique email as the safety net.
One subscription record per purchase intent; purchases without an intent append
a new record each time (separate purchases are expected to repeat).
Account creation failure is fatal (UpstreamError). Profile / record write failures
are rolled back to a savepoint and logged; the account stays and the next access
verification heals the entitlement.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from paygate.billing.config import get_default_currency, plan_expiry
from paygate.core.errors import PartialProvisioningFailure, ValidationError
from paygate.models.entitlement_profile import PROFILE_ACTIVE, EntitlementProfile
from paygate.models.subscription_record import PLAN_LIFETIME, PLAN_TYPES, SubscriptionRecord
from paygate.services.identity.base import IdentityAccount, IdentityProvider
from paygate.services.identity.local import get_identity_provider
from paygate.utils.email import display_name, is_real_email
from paygate.utils.metrics import provisioning_total

logger = logging.getLogger(__name__)


@dataclass
class ProvisionRequest:
    email: str
    plan_type: str = PLAN_LIFETIME
    amount: float = 0.0
    currency: str | None = None
    full_name: str | None = None
    purchase_intent_id: str | None = None
    processor: str | None = None
    processor_order_id: str | None = None
    source: str = "webhook"


@dataclass
class ProvisionResult:
    account_id: str
    created: bool
    subscription_record_id: str | None = None
    partial: bool = False


class AccountProvisioner:
    def __init__(self, db: Session, identity: IdentityProvider | None = None):
        self.db = db
        self.identity = identity or get_identity_provider(db)

    def provision(self, request: ProvisionRequest) -> ProvisionResult:
        if not is_real_email(request.email):
            raise ValidationError("A real email is required to provision an account")
        if request.plan_type not in PLAN_TYPES:
            raise ValidationError(f"Unknown plan type: {request.plan_type}")

        account, created = self._ensure_account(request)

        try:
            self._upsert_profile(account, request)
            record_id = self._append_subscription(account, request)
        except PartialProvisioningFailure as e:
            provisioning_total.labels(result="partial").inc()
            logger.error(
                "provisioning_partial",
                extra={
                    "step": e.context.get("step"),
                    "account_id": account.id,
                    "intent_id": request.purchase_intent_id,
                    "error": e.message,
                },
            )
            return ProvisionResult(account_id=account.id, created=created, partial=True)

        provisioning_total.labels(result="created" if created else "upgraded").inc()
        logger.info(
            "provisioning_completed",
            extra={
                "step": "provision",
                "account_id": account.id,
                "intent_id": request.purchase_intent_id,
                "source": request.source,
                "status": "created" if created else "upgraded",
            },
        )
        return ProvisionResult(account_id=account.id, created=created, subscription_record_id=record_id)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _ensure_account(self, request: ProvisionRequest) -> tuple[IdentityAccount, bool]:
        existing = self.identity.get_account_by_email(request.email)
        if existing is not None:
            return existing, False
        metadata = {
            "created_via": request.source,
            "processor": request.processor,
            "processor_order_id": request.processor_order_id,
            "payment_verified": True,
        }
        account = self.identity.create_account(
            request.email,
            full_name=display_name(request.email, request.full_name),
            metadata={k: v for k, v in metadata.items() if v is not None},
        )
        return account, True

    def _upsert_profile(self, account: IdentityAccount, request: ProvisionRequest) -> EntitlementProfile:
        """Premium/active, never downgrades. Creates the row if the account has none."""
        try:
            with self.db.begin_nested():
                profile = (
                    self.db.query(EntitlementProfile)
                    .filter(EntitlementProfile.account_id == account.id)
                    .one_or_none()
                )
                if profile is None:
                    profile = EntitlementProfile(
                        account_id=account.id,
                        email=request.email,
                        full_name=display_name(request.email, request.full_name or account.full_name),
                        is_premium=True,
                        subscription_status=PROFILE_ACTIVE,
                        onboarding_completed=False,
                    )
                    self.db.add(profile)
                else:
                    profile.is_premium = True
                    profile.subscription_status = PROFILE_ACTIVE
                    if not profile.email:
                        profile.email = request.email
                    self.db.add(profile)
            return profile
        except SQLAlchemyError as e:
            raise PartialProvisioningFailure(
                f"Entitlement profile write failed: {e}",
                context={"step": "upsert_profile"},
            ) from e

    def _append_subscription(self, account: IdentityAccount, request: ProvisionRequest) -> str:
        if request.purchase_intent_id:
            existing = self._record_for_intent(request.purchase_intent_id)
            if existing is not None:
                logger.info(
                    "subscription_record_exists",
                    extra={"account_id": account.id, "intent_id": request.purchase_intent_id},
                )
                return existing.id

        now = datetime.now(timezone.utc)
        record = SubscriptionRecord(
            id=str(uuid4()),
            account_id=account.id,
            purchase_intent_id=request.purchase_intent_id,
            plan_type=request.plan_type,
            amount=request.amount,
            currency=request.currency or get_default_currency(),
            status="approved",
            expires_at=plan_expiry(request.plan_type, now),
            processor=request.processor,
            processor_order_id=request.processor_order_id,
            created_at=now,
        )
        try:
            with self.db.begin_nested():
                self.db.add(record)
        except IntegrityError as e:
            # Same intent confirmed concurrently by the other path.
            existing = self._record_for_intent(request.purchase_intent_id) if request.purchase_intent_id else None
            if existing is not None:
                return existing.id
            raise PartialProvisioningFailure(
                f"Subscription record write failed: {e}",
                context={"step": "append_subscription"},
            ) from e
        except SQLAlchemyError as e:
            raise PartialProvisioningFailure(
                f"Subscription record write failed: {e}",
                context={"step": "append_subscription"},
            ) from e
        return record.id

    def _record_for_intent(self, purchase_intent_id: str) -> SubscriptionRecord | None:
        return (
            self.db.query(SubscriptionRecord)
            .filter(SubscriptionRecord.purchase_intent_id == purchase_intent_id)
            .one_or_none()
        )
