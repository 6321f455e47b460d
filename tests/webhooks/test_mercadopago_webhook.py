"""Tests for the processor A webhook handler: settlement, masked payers, redelivery, filters."""
import logging
from unittest.mock import patch

import pytest
from sqlalchemy import update

from paygate.core.errors import UpstreamError, ValidationError
from paygate.models.account import Account
from paygate.models.audit_log import AuditLog
from paygate.models.entitlement_profile import EntitlementProfile
from paygate.models.purchase_intent import PurchaseIntent
from paygate.models.subscription_record import SubscriptionRecord
from paygate.services.purchase_intents.service import REASON_CONCURRENT, TransitionResult
from paygate.services.webhooks.mercadopago import MercadoPagoWebhookHandler


def _notification(payment_id: str = "pay_1") -> dict:
    return {"type": "payment", "action": "payment.updated", "data": {"id": payment_id}}


@pytest.fixture
def handler(db, mp_client, notifier):
    return MercadoPagoWebhookHandler(db, client=mp_client, notifier=notifier)


class TestApproval:
    def test_pref_1_scenario(self, db, handler, mp_client, notifier, make_intent, make_payment):
        intent = make_intent(processor_reference_id="pref_1", email=None)
        mp_client.add_payment(make_payment("pay_1", "approved", email="a@b.com", preference_id="pref_1"))

        outcome = handler.handle(_notification("pay_1"))

        assert outcome.to_response()["status"] == "processed"
        assert outcome.provisioned is True
        db.refresh(intent)
        assert intent.status == "approved"
        assert intent.email == "a@b.com"
        assert intent.processor_payment_id == "pay_1"
        account = db.query(Account).filter_by(email="a@b.com").one()
        profile = db.query(EntitlementProfile).filter_by(account_id=account.id).one()
        assert profile.is_premium is True
        assert profile.subscription_status == "active"
        notifier.request.assert_called_once()
        sent = notifier.request.call_args.args[0]
        assert sent.email == "a@b.com"
        assert sent.kind == "download"

    def test_matches_checkout_external_reference(self, db, handler, mp_client, make_intent, make_payment):
        target = make_intent(external_reference="dindin_abc", email="buyer@b.com")
        make_intent(email="other@b.com")
        mp_client.add_payment(make_payment("pay_2", "approved", email="buyer@b.com", external_reference="dindin_abc"))

        outcome = handler.handle(_notification("pay_2"))

        assert outcome.intent_id == target.id

    def test_masked_email_provisions_known_email_without_notification(
        self, db, handler, mp_client, notifier, make_intent, make_payment
    ):
        intent = make_intent(processor_reference_id="pref_1", email="known@b.com")
        mp_client.add_payment(make_payment("pay_1", "approved", email="XXXXXXXXXXX", preference_id="pref_1"))

        outcome = handler.handle(_notification("pay_1"))

        assert outcome.status == "processed"
        db.refresh(intent)
        assert intent.status == "approved"
        assert intent.email == "known@b.com"
        assert db.query(Account).filter_by(email="known@b.com").count() == 1
        notifier.request.assert_not_called()

    def test_masked_email_without_known_email_still_approves(
        self, db, handler, mp_client, notifier, make_intent, make_payment
    ):
        intent = make_intent(processor_reference_id="pref_1", email=None)
        mp_client.add_payment(make_payment("pay_1", "approved", email="XXXXXXXXXXX", preference_id="pref_1"))

        outcome = handler.handle(_notification("pay_1"))

        db.refresh(intent)
        assert intent.status == "approved"
        assert outcome.provisioned is False
        assert db.query(Account).count() == 0
        notifier.request.assert_not_called()

    def test_redelivery_is_duplicate(self, db, handler, mp_client, notifier, make_intent, make_payment):
        make_intent(processor_reference_id="pref_1", email=None)
        mp_client.add_payment(make_payment("pay_1", "approved", email="a@b.com", preference_id="pref_1"))

        first = handler.handle(_notification("pay_1"))
        second = handler.handle(_notification("pay_1"))

        assert first.duplicate is False
        assert second.duplicate is True
        assert second.to_response()["duplicate"] is True
        assert db.query(Account).count() == 1
        assert db.query(SubscriptionRecord).count() == 1
        assert notifier.request.call_count == 1

    def test_fallback_match_when_payment_has_no_references(
        self, db, handler, mp_client, make_intent, make_payment, caplog
    ):
        intent = make_intent(email="a@b.com")
        mp_client.add_payment(make_payment("pay_7", "approved", email="a@b.com"))

        with caplog.at_level(logging.WARNING):
            outcome = handler.handle(_notification("pay_7"))

        assert outcome.intent_id == intent.id
        assert any(r.getMessage() == "order_match_fallback" for r in caplog.records)


class TestOtherStatuses:
    def test_rejected_no_provisioning(self, db, handler, mp_client, notifier, make_intent, make_payment):
        intent = make_intent(processor_reference_id="pref_1", email="a@b.com")
        mp_client.add_payment(make_payment("pay_1", "rejected", preference_id="pref_1"))

        outcome = handler.handle(_notification("pay_1"))

        db.refresh(intent)
        assert intent.status == "rejected"
        assert outcome.provisioned is False
        assert db.query(Account).count() == 0
        notifier.request.assert_not_called()

    def test_rejected_then_approved(self, db, handler, mp_client, make_intent, make_payment):
        intent = make_intent(processor_reference_id="pref_1", email="a@b.com")
        mp_client.add_payment(make_payment("pay_1", "rejected", preference_id="pref_1"))
        mp_client.add_payment(make_payment("pay_2", "approved", preference_id="pref_1"))

        handler.handle(_notification("pay_1"))
        handler.handle(_notification("pay_2"))

        db.refresh(intent)
        assert intent.status == "approved"
        assert intent.processor_payment_id == "pay_2"

    def test_late_rejection_after_approval_is_stale(self, db, handler, mp_client, make_intent, make_payment):
        intent = make_intent(processor_reference_id="pref_1", email="a@b.com")
        mp_client.add_payment(make_payment("pay_1", "approved", preference_id="pref_1"))
        mp_client.add_payment(make_payment("pay_0", "rejected", preference_id="pref_1"))

        handler.handle(_notification("pay_1"))
        outcome = handler.handle(_notification("pay_0"))

        assert outcome.to_response() == {"status": "ignored", "reason": "stale_transition"}
        db.refresh(intent)
        assert intent.status == "approved"

    def test_in_process_keeps_pending(self, db, handler, mp_client, make_intent, make_payment):
        intent = make_intent(processor_reference_id="pref_1")
        mp_client.add_payment(make_payment("pay_1", "in_process", preference_id="pref_1"))

        outcome = handler.handle(_notification("pay_1"))

        assert outcome.status == "processed"
        db.refresh(intent)
        assert intent.status == "pending"

    def test_refunded_is_ignored(self, db, handler, mp_client, make_intent, make_payment):
        intent = make_intent(processor_reference_id="pref_1", status="approved", email="a@b.com")
        mp_client.add_payment(make_payment("pay_1", "refunded", preference_id="pref_1"))

        outcome = handler.handle(_notification("pay_1"))

        assert outcome.status == "ignored"
        db.refresh(intent)
        assert intent.status == "approved"


class TestFiltersAndErrors:
    def test_non_payment_event_ignored(self, handler, mp_client):
        outcome = handler.handle({"type": "merchant_order", "data": {"id": "123"}})

        assert outcome.to_response() == {"status": "ignored", "reason": "unsupported_event"}

    def test_missing_payment_id_is_validation_error(self, handler):
        with pytest.raises(ValidationError):
            handler.handle({"type": "payment", "data": {}})

    def test_numeric_payment_id_accepted(self, db, handler, mp_client, make_intent, make_payment):
        make_intent(processor_reference_id="pref_1")
        mp_client.add_payment(make_payment("123456", "approved", email="a@b.com", preference_id="pref_1"))

        outcome = handler.handle({"type": "payment", "data": {"id": 123456}})

        assert outcome.status == "processed"

    def test_order_not_found_writes_audit(self, db, handler, mp_client, make_payment):
        mp_client.add_payment(make_payment("pay_1", "approved", preference_id="pref_unknown"))

        outcome = handler.handle(_notification("pay_1"))

        assert outcome.to_response() == {"status": "order_not_found"}
        entry = db.query(AuditLog).filter_by(action="order_not_found").one()
        assert entry.entity_id == "pay_1"

    def test_processor_failure_propagates(self, handler):
        with pytest.raises(UpstreamError):
            handler.handle(_notification("missing"))


class TestConcurrentSettlement:
    """Another delivery moves the intent between our read and our conditional write."""

    @staticmethod
    def _racing_transition(db, handler, concurrent_values: dict):
        real_transition = handler.store.transition
        seen: list[str] = []

        def transition(intent, new_status, **kwargs):
            seen.append(intent.status)
            if len(seen) == 1:
                db.execute(
                    update(PurchaseIntent)
                    .where(PurchaseIntent.id == intent.id)
                    .values(**concurrent_values)
                    .execution_options(synchronize_session=False)
                )
            return real_transition(intent, new_status, **kwargs)

        return transition, seen

    def test_concurrent_approval_of_same_payment_becomes_duplicate(
        self, db, handler, mp_client, notifier, make_intent, make_payment
    ):
        intent = make_intent(processor_reference_id="pref_1", email="a@b.com")
        mp_client.add_payment(make_payment("pay_1", "approved", email="a@b.com", preference_id="pref_1"))
        transition, seen = self._racing_transition(
            db, handler, {"status": "approved", "processor_payment_id": "pay_1"}
        )

        with patch.object(handler.store, "transition", side_effect=transition), patch.object(
            handler.confirmation, "confirm", wraps=handler.confirmation.confirm
        ) as confirm:
            outcome = handler.handle(_notification("pay_1"))

        assert seen == ["pending", "approved"]
        assert outcome.status == "processed"
        assert outcome.duplicate is True
        assert outcome.provisioned is False
        confirm.assert_not_called()
        notifier.request.assert_not_called()
        db.refresh(intent)
        assert intent.status == "approved"

    def test_concurrent_rejection_is_re_evaluated_and_provisions_once(
        self, db, handler, mp_client, notifier, make_intent, make_payment
    ):
        intent = make_intent(processor_reference_id="pref_1", email=None)
        mp_client.add_payment(make_payment("pay_1", "approved", email="a@b.com", preference_id="pref_1"))
        transition, seen = self._racing_transition(db, handler, {"status": "rejected"})

        with patch.object(handler.store, "transition", side_effect=transition), patch.object(
            handler.confirmation, "confirm", wraps=handler.confirmation.confirm
        ) as confirm:
            outcome = handler.handle(_notification("pay_1"))

        assert seen == ["pending", "rejected"]
        assert outcome.intent_status == "approved"
        assert outcome.provisioned is True
        assert confirm.call_count == 1
        assert db.query(SubscriptionRecord).count() == 1
        db.refresh(intent)
        assert intent.status == "approved"
        assert intent.email == "a@b.com"

    def test_second_conflict_is_ignored(self, db, handler, mp_client, notifier, make_intent, make_payment):
        intent = make_intent(processor_reference_id="pref_1", email="a@b.com")
        mp_client.add_payment(make_payment("pay_1", "approved", email="a@b.com", preference_id="pref_1"))
        conflict = TransitionResult(
            applied=False, intent=intent, previous_status="pending", reason=REASON_CONCURRENT
        )

        with patch.object(handler.store, "transition", return_value=conflict) as transition, patch.object(
            handler.confirmation, "confirm"
        ) as confirm:
            outcome = handler.handle(_notification("pay_1"))

        assert transition.call_count == 2
        assert outcome.to_response() == {"status": "ignored", "reason": "concurrent_update"}
        confirm.assert_not_called()
        notifier.request.assert_not_called()
        assert db.query(Account).count() == 0
