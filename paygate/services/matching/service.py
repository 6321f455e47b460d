"""
OrderMatcher: resolves an inbound notification to exactly one purchase intent.

Tiers, first success wins:
1. external_reference carrying our correlation prefix (exact, then legacy containment)
2. processor_reference_id (preference / order id)
2b. intent already bound to the same processor payment id (redelivery)
3. fallback: most recent pending intent, only when the caller allows it

The matcher never creates an intent. Tier 3 can misattribute a payment when two
checkouts are pending at once for different customers; every fallback match is
logged at WARNING and written to the audit log so it can be reconciled later.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from paygate.billing.config import get_correlation_prefix, is_fallback_enabled
from paygate.models.purchase_intent import PurchaseIntent
from paygate.services.audit.service import AuditService
from paygate.services.purchase_intents.service import PurchaseIntentStore
from paygate.utils.metrics import order_matches_total

logger = logging.getLogger(__name__)

TIER_EXTERNAL_REFERENCE = "external_reference"
TIER_PROCESSOR_REFERENCE = "processor_reference"
TIER_PAYMENT_ID = "payment_id"
TIER_FALLBACK = "fallback"
TIER_NONE = "none"


@dataclass(frozen=True)
class MatchQuery:
    """Correlation identifiers carried by a notification; any of them may be missing."""

    processor_reference_id: str | None = None
    external_reference: str | None = None
    payer_email: str | None = None
    processor_payment_id: str | None = None


@dataclass(frozen=True)
class OrderMatch:
    intent: PurchaseIntent | None
    tier: str

    @property
    def found(self) -> bool:
        return self.intent is not None

    @property
    def is_fallback(self) -> bool:
        return self.tier == TIER_FALLBACK


NOT_FOUND = OrderMatch(intent=None, tier=TIER_NONE)


class OrderMatcher:
    def __init__(self, db: Session, store: PurchaseIntentStore | None = None):
        self.db = db
        self.store = store or PurchaseIntentStore(db)

    def match(self, query: MatchQuery, *, processor: str, allow_fallback: bool = False) -> OrderMatch:
        result = (
            self._match_external_reference(query.external_reference)
            or self._match_processor_reference(query.processor_reference_id)
            or self._match_payment_id(query.processor_payment_id)
        )
        if result is None and allow_fallback and is_fallback_enabled():
            result = self._match_fallback(query, processor)
        result = result or NOT_FOUND

        order_matches_total.labels(tier=result.tier).inc()
        logger.info(
            "order_match_result",
            extra={
                "step": "match",
                "processor": processor,
                "match_tier": result.tier,
                "intent_id": result.intent.id if result.intent else None,
                "payment_id": query.processor_payment_id,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Tiers
    # ------------------------------------------------------------------

    def _match_external_reference(self, external_reference: str | None) -> OrderMatch | None:
        prefix = get_correlation_prefix()
        if not external_reference or not external_reference.startswith(prefix):
            return None

        exact = self.store.find_by_external_reference(external_reference)
        if exact is not None:
            return OrderMatch(intent=exact, tier=TIER_EXTERNAL_REFERENCE)

        # Legacy tokens: the fragment after the prefix is embedded in a stored reference.
        fragment = external_reference[len(prefix):].split("_")[0]
        if not fragment:
            return None
        candidates = self.store.find_containing_reference(fragment)
        if not candidates:
            return None
        if len(candidates) > 1:
            logger.warning(
                "order_match_ambiguous_reference",
                extra={
                    "external_reference": external_reference,
                    "candidates": [c.id for c in candidates],
                    "intent_id": candidates[0].id,
                },
            )
        return OrderMatch(intent=candidates[0], tier=TIER_EXTERNAL_REFERENCE)

    def _match_processor_reference(self, processor_reference_id: str | None) -> OrderMatch | None:
        if not processor_reference_id:
            return None
        intents = self.store.find_by_processor_reference(processor_reference_id)
        if not intents:
            return None
        if len(intents) > 1:
            logger.warning(
                "order_match_duplicate_processor_reference",
                extra={"preference_id": processor_reference_id, "candidates": [i.id for i in intents]},
            )
        return OrderMatch(intent=intents[0], tier=TIER_PROCESSOR_REFERENCE)

    def _match_payment_id(self, processor_payment_id: str | None) -> OrderMatch | None:
        if not processor_payment_id:
            return None
        intent = self.store.find_by_payment_id(processor_payment_id)
        if intent is None:
            return None
        return OrderMatch(intent=intent, tier=TIER_PAYMENT_ID)

    def _match_fallback(self, query: MatchQuery, processor: str) -> OrderMatch | None:
        """Low-confidence match: the notification carries no usable identifier."""
        intent = self.store.most_recent_pending(processor=processor)
        if intent is None:
            return None

        logger.warning(
            "order_match_fallback",
            extra={
                "step": "match_fallback",
                "processor": processor,
                "intent_id": intent.id,
                "payment_id": query.processor_payment_id,
                "email": query.payer_email,
                "match_tier": TIER_FALLBACK,
            },
        )
        AuditService(self.db).log(
            actor_type="processor",
            actor_id=processor,
            action="order_match_fallback",
            entity_type="purchase_intent",
            entity_id=intent.id,
            payload={
                "processor_payment_id": query.processor_payment_id,
                "processor_reference_id": query.processor_reference_id,
                "external_reference": query.external_reference,
                "payer_email": query.payer_email,
                "intent_email": intent.email,
            },
        )
        return OrderMatch(intent=intent, tier=TIER_FALLBACK)
