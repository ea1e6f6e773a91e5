"""
Memora Backend — Flutterwave Webhook Adapter
==============================================

Signature: the `verif-hash` header must equal the secret hash configured on
the Flutterwave dashboard (constant-time comparison).

Event mapping:
    charge.completed (status "successful", with a payment plan)
        first charge for a tx_ref → subscription_created
        (the reconciliation idempotency check turns repeats into duplicates)
    subscription.cancelled → subscription_canceled
Flutterwave amounts are in major units; they are converted to cents.
"""

import json
import logging
from typing import Any, Dict, Mapping, Optional

from memora.config import settings
from memora.exceptions import WebhookSignatureError
from memora.security import constant_time_equals
from memora.services.payments.base import (
    SUBSCRIPTION_CANCELED,
    SUBSCRIPTION_CREATED,
    PaymentProvider,
    SubscriptionEvent,
    from_timestamp,
    to_cents,
)

logger = logging.getLogger(__name__)


class FlutterwaveProvider(PaymentProvider):
    name = "flutterwave"

    def __init__(self, secret_hash: Optional[str] = None):
        self._secret = secret_hash

    @property
    def secret_hash(self) -> str:
        return self._secret if self._secret is not None else settings.flutterwave_secret_hash

    async def verify_signature(
        self, raw_body: bytes, headers: Mapping[str, str]
    ) -> Dict[str, Any]:
        signature = headers.get("verif-hash")
        if not self.secret_hash or not signature:
            raise WebhookSignatureError(provider=self.name, message="Missing Flutterwave signature")
        if not constant_time_equals(signature, self.secret_hash):
            logger.warning("Invalid Flutterwave verif-hash")
            raise WebhookSignatureError(provider=self.name)
        try:
            return json.loads(raw_body)
        except ValueError:
            raise WebhookSignatureError(provider=self.name, message="Invalid Flutterwave payload")

    def event_id_of(self, payload: Dict[str, Any]) -> Optional[str]:
        data = payload.get("data") or {}
        ref = data.get("id") or data.get("tx_ref")
        return str(ref) if ref is not None else None

    def normalize(self, payload: Dict[str, Any]) -> Optional[SubscriptionEvent]:
        event_type = payload.get("event") or payload.get("event.type") or ""
        data = payload.get("data") or {}
        customer = data.get("customer") or {}
        meta = payload.get("meta_data") or data.get("meta") or {}
        if not isinstance(meta, dict):
            meta = {}

        if event_type == "charge.completed":
            if (data.get("status") or "").lower() != "successful":
                return None
            plan_id = data.get("payment_plan") or meta.get("payment_plan")
            if not plan_id and not meta.get("tier"):
                return None
            amount = data.get("amount")
            return SubscriptionEvent(
                provider=self.name,
                type=SUBSCRIPTION_CREATED,
                provider_event_type=event_type,
                event_id=self.event_id_of(payload),
                subscription_id=data.get("tx_ref") or _str_or_none(data.get("id")),
                customer_id=_str_or_none(customer.get("id")),
                customer_email=customer.get("email"),
                plan_id=_str_or_none(plan_id),
                user_id=meta.get("user_id"),
                tier=meta.get("tier"),
                billing_cycle=meta.get("billing_cycle"),
                status="active",
                amount_cents=to_cents(amount),
                currency=data.get("currency"),
                period_start=from_timestamp(data.get("created_at")),
                metadata=meta,
            )

        if event_type == "subscription.cancelled":
            subscription = data.get("subscription") or {}
            return SubscriptionEvent(
                provider=self.name,
                type=SUBSCRIPTION_CANCELED,
                provider_event_type=event_type,
                event_id=self.event_id_of(payload),
                subscription_id=_str_or_none(subscription.get("tx_ref") or data.get("tx_ref")),
                customer_id=_str_or_none(customer.get("id")),
                customer_email=customer.get("email"),
                plan_id=_str_or_none((data.get("plan") or {}).get("id")),
                status="canceled",
                metadata=meta,
            )

        return None


def _str_or_none(value: Any) -> Optional[str]:
    return str(value) if value not in (None, "") else None
