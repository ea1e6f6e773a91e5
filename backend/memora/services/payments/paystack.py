"""
Memora Backend — Paystack Webhook Adapter
===========================================

Signature: `x-paystack-signature` is the hex HMAC-SHA512 of the raw body keyed
with the secret key.

Event mapping:
    subscription.create                       → subscription_created
    subscription.disable, subscription.not_renew → subscription_canceled
    charge.success (with a plan)              → payment_succeeded
    invoice.payment_failed                    → payment_failed
Amounts are already in the minor unit (kobo, cents).
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Mapping, Optional

from memora.config import settings
from memora.exceptions import WebhookSignatureError
from memora.services.payments.base import (
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    SUBSCRIPTION_CANCELED,
    SUBSCRIPTION_CREATED,
    PaymentProvider,
    SubscriptionEvent,
    from_timestamp,
    minor_units,
)

logger = logging.getLogger(__name__)

_CANCEL_EVENTS = ("subscription.disable", "subscription.not_renew")


def sign(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


class PaystackProvider(PaymentProvider):
    name = "paystack"

    def __init__(self, secret_key: Optional[str] = None):
        self._secret = secret_key

    @property
    def secret_key(self) -> str:
        return self._secret if self._secret is not None else settings.paystack_secret_key

    async def verify_signature(
        self, raw_body: bytes, headers: Mapping[str, str]
    ) -> Dict[str, Any]:
        signature = headers.get("x-paystack-signature")
        if not self.secret_key or not signature:
            raise WebhookSignatureError(provider=self.name, message="Missing Paystack signature")
        if not hmac.compare_digest(sign(raw_body, self.secret_key), signature):
            logger.warning("Invalid Paystack signature")
            raise WebhookSignatureError(provider=self.name)
        try:
            return json.loads(raw_body)
        except ValueError:
            raise WebhookSignatureError(provider=self.name, message="Invalid Paystack payload")

    def event_id_of(self, payload: Dict[str, Any]) -> Optional[str]:
        data = payload.get("data") or {}
        ref = data.get("subscription_code") or data.get("reference") or data.get("id")
        return str(ref) if ref is not None else None

    def normalize(self, payload: Dict[str, Any]) -> Optional[SubscriptionEvent]:
        event_type = payload.get("event") or ""
        data = payload.get("data") or {}
        customer = data.get("customer") or {}
        plan = data.get("plan") or {}
        metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}

        common = dict(
            provider=self.name,
            provider_event_type=event_type,
            event_id=self.event_id_of(payload),
            customer_id=customer.get("customer_code"),
            customer_email=customer.get("email"),
            plan_id=plan.get("plan_code"),
            user_id=metadata.get("user_id"),
            tier=metadata.get("tier"),
            billing_cycle=metadata.get("billing_cycle") or _cycle(plan.get("interval")),
            currency=data.get("currency") or plan.get("currency"),
            metadata=metadata,
        )

        if event_type == "subscription.create":
            return SubscriptionEvent(
                type=SUBSCRIPTION_CREATED,
                subscription_id=data.get("subscription_code"),
                status="active",
                amount_cents=minor_units(data.get("amount")) or minor_units(plan.get("amount")),
                period_start=from_timestamp(data.get("createdAt")),
                period_end=from_timestamp(data.get("next_payment_date")),
                **common,
            )
        if event_type in _CANCEL_EVENTS:
            return SubscriptionEvent(
                type=SUBSCRIPTION_CANCELED,
                subscription_id=data.get("subscription_code"),
                status="canceled",
                **common,
            )
        if event_type == "charge.success":
            if not plan:
                # One-off charge, not a subscription renewal
                return None
            return SubscriptionEvent(
                type=PAYMENT_SUCCEEDED,
                subscription_id=(data.get("subscription") or {}).get("subscription_code"),
                amount_cents=minor_units(data.get("amount")),
                period_start=from_timestamp(data.get("paid_at")),
                **common,
            )
        if event_type == "invoice.payment_failed":
            return SubscriptionEvent(
                type=PAYMENT_FAILED,
                subscription_id=(data.get("subscription") or {}).get("subscription_code"),
                amount_cents=minor_units(data.get("amount")),
                **common,
            )
        return None


def _cycle(interval: Optional[str]) -> Optional[str]:
    return {"monthly": "monthly", "annually": "annual"}.get(interval or "")
